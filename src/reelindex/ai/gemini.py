"""Primary video analyzer: Gemini over the google-genai File API.

The downloaded clip is re-encoded to a small low-fps copy, uploaded once per
job with `prepare_media`, and referenced by URI in both analysis passes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from google import genai
from google.genai import types

from ..errors import AnalysisError, ToolError
from ..ffmpeg import downscale_for_analysis
from ..ingest.models import ExtractedMeta
from ..tools import ExternalToolRunner
from .llm_client import _extract_json_from_response
from .prompts import GENERAL_SYSTEM_PROMPT, build_post_context, reask_message, recipe_video_system_prompt
from .schemas import Analysis, Recipe

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GeminiConfig:
    model: str = "gemini-2.5-flash-lite"
    api_key: Optional[str] = None
    downscale_width: int = 720
    downscale_fps: float = 2
    upload_poll_s: float = 2.0
    upload_timeout_s: float = 300.0
    max_retries: int = 1
    inference_ceiling: float = 0.7

    @classmethod
    def from_profile(
        cls,
        video_cfg: Dict[str, Any],
        *,
        api_key: Optional[str] = None,
        inference_ceiling: float = 0.7,
    ) -> "GeminiConfig":
        return cls(
            model=str(video_cfg.get("model") or "gemini-2.5-flash-lite"),
            api_key=api_key,
            downscale_width=int(video_cfg.get("downscale_width", 720)),
            downscale_fps=float(video_cfg.get("downscale_fps", 2)),
            upload_poll_s=float(video_cfg.get("upload_poll_s", 2.0)),
            upload_timeout_s=float(video_cfg.get("upload_timeout_s", 300)),
            max_retries=int(video_cfg.get("max_retries", 1)),
            inference_ceiling=inference_ceiling,
        )


@dataclass(frozen=True)
class MediaRef:
    """An uploaded clip the model can read."""
    uri: str
    mime_type: str
    name: Optional[str] = None
    local_path: Optional[Path] = None


class GeminiVideoAnalyzer:
    def __init__(
        self,
        cfg: GeminiConfig,
        *,
        runner: Optional[ExternalToolRunner] = None,
        client: Any = None,
    ) -> None:
        self.cfg = cfg
        self.runner = runner or ExternalToolRunner()
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.cfg.api_key:
                raise AnalysisError("GEMINI_API_KEY is not set")
            self._client = genai.Client(api_key=self.cfg.api_key)
        return self._client

    def prepare_media(self, video_path: Path) -> MediaRef:
        """Downscale the clip and upload it through the File API."""
        video_path = Path(video_path)
        small = video_path.with_name(
            f"{video_path.stem}.analysis.{self.cfg.downscale_width}w.{self.cfg.downscale_fps:g}fps.mp4"
        )
        try:
            downscale_for_analysis(
                video_path,
                small,
                width=self.cfg.downscale_width,
                fps=self.cfg.downscale_fps,
                runner=self.runner,
            )
        except ToolError as e:
            raise AnalysisError(f"Downscale failed: {e}") from e

        try:
            uploaded = self.client.files.upload(file=str(small), config=types.UploadFileConfig(mime_type="video/mp4"))
            uploaded = self._wait_until_active(uploaded)
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(f"Gemini upload failed: {e}") from e

        log.info("Uploaded %s to %s", small.name, uploaded.uri)
        return MediaRef(
            uri=uploaded.uri,
            mime_type=getattr(uploaded, "mime_type", None) or "video/mp4",
            name=getattr(uploaded, "name", None),
            local_path=small,
        )

    def _wait_until_active(self, uploaded: Any) -> Any:
        # Video files are processed asynchronously after upload
        deadline = time.monotonic() + self.cfg.upload_timeout_s
        while self._state(uploaded) == "PROCESSING":
            if time.monotonic() > deadline:
                raise AnalysisError(f"Gemini file {uploaded.name} still processing after {self.cfg.upload_timeout_s:.0f}s")
            time.sleep(self.cfg.upload_poll_s)
            uploaded = self.client.files.get(name=uploaded.name)
        if self._state(uploaded) == "FAILED":
            raise AnalysisError(f"Gemini file {uploaded.name} failed processing")
        return uploaded

    @staticmethod
    def _state(uploaded: Any) -> str:
        state = getattr(uploaded, "state", None)
        if state is None:
            return "ACTIVE"
        return str(getattr(state, "name", state)).upper()

    def release_media(self, media: MediaRef) -> None:
        """Delete the uploaded file and the local downscaled copy."""
        if media.name:
            try:
                self.client.files.delete(name=media.name)
            except Exception as e:
                log.warning("Could not delete Gemini file %s: %s", media.name, e)
        if media.local_path:
            try:
                media.local_path.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Could not delete %s: %s", media.local_path, e)

    def _generate_validated(self, system: str, user: str, media: MediaRef, parse: Callable[[Any], T]) -> T:
        contents: List[Any] = [
            types.Content(
                role="user",
                parts=[
                    types.Part.from_text(text=user),
                    types.Part.from_uri(file_uri=media.uri, mime_type=media.mime_type),
                ],
            )
        ]
        config = types.GenerateContentConfig(system_instruction=system, response_mime_type="application/json")

        last_error: Optional[AnalysisError] = None
        for attempt in range(self.cfg.max_retries + 1):
            try:
                response = self.client.models.generate_content(model=self.cfg.model, contents=contents, config=config)
            except Exception as e:
                raise AnalysisError(f"Gemini request failed: {e}") from e
            text = (response.text or "").strip()
            try:
                if not text:
                    raise AnalysisError("Gemini returned an empty response")
                return parse(_extract_json_from_response(text))
            except AnalysisError as e:
                last_error = e
                log.info("Invalid Gemini response (attempt %d): %s", attempt + 1, e)
                contents.append(types.Content(role="model", parts=[types.Part.from_text(text=text or "{}")]))
                contents.append(types.Content(role="user", parts=[types.Part.from_text(text=reask_message(str(e)))]))

        raise AnalysisError(f"Gemini response invalid after {self.cfg.max_retries + 1} attempts: {last_error}")

    def analyze_general(self, media: MediaRef, meta: ExtractedMeta) -> Analysis:
        return self._generate_validated(GENERAL_SYSTEM_PROMPT, build_post_context(meta), media, Analysis.from_dict)

    def analyze_specialized(self, media: MediaRef, meta: ExtractedMeta, allow_inference: bool) -> Recipe:
        system = recipe_video_system_prompt(allow_inference, self.cfg.inference_ceiling)
        return self._generate_validated(system, build_post_context(meta), media, Recipe.from_dict)
