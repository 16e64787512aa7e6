"""OpenAI-compatible speech-to-text over HTTP.

Works with api.openai.com and self-hosted Whisper servers that expose
POST {base_url}/audio/transcriptions with a multipart "file" field.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests

from ..errors import TranscriptionError
from .base import BaseTranscriber

logger = logging.getLogger(__name__)


class ApiTranscriber(BaseTranscriber):
    """Transcriber that uploads the WAV track to a remote Whisper endpoint."""

    @property
    def backend_name(self) -> str:
        return "api"

    def _headers(self) -> dict[str, str]:
        if self.config.api_key:
            return {"Authorization": f"Bearer {self.config.api_key}"}
        return {}

    def _transcribe_wav(self, wav_path: Path) -> Optional[str]:
        url = f"{self.config.base_url.rstrip('/')}/audio/transcriptions"
        data = {"model": self.config.model}
        if self.config.language:
            data["language"] = self.config.language

        logger.info("Transcribing %s via %s (model=%s)", wav_path.name, url, self.config.model)
        try:
            with open(wav_path, "rb") as fh:
                resp = requests.post(
                    url,
                    headers=self._headers(),
                    data=data,
                    files={"file": (wav_path.name, fh, "audio/wav")},
                    timeout=self.config.timeout_s,
                )
        except requests.RequestException as e:
            raise TranscriptionError(f"ASR request failed: {e}") from e

        if resp.status_code != 200:
            raise TranscriptionError(f"ASR HTTP {resp.status_code}: {resp.text[:500]}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise TranscriptionError("ASR returned a non-JSON body") from e
        if not isinstance(payload, dict):
            return None
        text = payload.get("text")
        if text is not None and not isinstance(text, str):
            raise TranscriptionError(f"ASR returned a non-string text field ({type(text).__name__})")
        return text
