"""Base types and protocol for transcription backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Protocol, runtime_checkable

from ..errors import ToolError, TranscriptionError
from ..ffmpeg import extract_audio_wav
from ..tools import ExternalToolRunner


class BackendNotAvailableError(TranscriptionError):
    """Raised when a requested backend is not installed or available."""
    pass


BackendType = Literal["api", "faster_whisper"]


@dataclass
class TranscriberConfig:
    """Configuration for speech-to-text.

    Attributes:
        backend: "api" (OpenAI-compatible /audio/transcriptions) or "faster_whisper"
        model: Model name sent to the API backend ("whisper-1")
        base_url: API base, e.g. "https://api.openai.com/v1"
        api_key: Bearer token for the API backend (None for unauthenticated servers)
        timeout_s: HTTP timeout for the API backend
        model_size: faster-whisper model ("tiny", "base", "small", ...)
        device: "cpu" or "cuda" (faster-whisper)
        compute_type: "int8" (CPU), "float16" (GPU)
        language: Language code (None for auto-detect)
        vad_filter: Skip silence with faster-whisper's built-in VAD
        sample_rate: WAV sample rate extracted for the model (16000 for Whisper)
    """
    backend: BackendType = "api"
    model: str = "whisper-1"
    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    timeout_s: float = 300.0
    model_size: str = "small"
    device: str = "cpu"
    compute_type: str = "int8"
    language: Optional[str] = None
    vad_filter: bool = True
    sample_rate: int = 16000

    @classmethod
    def from_profile(cls, speech_cfg: Dict[str, Any], *, api_key: Optional[str] = None) -> "TranscriberConfig":
        """Create config from profile speech settings."""
        return cls(
            backend=speech_cfg.get("backend", "api"),
            model=speech_cfg.get("model", "whisper-1"),
            base_url=str(speech_cfg.get("base_url") or "https://api.openai.com/v1").rstrip("/"),
            api_key=api_key,
            timeout_s=float(speech_cfg.get("timeout_s", 300)),
            model_size=speech_cfg.get("model_size", "small"),
            device=speech_cfg.get("device", "cpu"),
            compute_type=speech_cfg.get("compute_type", "int8"),
            language=speech_cfg.get("language"),
            vad_filter=bool(speech_cfg.get("vad_filter", True)),
            sample_rate=int(speech_cfg.get("sample_rate", 16000)),
        )


@runtime_checkable
class Transcriber(Protocol):
    """Protocol for transcription backends."""

    @property
    def backend_name(self) -> str:
        ...

    def transcribe(self, media_path: Path) -> Optional[str]:
        """Transcribe the audio track of a media file.

        Returns None when no speech was detected. Raises TranscriptionError
        on transport-level failure.
        """
        ...


class BaseTranscriber(ABC):
    """Shared audio preparation for transcription backends."""

    def __init__(self, config: TranscriberConfig, *, runner: Optional[ExternalToolRunner] = None):
        self.config = config
        self.runner = runner or ExternalToolRunner()

    @property
    @abstractmethod
    def backend_name(self) -> str:
        pass

    @abstractmethod
    def _transcribe_wav(self, wav_path: Path) -> Optional[str]:
        pass

    def prepare_audio(self, media_path: Path) -> Path:
        """Extract a 16 kHz mono WAV next to the media file."""
        media_path = Path(media_path)
        if not media_path.exists():
            raise TranscriptionError(f"Media file not found: {media_path}")
        if media_path.suffix.lower() == ".wav":
            return media_path
        try:
            return extract_audio_wav(
                media_path,
                media_path.with_suffix(".wav"),
                sample_rate=self.config.sample_rate,
                runner=self.runner,
            )
        except ToolError as e:
            raise TranscriptionError(f"Audio extraction failed: {e}") from e

    def transcribe(self, media_path: Path) -> Optional[str]:
        wav_path = self.prepare_audio(media_path)
        text = self._transcribe_wav(wav_path)
        if text is not None and not isinstance(text, str):
            raise TranscriptionError(f"{self.backend_name} returned {type(text).__name__}, expected text")
        text = (text or "").strip()
        return text or None
