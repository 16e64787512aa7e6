"""faster-whisper backend.

Local CTranslate2-based Whisper, for deployments that keep audio off the
network. Installed through the `local-asr` extra.

Optimizations:
- vad_filter: Built-in silero VAD for skipping silence (major speedup)
- compute_type: int8 for fast CPU, float16 for GPU
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from ..errors import TranscriptionError
from ..tools import ExternalToolRunner
from .base import BackendNotAvailableError, BaseTranscriber, TranscriberConfig

logger = logging.getLogger(__name__)


def is_available() -> bool:
    """Check if faster-whisper is installed."""
    try:
        from faster_whisper import WhisperModel  # noqa: F401
        return True
    except ImportError:
        return False


class FasterWhisperTranscriber(BaseTranscriber):
    """Transcriber using faster-whisper (CTranslate2)."""

    def __init__(self, config: TranscriberConfig, *, runner: Optional[ExternalToolRunner] = None):
        super().__init__(config, runner=runner)
        self._model: Any = None

        if not is_available():
            raise BackendNotAvailableError(
                "faster-whisper is not installed. Install with: pip install 'reelindex[local-asr]'"
            )

    @property
    def backend_name(self) -> str:
        return "faster_whisper"

    def ensure_model_loaded(self) -> Any:
        if self._model is None:
            from faster_whisper import WhisperModel

            cpu_threads = os.cpu_count() or 4
            logger.info(
                f"Loading faster-whisper model: {self.config.model_size} on {self.config.device} "
                f"({self.config.compute_type}, {cpu_threads} threads)"
            )
            self._model = WhisperModel(
                self.config.model_size,
                device=self.config.device,
                compute_type=self.config.compute_type,
                cpu_threads=cpu_threads,
            )
        return self._model

    def _transcribe_wav(self, wav_path: Path) -> Optional[str]:
        try:
            model = self.ensure_model_loaded()
        except Exception as e:
            raise TranscriptionError(f"faster-whisper model load failed: {e}") from e
        lang_str = self.config.language or "auto-detect"
        logger.info(f"Transcribing: {wav_path} (lang={lang_str}, VAD={self.config.vad_filter})")
        try:
            segments_iter, _info = model.transcribe(
                str(wav_path),
                language=self.config.language,
                vad_filter=self.config.vad_filter,
            )
            lines = [(seg.text or "").strip() for seg in segments_iter]
        except (RuntimeError, OSError, ValueError) as e:
            raise TranscriptionError(f"faster-whisper failed: {e}") from e
        return "\n".join(line for line in lines if line)
