"""Factory for creating transcriber instances."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..tools import ExternalToolRunner
from .base import Transcriber, TranscriberConfig

logger = logging.getLogger(__name__)


def get_available_backends() -> Dict[str, bool]:
    """Get a dict of available backends and their status."""
    from .faster_whisper_backend import is_available

    return {"api": True, "faster_whisper": is_available()}


def get_transcriber(config: TranscriberConfig, *, runner: Optional[ExternalToolRunner] = None) -> Transcriber:
    """Create a transcriber instance based on config.

    Raises:
        BackendNotAvailableError: faster_whisper requested but not installed
        ValueError: unknown backend name
    """
    backend = config.backend
    logger.debug(f"Available transcription backends: {get_available_backends()}")

    if backend == "api":
        from .api_backend import ApiTranscriber

        if not config.api_key:
            logger.warning("Speech API key is not set; requests to %s may be rejected", config.base_url)
        return ApiTranscriber(config, runner=runner)

    if backend == "faster_whisper":
        from .faster_whisper_backend import FasterWhisperTranscriber

        return FasterWhisperTranscriber(config, runner=runner)

    raise ValueError(f"Unknown backend: {backend}")
