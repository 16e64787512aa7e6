"""Transcription engine abstraction layer.

Speech-to-text fallback for posts without platform subtitles:
- api: OpenAI-compatible /audio/transcriptions (OpenAI or a self-hosted server)
- faster_whisper: local CTranslate2 Whisper (optional extra)

Usage:
    from reelindex.transcription import get_transcriber, TranscriberConfig

    config = TranscriberConfig(backend="api", api_key="...")
    transcriber = get_transcriber(config)
    text = transcriber.transcribe(video_path)  # None when nothing was said
"""

from .base import (
    BackendNotAvailableError,
    BaseTranscriber,
    Transcriber,
    TranscriberConfig,
)
from .factory import get_available_backends, get_transcriber

__all__ = [
    "BackendNotAvailableError",
    "BaseTranscriber",
    "Transcriber",
    "TranscriberConfig",
    "get_available_backends",
    "get_transcriber",
]
