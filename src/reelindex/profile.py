from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def default_profile() -> Dict[str, Any]:
    return {
        "storage": {
            "data_dir": "data",
            "db_path": None,  # default: <data_dir>/reelindex.sqlite
            "downloads_dir": None,  # default: <data_dir>/downloads
            "cache_db_path": None,  # default: <data_dir>/cache/content_cache.sqlite
        },
        "queue": {
            "lease_seconds": 120,
            "heartbeat_seconds": 15,
            "poll_seconds": 1.5,
            "max_attempts": 3,
            "error_max_chars": 1000,
        },
        "pipeline": {
            "max_video_seconds": 120,  # 0 disables the duration pre-check
            "use_video_analyzer": True,
            # None: derived from use_video_analyzer (download when the video
            # analyzer is on, ask for subtitles when it is off)
            "download_video": None,
            "want_transcript": None,
            "cache_ttl_seconds": 24 * 60 * 60,
            "inference_confidence_ceiling": 0.7,
            "caption_max_chars": 1500,
            "transcript_max_chars": 3500,
        },
        "extract": {
            "cookies_file": None,
            "subtitle_langs": "de.*,en.*",
            "tool_timeout_s": 600,
            "allowed_hosts": [],  # empty: any http(s) host
        },
        "ai": {
            "text": {
                "base_url": "https://api.openai.com/v1",
                "model": "gpt-5-mini",
                "api_key_env": "AI_API_KEY",
                "timeout_s": 120,
                "max_retries": 1,  # re-ask once on an invalid JSON shape
            },
            "embedding": {
                "base_url": None,  # default: ai.text.base_url
                "model": "text-embedding-3-small",
                "dim": 1536,
                "api_key_env": "AI_API_KEY",
                "timeout_s": 60,
            },
            "video": {
                "model": "gemini-2.5-flash-lite",
                "api_key_env": "GEMINI_API_KEY",
                "downscale_width": 720,
                "downscale_fps": 2,
                "upload_poll_s": 2.0,
                "upload_timeout_s": 300,
            },
        },
        "speech": {
            "backend": "api",  # "api" (OpenAI-compatible) or "faster_whisper"
            "base_url": "https://api.openai.com/v1",
            "model": "whisper-1",
            "api_key_env": "ASR_API_KEY",
            "timeout_s": 300,
            "model_size": "small",  # faster_whisper only
            "device": "cpu",
            "compute_type": "int8",
            "language": None,
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_profile(profile_path: Optional[Path]) -> Dict[str, Any]:
    if profile_path is None:
        return default_profile()

    profile_path = Path(profile_path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping")
    return _deep_merge(default_profile(), data)


def resolve_secret(cfg: Dict[str, Any], default_env: str) -> Optional[str]:
    """Read an API key from the environment variable the profile names."""
    env_name = str(cfg.get("api_key_env") or default_env)
    value = os.getenv(env_name)
    if value:
        return value
    # OPENAI_API_KEY is accepted wherever the OpenAI-compatible key is expected
    if env_name in ("AI_API_KEY", "ASR_API_KEY"):
        return os.getenv("OPENAI_API_KEY") or os.getenv("AI_API_KEY")
    return None


@dataclass(frozen=True)
class StoragePaths:
    data_dir: Path
    db_path: Path
    downloads_dir: Path
    cache_db_path: Path

    @classmethod
    def from_profile(cls, storage_cfg: Dict[str, Any]) -> "StoragePaths":
        data_dir = Path(storage_cfg.get("data_dir") or "data")
        return cls(
            data_dir=data_dir,
            db_path=Path(storage_cfg.get("db_path") or data_dir / "reelindex.sqlite"),
            downloads_dir=Path(storage_cfg.get("downloads_dir") or data_dir / "downloads"),
            cache_db_path=Path(storage_cfg.get("cache_db_path") or data_dir / "cache" / "content_cache.sqlite"),
        )


@dataclass(frozen=True)
class QueueSettings:
    lease_seconds: int = 120
    heartbeat_seconds: float = 15.0
    poll_seconds: float = 1.5
    max_attempts: int = 3
    error_max_chars: int = 1000

    def __post_init__(self) -> None:
        if self.heartbeat_seconds >= self.lease_seconds:
            raise ValueError("heartbeat_seconds must be shorter than lease_seconds")

    @classmethod
    def from_profile(cls, queue_cfg: Dict[str, Any]) -> "QueueSettings":
        return cls(
            lease_seconds=int(queue_cfg.get("lease_seconds", 120)),
            heartbeat_seconds=float(queue_cfg.get("heartbeat_seconds", 15)),
            poll_seconds=float(queue_cfg.get("poll_seconds", 1.5)),
            max_attempts=int(queue_cfg.get("max_attempts", 3)),
            error_max_chars=int(queue_cfg.get("error_max_chars", 1000)),
        )


@dataclass(frozen=True)
class PipelineSettings:
    max_video_seconds: float = 120.0
    use_video_analyzer: bool = True
    download_video: bool = True
    want_transcript: bool = False
    cache_ttl_seconds: float = 24 * 60 * 60
    inference_confidence_ceiling: float = 0.7
    caption_max_chars: int = 1500
    transcript_max_chars: int = 3500

    @classmethod
    def from_profile(cls, pipeline_cfg: Dict[str, Any]) -> "PipelineSettings":
        use_video = bool(pipeline_cfg.get("use_video_analyzer", True))
        download = pipeline_cfg.get("download_video")
        want_transcript = pipeline_cfg.get("want_transcript")
        return cls(
            max_video_seconds=float(pipeline_cfg.get("max_video_seconds", 120) or 0),
            use_video_analyzer=use_video,
            download_video=use_video if download is None else bool(download),
            want_transcript=(not use_video) if want_transcript is None else bool(want_transcript),
            cache_ttl_seconds=float(pipeline_cfg.get("cache_ttl_seconds", 24 * 60 * 60)),
            inference_confidence_ceiling=float(pipeline_cfg.get("inference_confidence_ceiling", 0.7)),
            caption_max_chars=int(pipeline_cfg.get("caption_max_chars", 1500)),
            transcript_max_chars=int(pipeline_cfg.get("transcript_max_chars", 3500)),
        )
