from __future__ import annotations

import importlib.util
import shutil
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ToolError
from .profile import default_profile, resolve_secret
from .tools import ExternalToolRunner


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    checks: Dict[str, Dict[str, object]]


def _version(runner: ExternalToolRunner, cmd: str) -> str:
    try:
        res = runner.run([cmd, "-version"], timeout_s=15)
    except ToolError as e:
        return f"error: {e}"
    lines = res.stdout.splitlines()
    return lines[0].strip() if lines else ""


def run_doctor(profile: Optional[Dict[str, Any]] = None, *, runner: Optional[ExternalToolRunner] = None) -> DoctorReport:
    profile = profile or default_profile()
    runner = runner or ExternalToolRunner(timeout_s=15)
    checks: Dict[str, Dict[str, object]] = {}

    for cmd in ("ffmpeg", "ffprobe"):
        path = shutil.which(cmd)
        checks[cmd] = {
            "found": path is not None,
            "path": path,
            "version": _version(runner, cmd) if path else None,
        }

    ytdlp_spec = importlib.util.find_spec("yt_dlp")
    checks["yt_dlp"] = {"installed": ytdlp_spec is not None}
    if ytdlp_spec is not None:
        from yt_dlp.version import __version__ as ytdlp_version

        checks["yt_dlp"]["version"] = ytdlp_version

    backend = profile.get("speech", {}).get("backend", "api")
    whisper_installed = importlib.util.find_spec("faster_whisper") is not None
    checks["faster_whisper"] = {"installed": whisper_installed, "required": backend == "faster_whisper"}
    if not whisper_installed:
        checks["faster_whisper"]["note"] = "Install with: pip install -e '.[local-asr]'"

    ai_cfg = profile.get("ai", {})
    checks["secrets"] = {
        "ai_text": resolve_secret(ai_cfg.get("text", {}), "AI_API_KEY") is not None,
        "ai_embedding": resolve_secret(ai_cfg.get("embedding", {}), "AI_API_KEY") is not None,
        "ai_video": resolve_secret(ai_cfg.get("video", {}), "GEMINI_API_KEY") is not None,
        "speech": resolve_secret(profile.get("speech", {}), "ASR_API_KEY") is not None,
    }

    ok = bool(
        checks["ffmpeg"]["found"]
        and checks["ffprobe"]["found"]
        and checks["yt_dlp"]["installed"]
        and (whisper_installed or backend != "faster_whisper")
    )
    return DoctorReport(ok=ok, checks=checks)
