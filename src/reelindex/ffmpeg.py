from __future__ import annotations

from pathlib import Path
from typing import Optional

from .errors import ToolError
from .tools import ExternalToolRunner


def ffprobe_duration_seconds(video_path: Path, *, runner: Optional[ExternalToolRunner] = None) -> float:
    runner = runner or ExternalToolRunner()
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(Path(video_path)),
    ]
    out = runner.run(cmd, timeout_s=60).stdout.strip()
    try:
        return float(out)
    except ValueError as e:
        raise ToolError(f"ffprobe returned non-numeric duration: {out!r}") from e


def extract_audio_wav(
    video_path: Path,
    out_path: Path,
    *,
    sample_rate: int = 16000,
    runner: Optional[ExternalToolRunner] = None,
) -> Path:
    """Extract a mono 16-bit PCM WAV track for speech-to-text."""
    runner = runner or ExternalToolRunner()
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "ffmpeg",
        "-y",
        "-v",
        "error",
        "-i",
        str(Path(video_path)),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-c:a",
        "pcm_s16le",
        str(out_path),
    ]
    runner.run(cmd)
    return out_path


def downscale_for_analysis(
    video_path: Path,
    out_path: Path,
    *,
    width: int = 720,
    fps: float = 2,
    runner: Optional[ExternalToolRunner] = None,
) -> Path:
    """Re-encode a clip to a small, low frame rate copy for upload to the video model.

    Width is capped (never upscaled) and the height keeps the aspect ratio,
    rounded to an even number for libx264.
    """
    runner = runner or ExternalToolRunner()
    if width <= 0 or fps <= 0:
        raise ValueError("width/fps must be > 0")
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "ffmpeg",
        "-y",
        "-v",
        "error",
        "-i",
        str(Path(video_path)),
        "-vf",
        f"fps={fps},scale='min({width},iw)':-2",
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "28",
        "-c:a",
        "aac",
        "-b:a",
        "64k",
        "-movflags",
        "+faststart",
        str(out_path),
    ]
    runner.run(cmd)
    return out_path
