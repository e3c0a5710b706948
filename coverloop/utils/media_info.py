"""Media file information utilities using FFprobe."""

import json
import math
import subprocess

from coverloop.config import get_settings
from coverloop.exceptions import ProbeError


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise ProbeError(f"ffprobe could not be started: {e}") from e
    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output: {e}") from e


def get_media_duration(file_path: str) -> int:
    """
    Get media file duration in milliseconds.

    Args:
        file_path: Path to media file

    Returns:
        Duration in milliseconds (always > 0)

    Raises:
        ProbeError: If ffprobe fails or reports no usable duration
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise ProbeError(f"Duration not found in: {file_path}")

    try:
        seconds = float(format_info["duration"])
    except (TypeError, ValueError) as e:
        raise ProbeError(f"Invalid duration {format_info['duration']!r} in: {file_path}") from e

    if not math.isfinite(seconds) or seconds <= 0:
        raise ProbeError(f"Non-positive duration {seconds} in: {file_path}")

    return max(1, round(seconds * 1000))


def get_audio_info(file_path: str) -> dict | None:
    """
    Get audio stream information.

    Args:
        file_path: Path to media file

    Returns:
        Dictionary with codec, sample_rate, channels, or None if no audio
    """
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a")
    except ProbeError:
        return None

    streams = data.get("streams", [])
    if not streams:
        return None

    stream = streams[0]
    return {
        "codec": stream.get("codec_name"),
        "sample_rate": int(stream.get("sample_rate", 0)) or None,
        "channels": stream.get("channels"),
    }
