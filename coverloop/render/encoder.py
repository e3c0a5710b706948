"""FFmpeg invocations for a video job.

Two sequential runs per job:
1. Audio assembly: concat demuxer over the playlist manifest, padded or
   trimmed to exactly the target duration.
2. Video composition: the cover looped as a still frame plus the assembled
   audio, scaled/padded to the output resolution, trimmed to the target and
   written with the moov atom up front for progressive playback.

Commands are always argument vectors, never shell strings. Each ffmpeg
process runs in its own session so that a cancelled job can terminate the
whole process group.
"""

import asyncio
import errno
import logging
import os
import shutil
import signal
from dataclasses import dataclass
from typing import Optional, Sequence

from coverloop.config import get_settings
from coverloop.exceptions import EncodingError
from coverloop.models.video_job import ManifestEntry, Track

logger = logging.getLogger(__name__)

PLAYLIST_FILENAME = "playlist.txt"
AUDIO_FILENAME = "audio.m4a"

# Keep this much of ffmpeg's stderr in error messages.
STDERR_TAIL_CHARS = 2000


@dataclass(frozen=True)
class EncodePreset:
    """x264 settings for the still-image video."""

    name: str
    x264_preset: str
    crf: int
    fps: int
    x264_params: Optional[str] = None


ENCODE_PRESETS: dict[str, EncodePreset] = {
    # A single still frame needs almost nothing from the encoder: long GOP,
    # no B-frames, cheapest motion search.
    "fast": EncodePreset(
        name="fast",
        x264_preset="ultrafast",
        crf=23,
        fps=2,
        x264_params=(
            "keyint=300:min-keyint=300:ref=1:bframes=0:me=dia:subme=0:me_range=4:"
            "trellis=0:no-mbtree:no-weightb:no-mixed-refs:aq-mode=0:no-cabac:no-deblock"
        ),
    ),
    "balanced": EncodePreset(name="balanced", x264_preset="veryfast", crf=21, fps=6),
    "quality": EncodePreset(name="quality", x264_preset="medium", crf=18, fps=24),
}


def get_encode_preset(name: str) -> EncodePreset:
    """Look up an encode preset by name."""
    try:
        return ENCODE_PRESETS[name]
    except KeyError:
        raise ValueError(
            f"Unknown encode preset {name!r} (available: {', '.join(ENCODE_PRESETS)})"
        ) from None


def _format_seconds(duration_ms: int) -> str:
    return f"{duration_ms / 1000:.3f}"


def _quote_concat_path(name: str) -> str:
    """Quote a path for the concat demuxer's ``file`` directive."""
    return "'" + name.replace("'", "'\\''") + "'"


def render_concat_list(manifest: Sequence[ManifestEntry], tracks: Sequence[Track]) -> str:
    """Render the concat demuxer script for a manifest.

    Files are referenced by basename, relative to the script's directory.
    A truncated entry gets an ``outpoint`` so the cut happens inside the
    concat demuxer rather than only at the final ``-t``. Entries of tracks
    whose length was never measured always get one: the file may run longer
    than its declared duration.
    """
    by_index = {track.index: track for track in tracks}
    lines = ["ffconcat version 1.0"]
    for entry in manifest:
        track = by_index[entry.track_index]
        lines.append(f"file {_quote_concat_path(os.path.basename(track.path))}")
        if track.measured_duration_ms is None or entry.included_ms < track.chosen_duration_ms:
            lines.append(f"outpoint {_format_seconds(entry.included_ms)}")
    return "\n".join(lines) + "\n"


def publish_artifact(artifact_path: str, output_dir: str, filename: str) -> str:
    """Move a finished artifact into the permanent output directory.

    Uses an atomic rename when source and destination share a filesystem,
    and falls back to a copy-and-delete move across devices.
    """
    os.makedirs(output_dir, exist_ok=True)
    destination = os.path.join(output_dir, filename)
    try:
        os.replace(artifact_path, destination)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.move(artifact_path, destination)
    return destination


class MediaEncoder:
    """Builds and runs the two ffmpeg commands of a job."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        kill_grace_seconds: float = 5.0,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.width = width or settings.output_width
        self.height = height or settings.output_height
        self.audio_bitrate = settings.audio_bitrate
        self.sample_rate = settings.audio_sample_rate
        self.threads = settings.ffmpeg_threads
        self.kill_grace_seconds = kill_grace_seconds

    def _thread_args(self) -> list[str]:
        return ["-threads", str(self.threads)] if self.threads > 0 else []

    def build_audio_command(self, playlist_path: str, output_path: str, duration_ms: int) -> list[str]:
        """Build the audio assembly command without executing it.

        ``apad`` + ``-t`` make the result exactly ``duration_ms`` long even
        when a track turned out shorter than its declared duration.
        """
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-f", "concat",
            "-i", playlist_path,
            "-vn",
            "-af", "apad",
            "-t", _format_seconds(duration_ms),
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-ar", str(self.sample_rate),
            "-ac", "2",
            *self._thread_args(),
            output_path,
        ]

    def build_video_command(
        self,
        cover_path: str,
        audio_path: str,
        output_path: str,
        duration_ms: int,
        preset: EncodePreset,
    ) -> list[str]:
        """Build the video composition command without executing it."""
        w, h = self.width, self.height
        video_filter = (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
        )
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loop", "1",
            "-framerate", str(preset.fps),
            "-i", cover_path,
            "-i", audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "libx264",
            "-preset", preset.x264_preset,
            "-crf", str(preset.crf),
            "-tune", "stillimage",
        ]
        if preset.x264_params:
            cmd.extend(["-x264-params", preset.x264_params])
        cmd.extend([
            "-r", str(preset.fps),
            "-pix_fmt", "yuv420p",
            "-vf", video_filter,
            "-c:a", "copy",
            "-movflags", "+faststart",
            "-t", _format_seconds(duration_ms),
            *self._thread_args(),
            output_path,
        ])
        return cmd

    async def assemble_audio(
        self,
        manifest: Sequence[ManifestEntry],
        tracks: Sequence[Track],
        workspace_dir: str,
        duration_ms: int,
    ) -> str:
        """Write the concat list for ``manifest`` and render the audio track."""
        playlist_path = os.path.join(workspace_dir, PLAYLIST_FILENAME)
        with open(playlist_path, "w", encoding="utf-8") as f:
            f.write(render_concat_list(manifest, tracks))
        logger.info(f"[ENCODE] Playlist written: {len(manifest)} entries")

        output_path = os.path.join(workspace_dir, AUDIO_FILENAME)
        cmd = self.build_audio_command(playlist_path, output_path, duration_ms)
        await self._run(cmd, "Audio assembly")
        return output_path

    async def compose_video(
        self,
        cover_path: str,
        audio_path: str,
        output_path: str,
        duration_ms: int,
        preset: EncodePreset,
    ) -> str:
        """Render the final video from the cover and the assembled audio."""
        cmd = self.build_video_command(cover_path, audio_path, output_path, duration_ms, preset)
        await self._run(cmd, "Video composition")
        return output_path

    async def _run(self, cmd: list[str], stage: str) -> None:
        logger.info(f"[ENCODE] {stage}: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise EncodingError(f"{stage} could not start {cmd[0]}: {e}") from e

        try:
            _, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            await self._terminate(process, stage)
            raise

        if process.returncode != 0:
            stderr = stderr_bytes.decode("utf-8", errors="replace")
            tail = stderr[-STDERR_TAIL_CHARS:].strip()
            logger.error(f"[ENCODE] {stage} failed (exit {process.returncode}): {tail}")
            raise EncodingError(
                f"{stage} failed (exit {process.returncode}): {tail}",
                returncode=process.returncode,
                stderr=stderr,
            )
        logger.info(f"[ENCODE] {stage} completed")

    async def _terminate(self, process: asyncio.subprocess.Process, stage: str) -> None:
        """Stop an ffmpeg process group: SIGTERM, then SIGKILL after a grace period."""
        if process.returncode is not None:
            return
        logger.warning(f"[ENCODE] Terminating {stage} (pid {process.pid})")
        try:
            os.killpg(process.pid, signal.SIGTERM)
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace_seconds)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning(f"[ENCODE] {stage} ignored SIGTERM, killing (pid {process.pid})")
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
            await process.wait()
