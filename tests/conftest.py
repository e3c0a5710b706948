"""
Pytest fixtures for coverloop tests.

Pipeline tests replace the network and ffmpeg with in-process fakes, so the
whole suite runs without external services.

CI/CD Note:
Tests that run the real ffmpeg/ffprobe binaries are marked with
@pytest.mark.requires_ffmpeg and skipped when the binaries are missing.
Run `pytest -m "not requires_ffmpeg"` to skip them explicitly.
"""

import asyncio
import os
import shutil
from typing import Optional

import httpx
import pytest

from coverloop.exceptions import ProbeError
from coverloop.models.video_job import JobSpec, Track, TrackSpec
from coverloop.render.duration_analyzer import DurationAnalyzer
from coverloop.render.pipeline import JobOrchestrator
from coverloop.services.job_store import JobStore
from coverloop.services.media_fetcher import FetchedAssets

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


# Skip decorator for tests requiring the ffmpeg binaries
requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not available",
)


def make_spec(
    durations_s: tuple[float, ...] = (60, 90, 45),
    target_s: float = 300,
    cover_url: str = "https://cdn.example.com/cover.png",
    preset: str = "fast",
) -> JobSpec:
    return JobSpec(
        cover_url=cover_url,
        tracks=tuple(
            TrackSpec(
                url=f"https://cdn.example.com/song{i}.mp3",
                declared_duration_ms=round(d * 1000),
                title=f"Song {i}",
            )
            for i, d in enumerate(durations_s)
        ),
        target_duration_ms=round(target_s * 1000),
        encode_preset=preset,
        title="Lo-fi mix",
        video_creation_id="vc-1",
        channel_id="ch-1",
    )


class FakeFetcher:
    """Writes placeholder files instead of downloading."""

    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.calls = 0

    async def fetch(self, spec, dest_dir, on_batch_done=None):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

        cover_path = os.path.join(dest_dir, "cover.png")
        with open(cover_path, "wb") as f:
            f.write(PNG_BYTES)

        tracks = []
        for index, track in enumerate(spec.tracks):
            path = os.path.join(dest_dir, f"track_{index:03d}.mp3")
            with open(path, "wb") as f:
                f.write(b"ID3")
            tracks.append(Track(
                index=index,
                source_url=track.url,
                path=path,
                declared_duration_ms=track.declared_duration_ms,
            ))
        if on_batch_done:
            await on_batch_done(1, 1)
        return FetchedAssets(cover_path=cover_path, tracks=tuple(tracks))


class FakeEncoder:
    """Records what it was asked to encode and writes placeholder outputs."""

    def __init__(self, error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.error = error
        self.gate = gate
        self.manifests = []
        self.videos = []
        self.running = 0
        self.max_running = 0

    async def assemble_audio(self, manifest, tracks, workspace_dir, duration_ms):
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.gate is not None:
                await self.gate.wait()
            self.manifests.append(tuple(manifest))
            path = os.path.join(workspace_dir, "audio.m4a")
            with open(path, "wb") as f:
                f.write(b"audio")
            return path
        finally:
            self.running -= 1

    async def compose_video(self, cover_path, audio_path, output_path, duration_ms, preset):
        if self.error is not None:
            raise self.error
        with open(output_path, "wb") as f:
            f.write(b"video")
        self.videos.append((cover_path, audio_path, output_path, duration_ms, preset.name))
        return output_path


class RecordingNotifier:
    """Notifier fake that remembers every job it was given."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.jobs = []

    async def notify(self, job):
        self.jobs.append(job)
        if self.error is not None:
            raise self.error
        return True


def declared_probe(path: str) -> int:
    """Probe stub that always fails, so declared durations are used."""
    raise ProbeError(f"not probed: {path}")


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def work_dirs(tmp_path):
    temp_dir = tmp_path / "work"
    output_dir = tmp_path / "output"
    return str(temp_dir), str(output_dir)


@pytest.fixture
def make_orchestrator(store, work_dirs):
    """Factory for an orchestrator wired to fakes."""
    temp_dir, output_dir = work_dirs

    def _make(
        fetcher=None,
        encoder=None,
        notifier=None,
        analyzer=None,
        max_concurrent_jobs: int = 3,
        terminate_on_cancel: bool = True,
    ) -> JobOrchestrator:
        return JobOrchestrator(
            store=store,
            fetcher=fetcher or FakeFetcher(),
            analyzer=analyzer or DurationAnalyzer(probe=declared_probe),
            encoder=encoder or FakeEncoder(),
            notifier=notifier or RecordingNotifier(),
            max_concurrent_jobs=max_concurrent_jobs,
            temp_dir=temp_dir,
            output_dir=output_dir,
            public_base_url="https://videos.example.com",
            terminate_on_cancel=terminate_on_cancel,
        )

    return _make


def mock_transport(routes: dict) -> httpx.MockTransport:
    """MockTransport serving ``routes``: url -> (status, headers, body).

    Requested URLs are appended to ``transport.requested``.
    """
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requested.append(url)
        if url not in routes:
            return httpx.Response(404, content=b"not found")
        status, headers, body = routes[url]
        return httpx.Response(status, headers=headers, content=body)

    transport = httpx.MockTransport(handler)
    transport.requested = requested
    return transport
