"""Cover image and track downloads for a video job.

The cover is fetched and validated first so that a bad thumbnail fails the
job before any track download starts. Tracks are fetched in fixed-size
batches to cap simultaneous connections and open files.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import httpx

from coverloop.config import get_settings
from coverloop.exceptions import DownloadError, InvalidAssetError
from coverloop.models.video_job import JobSpec, Track, TrackSpec

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG"
JPEG_SIGNATURE = b"\xff\xd8"

AUDIO_EXTENSIONS = {".mp3", ".m4a", ".aac", ".wav", ".flac", ".ogg", ".opus"}
DEFAULT_AUDIO_EXTENSION = ".mp3"

BatchCallback = Callable[[int, int], Awaitable[None]]


@dataclass(frozen=True)
class FetchedAssets:
    """Everything the later stages need from the download stage."""

    cover_path: str
    tracks: tuple[Track, ...]


def detect_image_extension(head: bytes) -> Optional[str]:
    """Return the file extension for a supported image signature, or None."""
    if head.startswith(PNG_SIGNATURE):
        return ".png"
    if head.startswith(JPEG_SIGNATURE):
        return ".jpg"
    return None


def track_extension(url: str) -> str:
    """Pick a whitelisted extension from the URL path, defaulting to .mp3."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return suffix if suffix in AUDIO_EXTENSIONS else DEFAULT_AUDIO_EXTENSION


class MediaFetcher:
    """Downloads job assets over HTTP into a workspace directory."""

    def __init__(
        self,
        *,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.batch_size = max(1, batch_size or settings.download_batch_size)
        self.timeout = timeout or settings.download_timeout_seconds
        self.max_bytes = max_bytes or settings.max_download_size_bytes
        self.user_agent = user_agent or settings.user_agent
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        )

    async def fetch(
        self,
        spec: JobSpec,
        dest_dir: str,
        on_batch_done: Optional[BatchCallback] = None,
    ) -> FetchedAssets:
        """Fetch the cover and every track of ``spec`` into ``dest_dir``.

        Args:
            spec: Job input
            dest_dir: Workspace directory (must exist)
            on_batch_done: Optional async callback(done, total) after each batch

        Returns:
            Paths of the downloaded cover and tracks, in playlist order

        Raises:
            InvalidAssetError: If the cover is not a PNG/JPEG image
            DownloadError: If any asset cannot be downloaded
        """
        async with self._client() as client:
            cover_path = await self.fetch_cover(client, spec.cover_url, dest_dir)
            tracks = await self.fetch_tracks(client, spec.tracks, dest_dir, on_batch_done)

        logger.info(f"[FETCH] All {len(tracks) + 1} files downloaded into {dest_dir}")
        return FetchedAssets(cover_path=cover_path, tracks=tracks)

    async def fetch_cover(self, client: httpx.AsyncClient, url: str, dest_dir: str) -> str:
        """Download and validate the cover image.

        Both checks are required: the declared content type must be image/*
        and the leading bytes must match a PNG or JPEG signature. The content
        type is checked from the headers before the body is read, and the
        body is streamed so an oversized response stops at ``max_bytes``.
        """
        body = bytearray()
        try:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise DownloadError(url, f"HTTP {response.status_code} {response.reason_phrase}".strip())

                content_type = response.headers.get("content-type", "")
                media_type = content_type.split(";", 1)[0].strip().lower()
                if not media_type.startswith("image/"):
                    logger.error(f"[FETCH] Invalid content type from {url}: {content_type!r}")
                    raise InvalidAssetError(
                        f"Invalid image format from {url}: got {content_type or 'no content type'}, expected image/*"
                    )

                async for chunk in response.aiter_bytes():
                    if len(body) + len(chunk) > self.max_bytes:
                        raise DownloadError(url, f"exceeds {self.max_bytes} bytes")
                    body.extend(chunk)
        except httpx.HTTPError as e:
            raise DownloadError(url, str(e) or e.__class__.__name__) from e

        extension = detect_image_extension(bytes(body[:8]))
        if extension is None:
            signature = bytes(body[:8]).hex()
            logger.error(f"[FETCH] Invalid image signature from {url}: {signature}")
            raise InvalidAssetError(
                f"Invalid image file from {url}: got signature {signature}, "
                "expected PNG (89504e47) or JPEG (ffd8)"
            )

        path = os.path.join(dest_dir, f"cover{extension}")
        with open(path, "wb") as f:
            f.write(body)
        logger.info(f"[FETCH] Cover downloaded: {os.path.basename(path)} ({len(body)} bytes)")
        return path

    async def fetch_tracks(
        self,
        client: httpx.AsyncClient,
        tracks: tuple[TrackSpec, ...],
        dest_dir: str,
        on_batch_done: Optional[BatchCallback] = None,
    ) -> tuple[Track, ...]:
        """Download tracks in batches of ``batch_size``.

        Each batch finishes completely before the next starts. The first
        failing track (in playlist order) aborts the whole download.
        """
        fetched: list[Track] = []
        total_batches = (len(tracks) + self.batch_size - 1) // self.batch_size

        for start in range(0, len(tracks), self.batch_size):
            batch = list(enumerate(tracks[start:start + self.batch_size], start=start))
            results = await asyncio.gather(
                *(self._fetch_track(client, index, track, dest_dir) for index, track in batch),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
                fetched.append(result)

            batch_number = start // self.batch_size + 1
            logger.info(f"[FETCH] Downloaded batch {batch_number}/{total_batches}")
            if on_batch_done:
                await on_batch_done(batch_number, total_batches)

        return tuple(fetched)

    async def _fetch_track(
        self,
        client: httpx.AsyncClient,
        index: int,
        track: TrackSpec,
        dest_dir: str,
    ) -> Track:
        path = os.path.join(dest_dir, f"track_{index:03d}{track_extension(track.url)}")
        size = 0
        try:
            async with client.stream("GET", track.url) as response:
                if not response.is_success:
                    raise DownloadError(track.url, f"HTTP {response.status_code}")
                with open(path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        if size > self.max_bytes:
                            raise DownloadError(track.url, f"exceeds {self.max_bytes} bytes")
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise DownloadError(track.url, str(e) or e.__class__.__name__) from e

        logger.debug(f"[FETCH] Track {index} downloaded: {os.path.basename(path)} ({size} bytes)")
        return Track(
            index=index,
            source_url=track.url,
            path=path,
            declared_duration_ms=track.declared_duration_ms,
        )
