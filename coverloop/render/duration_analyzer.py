"""Authoritative per-track durations.

Each track is probed with ffprobe. When probing fails the declared duration
from the request is used instead and the track is reported as degraded; the
job keeps running. A chosen duration that is not positive is fatal, since
the playlist composer could never fill the target with it.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Sequence

from coverloop.exceptions import CompositionError, ProbeError
from coverloop.models.video_job import Track
from coverloop.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DurationReport:
    """Result of the analysis stage, aligned to playlist order."""

    tracks: tuple[Track, ...]
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def chosen_ms(self) -> tuple[int, ...]:
        return tuple(track.chosen_duration_ms for track in self.tracks)

    @property
    def degraded_indices(self) -> tuple[int, ...]:
        return tuple(t.index for t in self.tracks if t.measured_duration_ms is None)

    @property
    def total_ms(self) -> int:
        return sum(self.chosen_ms)


class DurationAnalyzer:
    """Chooses the duration the composer will use for every track."""

    def __init__(self, probe: Callable[[str], int] = get_media_duration):
        self._probe = probe

    async def analyze(self, tracks: Sequence[Track]) -> DurationReport:
        """Probe all tracks in parallel and pick a duration for each.

        Raises:
            CompositionError: If there are no tracks or a chosen duration is <= 0
        """
        if not tracks:
            raise CompositionError("No tracks to analyze")

        results = await asyncio.gather(
            *(asyncio.to_thread(self._probe, track.path) for track in tracks),
            return_exceptions=True,
        )

        analyzed: list[Track] = []
        warnings: list[str] = []
        for track, result in zip(tracks, results):
            if isinstance(result, ProbeError):
                message = (
                    f"Track {track.index + 1}: probing failed ({result.message}), "
                    f"using declared duration {track.declared_duration_ms / 1000:.3f}s"
                )
                logger.warning(f"[ANALYZE] {message}")
                warnings.append(message)
                analyzed.append(track)
            elif isinstance(result, BaseException):
                raise result
            else:
                analyzed.append(replace(track, measured_duration_ms=result))
                logger.info(f"[ANALYZE] Track {track.index + 1}: {result / 1000:.1f}s (measured)")

        for track in analyzed:
            if track.chosen_duration_ms <= 0:
                raise CompositionError(
                    f"Track {track.index + 1} has non-positive duration {track.chosen_duration_ms}ms"
                )

        report = DurationReport(tracks=tuple(analyzed), warnings=tuple(warnings))
        logger.info(
            f"[ANALYZE] Single loop duration: {report.total_ms / 1000:.1f}s "
            f"({len(report.degraded_indices)} degraded)"
        )
        return report
