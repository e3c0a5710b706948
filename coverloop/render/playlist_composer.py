"""Loop-fill playlist composition.

Repeats the track sequence from the start until the target duration is
reached, cutting the last entry short so that the included durations add
up to the target exactly. Works on integer milliseconds, so the sum is exact.

Example (durations in seconds for readability):
    tracks [500, 500], target 1800
    -> (0, 500), (1, 500), (0, 500), (1, 300)
"""

import math
from typing import Sequence

from coverloop.exceptions import CompositionError
from coverloop.models.video_job import ManifestEntry


def cycles_needed(durations_ms: Sequence[int], target_ms: int) -> int:
    """Upper bound on the number of passes over the playlist: ceil(T / L)."""
    total_ms = sum(durations_ms)
    if total_ms <= 0:
        raise CompositionError("Playlist has no playable duration")
    return math.ceil(target_ms / total_ms)


def compose_playlist(durations_ms: Sequence[int], target_ms: int) -> tuple[ManifestEntry, ...]:
    """Build the ordered manifest for ``target_ms`` from chosen track durations.

    Args:
        durations_ms: Chosen duration of each track, in playlist order
        target_ms: Target duration (> 0)

    Returns:
        Manifest entries whose included durations sum to ``target_ms``

    Raises:
        CompositionError: On an empty playlist, a negative duration, a
            playlist whose total is 0, or a non-positive target
    """
    if target_ms <= 0:
        raise CompositionError(f"Target duration must be positive, got {target_ms}ms")
    if not durations_ms:
        raise CompositionError("Playlist is empty")
    for index, duration in enumerate(durations_ms):
        if duration < 0:
            raise CompositionError(f"Track {index} has negative duration {duration}ms")

    manifest: list[ManifestEntry] = []
    running = 0

    for _ in range(cycles_needed(durations_ms, target_ms)):
        for index, duration in enumerate(durations_ms):
            if duration == 0:
                continue
            remaining = target_ms - running
            if duration <= remaining:
                manifest.append(ManifestEntry(track_index=index, included_ms=duration))
                running += duration
            else:
                manifest.append(ManifestEntry(track_index=index, included_ms=remaining))
                running = target_ms
            if running == target_ms:
                return tuple(manifest)

    # ceil(T / L) full passes always cover T, so this is unreachable.
    raise CompositionError(f"Playlist did not reach {target_ms}ms (got {running}ms)")


def manifest_duration_ms(manifest: Sequence[ManifestEntry]) -> int:
    """Total included duration of a manifest."""
    return sum(entry.included_ms for entry in manifest)
