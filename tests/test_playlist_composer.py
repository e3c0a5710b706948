"""Tests for loop-fill playlist composition."""

import pytest

from coverloop.exceptions import CompositionError
from coverloop.models.video_job import ManifestEntry
from coverloop.render.playlist_composer import compose_playlist, cycles_needed, manifest_duration_ms

TEN_TRACKS_MS = [d * 1000 for d in (60, 90, 45, 30, 75, 50, 40, 65, 55, 85)]
TARGET_MS = 1_800_000


class TestComposePlaylist:
    def test_ten_tracks_fill_thirty_minutes(self):
        """595s playlist looped to 1800s: three full passes plus a 15s cut."""
        manifest = compose_playlist(TEN_TRACKS_MS, TARGET_MS)

        assert len(manifest) == 31
        assert manifest_duration_ms(manifest) == TARGET_MS
        assert [e.track_index for e in manifest[:30]] == list(range(10)) * 3
        assert manifest[-1] == ManifestEntry(track_index=0, included_ms=15_000)

    def test_ten_minute_playlist_fills_exactly(self):
        durations = [d * 1000 for d in (60, 90, 45, 30, 75, 50, 40, 65, 55, 90)]
        manifest = compose_playlist(durations, TARGET_MS)

        assert len(manifest) == 30
        assert [e.included_ms for e in manifest] == durations * 3
        assert manifest_duration_ms(manifest) == TARGET_MS

    def test_two_long_tracks(self):
        manifest = compose_playlist([500_000, 500_000], TARGET_MS)

        assert manifest == (
            ManifestEntry(0, 500_000),
            ManifestEntry(1, 500_000),
            ManifestEntry(0, 500_000),
            ManifestEntry(1, 300_000),
        )

    def test_single_pass_when_playlist_is_longer_than_target(self):
        manifest = compose_playlist([1_000_000, 1_000_000, 1_000_000], TARGET_MS)

        assert manifest == (ManifestEntry(0, 1_000_000), ManifestEntry(1, 800_000))

    def test_exact_fit_has_no_truncated_entry(self):
        manifest = compose_playlist([600_000, 300_000], TARGET_MS)

        assert len(manifest) == 4
        assert all(e.included_ms in (600_000, 300_000) for e in manifest)
        assert manifest_duration_ms(manifest) == TARGET_MS

    def test_track_longer_than_target(self):
        assert compose_playlist([3_600_000], TARGET_MS) == (ManifestEntry(0, TARGET_MS),)

    def test_deterministic(self):
        assert compose_playlist(TEN_TRACKS_MS, TARGET_MS) == compose_playlist(TEN_TRACKS_MS, TARGET_MS)

    def test_only_last_entry_is_truncated(self):
        durations = [123_456, 7_890, 45_678]
        manifest = compose_playlist(durations, 1_000_001)

        for entry in manifest[:-1]:
            assert entry.included_ms == durations[entry.track_index]
        assert 0 < manifest[-1].included_ms <= durations[manifest[-1].track_index]
        assert manifest_duration_ms(manifest) == 1_000_001

    def test_zero_length_tracks_are_skipped(self):
        manifest = compose_playlist([0, 400_000, 0], 1_000_000)

        assert {e.track_index for e in manifest} == {1}
        assert manifest_duration_ms(manifest) == 1_000_000

    @pytest.mark.parametrize(
        "durations, target",
        [
            ([], TARGET_MS),
            ([0, 0, 0], TARGET_MS),
            ([60_000, -1], TARGET_MS),
            ([60_000], 0),
        ],
    )
    def test_degenerate_input_raises(self, durations, target):
        with pytest.raises(CompositionError):
            compose_playlist(durations, target)


class TestCyclesNeeded:
    def test_rounds_up(self):
        assert cycles_needed(TEN_TRACKS_MS, TARGET_MS) == 4
        assert cycles_needed([600_000, 300_000], TARGET_MS) == 2

    def test_zero_total_raises(self):
        with pytest.raises(CompositionError):
            cycles_needed([0], TARGET_MS)
