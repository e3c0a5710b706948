from coverloop.render.duration_analyzer import DurationAnalyzer, DurationReport
from coverloop.render.encoder import ENCODE_PRESETS, EncodePreset, MediaEncoder
from coverloop.render.pipeline import JobOrchestrator
from coverloop.render.playlist_composer import compose_playlist, cycles_needed, manifest_duration_ms
from coverloop.render.workspace import Workspace

__all__ = [
    "JobOrchestrator",
    "DurationAnalyzer",
    "DurationReport",
    "MediaEncoder",
    "EncodePreset",
    "ENCODE_PRESETS",
    "Workspace",
    "compose_playlist",
    "cycles_needed",
    "manifest_duration_ms",
]
