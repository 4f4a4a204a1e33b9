"""Application services."""

from app.services.telemetry import PlaybackRecorder, playback_recorder

__all__ = [
    "PlaybackRecorder",
    "playback_recorder",
]
