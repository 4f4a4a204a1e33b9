"""Database models."""

from app.models.artist import Artist
from app.models.artist_follow import ArtistFollow
from app.models.album import Album
from app.models.track import Track
from app.models.track_like import TrackLike
from app.models.listening_history import ListeningHistory, ListeningSource, PlaybackDevice
from app.models.user import User

__all__ = [
    "Artist",
    "ArtistFollow",
    "Album",
    "Track",
    "TrackLike",
    "ListeningHistory",
    "ListeningSource",
    "PlaybackDevice",
    "User",
]
