"""API routers."""

from app.routers import (
    artists,
    auth,
    health,
    history,
    songs,
)

__all__ = [
    "artists",
    "auth",
    "health",
    "history",
    "songs",
]
