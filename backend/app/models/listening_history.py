"""Listening history model for tracking plays."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ListeningSource(str, enum.Enum):
    """Where in the client a play was started from."""
    PLAYLIST = "playlist"
    ALBUM = "album"
    SEARCH = "search"
    RADIO = "radio"
    RECOMMENDATION = "recommendation"
    ARTIST = "artist"
    LIBRARY = "library"


class PlaybackDevice(str, enum.Enum):
    """Kind of client that requested the stream."""
    WEB = "web"
    MOBILE = "mobile"
    DESKTOP = "desktop"
    TV = "tv"


class ListeningHistory(Base):
    """One stream-start event. Rows are append-only."""

    __tablename__ = "listening_history"
    __table_args__ = (
        Index("ix_listening_history_user_played", "user_id", "played_at"),
        Index("ix_listening_history_track_played", "track_id", "played_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Who listened to what
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("tracks.id"), index=True)

    # Play info
    played_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    duration: Mapped[int] = mapped_column(Integer, default=0)  # seconds listened
    completed: Mapped[bool] = mapped_column(Boolean, default=False)

    # Context
    source: Mapped[str] = mapped_column(String(50), default=ListeningSource.LIBRARY.value)
    context_id: Mapped[Optional[int]] = mapped_column(Integer)  # playlist/album id
    device: Mapped[str] = mapped_column(String(20), default=PlaybackDevice.WEB.value)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<ListeningHistory(id={self.id}, track_id={self.track_id}, played_at={self.played_at})>"
