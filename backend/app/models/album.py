"""Album model."""

from datetime import datetime, date
from typing import Optional, List, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, DateTime, Date, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.artist import Artist
    from app.models.track import Track


class Album(Base):
    """Album entity."""

    __tablename__ = "albums"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    title: Mapped[str] = mapped_column(String(500), index=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"), index=True)
    album_type: Mapped[str] = mapped_column(String(20), default="album")  # album, single, ep, compilation

    cover_image: Mapped[Optional[str]] = mapped_column(String(1000))
    release_date: Mapped[Optional[date]] = mapped_column(Date)
    genre: Mapped[Optional[str]] = mapped_column(String(100))
    label: Mapped[Optional[str]] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text, default="")

    total_tracks: Mapped[int] = mapped_column(Integer, default=0)
    duration: Mapped[int] = mapped_column(Integer, default=0)  # seconds

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    artist: Mapped["Artist"] = relationship("Artist", back_populates="albums", lazy="noload")
    tracks: Mapped[List["Track"]] = relationship("Track", back_populates="album", lazy="noload")

    def __repr__(self) -> str:
        return f"<Album(id={self.id}, title='{self.title}')>"
