"""Track model."""

from datetime import datetime, date
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, DateTime, Date, Boolean, JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.album import Album
    from app.models.artist import Artist


class Track(Base):
    """Uploaded, streamable track.

    Tracks are never physically removed; deleting one flips ``is_active`` so
    listening history that references it stays resolvable.
    """

    __tablename__ = "tracks"
    __table_args__ = (
        Index("ix_tracks_artist_created", "artist_id", "created_at"),
        Index("ix_tracks_genre_play_count", "genre", "play_count"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Basic info
    title: Mapped[str] = mapped_column(String(500), index=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"), index=True)
    album_id: Mapped[Optional[int]] = mapped_column(ForeignKey("albums.id"), index=True)
    duration: Mapped[int] = mapped_column(Integer)  # seconds
    genre: Mapped[str] = mapped_column(String(100))
    release_date: Mapped[Optional[date]] = mapped_column(Date)

    # Stored file
    file_url: Mapped[str] = mapped_column(String(1000))  # /uploads/songs/<file_name>
    file_name: Mapped[str] = mapped_column(String(500))
    file_size: Mapped[int] = mapped_column(Integer)  # bytes
    format: Mapped[str] = mapped_column(String(20))  # mp3, wav, ogg, flac, ...
    bitrate: Mapped[int] = mapped_column(Integer, default=320)  # kbps

    # Presentation
    cover_image: Mapped[Optional[str]] = mapped_column(String(1000))
    lyrics: Mapped[str] = mapped_column(Text, default="")
    explicit: Mapped[bool] = mapped_column(Boolean, default=False)

    # Audio features: tempo, key, mood, energy, danceability
    features: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    # Analytics
    play_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    likes: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    artist: Mapped["Artist"] = relationship("Artist", back_populates="tracks", lazy="selectin")
    album: Mapped[Optional["Album"]] = relationship("Album", back_populates="tracks", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Track(id={self.id}, title='{self.title}')>"
