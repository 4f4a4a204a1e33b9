"""Artist model."""

from datetime import datetime
from typing import Dict, Optional, List, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, DateTime, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.album import Album
    from app.models.track import Track


class Artist(Base):
    """Artist entity."""

    __tablename__ = "artists"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    name: Mapped[str] = mapped_column(String(500), index=True)
    bio: Mapped[str] = mapped_column(Text, default="")
    image: Mapped[Optional[str]] = mapped_column(String(1000))
    genres: Mapped[Optional[List[str]]] = mapped_column(JSON, default=list)
    social_links: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON, default=dict)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)

    # Popularity
    monthly_listeners: Mapped[int] = mapped_column(Integer, default=0)
    followers: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    albums: Mapped[List["Album"]] = relationship("Album", back_populates="artist", lazy="noload")
    tracks: Mapped[List["Track"]] = relationship("Track", back_populates="artist", lazy="noload")

    def __repr__(self) -> str:
        return f"<Artist(id={self.id}, name='{self.name}')>"
