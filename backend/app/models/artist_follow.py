"""Artist follow model."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ArtistFollow(Base):
    """A user following an artist. At most one row per (user, artist)."""

    __tablename__ = "artist_follows"
    __table_args__ = (UniqueConstraint("user_id", "artist_id", name="uq_artist_follows_user_artist"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("artists.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<ArtistFollow(user_id={self.user_id}, artist_id={self.artist_id})>"
