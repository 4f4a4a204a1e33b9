"""Track like model."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class TrackLike(Base):
    """A user's like of a track. At most one row per (user, track)."""

    __tablename__ = "track_likes"
    __table_args__ = (UniqueConstraint("user_id", "track_id", name="uq_track_likes_user_track"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("tracks.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<TrackLike(user_id={self.user_id}, track_id={self.track_id})>"
