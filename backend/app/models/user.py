"""User model."""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class User(Base):
    """Listener account."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Authentication
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)

    subscription: Mapped[str] = mapped_column(String(20), default="free")  # free, premium, family

    # Profile
    profile_picture: Mapped[Optional[str]] = mapped_column(String(1000))
    preferences: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, default=dict)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
