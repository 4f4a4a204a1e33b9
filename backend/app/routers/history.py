"""Listening history endpoints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.listening_history import ListeningHistory
from app.models.track import Track
from app.models.user import User
from app.services.auth import require_user

router = APIRouter()


class HistoryEntryResponse(BaseModel):
    """One recorded play."""
    id: int
    track_id: int
    track_title: Optional[str] = None
    played_at: datetime
    duration: int = 0
    completed: bool = False
    source: str
    device: str


@router.get("", response_model=List[HistoryEntryResponse])
async def get_my_history(
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current user's most recent plays, newest first."""
    result = await db.execute(
        select(ListeningHistory, Track.title)
        .join(Track, Track.id == ListeningHistory.track_id)
        .where(ListeningHistory.user_id == current_user.id)
        .order_by(ListeningHistory.played_at.desc())
        .limit(limit)
    )

    return [
        HistoryEntryResponse(
            id=entry.id,
            track_id=entry.track_id,
            track_title=title,
            played_at=entry.played_at,
            duration=entry.duration or 0,
            completed=bool(entry.completed),
            source=entry.source,
            device=entry.device,
        )
        for entry, title in result.all()
    ]
