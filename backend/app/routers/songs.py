"""Song catalogue and streaming endpoints."""

import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.models.listening_history import ListeningSource, PlaybackDevice
from app.models.track import Track
from app.models.track_like import TrackLike
from app.models.user import User
from app.services.auth import require_admin, require_user
from app.services.media import (
    MediaNotFoundError,
    RangeNotSatisfiableError,
    StorageIOError,
    build_stream_response,
    locate_track_media,
    open_media,
    parse_range_header,
)
from app.services.telemetry import playback_recorder

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

ALLOWED_UPDATES = {"title", "genre", "lyrics", "explicit", "features"}
SORT_COLUMNS = {
    "created_at": Track.created_at,
    "play_count": Track.play_count,
    "likes": Track.likes,
    "title": Track.title,
}


class SongResponse(BaseModel):
    """Song response model."""
    id: int
    title: str
    artist_id: int
    album_id: Optional[int] = None
    duration: int
    genre: str
    release_date: Optional[date] = None
    file_url: str
    file_size: int
    format: str
    bitrate: Optional[int] = None
    cover_image: Optional[str] = None
    lyrics: Optional[str] = None
    explicit: bool = False
    features: Optional[Dict[str, Any]] = None
    play_count: int = 0
    likes: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SongListResponse(BaseModel):
    """Paginated song listing."""
    songs: List[SongResponse]
    current_page: int
    total_pages: int
    total_songs: int


class LikeResponse(BaseModel):
    liked: bool
    likes: int


async def _get_track_or_404(db: AsyncSession, song_id: int) -> Track:
    result = await db.execute(select(Track).where(Track.id == song_id))
    track = result.scalar_one_or_none()
    if not track:
        raise HTTPException(status_code=404, detail="Song not found")
    return track


@router.get("/stream/{song_id}")
async def stream_song(
    song_id: int,
    request: Request,
    source: ListeningSource = Query(ListeningSource.LIBRARY),
    device: PlaybackDevice = Query(PlaybackDevice.WEB),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Stream a song, honouring a single ``Range: bytes=`` request.

    The file is opened before the response starts so that storage failures
    still become a 500. Once the headers are sent, one play-count increment
    and one listening-history entry are scheduled without waiting for either.
    """
    range_header = request.headers.get("range")

    try:
        track, media = await locate_track_media(db, song_id, settings.media_root)
        byte_range = parse_range_header(range_header, media.size)
        handle = await open_media(media)
    except MediaNotFoundError as exc:
        logger.info("Stream of song %s failed: %s missing", song_id, exc.kind)
        raise HTTPException(status_code=404, detail=exc.detail)
    except RangeNotSatisfiableError as exc:
        logger.info("Unsatisfiable range %r for song %s (%d bytes)", exc.range_header, song_id, exc.file_size)
        raise HTTPException(
            status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
            detail="Requested range not satisfiable",
            headers={"Content-Range": f"bytes */{exc.file_size}"},
        )
    except StorageIOError:
        logger.exception("Storage error while opening song %s", song_id)
        raise HTTPException(status_code=500, detail="Error reading song file")

    track_id, user_id = track.id, current_user.id
    requested_at = datetime.utcnow()

    def record_play():
        playback_recorder.dispatch(
            track_id,
            user_id,
            requested_at,
            source=source.value,
            device=device.value,
        )

    response = build_stream_response(
        media, handle, byte_range, settings.stream_chunk_size, on_start=record_play
    )
    logger.debug(
        "Streaming song %s to user %s: status=%d range=%r",
        track_id, user_id, response.status_code, range_header,
    )
    return response


@router.get("/trending/top", response_model=List[SongResponse])
async def get_trending_songs(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Get the most played active songs."""
    result = await db.execute(
        select(Track)
        .where(Track.is_active == True)
        .order_by(Track.play_count.desc())
        .limit(limit)
    )
    return result.scalars().all()


@router.get("", response_model=SongListResponse)
async def list_songs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    genre: Optional[str] = Query(None),
    artist_id: Optional[int] = Query(None),
    sort_by: str = Query("created_at", description="Sort: created_at, play_count, likes, title"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    """List active songs with pagination and filters."""
    conditions = [Track.is_active == True]
    if genre:
        conditions.append(Track.genre == genre)
    if artist_id:
        conditions.append(Track.artist_id == artist_id)

    sort_column = SORT_COLUMNS.get(sort_by, Track.created_at)
    order = sort_column.asc() if sort_order == "asc" else sort_column.desc()

    total_result = await db.execute(select(func.count(Track.id)).where(*conditions))
    total = total_result.scalar() or 0

    result = await db.execute(
        select(Track)
        .where(*conditions)
        .order_by(order)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    songs = result.scalars().all()

    return SongListResponse(
        songs=[SongResponse.model_validate(song) for song in songs],
        current_page=page,
        total_pages=math.ceil(total / limit),
        total_songs=total,
    )


@router.get("/{song_id}", response_model=SongResponse)
async def get_song(
    song_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single song by ID."""
    return await _get_track_or_404(db, song_id)


@router.post("/{song_id}/like", response_model=LikeResponse)
async def toggle_like(
    song_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Like a song, or remove the like if the user already likes it.

    The counter moves with a single UPDATE so concurrent toggles never lose a
    change, and it never drops below zero.
    """
    track = await _get_track_or_404(db, song_id)
    track_id, user_id = track.id, current_user.id

    existing = await db.execute(
        select(TrackLike).where(
            TrackLike.user_id == user_id,
            TrackLike.track_id == track_id,
        )
    )
    liked = existing.scalar_one_or_none() is None

    try:
        if liked:
            db.add(TrackLike(user_id=user_id, track_id=track_id))
            await db.flush()
            await db.execute(
                update(Track)
                .where(Track.id == track_id)
                .values(likes=Track.likes + 1)
                .execution_options(synchronize_session=False)
            )
        else:
            removed = await db.execute(
                delete(TrackLike).where(
                    TrackLike.user_id == user_id,
                    TrackLike.track_id == track_id,
                )
            )
            if removed.rowcount:
                await db.execute(
                    update(Track)
                    .where(Track.id == track_id, Track.likes > 0)
                    .values(likes=Track.likes - 1)
                    .execution_options(synchronize_session=False)
                )
        await db.commit()
    except IntegrityError:
        # A concurrent request already stored this like and counted it
        await db.rollback()
        logger.info("Duplicate like of song %s by user %s ignored", track_id, user_id)

    likes_result = await db.execute(select(Track.likes).where(Track.id == track_id))
    return LikeResponse(liked=liked, likes=likes_result.scalar() or 0)


@router.patch("/{song_id}", response_model=SongResponse)
async def update_song(
    song_id: int,
    updates: Dict[str, Any] = Body(...),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Update song metadata. Only a fixed set of fields may change."""
    if not updates or not set(updates).issubset(ALLOWED_UPDATES):
        raise HTTPException(status_code=400, detail="Invalid updates")
    if "features" in updates and not isinstance(updates["features"], dict):
        raise HTTPException(status_code=400, detail="Invalid updates")

    track = await _get_track_or_404(db, song_id)

    for field, value in updates.items():
        if field == "features":
            track.features = {**(track.features or {}), **value}
        else:
            setattr(track, field, value)

    await db.commit()
    await db.refresh(track)
    return track


@router.delete("/{song_id}")
async def delete_song(
    song_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete a song. History that references it stays intact."""
    track = await _get_track_or_404(db, song_id)
    track.is_active = False
    await db.commit()
    logger.info("Song %s deactivated by user %s", song_id, current_user.id)
    return {"message": "Song deleted successfully"}
