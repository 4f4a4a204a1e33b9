"""Artist endpoints."""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import cast, delete, func, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.artist import Artist
from app.models.artist_follow import ArtistFollow
from app.models.track import Track
from app.models.user import User
from app.routers.songs import SongResponse
from app.services.auth import require_user

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_UPDATES = {"name", "bio", "image", "genres", "social_links", "verified"}


class ArtistResponse(BaseModel):
    """Artist response model."""
    id: int
    name: str
    bio: Optional[str] = None
    image: Optional[str] = None
    genres: List[str] = []
    social_links: Optional[Dict[str, str]] = None
    verified: bool = False
    monthly_listeners: int = 0
    followers: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ArtistDetailResponse(ArtistResponse):
    """Artist with their most played songs."""
    top_songs: List[SongResponse] = []


class ArtistListResponse(BaseModel):
    artists: List[ArtistResponse]
    current_page: int
    total_pages: int
    total_artists: int


class ArtistCreateRequest(BaseModel):
    name: Optional[str] = None
    bio: str = ""
    image: Optional[str] = None
    genres: List[str] = []


class FollowResponse(BaseModel):
    following: bool
    followers: int


def _has_genre(genre: str):
    # JSON has no containment operator in PostgreSQL; JSONB does (@>)
    return cast(Artist.genres, JSONB).contains([genre])


async def _get_artist_or_404(db: AsyncSession, artist_id: int) -> Artist:
    result = await db.execute(select(Artist).where(Artist.id == artist_id))
    artist = result.scalar_one_or_none()
    if not artist:
        raise HTTPException(status_code=404, detail="Artist not found")
    return artist


@router.get("", response_model=ArtistListResponse)
async def list_artists(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    genre: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """List artists, most listened first."""
    count_query = select(func.count(Artist.id))
    query = select(Artist)

    if genre:
        count_query = count_query.where(_has_genre(genre))
        query = query.where(_has_genre(genre))

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(Artist.monthly_listeners.desc(), Artist.followers.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    artists = result.scalars().all()

    return ArtistListResponse(
        artists=[ArtistResponse.model_validate(a) for a in artists],
        current_page=page,
        total_pages=math.ceil(total / limit),
        total_artists=total,
    )


@router.post("", response_model=ArtistResponse, status_code=201)
async def create_artist(
    request: ArtistCreateRequest,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Create an artist."""
    if not request.name or not request.name.strip():
        raise HTTPException(status_code=400, detail="Artist name is required")

    artist = Artist(
        name=request.name.strip(),
        bio=request.bio,
        image=request.image,
        genres=request.genres,
        verified=False,
        monthly_listeners=0,
        followers=0,
    )
    db.add(artist)
    await db.commit()
    await db.refresh(artist)
    return artist


@router.get("/{artist_id}", response_model=ArtistDetailResponse)
async def get_artist(
    artist_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get artist details with their top songs."""
    artist = await _get_artist_or_404(db, artist_id)

    songs_result = await db.execute(
        select(Track)
        .where(Track.artist_id == artist_id, Track.is_active == True)
        .order_by(Track.play_count.desc())
        .limit(10)
    )

    response = ArtistDetailResponse.model_validate(artist)
    response.top_songs = [SongResponse.model_validate(t) for t in songs_result.scalars().all()]
    return response


@router.get("/{artist_id}/songs", response_model=List[SongResponse])
async def get_artist_songs(
    artist_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get all active songs by an artist, newest first."""
    result = await db.execute(
        select(Track)
        .where(Track.artist_id == artist_id, Track.is_active == True)
        .order_by(Track.created_at.desc())
    )
    return result.scalars().all()


@router.post("/{artist_id}/follow", response_model=FollowResponse)
async def toggle_follow(
    artist_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Follow an artist, or unfollow if the user already follows them."""
    await _get_artist_or_404(db, artist_id)
    user_id = current_user.id

    existing = await db.execute(
        select(ArtistFollow).where(
            ArtistFollow.user_id == user_id,
            ArtistFollow.artist_id == artist_id,
        )
    )
    following = existing.scalar_one_or_none() is None

    try:
        if following:
            db.add(ArtistFollow(user_id=user_id, artist_id=artist_id))
            await db.flush()
            await db.execute(
                update(Artist)
                .where(Artist.id == artist_id)
                .values(followers=Artist.followers + 1)
                .execution_options(synchronize_session=False)
            )
        else:
            removed = await db.execute(
                delete(ArtistFollow).where(
                    ArtistFollow.user_id == user_id,
                    ArtistFollow.artist_id == artist_id,
                )
            )
            if removed.rowcount:
                await db.execute(
                    update(Artist)
                    .where(Artist.id == artist_id, Artist.followers > 0)
                    .values(followers=Artist.followers - 1)
                    .execution_options(synchronize_session=False)
                )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Duplicate follow of artist %s by user %s ignored", artist_id, user_id)

    followers_result = await db.execute(select(Artist.followers).where(Artist.id == artist_id))
    return FollowResponse(following=following, followers=followers_result.scalar() or 0)


@router.patch("/{artist_id}", response_model=ArtistResponse)
async def update_artist(
    artist_id: int,
    updates: Dict[str, Any] = Body(...),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Update artist details. Only a fixed set of fields may change."""
    if not updates or not set(updates).issubset(ALLOWED_UPDATES):
        raise HTTPException(status_code=400, detail="Invalid updates")
    if "name" in updates and not (isinstance(updates["name"], str) and updates["name"].strip()):
        raise HTTPException(status_code=400, detail="Invalid updates")
    if "genres" in updates and not isinstance(updates["genres"], list):
        raise HTTPException(status_code=400, detail="Invalid updates")
    if "social_links" in updates and not isinstance(updates["social_links"], dict):
        raise HTTPException(status_code=400, detail="Invalid updates")

    artist = await _get_artist_or_404(db, artist_id)

    for field, value in updates.items():
        setattr(artist, field, value.strip() if field == "name" else value)

    await db.commit()
    await db.refresh(artist)
    logger.info("Artist %s updated by user %s: %s", artist_id, current_user.id, sorted(updates))
    return artist
