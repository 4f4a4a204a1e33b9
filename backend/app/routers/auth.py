"""Authentication router: registration, login, logout and the current profile."""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.services.auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    require_user,
)

router = APIRouter()

ALLOWED_PROFILE_UPDATES = {"name", "preferences", "profile_picture"}


# Request/Response models

class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


def _user_to_dict(user: User) -> dict:
    """Convert user model to response dict."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "subscription": user.subscription or "free",
        "profile_picture": user.profile_picture,
        "preferences": user.preferences or {},
        "is_admin": bool(user.is_admin),
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Register a new user."""
    email = request.email.strip().lower()

    existing = await db.execute(select(User).where(func.lower(User.email) == email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists",
        )

    user = User(
        name=request.name.strip(),
        email=email,
        hashed_password=get_password_hash(request.password),
        subscription="free",
        is_active=True,
        is_admin=False,
        last_login_at=datetime.utcnow(),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    token = create_access_token(data={"sub": str(user.id)})
    return TokenResponse(
        access_token=token,
        user=_user_to_dict(user),
    )


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate and get access token."""
    user = await authenticate_user(db, request.email.strip(), request.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user.last_login_at = datetime.utcnow()
    await db.commit()

    token = create_access_token(data={"sub": str(user.id)})
    return TokenResponse(
        access_token=token,
        user=_user_to_dict(user),
    )


@router.get("/me")
async def get_profile(current_user: User = Depends(require_user)):
    """Get current user profile."""
    return _user_to_dict(current_user)


@router.patch("/me")
async def update_profile(
    updates: Dict[str, Any] = Body(...),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Update the current user's profile. Preferences are merged."""
    if not updates or not set(updates).issubset(ALLOWED_PROFILE_UPDATES):
        raise HTTPException(status_code=400, detail="Invalid updates")
    if "name" in updates and not (isinstance(updates["name"], str) and updates["name"].strip()):
        raise HTTPException(status_code=400, detail="Invalid updates")
    if "preferences" in updates and not isinstance(updates["preferences"], dict):
        raise HTTPException(status_code=400, detail="Invalid updates")

    for field, value in updates.items():
        if field == "preferences":
            current_user.preferences = {**(current_user.preferences or {}), **value}
        elif field == "name":
            current_user.name = value.strip()
        else:
            setattr(current_user, field, value)

    await db.commit()
    return _user_to_dict(current_user)


@router.post("/logout")
async def logout(current_user: User = Depends(require_user)):
    """Log out. Tokens are stateless, so the client simply discards its token."""
    return {"message": "Logged out successfully"}
