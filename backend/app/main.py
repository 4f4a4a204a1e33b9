"""Tunestream - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.database import init_db
from app.routers import artists, auth, health, history, songs
from app.services.auth import decode_user_id
from app.services.telemetry import playback_recorder

logger = logging.getLogger(__name__)

config = get_settings()


# Paths that do NOT require authentication
AUTH_EXEMPT_PATHS = {
    "/",
    "/health",
    "/health/ready",
    "/api/auth/login",
    "/api/auth/register",
}
AUTH_EXEMPT_PREFIXES = (
    "/docs",
    "/redoc",
    "/openapi",
)
# Catalogue reads are public; streaming is not
PUBLIC_READ_PREFIXES = (
    "/api/songs",
    "/api/artists",
)
PROTECTED_READ_PREFIXES = (
    "/api/songs/stream",
)


def is_public_request(method: str, path: str) -> bool:
    """Return whether a request may proceed without a bearer token."""
    path = path.rstrip("/") or "/"

    if path in AUTH_EXEMPT_PATHS or path.startswith(AUTH_EXEMPT_PREFIXES):
        return True

    # Non-API paths (health, root, static) are never gated
    if not path.startswith("/api"):
        return True

    if method in ("GET", "HEAD") and path.startswith(PUBLIC_READ_PREFIXES):
        return not path.startswith(PROTECTED_READ_PREFIXES)

    return False


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    await init_db()
    yield
    # Let in-flight play recordings land before the engine goes away
    await playback_recorder.drain()


app = FastAPI(
    title=config.app_name,
    description="Music streaming API",
    version=config.app_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
)


@app.middleware("http")
async def require_authentication(request: Request, call_next):
    """Enforce JWT authentication on API routes except public ones."""
    if request.method == "OPTIONS" or is_public_request(request.method, request.url.path):
        return await call_next(request)

    # Extract and validate token
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    if decode_user_id(auth_header[7:]) is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Invalid or expired token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await call_next(request)


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(songs.router, prefix="/api/songs", tags=["Songs"])
app.include_router(artists.router, prefix="/api/artists", tags=["Artists"])
app.include_router(history.router, prefix="/api/history", tags=["History"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": config.app_name,
        "version": config.app_version,
        "description": "Music streaming API",
    }
