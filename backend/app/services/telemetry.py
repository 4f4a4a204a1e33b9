"""Fire-and-forget play-count and listening-history recording."""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Set

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import AsyncSessionLocal
from app.models.listening_history import ListeningHistory, ListeningSource, PlaybackDevice
from app.models.track import Track

logger = logging.getLogger(__name__)


class TelemetryWriteError(Exception):
    """A play-count increment or history insert failed."""


async def increment_play_count(db: AsyncSession, track_id: int) -> None:
    """Atomically bump a track's play counter by one."""
    await db.execute(
        update(Track)
        .where(Track.id == track_id)
        .values(play_count=Track.play_count + 1)
        .execution_options(synchronize_session=False)
    )


def build_history_entry(
    track_id: int,
    user_id: int,
    played_at: datetime,
    source: str = ListeningSource.LIBRARY.value,
    device: str = PlaybackDevice.WEB.value,
    context_id: Optional[int] = None,
) -> ListeningHistory:
    return ListeningHistory(
        user_id=user_id,
        track_id=track_id,
        played_at=played_at,
        duration=0,
        completed=False,
        source=source,
        device=device,
        context_id=context_id,
    )


class PlaybackRecorder:
    """Records stream starts without holding up the response.

    Each stream start bumps the track's play counter and then appends one
    listening-history row. The two writes run in separate transactions and
    the history row is only written once the increment committed, so the
    counter never falls behind the number of recorded history rows. Failures
    are logged and dropped; nothing is retried.
    """

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _increment(self, track_id: int) -> None:
        try:
            async with self._session_factory() as db:
                await increment_play_count(db, track_id)
                await db.commit()
        except Exception as exc:
            raise TelemetryWriteError(f"play count increment failed for track {track_id}") from exc

    async def _append_history(self, entry: ListeningHistory) -> None:
        try:
            async with self._session_factory() as db:
                db.add(entry)
                await db.commit()
        except Exception as exc:
            raise TelemetryWriteError(
                f"history insert failed for track {entry.track_id}, user {entry.user_id}"
            ) from exc

    async def record(
        self,
        track_id: int,
        user_id: int,
        played_at: datetime,
        source: str = ListeningSource.LIBRARY.value,
        device: str = PlaybackDevice.WEB.value,
        context_id: Optional[int] = None,
    ) -> bool:
        """Write the telemetry for one stream start. Returns False if anything was dropped."""
        try:
            await self._increment(track_id)
            await self._append_history(
                build_history_entry(track_id, user_id, played_at, source, device, context_id)
            )
        except TelemetryWriteError as exc:
            logger.warning("Playback telemetry dropped: %s", exc, exc_info=exc.__cause__)
            return False

        logger.debug("Recorded play of track %s by user %s", track_id, user_id)
        return True

    def dispatch(
        self,
        track_id: int,
        user_id: int,
        played_at: Optional[datetime] = None,
        source: str = ListeningSource.LIBRARY.value,
        device: str = PlaybackDevice.WEB.value,
        context_id: Optional[int] = None,
    ) -> asyncio.Task:
        """Schedule ``record`` on the running loop and return immediately.

        The task is kept referenced until it finishes; it is not tied to the
        request, so a client disconnect does not cancel it.
        """
        task = asyncio.create_task(
            self.record(
                track_id,
                user_id,
                played_at or datetime.utcnow(),
                source=source,
                device=device,
                context_id=context_id,
            ),
            name=f"playback_telemetry:{track_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched recording to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


playback_recorder = PlaybackRecorder()
