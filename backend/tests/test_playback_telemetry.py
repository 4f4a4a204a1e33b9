import asyncio
from datetime import datetime

import pytest

from app.models.listening_history import ListeningHistory
from app.services import telemetry
from app.services.telemetry import PlaybackRecorder


class _Store:
    """In-memory stand-in for the tracks and listening_history tables."""

    def __init__(self, fail_increment=False, fail_history=False, gate=None):
        self.play_counts = {}
        self.history = []
        self.fail_increment = fail_increment
        self.fail_history = fail_history
        self.gate = gate
        self.sessions_opened = 0


class _FakeSession:
    def __init__(self, store):
        self.store = store
        self._pending_increments = []
        self._pending_rows = []

    async def __aenter__(self):
        self.store.sessions_opened += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, statement):
        if self.store.gate is not None:
            await self.store.gate.wait()
        await asyncio.sleep(0)
        if self.store.fail_increment:
            raise RuntimeError("tracks table locked")
        track_id = statement.whereclause.right.value
        self._pending_increments.append(track_id)

    def add(self, row):
        self._pending_rows.append(row)

    async def commit(self):
        await asyncio.sleep(0)
        if self._pending_rows and self.store.fail_history:
            raise RuntimeError("listening_history insert failed")
        for track_id in self._pending_increments:
            self.store.play_counts[track_id] = self.store.play_counts.get(track_id, 0) + 1
        self.store.history.extend(self._pending_rows)
        self._pending_increments.clear()
        self._pending_rows.clear()


def _recorder(store):
    return PlaybackRecorder(session_factory=lambda: _FakeSession(store))


@pytest.mark.asyncio
async def test_record_increments_counter_and_appends_history():
    store = _Store()
    recorder = _recorder(store)
    played_at = datetime(2024, 5, 1, 12, 0, 0)

    ok = await recorder.record(3, 9, played_at, source="album", device="mobile")

    assert ok is True
    assert store.play_counts == {3: 1}
    assert len(store.history) == 1
    entry = store.history[0]
    assert isinstance(entry, ListeningHistory)
    assert (entry.track_id, entry.user_id, entry.played_at) == (3, 9, played_at)
    assert entry.source == "album"
    assert entry.device == "mobile"
    assert entry.completed is False


@pytest.mark.asyncio
async def test_history_failure_is_logged_and_swallowed(caplog):
    store = _Store(fail_history=True)
    recorder = _recorder(store)

    with caplog.at_level("WARNING"):
        ok = await recorder.record(3, 9, datetime.utcnow())

    assert ok is False
    assert store.play_counts == {3: 1}
    assert store.history == []
    assert "Playback telemetry dropped" in caplog.text
    assert "history insert failed" in caplog.text


@pytest.mark.asyncio
async def test_increment_failure_skips_history_so_counter_never_lags():
    store = _Store(fail_increment=True)
    recorder = _recorder(store)

    ok = await recorder.record(3, 9, datetime.utcnow())

    assert ok is False
    assert store.play_counts == {}
    assert store.history == []
    assert store.sessions_opened == 1


@pytest.mark.asyncio
async def test_dispatch_returns_before_writes_complete():
    gate = asyncio.Event()
    store = _Store(gate=gate)
    recorder = _recorder(store)

    task = recorder.dispatch(3, 9)
    await asyncio.sleep(0)

    assert not task.done()
    assert recorder.pending == 1
    assert store.play_counts == {}

    gate.set()
    await recorder.drain()

    assert task.result() is True
    assert recorder.pending == 0
    assert store.play_counts == {3: 1}


@pytest.mark.asyncio
async def test_concurrent_dispatches_each_count_once():
    store = _Store()
    recorder = _recorder(store)

    for user_id in range(25):
        recorder.dispatch(3, user_id)
    await recorder.drain()

    assert store.play_counts == {3: 25}
    assert len(store.history) == 25
    assert {entry.user_id for entry in store.history} == set(range(25))


def test_increment_statement_is_a_single_atomic_update():
    class _CapturingDb:
        statement = None

        async def execute(self, statement):
            self.statement = statement

    db = _CapturingDb()
    asyncio.run(telemetry.increment_play_count(db, 42))

    sql = str(db.statement.compile(compile_kwargs={"literal_binds": True}))
    assert sql.startswith("UPDATE tracks SET play_count=")
    assert "tracks.play_count + 1" in sql
    assert "WHERE tracks.id = 42" in sql
