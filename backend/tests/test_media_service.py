import pytest

from app.models.track import Track
from app.services import media


class _Result:
    def __init__(self, value):
        self._value = value

    def scalar_one_or_none(self):
        return self._value


class _FakeDb:
    def __init__(self, track):
        self.track = track

    async def execute(self, _query):
        return _Result(self.track)


def _track(file_url="/uploads/songs/song.mp3", audio_format="mp3"):
    return Track(id=5, title="Song", artist_id=1, file_url=file_url, file_name="song.mp3", file_size=1000, format=audio_format)


def test_parse_range_header_without_header_serves_whole_file():
    assert media.parse_range_header(None, 1000) is None
    assert media.parse_range_header("", 1000) is None


def test_parse_range_header_explicit_range():
    byte_range = media.parse_range_header("bytes=0-99", 1000)

    assert byte_range == media.ByteRange(0, 99)
    assert byte_range.length == 100
    assert byte_range.content_range(1000) == "bytes 0-99/1000"


def test_parse_range_header_open_ended_range_runs_to_last_byte():
    byte_range = media.parse_range_header("bytes=500-", 1000)

    assert byte_range == media.ByteRange(500, 999)
    assert byte_range.length == 500


def test_parse_range_header_suffix_range():
    assert media.parse_range_header("bytes=-100", 1000) == media.ByteRange(900, 999)
    assert media.parse_range_header("bytes=-5000", 1000) == media.ByteRange(0, 999)


@pytest.mark.parametrize(
    "header",
    [
        "bytes=999999-1000000",
        "bytes=1000-",
        "bytes=0-1000",
        "bytes=10-5",
        "bytes=-0",
    ],
)
def test_parse_range_header_out_of_bounds_is_unsatisfiable(header):
    with pytest.raises(media.RangeNotSatisfiableError) as exc_info:
        media.parse_range_header(header, 1000)

    assert exc_info.value.file_size == 1000


def test_parse_range_header_any_range_on_empty_file_is_unsatisfiable():
    with pytest.raises(media.RangeNotSatisfiableError):
        media.parse_range_header("bytes=0-", 0)


@pytest.mark.parametrize(
    "header",
    ["items=0-10", "bytes=abc-def", "bytes=-", "bytes=0-10,20-30", "garbage"],
)
def test_parse_range_header_ignores_unsupported_headers(header):
    assert media.parse_range_header(header, 1000) is None


def test_media_type_for_known_and_unknown_formats():
    assert media.media_type_for("mp3") == "audio/mpeg"
    assert media.media_type_for("FLAC") == "audio/flac"
    assert media.media_type_for("m4a") == "audio/mp4"
    assert media.media_type_for("xyz") == "audio/mpeg"
    assert media.media_type_for(None) == "audio/mpeg"


def test_resolve_media_path_rejects_paths_outside_root(tmp_path):
    assert media.resolve_media_path(str(tmp_path), "/uploads/songs/a.mp3") == tmp_path.resolve() / "uploads" / "songs" / "a.mp3"
    assert media.resolve_media_path(str(tmp_path), "/../../etc/passwd") is None


@pytest.mark.asyncio
async def test_locate_track_media_reports_missing_track(tmp_path):
    with pytest.raises(media.MediaNotFoundError) as exc_info:
        await media.locate_track_media(_FakeDb(None), 5, str(tmp_path))

    assert exc_info.value.kind == "track"
    assert exc_info.value.detail == "Song not found"


@pytest.mark.asyncio
async def test_locate_track_media_reports_missing_file(tmp_path):
    with pytest.raises(media.MediaNotFoundError) as exc_info:
        await media.locate_track_media(_FakeDb(_track()), 5, str(tmp_path))

    assert exc_info.value.kind == "file"
    assert exc_info.value.detail == "Song file not found"


@pytest.mark.asyncio
async def test_locate_track_media_uses_size_on_disk(tmp_path):
    song_dir = tmp_path / "uploads" / "songs"
    song_dir.mkdir(parents=True)
    (song_dir / "song.ogg").write_bytes(b"x" * 321)

    track, media_file = await media.locate_track_media(
        _FakeDb(_track("/uploads/songs/song.ogg", "ogg")), 5, str(tmp_path)
    )

    assert track.id == 5
    assert media_file.size == 321
    assert media_file.media_type == "audio/ogg"


def _media_file(path, size):
    return media.MediaFile(track_id=5, path=path, size=size, media_type="audio/mpeg")


@pytest.mark.asyncio
async def test_iter_file_range_yields_requested_slice_in_order(tmp_path):
    path = tmp_path / "song.mp3"
    payload = bytes(range(256)) * 4
    path.write_bytes(payload)

    handle = await media.open_media(_media_file(path, len(payload)))
    chunks = [chunk async for chunk in media.iter_file_range(handle, 10, 700, chunk_size=64)]

    assert all(len(chunk) <= 64 for chunk in chunks)
    assert b"".join(chunks) == payload[10:701]
    assert handle.closed


@pytest.mark.asyncio
async def test_iter_file_range_runs_start_hook_once_before_first_chunk(tmp_path):
    path = tmp_path / "song.mp3"
    path.write_bytes(b"b" * 300)
    events = []

    handle = await media.open_media(_media_file(path, 300))
    async for chunk in media.iter_file_range(handle, 0, 299, chunk_size=100, on_start=lambda: events.append("start")):
        events.append(len(chunk))

    assert events == ["start", 100, 100, 100]


@pytest.mark.asyncio
async def test_iter_file_range_closes_file_when_consumer_stops_early(tmp_path):
    path = tmp_path / "song.mp3"
    path.write_bytes(b"a" * 1024)

    handle = await media.open_media(_media_file(path, 1024))
    stream = media.iter_file_range(handle, 0, 1023, chunk_size=100)
    first = await stream.__anext__()
    await stream.aclose()

    assert first == b"a" * 100
    assert handle.closed


@pytest.mark.asyncio
async def test_open_media_reports_vanished_file_as_missing(tmp_path):
    with pytest.raises(media.MediaNotFoundError) as exc_info:
        await media.open_media(_media_file(tmp_path / "missing.mp3", 10))

    assert exc_info.value.kind == "file"


@pytest.mark.asyncio
async def test_open_media_wraps_other_open_failures(tmp_path, monkeypatch):
    def failing_open(*_args, **_kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(media, "open", failing_open, raising=False)

    with pytest.raises(media.StorageIOError):
        await media.open_media(_media_file(tmp_path / "song.mp3", 10))
