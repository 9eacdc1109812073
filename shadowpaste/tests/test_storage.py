"""Tests for the SQLite storage backend."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from shadowpaste.core.config import Settings
from shadowpaste.core.content import RawImage, encode_image
from shadowpaste.core.errors import StorageError
from shadowpaste.core.storage import (
    ClipStorage,
    bytes_to_embedding,
    embedding_to_bytes,
    parse_timestamp,
)
from shadowpaste.models.schemas import EMPTY, Entry, TextContent


def at(minutes):
    base = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc).astimezone()
    return base + timedelta(minutes=minutes)


class TestClipStorage:
    """Test storage operations against a temporary database."""

    @pytest.fixture
    def storage(self, tmp_path):
        storage = ClipStorage(str(tmp_path / "nested" / "history.db")).open()
        yield storage
        storage.close()

    def test_open_creates_table(self, storage):
        columns = {
            row[1]
            for row in storage.conn.execute("PRAGMA table_info(clipboard_history)")
        }
        assert columns == {"id", "content_type", "content", "copied_at", "embedding"}

    def test_default_path_matches_settings(self):
        assert ClipStorage().db_path == Settings().db_path

    def test_open_is_idempotent(self, tmp_path):
        path = str(tmp_path / "history.db")
        first = ClipStorage(path).open()
        first_id = first.insert(Entry(content=TextContent(text="kept"), captured_at=at(0)))
        first.close()

        second = ClipStorage(path).open()
        second.open()
        entries = second.load_all()
        second.close()

        assert [e.id for e in entries] == [first_id]

    def test_insert_assigns_increasing_ids(self, storage):
        a = storage.insert(Entry(content=TextContent(text="a"), captured_at=at(0)))
        b = storage.insert(Entry(content=TextContent(text="b"), captured_at=at(1)))
        assert 0 < a < b

    def test_round_trip(self, storage):
        entry = Entry(
            content=TextContent(text="hello world"),
            captured_at=at(5),
            embedding=[0.5, -0.25, 1.0e-3, 3.4028234663852886e38],
        )
        entry_id = storage.insert(entry)

        [loaded] = storage.load_all()
        assert loaded.id == entry_id
        assert loaded.content == entry.content
        assert loaded.captured_at == entry.captured_at
        assert embedding_to_bytes(loaded.embedding) == embedding_to_bytes(entry.embedding)

    def test_round_trip_image_and_empty(self, storage):
        image = encode_image(RawImage(1, 1, b"\x00\x00\x00\xff"))
        storage.insert(Entry(content=image, captured_at=at(0)))
        storage.insert(Entry(content=EMPTY, captured_at=at(1)))

        loaded = storage.load_all()
        assert [e.content for e in loaded] == [image, EMPTY]
        assert all(e.embedding is None for e in loaded)

        rows = storage.conn.execute(
            "SELECT content_type, content, embedding FROM clipboard_history ORDER BY id"
        ).fetchall()
        assert rows[0][0] == "image"
        assert rows[1] == ("empty", "", None)

    def test_embedding_stored_little_endian(self, storage):
        storage.insert(
            Entry(content=TextContent(text="x"), captured_at=at(0), embedding=[1.0])
        )
        [(blob,)] = storage.conn.execute("SELECT embedding FROM clipboard_history").fetchall()
        assert blob == b"\x00\x00\x80\x3f"

    def test_load_orders_by_timestamp(self, storage):
        storage.insert(Entry(content=TextContent(text="late"), captured_at=at(10)))
        storage.insert(Entry(content=TextContent(text="early"), captured_at=at(-10)))
        storage.insert(Entry(content=TextContent(text="middle"), captured_at=at(0)))

        texts = [e.content.text for e in storage.load_all()]
        assert texts == ["early", "middle", "late"]

    def test_mixed_offsets_sort_by_instant(self, storage):
        plus_two = timezone(timedelta(hours=2))
        storage.insert(
            Entry(
                content=TextContent(text="second"),
                captured_at=datetime(2026, 1, 15, 11, 30, tzinfo=plus_two),
            )
        )
        storage.insert(
            Entry(
                content=TextContent(text="first"),
                captured_at=datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc),
            )
        )
        assert [e.content.text for e in storage.load_all()] == ["first", "second"]

    def test_bad_timestamp_falls_back_to_now(self, storage):
        storage.conn.execute(
            "INSERT INTO clipboard_history (content_type, content, copied_at) "
            "VALUES ('text', 'odd', 'not a date')"
        )
        storage.conn.commit()

        before = datetime.now().astimezone()
        [entry] = storage.load_all()
        assert entry.content == TextContent(text="odd")
        assert entry.captured_at >= before

    def test_delete_by_id(self, storage):
        keep = storage.insert(Entry(content=TextContent(text="keep"), captured_at=at(0)))
        drop = storage.insert(Entry(content=TextContent(text="drop"), captured_at=at(1)))

        storage.delete_by_id(drop)
        assert [e.id for e in storage.load_all()] == [keep]

    def test_delete_missing_is_noop(self, storage):
        storage.insert(Entry(content=TextContent(text="keep"), captured_at=at(0)))
        storage.delete_by_id(9999)
        assert len(storage.load_all()) == 1

    def test_get_stats(self, storage):
        storage.insert(
            Entry(content=TextContent(text="abcd"), captured_at=at(0), embedding=[0.1])
        )
        storage.insert(Entry(content=TextContent(text="ab"), captured_at=at(1)))
        storage.insert(Entry(content=EMPTY, captured_at=at(2)))

        stats = storage.get_stats()

        assert stats["total_entries"] == 3
        assert stats["by_type"] == {"text": 2, "empty": 1}
        assert stats["embedded_entries"] == 1
        assert stats["avg_text_length"] == 3.0
        assert stats["storage_path"] == storage.db_path
        assert stats["oldest_entry"] < stats["newest_entry"]

    def test_get_stats_empty(self, storage):
        stats = storage.get_stats()
        assert stats["total_entries"] == 0
        assert stats["by_type"] == {}


class TestErrors:
    """Test store failures surface as StorageError."""

    def test_operations_before_open(self, tmp_path):
        storage = ClipStorage(str(tmp_path / "history.db"))
        with pytest.raises(StorageError):
            storage.load_all()
        with pytest.raises(StorageError):
            storage.insert(Entry(content=EMPTY, captured_at=at(0)))
        with pytest.raises(StorageError):
            storage.delete_by_id(1)

    def test_open_on_directory_fails(self, tmp_path):
        with pytest.raises(StorageError):
            ClipStorage(str(tmp_path)).open()

    def test_dropped_table(self, tmp_path):
        storage = ClipStorage(str(tmp_path / "history.db")).open()
        storage.conn.execute("DROP TABLE clipboard_history")
        with pytest.raises(StorageError):
            storage.insert(Entry(content=EMPTY, captured_at=at(0)))
        storage.close()

    def test_storage_error_chains_sqlite_error(self, tmp_path):
        storage = ClipStorage(str(tmp_path / "history.db")).open()
        storage.conn.execute("DROP TABLE clipboard_history")
        with pytest.raises(StorageError) as excinfo:
            storage.load_all()
        assert isinstance(excinfo.value.__cause__, sqlite3.Error)
        storage.close()

    def test_unencodable_text(self, tmp_path):
        storage = ClipStorage(str(tmp_path / "history.db")).open()
        with pytest.raises(StorageError) as excinfo:
            storage.insert(
                Entry(content=TextContent(text="bad \ud800 surrogate"), captured_at=at(0))
            )
        assert isinstance(excinfo.value.__cause__, UnicodeEncodeError)

        storage.insert(Entry(content=TextContent(text="fine"), captured_at=at(1)))
        assert [e.content.text for e in storage.load_all()] == ["fine"]
        storage.close()


class TestEncoding:
    """Test vector and timestamp helpers."""

    def test_embedding_bytes_width(self):
        assert len(embedding_to_bytes([0.0] * 7)) == 28

    def test_embedding_bytes_bit_exact(self):
        values = [0.1, -2.5, 1e-30]
        once = bytes_to_embedding(embedding_to_bytes(values))
        assert embedding_to_bytes(once) == embedding_to_bytes(values)

    def test_naive_timestamp_is_utc(self):
        parsed = parse_timestamp("2026-01-15T10:00:00")
        assert parsed == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
