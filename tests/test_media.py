"""
Tests for storage media and the entry codec.
"""

from __future__ import annotations

import asyncio
import zlib
from pathlib import Path

import orjson
import pytest

from warmcache.cache.codec import FLAG_COMPRESSED, FLAG_RAW, CodecError, decode_entry, encode_entry
from warmcache.cache.kv_cache import SqliteMedium
from warmcache.cache.memory import MemoryMedium
from warmcache.exceptions import StorageError
from warmcache.types import CacheEntry


class TestMemoryMedium:
    """Tests for the in-memory session medium."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self) -> None:
        medium = MemoryMedium()
        await medium.set_item("a", b"1")

        assert await medium.get_item("a") == b"1"
        await medium.remove_item("a")
        assert await medium.get_item("a") is None

    @pytest.mark.asyncio
    async def test_rewrite_moves_key_to_end(self) -> None:
        medium = MemoryMedium()
        for key in ("a", "b", "c"):
            await medium.set_item(key, b"x")
        await medium.set_item("a", b"y")

        assert await medium.keys() == ["b", "c", "a"]

    @pytest.mark.asyncio
    async def test_quota_exceeded_raises(self) -> None:
        medium = MemoryMedium(quota_bytes=10)
        await medium.set_item("a", b"12345")

        with pytest.raises(StorageError, match="quota"):
            await medium.set_item("b", b"1234567")
        assert await medium.get_item("b") is None
        assert medium.used_bytes == 5

    @pytest.mark.asyncio
    async def test_replacing_counts_against_quota_once(self) -> None:
        medium = MemoryMedium(quota_bytes=10)
        await medium.set_item("a", b"12345678")
        await medium.set_item("a", b"0123456789")

        assert medium.used_bytes == 10

    @pytest.mark.asyncio
    async def test_clear_by_prefix(self) -> None:
        medium = MemoryMedium()
        await medium.set_item("p-a", b"1")
        await medium.set_item("p-b", b"1")
        await medium.set_item("other", b"1")

        assert await medium.clear("p-") == 2
        assert await medium.keys() == ["other"]

    @pytest.mark.asyncio
    async def test_close_wipes(self) -> None:
        medium = MemoryMedium()
        await medium.set_item("a", b"1")
        await medium.close()

        assert await medium.keys() == []
        assert medium.used_bytes == 0


class TestSqliteMedium:
    """Tests for the SQLite durable medium."""

    @pytest.mark.asyncio
    async def test_persists_across_connections(self, temp_dir: Path) -> None:
        path = temp_dir / "db" / "kv.db"
        medium = SqliteMedium(path)
        await medium.open()
        await medium.set_item("k", b"value")
        await medium.close()

        reopened = SqliteMedium(path)
        await reopened.open()
        try:
            assert await reopened.get_item("k") == b"value"
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_keys_in_storage_order(self, durable_medium: SqliteMedium) -> None:
        for key in ("p-1", "p-2", "q-1", "p-3"):
            await durable_medium.set_item(key, b"x")
        await durable_medium.set_item("p-1", b"y")

        assert await durable_medium.keys("p-") == ["p-2", "p-3", "p-1"]

    @pytest.mark.asyncio
    async def test_concurrent_writes_to_one_key(self, durable_medium: SqliteMedium) -> None:
        await durable_medium.set_item("other", b"x")

        await asyncio.gather(
            durable_medium.set_item("k", b"first"),
            durable_medium.set_item("k", b"second"),
        )

        assert await durable_medium.get_item("k") == b"second"
        assert await durable_medium.keys() == ["other", "k"]

    @pytest.mark.asyncio
    async def test_prefix_is_literal(self, durable_medium: SqliteMedium) -> None:
        """LIKE wildcards in a prefix must not match other keys."""
        await durable_medium.set_item("a_b", b"x")
        await durable_medium.set_item("axb", b"x")

        assert await durable_medium.keys("a_") == ["a_b"]

    @pytest.mark.asyncio
    async def test_memory_database(self) -> None:
        medium = SqliteMedium(":memory:")
        await medium.open()
        try:
            await medium.set_item("k", b"v")
            assert await medium.get_item("k") == b"v"
        finally:
            await medium.close()

    @pytest.mark.asyncio
    async def test_not_open_raises(self, temp_dir: Path) -> None:
        medium = SqliteMedium(temp_dir / "never.db")

        with pytest.raises(StorageError, match="not open"):
            await medium.get_item("k")


class TestCodec:
    """Tests for entry encoding."""

    def _entry(self, compressed: bool) -> CacheEntry:
        return CacheEntry(
            key="k",
            data={"items": [1, 2, 3]},
            stored_at=1000,
            ttl_ms=500,
            schema_version="1.0",
            compressed=compressed,
        )

    def test_flag_byte_marks_compression(self) -> None:
        raw = encode_entry(self._entry(compressed=False))
        packed = encode_entry(self._entry(compressed=True))

        assert raw[:1] == FLAG_RAW
        assert packed[:1] == FLAG_COMPRESSED
        assert orjson.loads(zlib.decompress(packed[1:]))["compressed"] is True

    def test_decode_restores_entry(self) -> None:
        entry = self._entry(compressed=True)

        assert decode_entry("k", encode_entry(entry)) == entry

    def test_unknown_flag_rejected(self) -> None:
        with pytest.raises(CodecError, match="flag"):
            decode_entry("k", b"\x07{}")

    def test_compressed_looking_raw_payload_not_sniffed(self) -> None:
        """A raw entry is never decompressed, whatever its bytes look like."""
        body = zlib.compress(b'{"data": 1}')

        with pytest.raises(CodecError):
            decode_entry("k", FLAG_RAW + body)

    def test_truncated_envelope_rejected(self) -> None:
        with pytest.raises(CodecError):
            decode_entry("k", FLAG_RAW + b'{"data": 1}')

    def test_empty_payload_rejected(self) -> None:
        with pytest.raises(CodecError):
            decode_entry("k", b"")

    def test_unserializable_value_raises_type_error(self) -> None:
        entry = CacheEntry("k", object(), 0, 1, "1.0")

        with pytest.raises(TypeError):
            encode_entry(entry)
