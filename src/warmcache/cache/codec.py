"""
Entry codec.

Stored layout: one flag byte followed by the orjson-encoded envelope,
zlib-compressed when the flag says so. The flag is authoritative; payloads
are never sniffed to guess whether they are compressed.
"""

from __future__ import annotations

import zlib

import orjson

from warmcache.types import CacheEntry

FLAG_RAW = b"\x00"
FLAG_COMPRESSED = b"\x01"


class CodecError(ValueError):
    """Raised when stored bytes cannot be decoded into an entry."""


def encode_entry(entry: CacheEntry) -> bytes:
    """Serialize an entry, compressing it if the entry is flagged compressed.

    Raises:
        TypeError: If the payload is not JSON-serializable.
    """
    body = orjson.dumps(entry.to_envelope())
    if entry.compressed:
        return FLAG_COMPRESSED + zlib.compress(body)
    return FLAG_RAW + body


def decode_entry(key: str, raw: bytes) -> CacheEntry:
    """Deserialize stored bytes back into an entry.

    Raises:
        CodecError: If the flag, compression or envelope is invalid.
    """
    if not raw:
        raise CodecError(f"Empty payload for {key}")

    flag, body = raw[:1], raw[1:]
    try:
        if flag == FLAG_COMPRESSED:
            body = zlib.decompress(body)
        elif flag != FLAG_RAW:
            raise CodecError(f"Unknown entry flag {flag!r} for {key}")
        envelope = orjson.loads(body)
        return CacheEntry.from_envelope(key, envelope)
    except CodecError:
        raise
    except (zlib.error, orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise CodecError(f"Corrupt entry {key}: {e}") from e
