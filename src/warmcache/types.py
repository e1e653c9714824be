"""
Core types for the cache subsystem.

This module defines the fundamental data structures used throughout the system:
- Enums for class names, retention, strategies and task states
- Frozen dataclasses for static configuration and immutable values
  (CacheClass, CacheEntry, Request, Response, Prediction)
- Mutable dataclasses for tracked state (WarmingTask, BehaviorRecord)
- Helper functions for IDs and millisecond timestamps
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from uuid6 import uuid7

Clock = Callable[[], int]
Producer = Callable[[], Awaitable[Any]]


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID (UUIDv7).

    Args:
        prefix: Optional prefix for the ID (e.g., "session")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def now_ms() -> int:
    """Get the current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def ms_to_iso(ts_ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


def iso_to_ms(value: str) -> int:
    """Parse an ISO-8601 string into epoch milliseconds.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


class Retention(str, Enum):
    """Storage medium an entry is written to."""

    DURABLE = "durable"  # Outlives the session
    SESSION = "session"  # Wiped when the session ends


class Strategy(str, Enum):
    """Resolution order for an intercepted request."""

    CACHE_FIRST = "cache-first"
    NETWORK_FIRST = "network-first"


class StoreClassName(str, Enum):
    """Cache classes understood by TieredStore."""

    LISTINGS = "listings"  # Short-lived query results
    FILTERS = "filters"  # Filter option lists
    REFERENCE = "reference"  # Long-lived reference data (states, cities)
    RANGES = "ranges"  # Small volatile numeric ranges
    BEHAVIOR = "behavior"  # User behaviour history


class ResourceClass(str, Enum):
    """Response cache classes understood by RequestInterceptor."""

    STATIC = "static"
    CHUNKS = "chunks"
    IMAGES = "images"
    API = "api"
    DYNAMIC = "dynamic"


class TaskState(str, Enum):
    """Lifecycle of a warming task."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class CacheClass:
    """Static configuration of a TieredStore class."""

    name: StoreClassName
    ttl_ms: int
    compress: bool
    retention: Retention
    schema_version: str
    max_entries: int | None = None

    def bump(self, schema_version: str) -> CacheClass:
        """Return a copy carrying a new schema version."""
        return replace(self, schema_version=schema_version)


@dataclass(frozen=True)
class CacheEntry:
    """Immutable stored value with its validation metadata."""

    key: str
    data: Any
    stored_at: int
    ttl_ms: int
    schema_version: str
    compressed: bool = False

    def is_expired(self, now: int) -> bool:
        """Check whether the entry has outlived its TTL."""
        return now - self.stored_at > self.ttl_ms

    def is_valid(self, schema_version: str, now: int) -> bool:
        """Check schema version and TTL against the current class config."""
        return self.schema_version == schema_version and not self.is_expired(now)

    def to_envelope(self) -> dict[str, Any]:
        """Serializable envelope persisted to a storage medium."""
        return {
            "data": self.data,
            "storedAt": self.stored_at,
            "ttlMs": self.ttl_ms,
            "schemaVersion": self.schema_version,
            "compressed": self.compressed,
        }

    @classmethod
    def from_envelope(cls, key: str, envelope: dict[str, Any]) -> CacheEntry:
        """Rebuild an entry from a persisted envelope.

        Raises:
            KeyError, TypeError, ValueError: If the envelope is malformed.
        """
        return cls(
            key=key,
            data=envelope["data"],
            stored_at=int(envelope["storedAt"]),
            ttl_ms=int(envelope["ttlMs"]),
            schema_version=str(envelope["schemaVersion"]),
            compressed=bool(envelope.get("compressed", False)),
        )


@dataclass
class CacheCounters:
    """Mutable hit/miss/eviction counters for one cache class."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    fallbacks: int = 0
    errors: int = 0

    def merge(self, other: CacheCounters) -> CacheCounters:
        """Return the element-wise sum of two counter sets."""
        return CacheCounters(
            hits=self.hits + other.hits,
            misses=self.misses + other.misses,
            sets=self.sets + other.sets,
            evictions=self.evictions + other.evictions,
            fallbacks=self.fallbacks + other.fallbacks,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "fallbacks": self.fallbacks,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class ResourceClassConfig:
    """Static configuration of an interceptor response cache class."""

    name: ResourceClass
    max_age_ms: int
    strategy: Strategy
    max_entries: int


@dataclass(frozen=True)
class Classification:
    """Result of classifying a request against the rule table."""

    rule_name: str
    resource_class: ResourceClass
    strategy: Strategy


@dataclass(frozen=True)
class Request:
    """Outbound network read."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Response:
    """Network or cached response."""

    url: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        """Whether the status is 2xx."""
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def with_headers(self, **extra: str) -> Response:
        """Return a copy with additional headers (underscores become dashes).

        An existing header with the same name in any letter case is replaced.
        """
        stamps = {key.replace("_", "-"): value for key, value in extra.items()}
        lowered = {key.lower() for key in stamps}
        headers = {k: v for k, v in self.headers.items() if k.lower() not in lowered}
        headers.update(stamps)
        return replace(self, headers=headers)


@dataclass(frozen=True)
class Prediction:
    """A guess at the user's next navigation target."""

    route: str
    confidence: float
    reason: str


@dataclass(frozen=True)
class ListingQuery:
    """Opaque listing request: category, listing type and page."""

    category: str
    listing_type: str
    page: int = 1


@dataclass
class WarmingTask:
    """A cache population task.

    Unique by key inside the scheduler; ``producer`` is the opaque business
    fetch whose result is written to ``target_class``.
    """

    key: str
    priority: int
    producer: Producer
    target_class: CacheClass
    state: TaskState = TaskState.QUEUED
    error: str | None = None


@dataclass
class BehaviorRecord:
    """Rolling, bounded history of navigation and interaction signals."""

    visited_routes: list[str] = field(default_factory=list)
    time_per_route: dict[str, int] = field(default_factory=dict)
    interaction_counts: dict[str, int] = field(default_factory=dict)
    hover_counts: dict[str, int] = field(default_factory=dict)
    filter_usage: dict[str, int] = field(default_factory=dict)
    scroll_depth_by_route: dict[str, int] = field(default_factory=dict)
    last_activity: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict."""
        return {
            "visitedRoutes": list(self.visited_routes),
            "timePerRoute": dict(self.time_per_route),
            "interactionCounts": dict(self.interaction_counts),
            "hoverCounts": dict(self.hover_counts),
            "filterUsage": dict(self.filter_usage),
            "scrollDepthByRoute": dict(self.scroll_depth_by_route),
            "lastActivity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BehaviorRecord:
        """Build a record from a persisted dict, ignoring unknown fields."""
        return cls(
            visited_routes=[str(r) for r in data.get("visitedRoutes", [])],
            time_per_route={str(k): int(v) for k, v in data.get("timePerRoute", {}).items()},
            interaction_counts={
                str(k): int(v) for k, v in data.get("interactionCounts", {}).items()
            },
            hover_counts={str(k): int(v) for k, v in data.get("hoverCounts", {}).items()},
            filter_usage={str(k): int(v) for k, v in data.get("filterUsage", {}).items()},
            scroll_depth_by_route={
                str(k): int(v) for k, v in data.get("scrollDepthByRoute", {}).items()
            },
            last_activity=int(data.get("lastActivity", 0)),
        )
