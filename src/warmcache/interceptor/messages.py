"""
Control messages accepted by the interceptor from the application.

Messages arrive as plain dicts (the wire form of asynchronous message
passing) and are validated into a discriminated union on ``type``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from warmcache.exceptions import ControlMessageError


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class SkipWaiting(_Message):
    """Activate a pending agent generation immediately."""

    type: Literal["SKIP_WAITING"]


class CacheUrls(_Message):
    """Fetch and store the given URLs in the dynamic cache."""

    type: Literal["CACHE_URLS"]
    urls: list[str]


class CacheStrategy(_Message):
    """Fetch and store one URL in the named class."""

    type: Literal["CACHE_STRATEGY"]
    url: str
    strategy: str


class WarmupCache(_Message):
    """Warm the given URLs, or the default list when none are given."""

    type: Literal["WARMUP_CACHE"]
    urls: list[str] | None = None


class GetCacheMetrics(_Message):
    """Request a metrics reply."""

    type: Literal["GET_CACHE_METRICS"]


ControlMessage = Annotated[
    Union[SkipWaiting, CacheUrls, CacheStrategy, WarmupCache, GetCacheMetrics],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(ControlMessage)


def parse_control_message(data: Any) -> ControlMessage:
    """Validate a raw message.

    Raises:
        ControlMessageError: If the message is not a known, well-formed type.
    """
    try:
        return _adapter.validate_python(data)
    except PydanticValidationError as e:
        message_type = data.get("type") if isinstance(data, dict) else None
        raise ControlMessageError(
            "Invalid control message",
            context={"type": message_type, "errors": e.error_count()},
        ) from e
