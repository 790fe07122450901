"""
Wire envelope shared by every message on the backbone.

Every message body is a JSON object of the form:

    {"event": "order.created", "timestamp": "2024-05-01T12:00:00Z", "data": {...}}

Design decisions:
- `event` doubles as the routing key and is never empty
- `timestamp` is always UTC; naive values read off the wire are taken as UTC
- `data` is untyped at this layer; events.py decodes it into the payload model
  that belongs to the event name
- The envelope is immutable once built
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EnvelopeError(ValueError):
    """Raised when a message body is not a valid envelope."""


class Envelope(BaseModel):
    """
    A domain fact as it travels between services.

    Attributes:
        event: Dotted event name, also used as the routing key
        timestamp: When the publisher built the envelope (UTC)
        data: Event-specific fields
    """
    event: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_bytes(self) -> bytes:
        """Serialize to the compact JSON body sent to the broker."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, body: bytes) -> "Envelope":
        """
        Parse a message body.

        Raises:
            EnvelopeError: If the body is not JSON or misses required fields
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as e:
            raise EnvelopeError(f"invalid envelope: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e

    def __str__(self) -> str:
        return f"Envelope({self.event}, at={self.timestamp.isoformat()})"
