"""Type definitions for the EventSource client."""

from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


MESSAGE_EVENT = "message"
OPEN_EVENT = "open"
ERROR_EVENT = "error"


class ReadyState(IntEnum):
    """Connection state of an event source."""
    CONNECTING = 0
    OPEN = 1
    CLOSED = 2


class ErrorKind(str, Enum):
    WRONG_HTTP_RESPONSE = "wrong_http_response"
    CONNECTION_CLOSED_BY_SERVER = "connection_closed_by_server"
    TRANSPORT = "transport"


# ============================================================================
# Errors
# ============================================================================

class EventSourceError(BaseModel):
    """Error information attached to synthetic ``error`` events."""
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    cause: Optional[Any] = None  # underlying transport exception

    class Config:
        frozen = True

    @classmethod
    def wrong_http_response(cls, status_code: int, content_type: str) -> "EventSourceError":
        return cls(
            kind=ErrorKind.WRONG_HTTP_RESPONSE,
            message=f"Unexpected HTTP response: {status_code} ({content_type or 'no content type'})",
            status_code=status_code,
        )

    @classmethod
    def closed_by_server(cls) -> "EventSourceError":
        return cls(
            kind=ErrorKind.CONNECTION_CLOSED_BY_SERVER,
            message="Connection with the event source was closed.",
        )

    @classmethod
    def transport(cls, exc: BaseException) -> "EventSourceError":
        return cls(kind=ErrorKind.TRANSPORT, message=str(exc) or type(exc).__name__, cause=exc)


# ============================================================================
# Events
# ============================================================================

class Event(BaseModel):
    """
    A single event received from (or synthesized by) an event source.

    ``data`` holds every ``data`` line of the block joined with ``\\n``.
    ``retry`` is the block's own ``retry`` value in milliseconds, if any.
    """
    id: Optional[str] = None
    event: str = MESSAGE_EVENT
    data: str = ""
    retry: Optional[int] = None
    ready_state: ReadyState = ReadyState.CONNECTING
    error: Optional[EventSourceError] = None

    class Config:
        frozen = True

    def __str__(self) -> str:
        return (
            f"<Event: readyState: {self.ready_state.name}, id: {self.id}; "
            f"event: {self.event}; data: {self.data}>"
        )


# ============================================================================
# Configuration
# ============================================================================

class EventSourceConfig(BaseModel):
    """Configuration for event source clients."""
    timeout: float = 300.0  # seconds
    retry_interval: int = Field(default=3000, ge=0)  # milliseconds
    headers: Dict[str, str] = Field(default_factory=dict)
    last_event_id: Optional[str] = None
