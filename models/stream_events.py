"""
Stream events published on a session's broadcast channel.

Every event is an immutable dataclass. ``to_dict()`` produces the wire shape
(``type`` plus the event fields) used by the NDJSON stream endpoint.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal

AgentStatus = Literal["starting", "running", "completed", "failed"]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class StreamEvent:
    event_type: ClassVar[str] = "event"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        return {"type": self.event_type, **{k: v for k, v in payload.items() if v is not None}}


@dataclass(frozen=True)
class AgentUpdateEvent(StreamEvent):
    event_type: ClassVar[str] = "agent-update"

    role: str
    status: AgentStatus
    message: str
    timestamp: str = field(default_factory=utc_timestamp)
    duration_ms: int | None = None


@dataclass(frozen=True)
class AgentChunkEvent(StreamEvent):
    event_type: ClassVar[str] = "agent-chunk"

    role: str
    chunk: str
    is_complete: bool
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass(frozen=True)
class AgentResultEvent(StreamEvent):
    event_type: ClassVar[str] = "agent-result"

    role: str
    response: str
    model_id: str
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass(frozen=True)
class AiChunkEvent(StreamEvent):
    """Chunk of the consolidated answer, mirrored on the session-wide primary topic."""

    event_type: ClassVar[str] = "ai-chunk"

    chunk: str
    is_complete: bool
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass(frozen=True)
class ProgressEvent(StreamEvent):
    event_type: ClassVar[str] = "progress"

    step: str
    status: str
    message: str
    timestamp: str = field(default_factory=utc_timestamp)
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class MetadataEvent(StreamEvent):
    event_type: ClassVar[str] = "metadata"

    type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        # "type" is both the event discriminator and a metadata field
        return {
            "type": self.event_type,
            "metadata_type": self.type,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ResultEvent(StreamEvent):
    event_type: ClassVar[str] = "result"

    answer: str
    model: str
    contexts_used: int
    tokens_used: int | None = None
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "answer": self.answer,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "contexts_used": self.contexts_used,
            "timestamp": self.timestamp,
        }
