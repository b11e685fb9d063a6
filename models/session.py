"""
Session and ContextItem - correlation key and retrieved evidence for one research run.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ContextSource(str, Enum):
    """Where a piece of retrieved evidence came from."""

    ARXIV = "arxiv"
    GITHUB = "github"
    WEBSEARCH = "websearch"


@dataclass(frozen=True)
class Session:
    """
    Correlation key for one end-to-end research run.

    Attributes:
        session_id: Opaque caller-supplied identifier; every channel event is keyed by it
        user_id: Caller identity, used as the throttling key for agent requests
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = "anonymous"

    def log_fields(self) -> dict[str, Any]:
        return {"session_id": self.session_id, "user_id": self.user_id}


@dataclass(frozen=True)
class ContextItem:
    """
    One unit of retrieved evidence.

    A sequence of context items may contain ``None`` where a retrieval slot
    failed; consumers render a placeholder for those slots.
    """

    source: ContextSource
    text: str
    title: str = ""
    url: str = ""
    relevance: float | None = None

    def with_relevance(self, relevance: float) -> "ContextItem":
        return replace(self, relevance=relevance)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "title": self.title,
            "text": self.text,
            "url": self.url,
            "relevance": self.relevance,
        }
