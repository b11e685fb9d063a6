"""
AgentResult / TaskFailure - the two tagged outcomes of one agent task invocation.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class NormalizedError:
    code: str
    message: str
    provider: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        valid_codes = {
            "unavailable",
            "provider_error",
            "retries_exhausted",
            "publish_failed",
            "timeout",
            "unknown",
        }
        if self.code not in valid_codes:
            object.__setattr__(self, "code", "unknown")

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "provider": self.provider,
            "retryable": self.retryable,
            "details": self.details,
        }


@dataclass(frozen=True)
class AgentResult:
    role: str
    response: str
    model_id: str
    duration_ms: int

    @property
    def is_success(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "status": "completed",
            "model_id": self.model_id,
            "duration_ms": self.duration_ms,
            "response": self.response,
        }


@dataclass(frozen=True)
class TaskFailure:
    """A role whose task could not produce a result after retries."""

    role: str
    model_id: str
    error: NormalizedError
    duration_ms: int = 0

    @property
    def is_success(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "status": "failed",
            "model_id": self.model_id,
            "duration_ms": self.duration_ms,
            "error": self.error.to_dict(),
        }


AgentOutcome = AgentResult | TaskFailure
