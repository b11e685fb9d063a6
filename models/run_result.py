"""
PipelineRunResult - Aggregate returned by one orchestration pipeline run.

Immutable dataclass wrapping the per-role outcomes of the fan-out stage and
the synthesized answer of the fan-in stage.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from models.agent_result import AgentOutcome, AgentResult
from models.session import ContextItem

RunStatus = Literal["completed", "no_context"]


@dataclass(frozen=True)
class PipelineRunResult:
    """
    Immutable container for the outcome of one research run.

    Attributes:
        session_id: Session the run was keyed by
        status: "completed", or "no_context" when retrieval found nothing
        answer: Synthesized answer (or the fixed no-context message)
        model: Model id that produced the answer ("none" on early exit)
        contexts_used: Number of context slots handed to the agents
        top_contexts: The context slots themselves (may contain None)
        agent_outcomes: One outcome per dispatched role, in dispatch order
        synthesis: The synthesizer's AgentResult, absent on early exit
    """

    session_id: str
    status: RunStatus
    answer: str
    model: str
    contexts_used: int
    top_contexts: tuple[ContextItem | None, ...] = field(default_factory=tuple)
    agent_outcomes: tuple[AgentOutcome, ...] = field(default_factory=tuple)
    synthesis: AgentResult | None = None
    tokens_used: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success_count(self) -> int:
        """Number of specialist roles that produced a result."""
        return sum(1 for o in self.agent_outcomes if o.is_success)

    @property
    def error_count(self) -> int:
        """Number of specialist roles recorded as failed slots."""
        return sum(1 for o in self.agent_outcomes if not o.is_success)

    @property
    def agent_durations(self) -> dict[str, int]:
        return {o.role: o.duration_ms for o in self.agent_outcomes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status,
            "response": {
                "answer": self.answer,
                "model": self.model,
                "tokens_used": self.tokens_used,
            },
            "contexts_used": self.contexts_used,
            "top_contexts": [c.to_dict() if c else None for c in self.top_contexts],
            "agent_results": [
                {k: v for k, v in o.to_dict().items() if k != "response"}
                for o in self.agent_outcomes
            ],
            "synthesis": (
                {"model_id": self.synthesis.model_id, "duration_ms": self.synthesis.duration_ms}
                if self.synthesis
                else None
            ),
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
        }
