"""
FanOutDispatcher - Concurrent execution of one agent task per role.

Every role gets exactly one tagged outcome (AgentResult or TaskFailure), in
dispatch order. A failing role never cancels its siblings: partially streamed
output from the others is kept.
"""

import asyncio
import time
from collections.abc import Callable, Sequence

from models.agent_result import AgentOutcome, NormalizedError, TaskFailure
from models.session import ContextItem, Session
from orchestrator.agent_task import AgentTask
from orchestrator.errors import (
    AgentTaskFailed,
    GenerationError,
    GenerationUnavailable,
    PublishFailed,
    RetryExhausted,
)
from orchestrator.role_registry import AgentRole
from utils.logger import get_logger

logger = get_logger(__name__)

TaskFactory = Callable[[AgentRole], AgentTask]


def normalize_failure(role: AgentRole, error: BaseException) -> NormalizedError:
    """Map a task failure onto the normalized error shape used for failed slots."""
    cause = error.cause if isinstance(error, AgentTaskFailed) and error.cause else error
    root = cause.last_error if isinstance(cause, RetryExhausted) else cause
    details = {"exception_type": type(root).__name__}

    if isinstance(cause, RetryExhausted):
        details["attempts"] = cause.attempts
        details["step"] = cause.step_id
        code = "publish_failed" if isinstance(root, PublishFailed) else "retries_exhausted"
        retryable = True
    elif isinstance(root, GenerationUnavailable):
        code, retryable = "unavailable", True
    elif isinstance(root, GenerationError):
        code, retryable = "provider_error", False
    else:
        code, retryable = "unknown", False

    message = error.reason if isinstance(error, AgentTaskFailed) else f"Unexpected error: {error!s}"
    return NormalizedError(
        code=code,
        message=message,
        provider=role.provider,
        retryable=retryable,
        details=details,
    )


class FanOutDispatcher:
    """
    Launches agent tasks concurrently and waits for every one of them.

    Example usage:
        dispatcher = FanOutDispatcher(lambda role: AgentTask(role, provider, channel))
        outcomes = await dispatcher.dispatch(registry.specialists(), query, contexts, session)
        for outcome in outcomes:
            print(outcome.role, outcome.is_success)
    """

    def __init__(self, task_factory: TaskFactory):
        self._task_factory = task_factory

    async def _safe_run(
        self,
        role: AgentRole,
        query: str,
        contexts: Sequence[ContextItem | None],
        session: Session,
    ) -> AgentOutcome:
        """Run one task and convert any failure into a tagged TaskFailure."""
        started = time.monotonic()
        try:
            task = self._task_factory(role)
            return await task.run(query, contexts, session)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            if not isinstance(e, AgentTaskFailed):
                logger.error(
                    f"Unexpected error for {role.name}/{role.model_id}: {e}",
                    extra={
                        "extra_fields": {
                            **session.log_fields(),
                            "role": role.name,
                            "model": role.model_id,
                            "error_type": type(e).__name__,
                        }
                    },
                )
            return TaskFailure(
                role=role.name,
                model_id=role.model_id,
                error=normalize_failure(role, e),
                duration_ms=elapsed_ms,
            )

    async def dispatch(
        self,
        roles: Sequence[AgentRole],
        query: str,
        contexts: Sequence[ContextItem | None],
        session: Session,
    ) -> list[AgentOutcome]:
        """
        Run one task per role concurrently.

        Returns:
            One outcome per role, in the order of ``roles``
        """
        logger.info(
            f"Dispatching {len(roles)} agents",
            extra={
                "extra_fields": {
                    **session.log_fields(),
                    "roles": [r.name for r in roles],
                    "context_count": len(contexts),
                }
            },
        )

        # _safe_run never raises, so gather waits for every sibling
        outcomes = await asyncio.gather(
            *(self._safe_run(role, query, contexts, session) for role in roles)
        )

        failed = [o.role for o in outcomes if not o.is_success]
        logger.info(
            f"Fan-out complete: {len(outcomes) - len(failed)} success, {len(failed)} failed",
            extra={"extra_fields": {**session.log_fields(), "failed_roles": failed}},
        )
        return list(outcomes)
