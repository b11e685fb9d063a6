"""
AgentTask - one role's generation request, run through a fixed lifecycle.

    starting -> availability check (retried) -> running -> streamed generation
             -> completed + agent-result

Lifecycle events are confirmed (published as retried steps) before the task
moves on. Chunk events are best-effort: a failed chunk publish is logged and
the stream continues.
"""

import asyncio
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass

from api.base_client import BaseStreamProvider
from models.agent_result import AgentResult
from models.session import ContextItem, Session
from models.stream_events import (
    AgentChunkEvent,
    AgentResultEvent,
    AgentUpdateEvent,
    StreamEvent,
)
from orchestrator.broadcast import LIFECYCLE_TOPIC, BroadcastChannel, agent_chunk_topic
from orchestrator.errors import (
    AgentTaskFailed,
    GenerationError,
    GenerationUnavailable,
    ProviderError,
    ProviderUnavailable,
    PublishFailed,
    RetryExhausted,
)
from orchestrator.failure_injection import FailureInjector
from orchestrator.prompts import render_context_block
from orchestrator.role_registry import AgentRole
from orchestrator.substrate import RetryPolicy, RollingWindowLimiter, Sleep, StepRunner
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class _StreamState:
    published: int = 0
    sentinel_sent: bool = False


class AgentTask:
    """
    Parametrized agent task; one instance per role.

    Example:
        task = AgentTask(registry.get("analyst"), provider, channel)
        result = await task.run("What is RAG?", contexts, Session("s1", "u1"))
    """

    def __init__(
        self,
        role: AgentRole,
        provider: BaseStreamProvider,
        channel: BroadcastChannel,
        *,
        retry_policy: RetryPolicy | None = None,
        throttle: RollingWindowLimiter | None = None,
        failure_injector: FailureInjector | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.role = role
        self.provider = provider
        self.channel = channel
        self.retry_policy = retry_policy or RetryPolicy()
        self.throttle = throttle
        self.failure_injector = failure_injector
        self._clock = clock
        self._sleep = sleep
        self._publish_policy = RetryPolicy(
            max_retries=self.retry_policy.max_retries,
            backoff_s=self.retry_policy.backoff_s,
            retry_on=(PublishFailed,),
        )

    # ---------- prompt / topics ----------

    def build_prompt(self, query: str, contexts: Sequence) -> str:
        return self.role.render_prompt(query, render_context_block(contexts))

    def chunk_events(self, chunk: str, is_complete: bool) -> Iterator[tuple[str, StreamEvent]]:
        yield agent_chunk_topic(self.role.name), AgentChunkEvent(
            role=self.role.name, chunk=chunk, is_complete=is_complete
        )

    # ---------- lifecycle ----------

    async def run(
        self, query: str, contexts: Sequence[ContextItem | None], session: Session
    ) -> AgentResult:
        return await self._execute(self.build_prompt(query, contexts), session)

    async def _execute(self, prompt: str, session: Session) -> AgentResult:
        role = self.role
        started = self._clock()
        state = _StreamState()
        steps = StepRunner(
            run_id=f"{session.session_id}:{role.name}", policy=self.retry_policy, sleep=self._sleep
        )
        log_fields = {**session.log_fields(), "role": role.name, "model": role.model_id}

        try:
            if self.throttle is not None:
                await self.throttle.acquire(f"{role.name}:{session.user_id}")

            await self._confirm(
                steps,
                "publish-start",
                session,
                AgentUpdateEvent(role=role.name, status="starting", message=role.message(role.start_message)),
            )

            await steps.run("check-availability", lambda: self._check_availability(steps))

            await self._confirm(
                steps,
                "publish-running",
                session,
                AgentUpdateEvent(role=role.name, status="running", message=role.message(role.running_message)),
            )

            response = await steps.run("generate", lambda: self._generate(prompt, session, state))
            duration_ms = self._elapsed_ms(started)

            await self._confirm(
                steps,
                "publish-complete",
                session,
                AgentUpdateEvent(
                    role=role.name,
                    status="completed",
                    message=role.message(role.complete_message),
                    duration_ms=duration_ms,
                ),
            )
            await self._confirm(
                steps,
                "publish-result",
                session,
                AgentResultEvent(role=role.name, response=response, model_id=role.model_id),
            )

        except Exception as e:
            duration_ms = self._elapsed_ms(started)
            reason = _failure_reason(e)
            logger.error(
                f"Agent {role.name} failed: {reason}",
                extra={
                    "extra_fields": {
                        **log_fields,
                        "duration_ms": duration_ms,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            if not state.sentinel_sent:
                await self._publish_chunks(session, "", is_complete=True)
                state.sentinel_sent = True
            await self._best_effort(
                session,
                LIFECYCLE_TOPIC,
                AgentUpdateEvent(
                    role=role.name,
                    status="failed",
                    message=role.message(f"Failed: {reason}"),
                    duration_ms=duration_ms,
                ),
            )
            raise AgentTaskFailed(role.name, reason, cause=e) from e

        logger.info(
            f"Agent {role.name} completed in {duration_ms}ms",
            extra={
                "extra_fields": {
                    **log_fields,
                    "duration_ms": duration_ms,
                    "chunks": state.published,
                    "availability_attempts": steps.attempts.get("check-availability", 0),
                }
            },
        )
        return AgentResult(
            role=role.name, response=response, model_id=role.model_id, duration_ms=duration_ms
        )

    async def _check_availability(self, steps: StepRunner) -> None:
        attempt = steps.attempts.get("check-availability", 1)
        if self.failure_injector is not None:
            self.failure_injector.check(self.role.name, attempt)
        try:
            await self.provider.check_available(self.role.model_id)
        except ProviderUnavailable as e:
            raise GenerationUnavailable(str(e)) from e
        except ProviderError as e:
            raise GenerationError(str(e)) from e

    async def _generate(self, prompt: str, session: Session, state: _StreamState) -> str:
        fragments: list[str] = []
        try:
            async for fragment in self.provider.stream(self.role.model_id, prompt):
                if not fragment:
                    continue
                fragments.append(fragment)
                state.published += 1
                await self._publish_chunks(session, fragment, is_complete=False)
        except ProviderUnavailable as e:
            # Chunks already on the channel cannot be retracted, so only a
            # failure before the first chunk is safe to retry
            if state.published:
                raise GenerationError(
                    f"stream interrupted after {state.published} chunks: {e}"
                ) from e
            raise GenerationUnavailable(str(e)) from e
        except ProviderError as e:
            raise GenerationError(str(e)) from e

        await self._publish_chunks(session, "", is_complete=True)
        state.sentinel_sent = True
        return "".join(fragments)

    # ---------- publishing ----------

    async def _confirm(self, steps: StepRunner, step_id: str, session: Session, event: StreamEvent) -> None:
        await steps.run(
            step_id,
            lambda: self.channel.publish(session.session_id, LIFECYCLE_TOPIC, event),
            policy=self._publish_policy,
        )

    async def _publish_chunks(self, session: Session, chunk: str, is_complete: bool) -> None:
        for topic, event in self.chunk_events(chunk, is_complete):
            await self._best_effort(session, topic, event)

    async def _best_effort(self, session: Session, topic: str, event: StreamEvent) -> None:
        try:
            await self.channel.publish(session.session_id, topic, event)
        except Exception as e:
            logger.warning(
                f"Dropped {event.event_type} event on {topic}: {e}",
                extra={
                    "extra_fields": {
                        **session.log_fields(),
                        "role": self.role.name,
                        "topic": topic,
                        "error_type": type(e).__name__,
                    }
                },
            )

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def _failure_reason(error: BaseException) -> str:
    if isinstance(error, RetryExhausted):
        return f"{error.step_id} failed after {error.attempts} attempts ({error.last_error})"
    return str(error) or type(error).__name__
