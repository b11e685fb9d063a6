"""
ResearchPipeline - Core orchestration layer for one research run.

    Idle -> GatheringContext -> (EmptyResult | FanningOut) -> FanningIn -> Completed

Key guarantees:
- An empty retrieval publishes exactly one result event and starts no agent
- A failed specialist becomes a failed slot; the run degrades, it does not abort
- A synthesis failure is fatal: progress{failed} is published, no result event
- A successful run ends with exactly one result event
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from api.router import ProviderRouter
from config.config import Config, PipelineSettings
from models.agent_result import AgentOutcome, AgentResult
from models.run_result import PipelineRunResult
from models.session import ContextItem, Session
from models.stream_events import MetadataEvent, ProgressEvent, ResultEvent, StreamEvent
from orchestrator.agent_task import AgentTask
from orchestrator.broadcast import LIFECYCLE_TOPIC, BroadcastChannel
from orchestrator.dispatcher import FanOutDispatcher
from orchestrator.errors import PublishFailed, SynthesisFailed
from orchestrator.failure_injection import FailureInjector
from orchestrator.role_registry import AgentRole, RoleRegistry
from orchestrator.substrate import (
    ConcurrencyGate,
    RetryPolicy,
    RollingWindowLimiter,
    Sleep,
    StepRunner,
)
from orchestrator.synthesizer import SynthesizerTask
from utils.logger import get_logger

logger = get_logger(__name__)

NO_CONTEXT_MESSAGE = "No context found for the given query. Please try a different search term."


class PipelineState(Enum):
    IDLE = "idle"
    GATHERING_CONTEXT = "gathering_context"
    EMPTY_RESULT = "empty_result"
    FANNING_OUT = "fanning_out"
    FANNING_IN = "fanning_in"
    COMPLETED = "completed"
    FAILED = "failed"


class ContextProvider(Protocol):
    async def gather_context(
        self, query: str, user_id: str, session: Session
    ) -> list[ContextItem | None]: ...


class ResearchPipeline:
    """
    Runs gather -> fan-out -> fan-in for one query and broadcasts every step.

    Example:
        pipeline = ResearchPipeline.from_config(Config(), channel=BroadcastChannel())
        result = await pipeline.run("What is retrieval-augmented generation?", Session())
        print(result.answer)
    """

    def __init__(
        self,
        registry: RoleRegistry,
        provider_router: ProviderRouter,
        gatherer: ContextProvider,
        channel: BroadcastChannel,
        settings: PipelineSettings | None = None,
        *,
        failure_injector: FailureInjector | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.registry = registry
        self.provider_router = provider_router
        self.gatherer = gatherer
        self.channel = channel
        self.settings = settings or PipelineSettings()
        self.failure_injector = failure_injector
        self._clock = clock
        self._sleep = sleep

        self.retry_policy = RetryPolicy(
            max_retries=self.settings.max_retries, backoff_s=self.settings.retry_backoff_s
        )
        self._publish_policy = RetryPolicy(
            max_retries=self.settings.max_retries,
            backoff_s=self.settings.retry_backoff_s,
            retry_on=(PublishFailed,),
        )
        # Shared across runs: throttling is keyed by (role, user), not by session
        self.agent_throttle = RollingWindowLimiter(
            self.settings.agent_throttle_limit,
            self.settings.agent_throttle_period_s,
            clock=clock,
            sleep=sleep,
        )
        self.rate_limiter = RollingWindowLimiter(
            self.settings.pipeline_rate_limit,
            self.settings.pipeline_rate_period_s,
            clock=clock,
            sleep=sleep,
        )
        self.gate = ConcurrencyGate(self.settings.pipeline_concurrency_limit)
        self.dispatcher = FanOutDispatcher(self._make_task)
        # Most recent sessions only; older entries are evicted first
        self.states: OrderedDict[str, PipelineState] = OrderedDict()

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        *,
        channel: BroadcastChannel | None = None,
        registry: RoleRegistry | None = None,
        gatherer: ContextProvider | None = None,
        provider_router: ProviderRouter | None = None,
        failure_injector: FailureInjector | None = None,
    ) -> "ResearchPipeline":
        """Wire a pipeline from environment configuration."""
        # Imported here so the engine does not depend on the HTTP source stack
        from tools.sources import build_default_gatherer

        config = config or Config()
        channel = channel or BroadcastChannel(
            subscriber_queue_size=config.SUBSCRIBER_QUEUE_SIZE, retention_s=config.SESSION_RETENTION_S
        )
        registry = registry or RoleRegistry.from_yaml(config.AGENT_ROLES_PATH)
        for problem in config.validate(registry.providers()):
            logger.warning(f"Configuration problem: {problem}")
        return cls(
            registry=registry,
            provider_router=provider_router or ProviderRouter(config=config),
            gatherer=gatherer or build_default_gatherer(config, channel),
            channel=channel,
            settings=config.pipeline_settings(),
            failure_injector=failure_injector,
        )

    # ---------- helpers ----------

    def _make_task(self, role: AgentRole) -> AgentTask:
        task_cls = SynthesizerTask if role.name == self.registry.synthesizer_role else AgentTask
        return task_cls(
            role,
            self.provider_router.for_role(role),
            self.channel,
            retry_policy=self.retry_policy,
            throttle=self.agent_throttle,
            failure_injector=self.failure_injector,
            clock=self._clock,
            sleep=self._sleep,
        )

    def _set_state(self, session: Session, state: PipelineState) -> None:
        self.states[session.session_id] = state
        self.states.move_to_end(session.session_id)
        while len(self.states) > self.settings.max_tracked_sessions:
            self.states.popitem(last=False)
        logger.debug(
            f"Pipeline state -> {state.value}",
            extra={"extra_fields": {**session.log_fields(), "state": state.value}},
        )

    async def _confirm(self, steps: StepRunner, step_id: str, session: Session, event: StreamEvent) -> None:
        await steps.run(
            step_id,
            lambda: self.channel.publish(session.session_id, LIFECYCLE_TOPIC, event),
            policy=self._publish_policy,
        )

    async def _best_effort(self, session: Session, event: StreamEvent) -> None:
        try:
            await self.channel.publish(session.session_id, LIFECYCLE_TOPIC, event)
        except Exception as e:
            logger.warning(
                f"Dropped {event.event_type} event: {e}",
                extra={"extra_fields": {**session.log_fields(), "error_type": type(e).__name__}},
            )

    async def _synthesize(
        self, synthesizer: AgentRole, query: str, outcomes: list[AgentOutcome], session: Session
    ) -> AgentResult:
        try:
            task = self._make_task(synthesizer)
        except Exception as e:
            raise SynthesisFailed(f"Could not prepare synthesizer '{synthesizer.name}': {e}") from e
        return await task.run(query, outcomes, session)

    # ---------- run ----------

    async def run(self, query: str, session: Session | None = None) -> PipelineRunResult:
        """
        Execute one research run.

        Waits (never rejects) when the pipeline rate limit or concurrency
        limit is reached.

        Raises:
            SynthesisFailed: when no answer could be synthesized
        """
        session = session or Session()
        await self.rate_limiter.acquire("pipeline")
        async with self.gate:
            try:
                return await self._run(query, session)
            finally:
                self.channel.mark_finished(session.session_id)

    async def _run(self, query: str, session: Session) -> PipelineRunResult:
        started = self._clock()
        steps = StepRunner(run_id=session.session_id, policy=self.retry_policy, sleep=self._sleep)
        specialists = self.registry.specialists()
        synthesizer = self.registry.synthesizer()
        log_fields = {**session.log_fields(), "query_length": len(query)}
        self._set_state(session, PipelineState.IDLE)

        logger.info("Research run started", extra={"extra_fields": log_fields})

        try:
            await self._confirm(
                steps,
                "publish-orchestration-start",
                session,
                ProgressEvent(
                    step="orchestration",
                    status="starting",
                    message=f"Starting research with {len(specialists)} agents",
                    metadata={
                        "agents": [r.name for r in specialists],
                        "final_synthesis": synthesizer.name,
                    },
                ),
            )

            self._set_state(session, PipelineState.GATHERING_CONTEXT)
            contexts = await steps.invoke(
                "gather-context",
                lambda: self.gatherer.gather_context(query, session.user_id, session),
            )

            if not contexts:
                return await self._empty_result(steps, session)

            top_contexts = list(contexts[: self.settings.top_k_contexts])

            self._set_state(session, PipelineState.FANNING_OUT)
            await self._best_effort(
                session,
                MetadataEvent(
                    type="info",
                    message=f"Dispatching {len(specialists)} agents",
                    details={
                        "agents": [r.name for r in specialists],
                        "models": {r.name: r.model_id for r in specialists},
                        "contexts": len(top_contexts),
                    },
                ),
            )
            outcomes: list[AgentOutcome] = await steps.invoke(
                "fan-out",
                lambda: self.dispatcher.dispatch(specialists, query, top_contexts, session),
            )

            self._set_state(session, PipelineState.FANNING_IN)
            completed = [o.role for o in outcomes if o.is_success]
            await self._best_effort(
                session,
                MetadataEvent(
                    type="info",
                    message=f"{len(completed)} of {len(outcomes)} agents completed",
                    details={
                        "completed": len(completed),
                        "completed_roles": completed,
                        "failed_roles": [o.role for o in outcomes if not o.is_success],
                    },
                ),
            )
            synthesis: AgentResult = await steps.invoke(
                "fan-in",
                lambda: self._synthesize(synthesizer, query, outcomes, session),
            )

            await self._confirm(
                steps,
                "publish-completed",
                session,
                ProgressEvent(
                    step="orchestration",
                    status="completed",
                    message="Research completed",
                    metadata={"duration_ms": int((self._clock() - started) * 1000)},
                ),
            )
            await self._confirm(
                steps,
                "publish-result",
                session,
                ResultEvent(
                    answer=synthesis.response,
                    model=synthesis.model_id,
                    contexts_used=len(top_contexts),
                ),
            )

        except Exception as e:
            self._set_state(session, PipelineState.FAILED)
            logger.error(
                f"Research run failed: {e}",
                extra={"extra_fields": {**log_fields, "error_type": type(e).__name__}},
            )
            await self._best_effort(
                session,
                ProgressEvent(step="orchestration", status="failed", message=f"Research failed: {e}"),
            )
            raise

        self._set_state(session, PipelineState.COMPLETED)
        result = PipelineRunResult(
            session_id=session.session_id,
            status="completed",
            answer=synthesis.response,
            model=synthesis.model_id,
            contexts_used=len(top_contexts),
            top_contexts=tuple(top_contexts),
            agent_outcomes=tuple(outcomes),
            synthesis=synthesis,
        )
        logger.info(
            "Research run completed",
            extra={
                "extra_fields": {
                    **log_fields,
                    "duration_ms": int((self._clock() - started) * 1000),
                    "success_count": result.success_count,
                    "error_count": result.error_count,
                    "model": synthesis.model_id,
                }
            },
        )
        return result

    async def _empty_result(self, steps: StepRunner, session: Session) -> PipelineRunResult:
        self._set_state(session, PipelineState.EMPTY_RESULT)
        logger.info("No context found, skipping agents", extra={"extra_fields": session.log_fields()})
        await self._confirm(
            steps,
            "publish-result",
            session,
            ResultEvent(answer=NO_CONTEXT_MESSAGE, model="none", contexts_used=0, tokens_used=0),
        )
        return PipelineRunResult(
            session_id=session.session_id,
            status="no_context",
            answer=NO_CONTEXT_MESSAGE,
            model="none",
            contexts_used=0,
            tokens_used=0,
        )

    async def aclose(self) -> None:
        await self.provider_router.aclose()

