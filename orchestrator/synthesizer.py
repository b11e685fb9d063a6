"""
SynthesizerTask - the fan-in agent.

Consumes the specialists' results instead of raw context, and mirrors every
output chunk onto the session-wide primary answer topic.
"""

from collections.abc import Iterator, Sequence

from models.agent_result import AgentOutcome, AgentResult
from models.session import Session
from models.stream_events import AgentChunkEvent, AiChunkEvent, StreamEvent
from orchestrator.agent_task import AgentTask
from orchestrator.broadcast import PRIMARY_CHUNK_TOPIC, agent_chunk_topic
from orchestrator.errors import AgentTaskFailed, SynthesisFailed
from orchestrator.prompts import render_agent_responses
from utils.logger import get_logger

logger = get_logger(__name__)


class SynthesizerTask(AgentTask):
    def build_prompt(self, query: str, contexts: Sequence) -> str:
        return self.role.render_prompt(query, render_agent_responses(contexts))

    def chunk_events(self, chunk: str, is_complete: bool) -> Iterator[tuple[str, StreamEvent]]:
        yield PRIMARY_CHUNK_TOPIC, AiChunkEvent(chunk=chunk, is_complete=is_complete)
        yield agent_chunk_topic(self.role.name), AgentChunkEvent(
            role=self.role.name, chunk=chunk, is_complete=is_complete
        )

    async def run(
        self, query: str, agent_results: Sequence[AgentOutcome], session: Session
    ) -> AgentResult:
        """
        Synthesize the successful specialist results, keeping their given order.

        Failed slots are skipped. With no successful input at all there is
        nothing to synthesize and the run fails.

        Raises:
            SynthesisFailed: on no usable input or when the synthesis task fails
        """
        results = [r for r in agent_results if isinstance(r, AgentResult)]
        skipped = len(agent_results) - len(results)
        if skipped:
            logger.warning(
                f"Synthesizing without {skipped} failed specialist(s)",
                extra={"extra_fields": {**session.log_fields(), "role": self.role.name}},
            )
        if not results:
            raise SynthesisFailed("No specialist results to synthesize")

        try:
            return await super().run(query, results, session)
        except AgentTaskFailed as e:
            raise SynthesisFailed(str(e)) from e
