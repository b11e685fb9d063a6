"""
End-to-end pipeline behaviour against scripted providers.

Covers the run-level guarantees: exactly one result event per successful run,
early exit on empty retrieval, graceful degradation when a specialist fails,
and fatal synthesis failures.
"""

import asyncio

import pytest

from api.router import ProviderRouter
from config.config import PipelineSettings
from conftest import SPECIALISTS, FakeGatherer, chunk_events, lifecycle_updates
from models.session import ContextItem, ContextSource, Session
from orchestrator.broadcast import PRIMARY_CHUNK_TOPIC, BroadcastChannel
from orchestrator.errors import ProviderError, SynthesisFailed
from orchestrator.failure_injection import ScriptedFailureInjector
from orchestrator.pipeline import NO_CONTEXT_MESSAGE, PipelineState

pytestmark = pytest.mark.integration


def _events(channel, session, event_type):
    return [e for e in channel.events(session.session_id, "lifecycle") if e.event_type == event_type]


def test_successful_run_publishes_exactly_one_result(make_pipeline, provider, channel, session, contexts):
    pipeline = make_pipeline(contexts)
    result = asyncio.run(pipeline.run("What is RAG?", session))

    assert result.status == "completed"
    assert result.answer == "Final synthesized answer"
    assert result.model == "model-synthesizer"
    assert result.contexts_used == 3
    assert result.success_count == 4
    assert set(result.agent_durations) == set(SPECIALISTS)
    assert result.synthesis.role == "synthesizer"

    results = _events(channel, session, "result")
    assert len(results) == 1
    assert results[0].answer == "Final synthesized answer"
    assert results[0].model == "model-synthesizer"
    assert results[0].contexts_used == 3

    lifecycle = channel.events(session.session_id, "lifecycle")
    assert lifecycle[0].event_type == "progress" and lifecycle[0].status == "starting"
    assert lifecycle[0].metadata["agents"] == list(SPECIALISTS)
    assert lifecycle[-2].event_type == "progress" and lifecycle[-2].status == "completed"
    assert lifecycle[-1].event_type == "result"
    assert pipeline.states[session.session_id] is PipelineState.COMPLETED


def test_every_role_ends_its_chunk_stream_once_before_its_result(make_pipeline, channel, session, contexts):
    asyncio.run(make_pipeline(contexts).run("q", session))

    history = channel.history(session.session_id)
    for role in (*SPECIALISTS, "synthesizer"):
        chunks = chunk_events(channel, session.session_id, role)
        assert sum(c.is_complete for c in chunks) == 1
        assert chunks[-1].is_complete and chunks[-1].chunk == ""

        sentinel_seq = next(
            m.seq for m in history if m.topic == f"agent-chunk:{role}" and m.event.is_complete
        )
        result_seq = next(
            m.seq for m in history if m.event.event_type == "agent-result" and m.event.role == role
        )
        assert sentinel_seq < result_seq

    primary = channel.events(session.session_id, PRIMARY_CHUNK_TOPIC)
    assert "".join(c.chunk for c in primary) == "Final synthesized answer"
    assert primary[-1].is_complete


def test_fan_out_and_fan_in_metadata(make_pipeline, channel, session, contexts):
    asyncio.run(make_pipeline(contexts).run("q", session))

    fan_out, fan_in = _events(channel, session, "metadata")
    assert fan_out.details["agents"] == list(SPECIALISTS)
    assert fan_in.details["completed"] == 4


def test_empty_context_exits_early(make_pipeline, provider, channel, session):
    pipeline = make_pipeline([])
    result = asyncio.run(pipeline.run("obscure query", session))

    assert result.status == "no_context"
    assert result.answer == NO_CONTEXT_MESSAGE
    assert result.model == "none"
    assert result.contexts_used == 0
    assert provider.calls == []

    results = _events(channel, session, "result")
    assert len(results) == 1
    assert results[0].model == "none"
    assert results[0].contexts_used == 0
    assert results[0].tokens_used == 0

    assert not any(u.status == "starting" for u in _events(channel, session, "agent-update"))
    assert not channel.events(session.session_id, PRIMARY_CHUNK_TOPIC)
    assert pipeline.states[session.session_id] is PipelineState.EMPTY_RESULT


def test_missing_context_slot_is_rendered_as_placeholder(make_pipeline, provider, channel, session, contexts):
    slots = [contexts[0], None, contexts[2]]
    result = asyncio.run(make_pipeline(slots).run("q", session))

    assert result.status == "completed"
    assert result.contexts_used == 3
    specialist_prompts = [prompt for model, prompt in provider.calls if model != "model-synthesizer"]
    assert len(specialist_prompts) == 4
    for prompt in specialist_prompts:
        assert "[2] No context available" in prompt
        assert "[3] websearch: Blog post explaining RAG" in prompt


def test_one_specialist_failing_degrades_gracefully(make_pipeline, provider, channel, session, contexts):
    injector = ScriptedFailureInjector({"fact_checker": 99})
    result = asyncio.run(make_pipeline(contexts, failure_injector=injector).run("q", session))

    assert result.status == "completed"
    assert len(result.agent_outcomes) == 4
    assert result.success_count == 3
    assert result.error_count == 1
    assert result.agent_outcomes[2].role == "fact_checker"
    assert not result.agent_outcomes[2].is_success

    updates = lifecycle_updates(channel, session.session_id, "fact_checker")
    assert updates[-1].status == "failed"
    assert not any(u.status == "completed" for u in updates)

    (_, synthesis_prompt), = [call for call in provider.calls if call[0] == "model-synthesizer"]
    assert synthesis_prompt.count("--- ") == 3
    assert "FactChecker" not in synthesis_prompt

    assert len(_events(channel, session, "result")) == 1
    fan_in = _events(channel, session, "metadata")[1]
    assert fan_in.details["completed"] == 3
    assert fan_in.details["failed_roles"] == ["fact_checker"]


def test_synthesis_failure_is_fatal(make_pipeline, provider, channel, session, contexts):
    provider.fail_next("model-synthesizer", ProviderError("rejected", "scripted"))
    pipeline = make_pipeline(contexts)

    with pytest.raises(SynthesisFailed):
        asyncio.run(pipeline.run("q", session))

    assert _events(channel, session, "result") == []
    last = channel.events(session.session_id, "lifecycle")[-1]
    assert last.event_type == "progress"
    assert last.status == "failed"
    assert pipeline.states[session.session_id] is PipelineState.FAILED


def test_all_specialists_failing_never_invokes_synthesizer(make_pipeline, provider, channel, session, contexts):
    injector = ScriptedFailureInjector({role: 99 for role in SPECIALISTS})

    with pytest.raises(SynthesisFailed):
        asyncio.run(make_pipeline(contexts, failure_injector=injector).run("q", session))

    assert provider.calls == []
    assert _events(channel, session, "result") == []


def test_contexts_are_cut_to_top_k(make_pipeline, provider, session):
    many = [
        ContextItem(source=ContextSource.ARXIV, text=f"paper {i}", title=f"p{i}") for i in range(8)
    ]
    pipeline = make_pipeline(many, settings=PipelineSettings(top_k_contexts=5, retry_backoff_s=0))
    result = asyncio.run(pipeline.run("q", session))

    assert result.contexts_used == 5
    prompt = provider.calls[0][1]
    assert "[5] arxiv: paper 4" in prompt
    assert "[6]" not in prompt


def test_gatherer_receives_query_and_user(make_pipeline, session, contexts):
    gatherer = FakeGatherer(contexts)
    asyncio.run(make_pipeline(contexts, gatherer=gatherer).run("What is RAG?", session))
    assert gatherer.calls == [("What is RAG?", "user-1", "session-1")]


def test_concurrent_runs_respect_concurrency_limit(make_pipeline, channel, contexts):
    pipeline = make_pipeline(
        contexts, settings=PipelineSettings(pipeline_concurrency_limit=1, retry_backoff_s=0)
    )
    sessions = [Session(session_id=f"s{i}", user_id=f"u{i}") for i in range(3)]

    async def _run():
        return await asyncio.gather(*(pipeline.run("q", s) for s in sessions))

    results = asyncio.run(_run())

    assert [r.session_id for r in results] == ["s0", "s1", "s2"]
    assert pipeline.gate.peak == 1
    for s in sessions:
        assert len(_events(channel, s, "result")) == 1


def test_run_result_serializes_agent_runs_without_responses(make_pipeline, session, contexts):
    injector = ScriptedFailureInjector({"classifier": 99})
    result = asyncio.run(make_pipeline(contexts, failure_injector=injector).run("q", session))

    payload = result.to_dict()
    assert payload["status"] == "completed"
    assert payload["response"]["answer"] == "Final synthesized answer"
    assert [a["status"] for a in payload["agent_results"]] == ["completed", "completed", "completed", "failed"]
    assert all("response" not in a for a in payload["agent_results"])
    assert payload["agent_results"][3]["error"]["code"] == "retries_exhausted"
    assert payload["synthesis"]["model_id"] == "model-synthesizer"
    assert len(payload["top_contexts"]) == 3


def test_state_map_keeps_only_recent_sessions(make_pipeline, contexts):
    pipeline = make_pipeline(
        contexts, settings=PipelineSettings(max_tracked_sessions=2, retry_backoff_s=0)
    )
    for i in range(5):
        asyncio.run(pipeline.run("q", Session(session_id=f"s{i}", user_id="u")))

    assert list(pipeline.states) == ["s3", "s4"]
    assert pipeline.states["s4"] is PipelineState.COMPLETED


def test_finished_runs_release_channel_history(make_pipeline, clock, contexts):
    channel = BroadcastChannel(retention_s=60, clock=clock)
    pipeline = make_pipeline(contexts, channel=channel)

    for i in range(3):
        asyncio.run(pipeline.run("q", Session(session_id=f"s{i}", user_id="u")))
    assert channel.session_count() == 3

    clock.now += 60
    assert channel.evict_expired() == 3
    assert channel.session_count() == 0


class _NoSynthesizerRouter(ProviderRouter):
    """Serves specialists from a scripted provider; building the synthesizer's adapter fails."""

    def for_role(self, role):
        if role.name == "synthesizer":
            raise ValueError("OPENAI_API_KEY not found in environment variables")
        return super().for_role(role)


def test_synthesizer_setup_failure_is_a_synthesis_failure(make_pipeline, provider, channel, session, contexts):
    router = _NoSynthesizerRouter({"scripted": provider}, fallback=provider)
    pipeline = make_pipeline(contexts, provider_router=router)

    with pytest.raises(SynthesisFailed, match="OPENAI_API_KEY"):
        asyncio.run(pipeline.run("q", session))

    assert len(provider.calls) == 4
    assert _events(channel, session, "result") == []
    last = channel.events(session.session_id, "lifecycle")[-1]
    assert (last.event_type, last.status) == ("progress", "failed")
