import pytest
from dotenv import load_dotenv

from api.router import ProviderRouter
from api.scripted_client import ScriptedStreamProvider
from config.config import PipelineSettings
from models.session import ContextItem, ContextSource, Session
from orchestrator.broadcast import BroadcastChannel, agent_chunk_topic
from orchestrator.pipeline import ResearchPipeline
from orchestrator.role_registry import RoleRegistry

# Load environment variables from .env file for tests
load_dotenv()

SPECIALISTS = ("analyst", "summarizer", "fact_checker", "classifier")

# One distinct model per role so scripted replies and failures can target a role
MODEL_IDS = {
    "analyst": "model-analyst",
    "summarizer": "model-summarizer",
    "fact_checker": "model-fact-checker",
    "classifier": "model-classifier",
    "synthesizer": "model-synthesizer",
}

REPLIES = {
    "model-analyst": ["Deep", " analysis"],
    "model-summarizer": ["Short", " summary"],
    "model-fact-checker": ["Claims", " verified"],
    "model-classifier": ["Category:", " AI"],
    "model-synthesizer": ["Final", " synthesized", " answer"],
}


class FakeClock:
    """Manual clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class FakeGatherer:
    """Returns a fixed list of context slots exactly as given."""

    def __init__(self, contexts):
        self.contexts = list(contexts)
        self.calls: list[tuple[str, str, str]] = []

    async def gather_context(self, query, user_id, session):
        self.calls.append((query, user_id, session.session_id))
        return list(self.contexts)


def make_registry() -> RoleRegistry:
    registry = RoleRegistry.default()
    for role, model_id in MODEL_IDS.items():
        registry = registry.with_model(role, model_id)
    return registry


def chunk_events(channel: BroadcastChannel, session_id: str, role: str):
    return channel.events(session_id, agent_chunk_topic(role))


def lifecycle_updates(channel: BroadcastChannel, session_id: str, role: str):
    return [
        e
        for e in channel.events(session_id, "lifecycle")
        if e.event_type == "agent-update" and e.role == role
    ]


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def provider():
    return ScriptedStreamProvider(replies=REPLIES)


@pytest.fixture
def channel():
    return BroadcastChannel()


@pytest.fixture
def session():
    return Session(session_id="session-1", user_id="user-1")


@pytest.fixture
def contexts():
    return [
        ContextItem(source=ContextSource.ARXIV, text="Paper about retrieval", title="RAG paper"),
        ContextItem(source=ContextSource.GITHUB, text="Library implementing RAG", title="rag-lib"),
        ContextItem(source=ContextSource.WEBSEARCH, text="Blog post explaining RAG", title="RAG blog"),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_pipeline(registry, provider, channel, clock):
    """Build a pipeline around fakes; keyword arguments override the defaults."""

    def _make(contexts, **overrides):
        settings = overrides.pop("settings", PipelineSettings(retry_backoff_s=0.5))
        return ResearchPipeline(
            registry=overrides.pop("registry", registry),
            provider_router=overrides.pop("provider_router", None)
            or ProviderRouter.single(overrides.pop("provider", provider)),
            gatherer=overrides.pop("gatherer", None) or FakeGatherer(contexts),
            channel=overrides.pop("channel", channel),
            settings=settings,
            failure_injector=overrides.pop("failure_injector", None),
            clock=clock,
            sleep=clock.sleep,
        )

    return _make
