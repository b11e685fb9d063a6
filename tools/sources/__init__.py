"""Context retrieval sources for research runs."""

from openai import AsyncOpenAI

from config.config import Config
from orchestrator.broadcast import BroadcastChannel
from utils.logger import get_logger

from .arxiv import ArxivSource
from .base import BaseContextSource
from .cache import InMemoryTTLCache
from .gatherer import ContextGatherer, StaticContextGatherer
from .github import GithubSource
from .ranking import EmbeddingRanker, KeywordRanker, Ranker
from .websearch import WebSearchSource

logger = get_logger(__name__)

# Singleton cache instance (process-shared)
_cache_instance: InMemoryTTLCache | None = None


def build_default_gatherer(config: Config, channel: BroadcastChannel | None = None) -> ContextGatherer:
    """
    Create the arXiv + GitHub + web search gatherer from configuration.

    GitHub and web search are skipped at query time when their credentials are
    missing. Ranking uses OpenAI embeddings when an OpenAI-compatible key is
    configured, keyword overlap otherwise.
    """
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = InMemoryTTLCache(ttl_seconds=config.SOURCE_CACHE_TTL_SECONDS)

    sources = [
        ArxivSource(cache=_cache_instance),
        GithubSource(token=config.GITHUB_TOKEN, cache=_cache_instance),
        WebSearchSource(api_key=config.TAVILY_API_KEY, cache=_cache_instance),
    ]

    ranker: Ranker
    api_key = config.openai_api_key()
    if api_key:
        ranker = EmbeddingRanker(
            AsyncOpenAI(api_key=api_key, base_url=config.LITELLM_BASE_URL or None),
            model=config.EMBEDDING_MODEL,
        )
    else:
        logger.info("No OpenAI key configured, ranking context by keyword overlap")
        ranker = KeywordRanker()

    return ContextGatherer(sources, ranker=ranker, channel=channel, top_k=config.TOP_K_CONTEXTS)


__all__ = [
    "ArxivSource",
    "BaseContextSource",
    "ContextGatherer",
    "EmbeddingRanker",
    "GithubSource",
    "InMemoryTTLCache",
    "KeywordRanker",
    "Ranker",
    "StaticContextGatherer",
    "WebSearchSource",
    "build_default_gatherer",
]
