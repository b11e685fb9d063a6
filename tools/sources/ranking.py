"""
Relevance ranking for retrieved context.

Every ranker returns the items with ``relevance`` set, sorted by descending
relevance. Items with equal relevance keep their retrieval order.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence

from openai import AsyncOpenAI

from models.session import ContextItem
from utils.logger import get_logger
from utils.text import tokenize

logger = get_logger(__name__)


def sort_by_relevance(items: Sequence[ContextItem]) -> list[ContextItem]:
    # sorted() is stable, including with reverse=True
    return sorted(items, key=lambda item: item.relevance or 0.0, reverse=True)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class Ranker(ABC):
    @abstractmethod
    async def rank(self, query: str, items: Sequence[ContextItem]) -> list[ContextItem]:
        pass


class KeywordRanker(Ranker):
    """Scores an item by the share of query terms that appear in its title or text."""

    def score(self, query_terms: set[str], item: ContextItem) -> float:
        if not query_terms:
            return 0.0
        item_terms = set(tokenize(f"{item.title} {item.text}"))
        return len(query_terms & item_terms) / len(query_terms)

    async def rank(self, query: str, items: Sequence[ContextItem]) -> list[ContextItem]:
        query_terms = set(tokenize(query))
        return sort_by_relevance([i.with_relevance(self.score(query_terms, i)) for i in items])


class EmbeddingRanker(Ranker):
    """
    Cosine similarity between the query embedding and each item's embedding.

    Falls back to ``fallback`` (keyword overlap by default) when the embedding
    call fails for any reason.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "text-embedding-3-small",
        fallback: Ranker | None = None,
    ):
        self.client = client
        self.model = model
        self.fallback = fallback or KeywordRanker()

    async def rank(self, query: str, items: Sequence[ContextItem]) -> list[ContextItem]:
        if not items:
            return []
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=[query] + [f"{i.title}\n{i.text}" for i in items],
            )
            vectors = [d.embedding for d in sorted(response.data, key=lambda d: d.index)]
            if len(vectors) != len(items) + 1:
                raise ValueError(f"expected {len(items) + 1} embeddings, got {len(vectors)}")
        except Exception as e:
            logger.warning(
                f"Embedding ranking failed, using {type(self.fallback).__name__}",
                extra={"extra_fields": {"model": self.model, "error": str(e), "error_type": type(e).__name__}},
            )
            return await self.fallback.rank(query, items)

        query_vector = vectors[0]
        return sort_by_relevance(
            [item.with_relevance(cosine_similarity(query_vector, v)) for item, v in zip(items, vectors[1:])]
        )
