"""
ContextGatherer - retrieval stage of a research run.

Queries every configured source concurrently, ranks the pooled items and keeps
the top K. A source that failed outright leaves a ``None`` slot after the
ranked items (rendered as "No context available" downstream); when nothing at
all was retrieved the result is empty and the run exits early.
"""

import asyncio
from collections.abc import Sequence

from models.session import ContextItem, Session
from models.stream_events import ProgressEvent
from orchestrator.broadcast import LIFECYCLE_TOPIC, BroadcastChannel
from tools.sources.base import BaseContextSource
from tools.sources.ranking import KeywordRanker, Ranker
from utils.logger import get_logger

logger = get_logger(__name__)

GATHER_STEP = "gather-context"


class ContextGatherer:
    def __init__(
        self,
        sources: Sequence[BaseContextSource],
        ranker: Ranker | None = None,
        channel: BroadcastChannel | None = None,
        top_k: int = 5,
    ):
        self.sources = list(sources)
        self.ranker = ranker or KeywordRanker()
        self.channel = channel
        self.top_k = top_k

    async def _progress(self, session: Session, status: str, message: str, **metadata) -> None:
        if self.channel is None:
            return
        try:
            await self.channel.publish(
                session.session_id,
                LIFECYCLE_TOPIC,
                ProgressEvent(step=GATHER_STEP, status=status, message=message, metadata=metadata or None),
            )
        except Exception as e:
            logger.warning(
                f"Dropped gather progress event: {e}",
                extra={"extra_fields": {**session.log_fields(), "error_type": type(e).__name__}},
            )

    async def gather_context(
        self, query: str, user_id: str, session: Session
    ) -> list[ContextItem | None]:
        """
        Retrieve, rank and cut context for ``query``.

        Returns:
            Up to ``top_k`` slots ordered by descending relevance (stable on
            ties); ``[]`` when no source produced anything.
        """
        log_fields = {**session.log_fields(), "user_id": user_id}
        await self._progress(
            session,
            "starting",
            f"Searching {len(self.sources)} sources",
            sources=[s.name for s in self.sources],
        )

        per_source = await asyncio.gather(*(s.try_search(query) for s in self.sources))

        pooled: list[ContextItem] = []
        counts: dict[str, int] = {}
        failed: list[str] = []
        for source, items in zip(self.sources, per_source):
            if items is None:
                failed.append(source.name)
                continue
            counts[source.name] = len(items)
            pooled.extend(items)

        if not pooled:
            logger.info(
                "No context retrieved",
                extra={"extra_fields": {**log_fields, "failed_sources": failed}},
            )
            await self._progress(session, "completed", "No context found", counts=counts, failed=failed)
            return []

        ranked = await self.ranker.rank(query, pooled)
        slots: list[ContextItem | None] = [*ranked, *([None] * len(failed))]
        top = slots[: self.top_k]

        logger.info(
            f"Gathered {len(pooled)} items, keeping {len(top)}",
            extra={
                "extra_fields": {
                    **log_fields,
                    "counts": counts,
                    "failed_sources": failed,
                    "ranker": type(self.ranker).__name__,
                }
            },
        )
        await self._progress(
            session,
            "completed",
            f"Selected {len(top)} of {len(pooled)} contexts",
            counts=counts,
            failed=failed,
        )
        return top


class StaticContextGatherer:
    """Ranks a fixed set of context slots; used for offline runs and tests."""

    def __init__(
        self,
        items: Sequence[ContextItem | None],
        ranker: Ranker | None = None,
        top_k: int = 5,
    ):
        self.items = list(items)
        self.ranker = ranker or KeywordRanker()
        self.top_k = top_k
        self.calls: list[tuple[str, str]] = []

    async def gather_context(
        self, query: str, user_id: str, session: Session
    ) -> list[ContextItem | None]:
        self.calls.append((query, user_id))
        present = [i for i in self.items if i is not None]
        if not present:
            return []
        ranked = await self.ranker.rank(query, present)
        missing = len(self.items) - len(present)
        return [*ranked, *([None] * missing)][: self.top_k]
