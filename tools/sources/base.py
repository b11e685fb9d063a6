"""Base class for context retrieval sources."""

from abc import ABC, abstractmethod

import httpx

from models.session import ContextItem, ContextSource
from tools.sources.cache import InMemoryTTLCache
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_RESULTS = 5
DEFAULT_TIMEOUT_S = 8.0
MAX_SNIPPET_CHARS = 1200


class BaseContextSource(ABC):
    """
    One external evidence source.

    Subclasses implement ``_fetch`` against an ``httpx.AsyncClient``. Callers use
    ``search`` (never raises, returns ``[]`` on any failure) or ``try_search``
    (returns None when the source failed, so a failed slot can be told apart
    from an empty answer).
    """

    source: ContextSource

    def __init__(
        self,
        *,
        max_results: int = DEFAULT_MAX_RESULTS,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
        cache: InMemoryTTLCache | None = None,
    ):
        self.max_results = max_results
        self.timeout_s = timeout_s
        self._client = client
        self._cache = cache

    @property
    def name(self) -> str:
        return self.source.value

    @property
    def enabled(self) -> bool:
        """False when a required credential is missing; the source is skipped."""
        return True

    @abstractmethod
    async def _fetch(self, client: httpx.AsyncClient, query: str) -> list[ContextItem]:
        pass

    async def try_search(self, query: str) -> list[ContextItem] | None:
        if not self.enabled:
            logger.info(f"{self.name} source not configured, skipping")
            return []

        cache_key = f"{self.name}:{query}"
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug(f"{self.name} cache hit", extra={"extra_fields": {"source": self.name}})
                return list(cached)

        try:
            if self._client is not None:
                items = await self._fetch(self._client, query)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    items = await self._fetch(client, query)
        except Exception as exc:
            logger.warning(
                f"{self.name} lookup failed",
                extra={
                    "extra_fields": {
                        "source": self.name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    }
                },
            )
            return None

        items = items[: self.max_results]
        if self._cache is not None:
            self._cache.set(cache_key, tuple(items))
        logger.info(
            f"{self.name} returned {len(items)} items",
            extra={"extra_fields": {"source": self.name, "count": len(items)}},
        )
        return items

    async def search(self, query: str) -> list[ContextItem]:
        return await self.try_search(query) or []
