"""Web search through the Tavily HTTP API (requires TAVILY_API_KEY)."""

import httpx

from models.session import ContextItem, ContextSource
from tools.sources.base import MAX_SNIPPET_CHARS, BaseContextSource
from utils.text import truncate_text

TAVILY_SEARCH_URL = "https://api.tavily.com/search"


class WebSearchSource(BaseContextSource):
    source = ContextSource.WEBSEARCH

    def __init__(self, api_key: str | None = None, search_depth: str = "advanced", **kwargs):
        super().__init__(**kwargs)
        self.api_key = (api_key or "").strip()
        self.search_depth = search_depth

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _fetch(self, client: httpx.AsyncClient, query: str) -> list[ContextItem]:
        request_payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": self.search_depth,
            "include_answer": False,
            "max_results": max(1, min(int(self.max_results), 10)),
        }
        response = await client.post(TAVILY_SEARCH_URL, json=request_payload)
        response.raise_for_status()
        payload = response.json() if response.content else {}

        items = []
        for result in payload.get("results") or []:
            url = str(result.get("url") or "").strip()
            content = str(result.get("content") or "").strip()
            if not url or not content:
                continue
            items.append(
                ContextItem(
                    source=ContextSource.WEBSEARCH,
                    title=str(result.get("title") or "").strip() or url,
                    text=truncate_text(content, MAX_SNIPPET_CHARS),
                    url=url,
                )
            )
        return items
