"""GitHub repository search (requires GITHUB_TOKEN)."""

import httpx

from models.session import ContextItem, ContextSource
from tools.sources.base import MAX_SNIPPET_CHARS, BaseContextSource
from utils.text import truncate_text

GITHUB_SEARCH_URL = "https://api.github.com/search/repositories"


class GithubSource(BaseContextSource):
    source = ContextSource.GITHUB

    def __init__(self, token: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.token = (token or "").strip()

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def _fetch(self, client: httpx.AsyncClient, query: str) -> list[ContextItem]:
        response = await client.get(
            GITHUB_SEARCH_URL,
            params={"q": query, "per_page": self.max_results, "sort": "stars"},
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github.v3+json",
            },
        )
        response.raise_for_status()
        payload = response.json() if response.content else {}

        items = []
        for repo in payload.get("items") or []:
            name = str(repo.get("full_name") or repo.get("name") or "").strip()
            text = str(repo.get("description") or "").strip() or name
            if not text:
                continue
            items.append(
                ContextItem(
                    source=ContextSource.GITHUB,
                    title=name or "Untitled",
                    text=truncate_text(text, MAX_SNIPPET_CHARS),
                    url=str(repo.get("html_url") or ""),
                )
            )
        return items
