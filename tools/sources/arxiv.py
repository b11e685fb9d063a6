"""arXiv paper search via the public Atom API."""

import xml.etree.ElementTree as ET

import httpx

from models.session import ContextItem, ContextSource
from tools.sources.base import MAX_SNIPPET_CHARS, BaseContextSource
from utils.text import collapse_whitespace, truncate_text

ARXIV_QUERY_URL = "http://export.arxiv.org/api/query"
ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}


def parse_arxiv_feed(xml_text: str) -> list[ContextItem]:
    """Turn an arXiv Atom feed into context items; entries without a summary are skipped."""
    root = ET.fromstring(xml_text)
    items = []
    for entry in root.findall("atom:entry", ATOM_NS):
        summary = collapse_whitespace(entry.findtext("atom:summary", default="", namespaces=ATOM_NS))
        if not summary:
            continue
        title = collapse_whitespace(entry.findtext("atom:title", default="", namespaces=ATOM_NS))
        items.append(
            ContextItem(
                source=ContextSource.ARXIV,
                title=title or "Untitled",
                text=truncate_text(summary, MAX_SNIPPET_CHARS),
                url=(entry.findtext("atom:id", default="", namespaces=ATOM_NS) or "").strip(),
            )
        )
    return items


class ArxivSource(BaseContextSource):
    source = ContextSource.ARXIV

    async def _fetch(self, client: httpx.AsyncClient, query: str) -> list[ContextItem]:
        response = await client.get(
            ARXIV_QUERY_URL,
            params={"search_query": f"all:{query}", "max_results": self.max_results},
        )
        response.raise_for_status()
        return parse_arxiv_feed(response.text)
