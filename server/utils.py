"""Shared utilities for FastAPI routes."""

import json
from collections.abc import Mapping

from models.stream_events import ProgressEvent, ResultEvent, StreamEvent

SENSITIVE_HEADERS = {"x-api-key", "authorization"}


def redact_sensitive_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Redact auth-bearing headers before logging.
    """
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS and value:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def to_ndjson(event: dict) -> str:
    """Serialize one stream event as NDJSON."""
    return json.dumps(event, ensure_ascii=False) + "\n"


def is_terminal_event(event: StreamEvent) -> bool:
    """True for the last event a research run publishes: its result, or its failure."""
    if isinstance(event, ResultEvent):
        return True
    return isinstance(event, ProgressEvent) and event.step == "orchestration" and event.status == "failed"
