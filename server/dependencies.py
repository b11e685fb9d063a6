"""FastAPI dependencies for authentication and pipeline access."""

import os

from fastapi import Header, HTTPException, Request, status

from orchestrator.broadcast import BroadcastChannel
from server.utils import redact_sensitive_headers
from utils.logger import get_logger

logger = get_logger(__name__)


async def get_api_key(request: Request, x_api_key: str | None = Header(None)):
    """Validate API key from X-API-Key header."""
    valid_keys_str = os.getenv("API_KEYS", "")
    request_id = request.headers.get("x-request-id", "unknown")
    redacted_headers = redact_sensitive_headers(dict(request.headers))

    if not valid_keys_str:
        logger.error(
            "API authentication not configured",
            extra={"extra_fields": {"request_id": request_id, "headers": redacted_headers}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API authentication not configured",
        )

    valid_keys = [k.strip() for k in valid_keys_str.split(",") if k.strip()]

    if not x_api_key or x_api_key not in valid_keys:
        logger.warning(
            "API authentication failed",
            extra={"extra_fields": {"request_id": request_id, "headers": redacted_headers}},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key"
        )

    return x_api_key


def get_channel() -> BroadcastChannel:
    """Dependency to get the process-wide broadcast channel (singleton pattern)."""
    if not hasattr(get_channel, "_instance"):
        from config.config import Config

        config = Config()
        get_channel._instance = BroadcastChannel(
            subscriber_queue_size=config.SUBSCRIBER_QUEUE_SIZE,
            retention_s=config.SESSION_RETENTION_S,
        )
    return get_channel._instance


def get_pipeline():
    """Dependency to get the research pipeline instance (singleton pattern)."""
    from orchestrator.pipeline import ResearchPipeline

    if not hasattr(get_pipeline, "_instance"):
        get_pipeline._instance = ResearchPipeline.from_config(channel=get_channel())
    return get_pipeline._instance
