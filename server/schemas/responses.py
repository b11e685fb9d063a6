"""Pydantic response models (DTOs) for FastAPI endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponseDTO(BaseModel):
    status: str
    timestamp: str
    version: str = "1.0.0"


class ResearchAcceptedDTO(BaseModel):
    session_id: str
    status: str = "accepted"


class SessionEventsDTO(BaseModel):
    session_id: str
    events: list[dict[str, Any]] = Field(default_factory=list)
    subscriber_count: int = 0
