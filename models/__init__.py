"""
Models package for sessions, agent outcomes and stream events.
"""

from .agent_result import AgentOutcome, AgentResult, NormalizedError, TaskFailure
from .run_result import PipelineRunResult
from .session import ContextItem, ContextSource, Session
from .stream_events import (
    AgentChunkEvent,
    AgentResultEvent,
    AgentUpdateEvent,
    AiChunkEvent,
    MetadataEvent,
    ProgressEvent,
    ResultEvent,
    StreamEvent,
)

__all__ = [
    "AgentChunkEvent",
    "AgentOutcome",
    "AgentResult",
    "AgentResultEvent",
    "AgentUpdateEvent",
    "AiChunkEvent",
    "ContextItem",
    "ContextSource",
    "MetadataEvent",
    "NormalizedError",
    "PipelineRunResult",
    "ProgressEvent",
    "ResultEvent",
    "Session",
    "StreamEvent",
    "TaskFailure",
]
