import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv


class ProviderType(Enum):
    """Supported text-generation providers."""
    OPENAI = "openai"
    GEMINI = "gemini"


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables for one ResearchPipeline instance."""
    top_k_contexts: int = 5
    max_retries: int = 2
    retry_backoff_s: float = 1.0
    agent_throttle_limit: int = 10
    agent_throttle_period_s: float = 60.0
    pipeline_concurrency_limit: int = 50
    pipeline_rate_limit: int = 100
    pipeline_rate_period_s: float = 60.0
    max_tracked_sessions: int = 1000


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


class Config:
    """Configuration management for the application."""

    def __init__(self):
        """Initialize configuration with environment variables."""
        # Load environment variables from .env file if it exists
        env_path = Path(__file__).parent.parent / '.env'
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        # Provider credentials
        self.OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
        self.LITELLM_BASE_URL = os.getenv('LITELLM_BASE_URL')
        self.LITELLM_API_KEY = os.getenv('LITELLM_API_KEY')
        self.GOOGLE_GEMINI_API_KEY = os.getenv('GOOGLE_GEMINI_API_KEY')

        # Context sources
        self.GITHUB_TOKEN = os.getenv('GITHUB_TOKEN')
        self.TAVILY_API_KEY = os.getenv('TAVILY_API_KEY')
        self.EMBEDDING_MODEL = os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small')
        self.SOURCE_CACHE_TTL_SECONDS = _env_int('SOURCE_CACHE_TTL_SECONDS', 3600)

        # Roles
        self.AGENT_ROLES_PATH = os.getenv('AGENT_ROLES_PATH')

        # Broadcast
        self.SUBSCRIBER_QUEUE_SIZE = _env_int('SUBSCRIBER_QUEUE_SIZE', 1000)
        self.SESSION_RETENTION_S = _env_float('SESSION_RETENTION_S', 900.0)

        # Pipeline limits
        self.TOP_K_CONTEXTS = _env_int('TOP_K_CONTEXTS', 5)
        self.AGENT_MAX_RETRIES = _env_int('AGENT_MAX_RETRIES', 2)
        self.RETRY_BACKOFF_S = _env_float('RETRY_BACKOFF_S', 1.0)
        self.AGENT_THROTTLE_LIMIT = _env_int('AGENT_THROTTLE_LIMIT', 10)
        self.AGENT_THROTTLE_PERIOD_S = _env_float('AGENT_THROTTLE_PERIOD_S', 60.0)
        self.PIPELINE_CONCURRENCY_LIMIT = _env_int('PIPELINE_CONCURRENCY_LIMIT', 50)
        self.PIPELINE_RATE_LIMIT = _env_int('PIPELINE_RATE_LIMIT', 100)
        self.PIPELINE_RATE_PERIOD_S = _env_float('PIPELINE_RATE_PERIOD_S', 60.0)
        self.MAX_TRACKED_SESSIONS = _env_int('MAX_TRACKED_SESSIONS', 1000)

    def openai_api_key(self) -> str | None:
        """The key used for OpenAI-compatible calls; a LiteLLM proxy key wins when a proxy is set."""
        if self.LITELLM_BASE_URL:
            return self.LITELLM_API_KEY or self.OPENAI_API_KEY or "sk-not-needed"
        return self.OPENAI_API_KEY

    def validate(self, providers: set[str] | None = None) -> list[str]:
        """
        Check that every provider referenced by the role registry has credentials.

        Args:
            providers: Provider names in use (defaults to OpenAI only)

        Returns:
            list[str]: Human-readable problems; empty when configuration is valid
        """
        problems = []
        for provider in sorted(providers or {ProviderType.OPENAI.value}):
            if provider == ProviderType.OPENAI.value:
                if not self.openai_api_key():
                    problems.append("OPENAI_API_KEY is not set (or set LITELLM_BASE_URL for a proxy)")
            elif provider == ProviderType.GEMINI.value:
                if not self.GOOGLE_GEMINI_API_KEY:
                    problems.append("GOOGLE_GEMINI_API_KEY is not set")
            else:
                problems.append(
                    f"Unknown provider '{provider}'. Must be one of: "
                    f"{', '.join(e.value for e in ProviderType)}"
                )
        if self.TOP_K_CONTEXTS <= 0:
            problems.append("TOP_K_CONTEXTS must be positive")
        if self.AGENT_MAX_RETRIES < 0:
            problems.append("AGENT_MAX_RETRIES cannot be negative")
        return problems

    def pipeline_settings(self) -> PipelineSettings:
        return PipelineSettings(
            top_k_contexts=self.TOP_K_CONTEXTS,
            max_retries=self.AGENT_MAX_RETRIES,
            retry_backoff_s=self.RETRY_BACKOFF_S,
            agent_throttle_limit=self.AGENT_THROTTLE_LIMIT,
            agent_throttle_period_s=self.AGENT_THROTTLE_PERIOD_S,
            pipeline_concurrency_limit=self.PIPELINE_CONCURRENCY_LIMIT,
            pipeline_rate_limit=self.PIPELINE_RATE_LIMIT,
            pipeline_rate_period_s=self.PIPELINE_RATE_PERIOD_S,
            max_tracked_sessions=self.MAX_TRACKED_SESSIONS,
        )
