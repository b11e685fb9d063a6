"""Selects the streaming provider adapter bound to each agent role."""

from config.config import Config, ProviderType
from orchestrator.role_registry import AgentRole
from utils.logger import get_logger

from .base_client import BaseStreamProvider

logger = get_logger(__name__)


class ProviderRouter:
    def __init__(
        self,
        providers: dict[str, BaseStreamProvider] | None = None,
        config: Config | None = None,
        fallback: BaseStreamProvider | None = None,
    ):
        self._providers: dict[str, BaseStreamProvider] = dict(providers or {})
        self._config = config
        self._fallback = fallback

    @classmethod
    def single(cls, provider: BaseStreamProvider) -> "ProviderRouter":
        """Route every role to one provider regardless of its configured provider name."""
        return cls({provider.provider_name: provider}, fallback=provider)

    def for_role(self, role: AgentRole) -> BaseStreamProvider:
        provider_name = (role.provider or "").lower().strip()
        if provider_name in self._providers:
            return self._providers[provider_name]
        if self._fallback is not None:
            return self._fallback

        provider = self._build(provider_name)
        self._providers[provider_name] = provider
        logger.info(
            "Initialized provider",
            extra={"extra_fields": {"provider": provider_name, "role": role.name}},
        )
        return provider

    def _build(self, provider_name: str) -> BaseStreamProvider:
        config = self._config or Config()

        if provider_name == ProviderType.OPENAI.value:
            from api.openai_client import OpenAIStreamProvider

            api_key = config.openai_api_key()
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            return OpenAIStreamProvider(api_key=api_key, base_url=config.LITELLM_BASE_URL)

        if provider_name == ProviderType.GEMINI.value:
            from api.google_gemini_client import GeminiStreamProvider

            api_key = config.GOOGLE_GEMINI_API_KEY
            if not api_key:
                raise ValueError("GOOGLE_GEMINI_API_KEY not found in environment variables")
            return GeminiStreamProvider(api_key=api_key)

        raise ValueError(f"Unsupported provider: {provider_name}")

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
