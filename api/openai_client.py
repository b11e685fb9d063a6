from collections.abc import AsyncIterator

import openai

from orchestrator.errors import ProviderError, ProviderUnavailable
from utils.logger import get_logger

from .base_client import BaseStreamProvider

logger = get_logger(__name__)

# Errors worth retrying: network trouble, throttling and 5xx responses
TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIStreamProvider(BaseStreamProvider):
    """
    Streaming client for OpenAI and OpenAI-compatible endpoints.

    Pointing ``base_url`` at a LiteLLM proxy lets one adapter serve every model
    the proxy fronts, which is how the role registry binds non-OpenAI models.
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        client: openai.AsyncOpenAI | None = None,
    ):
        """
        Initialize the OpenAI streaming provider.

        Args:
            api_key: The OpenAI (or proxy) API key
            base_url: Optional OpenAI-compatible base URL, e.g. a LiteLLM proxy
            temperature: Default sampling temperature
            max_tokens: Default completion token cap
            client: Pre-built AsyncOpenAI client (tests inject a mock here)
        """
        self.client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def stream(self, model_id: str, prompt: str, **kwargs) -> AsyncIterator[str]:
        try:
            response = await self.client.chat.completions.create(
                model=model_id,
                messages=[{"role": "user", "content": prompt}],
                temperature=kwargs.get("temperature", self.temperature),
                max_tokens=kwargs.get("max_tokens", self.max_tokens),
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except TRANSIENT_ERRORS as e:
            logger.warning(
                f"OpenAI stream unavailable for {model_id}: {e}",
                extra={"extra_fields": {"model": model_id, "error_type": type(e).__name__}},
            )
            raise ProviderUnavailable(str(e), provider=self.provider_name) from e
        except openai.APIError as e:
            logger.error(
                f"OpenAI stream failed for {model_id}: {e}",
                extra={"extra_fields": {"model": model_id, "error_type": type(e).__name__}},
            )
            raise ProviderError(str(e), provider=self.provider_name) from e

    async def aclose(self) -> None:
        await self.client.close()
