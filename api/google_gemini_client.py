from collections.abc import AsyncIterator

from google import genai
from google.genai import errors as genai_errors

from orchestrator.errors import ProviderError, ProviderUnavailable
from utils.logger import get_logger

from .base_client import BaseStreamProvider

logger = get_logger(__name__)


class GeminiStreamProvider(BaseStreamProvider):
    """
    Streaming client for the Google Gemini API using the google.genai package.
    """

    provider_name = "gemini"

    def __init__(
        self,
        api_key: str,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
        client: genai.Client | None = None,
    ):
        """
        Initialize the Gemini streaming provider.

        Args:
            api_key: The Google Gemini API key
            temperature: Default sampling temperature
            max_output_tokens: Default output token cap
            client: Pre-built genai.Client (tests inject a mock here)
        """
        if not api_key and client is None:
            raise ValueError("API key is required for Gemini")

        self.client = client or genai.Client(api_key=api_key)
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def stream(self, model_id: str, prompt: str, **kwargs) -> AsyncIterator[str]:
        try:
            response = await self.client.aio.models.generate_content_stream(
                model=model_id,
                contents=prompt,
                config={
                    "temperature": kwargs.get("temperature", self.temperature),
                    "max_output_tokens": kwargs.get("max_output_tokens", self.max_output_tokens),
                },
            )
            async for chunk in response:
                text = getattr(chunk, "text", None)
                if text:
                    yield text
        except genai_errors.ServerError as e:
            logger.warning(
                f"Gemini stream unavailable for {model_id}: {e}",
                extra={"extra_fields": {"model": model_id, "error_type": type(e).__name__}},
            )
            raise ProviderUnavailable(str(e), provider=self.provider_name) from e
        except genai_errors.ClientError as e:
            # 429 is quota exhaustion: transient from the caller's point of view
            if getattr(e, "code", None) == 429:
                raise ProviderUnavailable(str(e), provider=self.provider_name) from e
            logger.error(
                f"Gemini stream failed for {model_id}: {e}",
                extra={"extra_fields": {"model": model_id, "error_type": type(e).__name__}},
            )
            raise ProviderError(str(e), provider=self.provider_name) from e
