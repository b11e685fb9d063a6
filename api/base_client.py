from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


class BaseStreamProvider(ABC):
    """
    Abstract base class for streaming text-generation providers.

    Every provider turns a prompt into a lazy, finite, non-restartable sequence
    of text fragments. Providers raise ``ProviderUnavailable`` for transient
    upstream failures and ``ProviderError`` for terminal ones; SDK exceptions
    never escape an adapter.
    """

    provider_name: str = "base"

    @abstractmethod
    def stream(self, model_id: str, prompt: str, **kwargs) -> AsyncIterator[str]:
        """
        Stream a completion fragment by fragment.

        Args:
            model_id: Model identity bound to the calling role
            prompt: Fully rendered prompt text
            **kwargs: Provider-specific generation parameters (temperature, max_tokens)

        Returns:
            An async iterator of text fragments in arrival order
        """

    async def check_available(self, model_id: str) -> None:
        """
        Cheap pre-flight check run before generation.

        The default implementation accepts every model. Adapters override this
        when the upstream offers a real health signal.
        """
        return None

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
        return None
