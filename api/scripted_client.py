"""
Deterministic in-process provider.

Used by the CLI's ``--offline`` mode and throughout the test suite. Replies
are scripted per model id; failures can be queued per model to exercise the
retry and failure-isolation paths without touching the network.
"""

import asyncio
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Callable

from orchestrator.errors import ProviderError, ProviderUnavailable

from .base_client import BaseStreamProvider

Responder = Callable[[str, str], list[str]]


def echo_responder(model_id: str, prompt: str) -> list[str]:
    """Default reply: a short acknowledgement split into word fragments."""
    first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
    text = f"[{model_id}] {first_line[:80]}"
    words = text.split(" ")
    return [w if i == 0 else f" {w}" for i, w in enumerate(words)]


class ScriptedStreamProvider(BaseStreamProvider):
    provider_name = "scripted"

    def __init__(
        self,
        replies: dict[str, list[str]] | None = None,
        responder: Responder | None = None,
        delay_s: float = 0.0,
        provider_name: str = "scripted",
    ):
        self.replies = dict(replies or {})
        self.responder = responder or echo_responder
        self.delay_s = delay_s
        self.provider_name = provider_name
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, deque[tuple[BaseException, int]]] = defaultdict(deque)
        self._delays: dict[str, float] = {}

    def fail_next(self, model_id: str, error: BaseException | None = None, after_fragments: int = 0):
        """
        Queue a failure for the next stream call on ``model_id``.

        ``after_fragments`` > 0 raises mid-stream once that many fragments have
        been yielded.
        """
        error = error or ProviderUnavailable(f"{model_id} temporarily unavailable", self.provider_name)
        self._failures[model_id].append((error, after_fragments))

    def fail_always(self, model_id: str, terminal: bool = False, times: int = 10):
        for _ in range(times):
            error = (
                ProviderError(f"{model_id} rejected the request", self.provider_name)
                if terminal
                else ProviderUnavailable(f"{model_id} temporarily unavailable", self.provider_name)
            )
            self.fail_next(model_id, error)

    def set_delay(self, model_id: str, delay_s: float):
        """Per-model delay between fragments, for completion-order tests."""
        self._delays[model_id] = delay_s

    def fragments_for(self, model_id: str, prompt: str) -> list[str]:
        if model_id in self.replies:
            return list(self.replies[model_id])
        return self.responder(model_id, prompt)

    async def stream(self, model_id: str, prompt: str, **kwargs) -> AsyncIterator[str]:
        self.calls.append((model_id, prompt))
        failure = self._failures[model_id].popleft() if self._failures[model_id] else None
        if failure and failure[1] == 0:
            raise failure[0]

        delay = self._delays.get(model_id, self.delay_s)
        for idx, fragment in enumerate(self.fragments_for(model_id, prompt)):
            if failure and idx == failure[1]:
                raise failure[0]
            await asyncio.sleep(delay)
            yield fragment
