"""
Failure injection hooks for the availability-check step.

Production pipelines run without an injector. Demos can enable
``RandomFailureInjector`` to watch retries happen; tests use
``ScriptedFailureInjector`` for exact, repeatable failure sequences.
"""

import random
from collections import defaultdict

from orchestrator.errors import GenerationUnavailable


class FailureInjector:
    """Hook called once per availability-check attempt; raises to simulate an outage."""

    def check(self, role: str, attempt: int) -> None:
        return None


class RandomFailureInjector(FailureInjector):
    def __init__(self, rate: float = 0.1, seed: int | None = None):
        if not 0.0 <= rate <= 1.0:
            raise ValueError("rate must be between 0 and 1")
        self.rate = rate
        self._rng = random.Random(seed)

    def check(self, role: str, attempt: int) -> None:
        if self._rng.random() < self.rate:
            raise GenerationUnavailable(f"{role}: upstream temporarily unavailable")


class ScriptedFailureInjector(FailureInjector):
    """
    Fails the first ``n`` availability checks for each configured role.

    ``failures={"fact_checker": 99}`` makes that role exhaust any retry budget;
    ``{"analyst": 1}`` makes it recover on the first retry.
    """

    def __init__(self, failures: dict[str, int] | None = None):
        self.failures = dict(failures or {})
        self.calls: dict[str, int] = defaultdict(int)

    def check(self, role: str, attempt: int) -> None:
        self.calls[role] += 1
        if self.calls[role] <= self.failures.get(role, 0):
            raise GenerationUnavailable(f"{role}: injected outage #{self.calls[role]}")
