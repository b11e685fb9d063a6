"""Exception taxonomy for the research orchestrator."""


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestration engine."""


class ProviderUnavailable(OrchestrationError):
    """Transient upstream failure from a text-generation provider."""

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class ProviderError(OrchestrationError):
    """Terminal failure from a text-generation provider."""

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class GenerationUnavailable(OrchestrationError):
    """Transient failure at the availability-check or generation step; retryable."""


class GenerationError(OrchestrationError):
    """Non-retryable failure while generating a role's output."""


class RetryExhausted(OrchestrationError):
    """A step kept failing until its retry budget ran out."""

    def __init__(self, step_id: str, attempts: int, last_error: BaseException):
        super().__init__(f"Step '{step_id}' failed after {attempts} attempts: {last_error}")
        self.step_id = step_id
        self.attempts = attempts
        self.last_error = last_error


class AgentTaskFailed(OrchestrationError):
    """One role's task could not produce a result."""

    def __init__(self, role: str, reason: str, cause: BaseException | None = None):
        super().__init__(f"Agent '{role}' failed: {reason}")
        self.role = role
        self.reason = reason
        self.cause = cause


class SynthesisFailed(OrchestrationError):
    """The fan-in stage failed; fatal to the pipeline run."""


class PublishFailed(OrchestrationError):
    """A broadcast emission could not be delivered."""
