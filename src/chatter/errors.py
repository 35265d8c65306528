"""Application-level exception types for chatter."""

from __future__ import annotations


class ChatterError(Exception):
    """Base exception for chatter."""


class ConfigurationError(ChatterError):
    """Base exception for configuration and startup validation errors."""


class ModelNotConfiguredError(ConfigurationError):
    """Raised when model configuration is missing."""


class ApiKeyNotConfiguredError(ConfigurationError):
    """Raised when an API key is required but missing."""


class UpstreamError(ChatterError):
    """Raised when a producer or validator call fails at transport, auth or rate-limit level."""


class EmptyResponseError(UpstreamError):
    """Raised when the upstream model returns zero usable choices."""


class MalformedOutputError(ChatterError):
    """Raised when model output cannot be parsed into the expected schema."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class BudgetExhausted(ChatterError):
    """Raised when a retry loop without fallback consumed all attempts."""

    def __init__(self, name: str, attempts: int, feedback: str) -> None:
        super().__init__(f"{name}: no valid result after {attempts} attempts: {feedback or 'no feedback'}")
        self.name = name
        self.attempts = attempts
        self.feedback = feedback


class WorkflowError(ChatterError):
    """Raised when a multi-stage workflow aborts on a non-recoverable stage."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"stage '{stage}' failed: {message}")
        self.stage = stage
