"""
Exception hierarchy for SiteSight.

Inference errors are split by how the orchestrator reacts to them:
transient service errors trigger a model switch, everything else is
retried on the same model until the attempt limit is reached.
"""


class SiteSightError(Exception):
    """Base class for all SiteSight errors."""


class ConfigurationError(SiteSightError):
    """Invalid or missing configuration."""


class VocabularyError(SiteSightError):
    """The controlled vocabulary master file could not be loaded."""


class InferenceError(SiteSightError):
    """Base class for errors raised around the vision-language service."""


class TransientServiceError(InferenceError):
    """Rate-limited or temporarily unavailable service (HTTP 429/503)."""


class InferenceResponseError(InferenceError):
    """The service answered, but the answer was malformed or off-schema."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class InferenceFailedError(InferenceError):
    """All attempts were exhausted without a usable response."""

    def __init__(self, message: str, attempts: int, model: str):
        super().__init__(message)
        self.attempts = attempts
        self.model = model


class PermissionDeniedError(InferenceError):
    """The API key is not allowed to use the service (HTTP 403)."""
