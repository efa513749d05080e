"""
Storyforge Custom Exceptions

Exception hierarchy shared by the gateway, pipeline, stores and orchestrator.
"""

import re


class StoryforgeError(Exception):
    """Base exception for all Storyforge errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(StoryforgeError):
    """Raised when there's an issue with configuration."""
    pass


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration is missing."""
    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""
    pass


# =============================================================================
# INPUT ERRORS
# =============================================================================

class InputValidationError(StoryforgeError):
    """Raised when a required user input is missing or malformed."""

    def __init__(self, field_name: str, reason: str = "is required"):
        message = f"'{field_name}' {reason}"
        super().__init__(message, {"field": field_name})
        self.field_name = field_name


# =============================================================================
# GENERATION ERRORS
# =============================================================================

# Substrings that mark a provider failure as a quota / rate-limit hit.
QUOTA_ERROR_SIGNATURES = (
    "quota",
    "rate limit",
    "rate-limit",
    "ratelimit",
    "resource_exhausted",
    "resource exhausted",
    "too many requests",
)
QUOTA_STATUS_PATTERN = re.compile(r"(?<![\w.])429(?![\w.])")


def is_quota_message(message: str) -> bool:
    """Check if a failure message carries a quota / rate-limit signature."""
    if not message:
        return False
    lowered = message.lower()
    if any(signature in lowered for signature in QUOTA_ERROR_SIGNATURES):
        return True
    return QUOTA_STATUS_PATTERN.search(message) is not None


class GenerationError(StoryforgeError):
    """Raised when a generative model call fails."""

    def __init__(self, operation: str, reason: str, status_code: int = None):
        message = f"{operation} failed: {reason}"
        details = {"operation": operation}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.operation = operation
        self.reason = reason
        self.status_code = status_code

    @property
    def is_quota(self) -> bool:
        return self.status_code == 429 or is_quota_message(self.reason)


class QuotaExceededError(GenerationError):
    """Raised when the provider reports a quota or rate limit."""

    @property
    def is_quota(self) -> bool:
        return True


class GenerationTimeoutError(GenerationError):
    """Raised when a generation call or long-running job times out."""
    pass


class ResponseFormatError(GenerationError):
    """Raised when a model response cannot be parsed into the expected shape."""
    pass


# =============================================================================
# PIPELINE ERRORS
# =============================================================================

class PipelineError(StoryforgeError):
    """Base exception for panel pipeline errors."""
    pass


class PanelIndexError(PipelineError):
    """Raised when a panel index does not exist in the collection."""

    def __init__(self, index: int, length: int):
        message = f"Panel index {index} out of range (0..{length - 1})"
        super().__init__(message, {"index": index, "length": length})


class VideoNotAllowedError(PipelineError):
    """Raised when a panel does not satisfy the video eligibility gate."""
    pass


class ExpansionError(PipelineError):
    """Raised when scene expansion staging is missing or stale."""
    pass


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================

class PersistenceError(StoryforgeError):
    """Base exception for project and asset storage errors."""
    pass


class ProjectNotFoundError(PersistenceError):
    """Raised when a project is not found."""

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: '{project_id}'", {"project_id": project_id})
        self.project_id = project_id


class AssetStoreError(PersistenceError):
    """Raised when an asset cannot be read or written."""
    pass


class MediaResolutionError(PersistenceError):
    """Raised when a media reference cannot be resolved to bytes."""
    pass


class ImportValidationError(PersistenceError):
    """Raised when an import payload is rejected."""
    pass
