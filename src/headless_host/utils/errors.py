"""
Custom exception classes for Headless Host.

Precondition, timeout and completion errors are raised directly to callers.
Plugin faults never are: the extension host converts them into error events.
"""

from typing import Any


class HeadlessHostError(Exception):
    """Base exception for all Headless Host errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        suggestions: list[str] | None = None,
        context: dict[str, Any] | None = None
    ):
        """Initialize error with enhanced information.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            suggestions: List of suggested remediation steps
            context: Additional context information for debugging
        """
        super().__init__(message)
        self.error_code = error_code or self.__class__.__name__.upper()
        self.suggestions = suggestions or []
        self.context = context or {}


class ConfigurationError(HeadlessHostError):
    """Raised when there is an issue with the application configuration."""
    pass


# Precondition errors: an operation was called outside its required phase.
class PreconditionError(HeadlessHostError):
    """Raised when an operation is invoked in a lifecycle phase that forbids it."""

    def __init__(self, message: str, phase: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.phase = phase


class NotInitializedError(PreconditionError):
    """Raised when the service is used before initialize() was called."""

    def __init__(self, message: str = "ExtensionService not initialized. Call initialize() first.", phase: Any = None):
        super().__init__(message, phase, suggestions=["Await initialize() before sending messages"])


class NotActivatedError(PreconditionError):
    """Raised when the service was initialized but the plugin never activated."""

    def __init__(self, message: str = "ExtensionService not ready. Extension host not activated yet.", phase: Any = None):
        super().__init__(
            message,
            phase,
            suggestions=["Inspect error events for the activation fault", "Dispose and create a new service"],
        )


class DisposedError(PreconditionError):
    """Raised when a disposed host or service is used."""

    def __init__(self, message: str = "Cannot use a disposed ExtensionService", phase: Any = None):
        super().__init__(message, phase, suggestions=["Create a new service instance"])


class InvalidPhaseError(PreconditionError):
    """Raised when a lifecycle transition is not legal from the current phase."""
    pass


# Caller-facing operation failures
class CompletionTimeoutError(HeadlessHostError):
    """Raised when a single completion request loses its race against the timer."""

    def __init__(self, message: str = "Single completion request timed out", timeout_ms: float | None = None):
        super().__init__(message, context={"timeout_ms": timeout_ms})
        self.timeout_ms = timeout_ms


class CompletionError(HeadlessHostError):
    """Raised when the plugin answers a single completion request with a failure."""
    pass


# Plugin-side errors
class PluginLoadError(HeadlessHostError):
    """Raised when a plugin bundle cannot be loaded."""

    def __init__(self, message: str, bundle_path: str | None = None, cause: Exception | None = None):
        super().__init__(message, context={"bundle_path": bundle_path})
        self.bundle_path = bundle_path
        self.cause = cause


class RecoverablePluginError(HeadlessHostError):
    """Raised by plugins to mark a fault as recoverable.

    The extension host reports it as a warning instead of an error.
    """

    recoverable = True


# Bridge errors
class BridgeError(HeadlessHostError):
    """Base exception for message bridge failures."""
    pass


class DuplicateRequestIdError(BridgeError):
    """Raised when a correlation identifier is already pending."""

    def __init__(self, request_id: str):
        super().__init__(f"Request id already pending: {request_id}", context={"request_id": request_id})
        self.request_id = request_id


class PendingLimitError(BridgeError):
    """Raised when a channel already holds the maximum number of pending requests."""
    pass


class PayloadTooLargeError(BridgeError):
    """Raised when an envelope exceeds the configured payload size."""
    pass


class BridgeDisposedError(BridgeError):
    """Raised for requests on, or pending in, a disposed bridge."""
    pass
