"""
Exception hierarchy for Lighthouse Onboarding.

Every error carries a human-readable message plus optional error code,
context, underlying cause and recovery suggestion, so the CLI can report
failures consistently and map them to exit codes.
"""

from typing import Any, Dict, List, Optional


class OnboardingError(Exception):
    """
    Base exception class for all onboarding errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Configuration-related exceptions
class ConfigurationError(OnboardingError):
    """Base class for configuration and input errors. Always fatal."""

    pass


class InvalidInputError(ConfigurationError):
    """Raised when a provisioning input fails validation."""

    def __init__(
        self, message: str, parameter: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = dict(kwargs.get("context") or {})
        if parameter:
            context["parameter"] = parameter
        kwargs["context"] = context
        kwargs.setdefault("error_code", "INVALID_INPUT")
        super().__init__(message, **kwargs)


class AuthorizationListError(ConfigurationError):
    """Raised when the Lighthouse authorization list is malformed."""

    def __init__(
        self, message: str, problems: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        self.problems = problems or []
        context = dict(kwargs.get("context") or {})
        if problems:
            context["problem_count"] = len(problems)
        kwargs["context"] = context
        kwargs.setdefault("error_code", "INVALID_AUTHORIZATIONS")
        super().__init__(message, **kwargs)


class ModuleInstallError(ConfigurationError):
    """Raised when required SDK modules are missing and cannot be installed."""

    def __init__(
        self, message: str, modules: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        context = dict(kwargs.get("context") or {})
        if modules:
            context["modules"] = modules
        kwargs["context"] = context
        kwargs.setdefault("error_code", "MODULE_INSTALL_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            f"Install manually: pip install {' '.join(modules)}"
            if modules
            else "Install the package dependencies manually",
        )
        super().__init__(message, **kwargs)


# Azure-related exceptions
class AzureError(OnboardingError):
    """Base class for errors returned by Azure Resource Manager or Microsoft Graph."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        self.operation = operation
        context = dict(kwargs.get("context") or {})
        if operation:
            context["operation"] = operation
        if status_code is not None:
            context["status_code"] = status_code
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class AzureAuthenticationError(AzureError):
    """Raised when an authenticated session cannot be established."""

    def __init__(
        self, message: str, tenant_id: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = dict(kwargs.get("context") or {})
        if tenant_id:
            context["tenant_id"] = tenant_id
        kwargs["context"] = context
        kwargs.setdefault("error_code", "AZURE_AUTH_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Try running 'az login' or check your Azure credentials",
        )
        super().__init__(message, **kwargs)


class AzurePermissionError(AzureError, PermissionError):
    """Raised when the caller's credentials lack rights for an operation."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "AZURE_PERMISSION_DENIED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Run as an account holding Owner on the subscription and "
            "Application Administrator (or Privileged Role Administrator) in the directory",
        )
        super().__init__(message, **kwargs)


class ResourceConflictError(AzureError):
    """Raised when a create call reports that the object already exists."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "AZURE_CONFLICT")
        super().__init__(message, **kwargs)


class AzureOperationError(AzureError):
    """Raised for any other failed Azure call."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "AZURE_OPERATION_FAILED")
        super().__init__(message, **kwargs)


# Polling-related exceptions
class ProvisioningTimeoutError(OnboardingError, TimeoutError):
    """Raised when a created resource never becomes visible. Always fatal."""

    def __init__(
        self,
        resource: str,
        elapsed_seconds: float,
        attempts: int,
        **kwargs: Any,
    ) -> None:
        self.resource = resource
        self.elapsed_seconds = elapsed_seconds
        self.attempts = attempts
        context = dict(kwargs.get("context") or {})
        context["resource"] = resource
        context["attempts"] = attempts
        context["elapsed_seconds"] = round(elapsed_seconds, 1)
        kwargs["context"] = context
        kwargs.setdefault("error_code", "PROVISIONING_TIMEOUT")
        kwargs.setdefault(
            "recovery_suggestion",
            "Directory replication can lag; re-run the command to resume where it stopped",
        )
        super().__init__(
            f"Timed out waiting for {resource} to become visible "
            f"after {attempts} attempts ({elapsed_seconds:.0f}s)",
            **kwargs,
        )


# Utility functions for exception handling
def _status_code_of(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "response_status_code", None)
    return status if isinstance(status, int) else None


def _error_text_of(exc: Exception) -> str:
    # ODataError keeps the useful text on .error.message
    odata = getattr(exc, "error", None)
    message = getattr(odata, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def is_conflict(exc: Exception) -> bool:
    """Return True if an SDK exception means 'the object already exists'."""
    status = _status_code_of(exc)
    if status == 409:
        return True
    text = _error_text_of(exc).lower()
    return status == 400 and (
        "already exist" in text or "added object references already exist" in text
    )


def is_not_found(exc: Exception) -> bool:
    """Return True if an SDK exception means 'no such object'."""
    return _status_code_of(exc) == 404


def wrap_azure_exception(
    exc: Exception,
    operation: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> AzureError:
    """
    Wrap an Azure SDK or Microsoft Graph exception in our hierarchy.

    Args:
        exc: The original exception
        operation: Name of the operation that failed
        context: Optional context information

    Returns:
        AzureError: Wrapped exception with enhanced context
    """
    status = _status_code_of(exc)
    error_message = _error_text_of(exc)
    lowered = error_message.lower()

    if status == 401 or exc.__class__.__name__ == "ClientAuthenticationError":
        return AzureAuthenticationError(
            f"Azure authentication failed: {error_message}",
            status_code=status,
            operation=operation,
            context=context,
            cause=exc,
        )
    if (
        status == 403
        or "authorizationfailed" in lowered.replace(" ", "")
        or "insufficient privileges" in lowered
    ):
        return AzurePermissionError(
            f"Permission denied: {error_message}",
            status_code=status,
            operation=operation,
            context=context,
            cause=exc,
        )
    if is_conflict(exc):
        return ResourceConflictError(
            f"Already exists: {error_message}",
            status_code=status,
            operation=operation,
            context=context,
            cause=exc,
        )
    return AzureOperationError(
        f"Azure operation failed: {error_message}",
        status_code=status,
        operation=operation,
        context=context,
        cause=exc,
    )
