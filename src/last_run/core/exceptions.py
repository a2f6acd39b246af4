"""
last-run Exception Hierarchy.

Defines the custom exceptions raised across the last-run system.
Retrieval-stage problems are recovered locally and never surface here;
these types cover configuration mistakes, remote store failures and
the fatal upload path.
"""

from typing import Any


class LastRunError(Exception):
    """
    Base exception for all last-run errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error reporting.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize a LastRunError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(LastRunError):
    """
    Errors in configuration loading or validation.

    Raised when:
    - Required environment variables are malformed
    - Configuration values are out of range
    """

    def __init__(
        self,
        message: str,
        *,
        env_var: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            env_var: Environment variable name if applicable
            config_key: Configuration key if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if env_var:
            details["env_var"] = env_var
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.env_var = env_var
        self.config_key = config_key


class ArtifactStoreError(LastRunError):
    """
    Errors from the remote artifact store.

    Raised by artifact clients when a list, download or upload call
    fails at the transport or service level.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize an ArtifactStoreError.

        Args:
            message: Human-readable error message
            operation: Remote operation being performed (list, download, upload)
            status_code: HTTP status code if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if operation:
            details["operation"] = operation
        if status_code:
            details["status_code"] = status_code

        super().__init__(message, details=details)
        self.operation = operation
        self.status_code = status_code


class UploadError(LastRunError):
    """Raised when storing the timestamp artifact fails after all retries."""

    def __init__(
        self,
        message: str = "Failed to upload timestamp artifact",
        *,
        artifact_name: str | None = None,
    ):
        details = {}
        if artifact_name:
            details["artifact_name"] = artifact_name
        super().__init__(message, details=details)
        self.artifact_name = artifact_name


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, LastRunError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"
