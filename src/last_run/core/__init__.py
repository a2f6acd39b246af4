"""
last-run Core Module.

Provides the exception hierarchy shared by every component.
"""

__all__ = [
    "LastRunError",
    "ConfigurationError",
    "ArtifactStoreError",
    "UploadError",
    "format_exception",
]

from last_run.core.exceptions import (
    ArtifactStoreError,
    ConfigurationError,
    LastRunError,
    UploadError,
    format_exception,
)
