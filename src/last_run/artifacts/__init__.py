"""
last-run Artifacts Module.

Locates, downloads and reads timestamp artifacts from a remote store.
"""

from .extractor import ContentExtractor, read_from_zip, read_plain_file
from .locator import ArtifactLocator
from .models import (
    ArchiveDownload,
    ArtifactClient,
    ArtifactHandle,
    ArtifactPage,
    DownloadResult,
    FlatDownload,
    UploadAck,
)

__all__ = [
    # Models
    "ArtifactHandle",
    "ArtifactPage",
    "UploadAck",
    "FlatDownload",
    "ArchiveDownload",
    "DownloadResult",
    "ArtifactClient",
    # Components
    "ArtifactLocator",
    "ContentExtractor",
    "read_plain_file",
    "read_from_zip",
]
