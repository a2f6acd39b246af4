"""
Models for remote artifact listing, download and upload.

ArtifactHandle mirrors the artifact records returned by the remote store.
Download results are a tagged variant: a directory that already holds the
artifact's files, or a single zip archive.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, field_validator


class ArtifactHandle(BaseModel):
    """Read-only reference to a stored artifact."""

    id: int = Field(description="Opaque artifact key assigned by the store")
    name: str = Field(description="Logical artifact name")
    created_at: str = Field(default="", description="ISO-8601 Z timestamp of creation")
    expired: bool = Field(default=False, description="Past the store's retention window")
    size_in_bytes: int | None = Field(default=None, description="Packaged size if known")
    archive_download_url: str | None = Field(
        default=None, description="URL serving the artifact as a zip archive"
    )

    @field_validator("created_at", mode="before")
    @classmethod
    def validate_created_at(cls, v):
        """Treat a missing creation time as the oldest possible."""
        return "" if v is None else v


class ArtifactPage(BaseModel):
    """One page of an artifact listing."""

    artifacts: list[ArtifactHandle] = Field(default_factory=list)
    total_count: int | None = Field(
        default=None, description="Total matching artifacts reported by the store"
    )


class UploadAck(BaseModel):
    """Acknowledgement of a finished upload."""

    artifact_id: int | None = Field(default=None, description="ID assigned by the store")
    name: str = Field(description="Artifact name")
    size: int = Field(default=0, description="Uploaded size in bytes")


@dataclass(frozen=True)
class FlatDownload:
    """Artifact files already materialized in a directory."""

    directory: Path


@dataclass(frozen=True)
class ArchiveDownload:
    """Artifact delivered as a single zip archive."""

    path: Path


DownloadResult = FlatDownload | ArchiveDownload


class ArtifactClient(Protocol):
    """Capabilities the timestamp store needs from a remote artifact store."""

    async def list_artifacts(
        self, name: str | None = None, *, page: int = 1, per_page: int = 100
    ) -> ArtifactPage: ...

    async def download(self, handle: ArtifactHandle, destination: Path) -> DownloadResult: ...

    async def upload(
        self, name: str, file_path: Path, *, retention_days: int
    ) -> UploadAck: ...
