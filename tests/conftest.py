"""Pytest configuration and fixtures."""

import logging
import tempfile
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from last_run.actions import WorkflowCommandHandler
from last_run.artifacts import (
    ArchiveDownload,
    ArtifactHandle,
    ArtifactPage,
    FlatDownload,
    UploadAck,
)
from last_run.config import LastRunConfig
from last_run.core.exceptions import ArtifactStoreError
from last_run.retry import RetryPolicy
from last_run.store import TimestampStore

FILENAME = "last-run.txt"


class FakeArtifactClient:
    """
    In-memory artifact store.

    Failure counters make the next N calls of an operation raise; the
    ``archive`` flags switch downloads from a flat directory to a zip.
    """

    def __init__(self) -> None:
        self.artifacts: list[ArtifactHandle] = []
        self.contents: dict[int, str | bytes] = {}
        self.list_failures = 0
        self.download_failures = 0
        self.upload_failures = 0
        self.list_calls = 0
        self.download_calls = 0
        self.upload_calls = 0
        self.uploads: list[str] = []
        self.retention_days: list[int] = []
        self.archive = False
        self.corrupt_archive = False
        self.closed = False
        self._next_id = 1
        self._base_time = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def add(
        self,
        content: str | bytes | None,
        *,
        name: str = "last-run",
        created_at: str | None = None,
        expired: bool = False,
    ) -> ArtifactHandle:
        """
        Seed an artifact; content None means the payload file is absent.

        Bytes content is written verbatim, for undecodable payloads.
        """
        artifact_id = self._next_id
        self._next_id += 1
        if created_at is None:
            moment = self._base_time + timedelta(seconds=artifact_id)
            created_at = moment.strftime("%Y-%m-%dT%H:%M:%SZ")
        handle = ArtifactHandle(
            id=artifact_id, name=name, created_at=created_at, expired=expired
        )
        self.artifacts.append(handle)
        if content is not None:
            self.contents[artifact_id] = content
        return handle

    def latest_content(self, name: str = "last-run") -> str | bytes | None:
        """Content of the newest artifact called ``name``."""
        live = [a for a in self.artifacts if a.name == name and not a.expired]
        if not live:
            return None
        return self.contents.get(max(live, key=lambda a: (a.created_at, a.id)).id)

    async def list_artifacts(
        self, name: str | None = None, *, page: int = 1, per_page: int = 100
    ) -> ArtifactPage:
        self.list_calls += 1
        if self.list_failures:
            self.list_failures -= 1
            raise ArtifactStoreError("transient list error", operation="list")
        matching = [a for a in self.artifacts if name is None or a.name == name]
        start = (page - 1) * per_page
        return ArtifactPage(
            artifacts=matching[start : start + per_page], total_count=len(matching)
        )

    async def download(self, handle: ArtifactHandle, destination: Path):
        self.download_calls += 1
        if self.download_failures:
            self.download_failures -= 1
            raise ArtifactStoreError("transient download error", operation="download")

        content = self.contents.get(handle.id)
        if self.archive:
            archive_path = destination / "artifact.zip"
            if self.corrupt_archive:
                archive_path.write_bytes(b"not-a-zip")
            else:
                with zipfile.ZipFile(
                    archive_path, "w", compression=zipfile.ZIP_DEFLATED
                ) as archive:
                    if content is not None:
                        archive.writestr(FILENAME, content)
            return ArchiveDownload(path=archive_path)

        if isinstance(content, bytes):
            (destination / FILENAME).write_bytes(content)
        elif content is not None:
            (destination / FILENAME).write_text(content, encoding="utf-8")
        return FlatDownload(directory=destination)

    async def upload(self, name: str, file_path: Path, *, retention_days: int) -> UploadAck:
        self.upload_calls += 1
        if self.upload_failures:
            self.upload_failures -= 1
            raise ArtifactStoreError("upload boom", operation="upload")
        value = file_path.read_text(encoding="utf-8")
        handle = self.add(value, name=name)
        self.uploads.append(value)
        self.retention_days.append(retention_days)
        return UploadAck(artifact_id=handle.id, name=name, size=len(value))

    async def __aenter__(self) -> "FakeArtifactClient":
        return self

    async def __aexit__(self, *args) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_workflow_logging() -> Generator[None, None, None]:
    """Drop workflow command handlers installed by CLI runs."""
    yield
    package_logger = logging.getLogger("last_run")
    for handler in list(package_logger.handlers):
        if isinstance(handler, WorkflowCommandHandler):
            package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without delays."""
    return RetryPolicy(retries=2, factor=2, min_delay=0, max_delay=0)


@pytest.fixture
def fake_client() -> FakeArtifactClient:
    """Provide an empty in-memory artifact store."""
    return FakeArtifactClient()


@pytest.fixture
def config(temp_dir: Path, fast_policy: RetryPolicy) -> LastRunConfig:
    """Configuration pointing at a temporary work directory."""
    return LastRunConfig(
        token="test-token",
        repository="octo/repo",
        work_dir=temp_dir,
        list_retry=fast_policy,
        download_retry=fast_policy,
        upload_retry=fast_policy,
    )


@pytest.fixture
def store(config: LastRunConfig, fake_client: FakeArtifactClient) -> TimestampStore:
    """TimestampStore wired to the in-memory artifact store."""
    return TimestampStore.from_config(config, fake_client)
