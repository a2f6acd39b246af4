"""
Content extractor.

Downloads a located artifact and reads the timestamp file out of it,
whether the store delivered a directory of files or a zip archive.
A missing or unreadable payload is a normal outcome and maps to None.
"""

import logging
import zipfile
import zlib
from pathlib import Path

from last_run.retry import RetryPolicy, attempt_with_retry

from .models import ArchiveDownload, ArtifactClient, ArtifactHandle, DownloadResult, FlatDownload

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "last-run.txt"

# Raised by zipfile for corrupt, truncated, encrypted or unsupported entries
ZIP_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    RuntimeError,
    NotImplementedError,
    OSError,
    UnicodeDecodeError,
)


def read_plain_file(directory: Path, filename: str) -> str | None:
    """
    Return the trimmed contents of ``directory/filename`` if it exists.

    An unreadable or undecodable file is logged as a warning and yields None.
    """
    target = directory / filename
    if not target.is_file():
        return None
    logger.debug("read_plain_file: found %s", target)
    try:
        return target.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read %s: %s", target, e)
        return None


def read_from_zip(archive_path: Path, filename: str) -> str | None:
    """
    Return the trimmed text of ``filename`` inside a zip archive.

    Returns None when the entry is absent. A corrupt archive or an
    undecodable entry is logged as a warning and also yields None.
    """
    try:
        with zipfile.ZipFile(archive_path) as archive:
            try:
                data = archive.read(filename)
            except KeyError:
                logger.debug("read_from_zip: no entry '%s' in %s", filename, archive_path)
                return None
        return data.decode("utf-8").strip()
    except ZIP_READ_ERRORS as e:
        logger.warning("Failed to extract zip: %s", e)
        return None


class ContentExtractor:
    """Turn an ArtifactHandle into the raw timestamp string it stores."""

    def __init__(
        self,
        client: ArtifactClient,
        *,
        token: str | None,
        work_dir: Path,
        filename: str = DEFAULT_FILENAME,
        policy: RetryPolicy | None = None,
    ):
        """
        Initialize the extractor.

        Args:
            client: Remote artifact store client
            token: Access token; without it nothing is downloaded
            work_dir: Directory receiving downloaded payloads
            filename: Name of the timestamp file inside the artifact
            policy: Retry policy for the download call
        """
        self._client = client
        self._token = token
        self._work_dir = work_dir
        self._filename = filename
        self._policy = policy or RetryPolicy(min_delay=0.4, max_delay=1.5)

    async def extract(self, handle: ArtifactHandle) -> str | None:
        """
        Download ``handle`` and return its trimmed timestamp text, or None.
        """
        if not self._token:
            logger.debug("extract: no access token, skipping download")
            return None

        destination = self._work_dir / f"{handle.name}-{handle.id}"
        destination.mkdir(parents=True, exist_ok=True)

        outcome = await attempt_with_retry(
            lambda: self._client.download(handle, destination),
            self._policy,
            label=f"download artifact {handle.id}",
        )
        if not outcome.ok:
            logger.warning("Unable to retrieve last run artifact: %s", outcome.error)
            return None

        return self.read_payload(outcome.value)

    def read_payload(self, result: DownloadResult) -> str | None:
        """Read the timestamp file from a download result."""
        if isinstance(result, FlatDownload):
            content = read_plain_file(result.directory, self._filename)
            if content is None:
                logger.debug("read_payload: no '%s' in %s", self._filename, result.directory)
            return content

        if isinstance(result, ArchiveDownload):
            content = read_plain_file(result.path.parent, self._filename)
            if content is not None:
                return content
            logger.debug("read_payload: extracting %s", result.path)
            return read_from_zip(result.path, self._filename)

        raise TypeError(f"Unsupported download result: {result!r}")
