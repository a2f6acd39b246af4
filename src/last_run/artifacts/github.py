"""
GitHub artifact client.

Lists and downloads workflow artifacts through the GitHub REST API and
uploads new ones through the Actions results service (artifact v4 protocol).
"""

import base64
import hashlib
import io
import json
import logging
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx

from last_run.core.exceptions import ArtifactStoreError, ConfigurationError

from .models import ArchiveDownload, ArtifactHandle, ArtifactPage, UploadAck

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
ARCHIVE_FILENAME = "artifact.zip"
ARTIFACT_SERVICE = "twirp/github.actions.results.api.v1.ArtifactService"
RESULTS_SCOPE_PREFIX = "Actions.Results:"


def parse_backend_ids(runtime_token: str) -> tuple[str, str]:
    """
    Extract the workflow run and job backend ids from a runtime token.

    The token is a JWT whose ``scp`` claim contains a scope of the form
    ``Actions.Results:<run_backend_id>:<job_backend_id>``. The signature is
    not verified; the results service does that.

    Raises:
        ConfigurationError: If the token is malformed or lacks the scope
    """
    parts = runtime_token.split(".")
    if len(parts) != 3:
        raise ConfigurationError("Runtime token is not a JWT", env_var="ACTIONS_RUNTIME_TOKEN")

    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (ValueError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Runtime token payload is unreadable: {e}", env_var="ACTIONS_RUNTIME_TOKEN"
        ) from e

    if not isinstance(claims, dict):
        claims = {}
    for scope in str(claims.get("scp", "")).split():
        if scope.startswith(RESULTS_SCOPE_PREFIX):
            ids = scope.split(":")
            if len(ids) == 3 and ids[1] and ids[2]:
                return ids[1], ids[2]

    raise ConfigurationError(
        "Runtime token has no Actions.Results scope", env_var="ACTIONS_RUNTIME_TOKEN"
    )


def build_zip(file_path: Path) -> bytes:
    """Package a single file into an in-memory zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.write(file_path, arcname=file_path.name)
    return buffer.getvalue()


class GitHubArtifactClient:
    """
    Artifact store backed by GitHub Actions.

    Listing and download need a repository token with ``actions:read``;
    upload needs the job's runtime token and results service URL, which
    GitHub injects into every workflow job.
    """

    def __init__(
        self,
        *,
        token: str | None,
        repository: str | None,
        api_url: str = DEFAULT_API_URL,
        runtime_token: str | None = None,
        results_url: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            token: GitHub token for REST calls
            repository: ``owner/repo`` the artifacts belong to
            api_url: REST API base URL (GitHub Enterprise supported)
            runtime_token: ACTIONS_RUNTIME_TOKEN for uploads
            results_url: ACTIONS_RESULTS_URL for uploads
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (used by tests)
        """
        self._token = token
        self._repository = repository
        self._api_url = api_url.rstrip("/")
        self._runtime_token = runtime_token
        self._results_url = results_url.rstrip("/") if results_url else None
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)
        # Signed upload URLs of created but not yet finalized artifacts, by name
        self._pending_uploads: dict[str, str] = {}

    def _rest_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _repo_url(self, path: str) -> str:
        if not self._repository:
            raise ConfigurationError(
                "Repository is not configured", env_var="GITHUB_REPOSITORY"
            )
        return f"{self._api_url}/repos/{self._repository}/{path}"

    async def list_artifacts(
        self, name: str | None = None, *, page: int = 1, per_page: int = 100
    ) -> ArtifactPage:
        """
        List one page of repository artifacts.

        Raises:
            ArtifactStoreError: If the request fails
        """
        params: dict[str, Any] = {"page": page, "per_page": per_page}
        if name:
            params["name"] = name

        try:
            response = await self._client.get(
                self._repo_url("actions/artifacts"),
                headers=self._rest_headers(),
                params=params,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ArtifactStoreError(
                f"Listing artifacts failed: {e.response.status_code}",
                operation="list",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactStoreError(f"Listing artifacts failed: {e}", operation="list") from e

        data = response.json()
        logger.debug(
            "list_artifacts: page=%d returned=%d total=%s",
            page,
            len(data.get("artifacts", [])),
            data.get("total_count"),
        )
        return ArtifactPage.model_validate(data)

    async def download(self, handle: ArtifactHandle, destination: Path) -> ArchiveDownload:
        """
        Download an artifact's zip archive into ``destination``.

        Raises:
            ArtifactStoreError: If the request fails
        """
        url = handle.archive_download_url or self._repo_url(
            f"actions/artifacts/{handle.id}/zip"
        )
        archive_path = destination / ARCHIVE_FILENAME

        try:
            async with self._client.stream(
                "GET", url, headers=self._rest_headers(), follow_redirects=True
            ) as response:
                response.raise_for_status()
                with open(archive_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise ArtifactStoreError(
                f"Downloading artifact {handle.id} failed: {e.response.status_code}",
                operation="download",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactStoreError(
                f"Downloading artifact {handle.id} failed: {e}", operation="download"
            ) from e

        logger.debug("download: wrote %s", archive_path)
        return ArchiveDownload(path=archive_path)

    async def _twirp(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._results_url}/{ARTIFACT_SERVICE}/{method}"
        try:
            response = await self._client.post(
                url,
                headers={"Authorization": f"Bearer {self._runtime_token}"},
                json=body,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ArtifactStoreError(
                f"{method} failed: {e.response.status_code}",
                operation="upload",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactStoreError(f"{method} failed: {e}", operation="upload") from e

        data = response.json()
        if not data.get("ok"):
            raise ArtifactStoreError(f"{method} was rejected", operation="upload", details=data)
        return data

    async def upload(self, name: str, file_path: Path, *, retention_days: int) -> UploadAck:
        """
        Upload ``file_path`` as a single-file artifact called ``name``.

        Calling again after a failed blob upload or finalize reuses the
        artifact created by the earlier call.

        Raises:
            ConfigurationError: If runtime credentials are missing
            ArtifactStoreError: If any step of the upload fails
        """
        if not self._runtime_token or not self._results_url:
            raise ConfigurationError(
                "Artifact upload requires ACTIONS_RUNTIME_TOKEN and ACTIONS_RESULTS_URL",
                env_var="ACTIONS_RUNTIME_TOKEN",
            )
        run_id, job_id = parse_backend_ids(self._runtime_token)
        backend_ids = {
            "workflow_run_backend_id": run_id,
            "workflow_job_run_backend_id": job_id,
        }

        upload_url = self._pending_uploads.get(name)
        if upload_url is None:
            expires_at = datetime.now(timezone.utc) + timedelta(days=retention_days)
            created = await self._twirp(
                "CreateArtifact",
                {
                    **backend_ids,
                    "name": name,
                    "version": 4,
                    "expires_at": expires_at.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
                },
            )
            upload_url = created["signed_upload_url"]
            self._pending_uploads[name] = upload_url
        else:
            logger.debug("upload: reusing signed URL for pending artifact '%s'", name)

        payload = build_zip(file_path)
        try:
            response = await self._client.put(
                upload_url,
                headers={"x-ms-blob-type": "BlockBlob", "Content-Type": "application/zip"},
                content=payload,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ArtifactStoreError(
                f"Blob upload failed: {e.response.status_code}",
                operation="upload",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactStoreError(f"Blob upload failed: {e}", operation="upload") from e

        finalized = await self._twirp(
            "FinalizeArtifact",
            {
                **backend_ids,
                "name": name,
                "size": str(len(payload)),
                "hash": f"sha256:{hashlib.sha256(payload).hexdigest()}",
            },
        )

        self._pending_uploads.pop(name, None)
        artifact_id = finalized.get("artifact_id")
        logger.debug("upload: finalized artifact '%s' id=%s", name, artifact_id)
        return UploadAck(
            artifact_id=int(artifact_id) if artifact_id else None,
            name=name,
            size=len(payload),
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubArtifactClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args) -> None:
        """Async context manager exit."""
        await self.aclose()
