"""Tests for the GitHub artifact client."""

import base64
import hashlib
import io
import json
import zipfile
from pathlib import Path

import httpx
import pytest

from last_run.artifacts import ArchiveDownload, ArtifactHandle, read_from_zip
from last_run.artifacts.github import GitHubArtifactClient, build_zip, parse_backend_ids
from last_run.core.exceptions import ArtifactStoreError, ConfigurationError
from last_run.retry import RetryPolicy, with_retry

RESULTS_URL = "https://results.example.com"
SIGNED_URL = "https://blob.example.com/up?sig=x"


def make_jwt(claims: dict) -> str:
    """Unsigned JWT carrying ``claims``."""

    def segment(data: dict) -> str:
        raw = json.dumps(data).encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    return f"{segment({'alg': 'none'})}.{segment(claims)}.signature"


RUNTIME_TOKEN = make_jwt({"scp": "Actions.GenericRead:abc Actions.Results:run-1:job-2"})


def make_client(handler, **kwargs) -> GitHubArtifactClient:
    kwargs.setdefault("token", "gh-token")
    kwargs.setdefault("repository", "octo/repo")
    return GitHubArtifactClient(transport=httpx.MockTransport(handler), **kwargs)


class ResultsService:
    """
    MockTransport handler for the upload endpoints.

    ``put_failures`` makes the next N blob uploads answer 503.
    """

    def __init__(self, put_failures: int = 0) -> None:
        self.put_failures = put_failures
        self.calls: list[tuple[str, str]] = []
        self.bodies: dict[str, dict] = {}
        self.payload = b""

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if request.url.path.endswith("/CreateArtifact"):
            assert request.headers["Authorization"] == f"Bearer {RUNTIME_TOKEN}"
            self.bodies["create"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "signed_upload_url": SIGNED_URL})
        if request.url.host == "blob.example.com":
            assert request.headers["x-ms-blob-type"] == "BlockBlob"
            if self.put_failures:
                self.put_failures -= 1
                return httpx.Response(503)
            self.payload = request.content
            return httpx.Response(201)
        if request.url.path.endswith("/FinalizeArtifact"):
            self.bodies["finalize"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "artifact_id": "42"})
        return httpx.Response(404)

    def count(self, suffix: str) -> int:
        return sum(1 for _, path in self.calls if path.endswith(suffix))


@pytest.fixture
def timestamp_file(temp_dir: Path) -> Path:
    """Timestamp file ready for upload."""
    file_path = temp_dir / "last-run.txt"
    file_path.write_text("2025-01-01T00:00:00.000Z", encoding="utf-8")
    return file_path


class TestParseBackendIds:
    """Tests for parse_backend_ids."""

    def test_reads_results_scope(self) -> None:
        """Run and job ids come from the Actions.Results scope."""
        assert parse_backend_ids(RUNTIME_TOKEN) == ("run-1", "job-2")

    def test_not_a_jwt(self) -> None:
        """A token without three segments is rejected."""
        with pytest.raises(ConfigurationError, match="not a JWT"):
            parse_backend_ids("opaque-token")

    def test_unreadable_payload(self) -> None:
        """A payload that is not base64 JSON is rejected."""
        with pytest.raises(ConfigurationError, match="unreadable"):
            parse_backend_ids("a.!!!!.c")

    def test_missing_scope(self) -> None:
        """A token without the results scope is rejected."""
        token = make_jwt({"scp": "Actions.GenericRead:abc"})
        with pytest.raises(ConfigurationError, match="no Actions.Results scope"):
            parse_backend_ids(token)


class TestListArtifacts:
    """Tests for GitHubArtifactClient.list_artifacts."""

    @pytest.mark.asyncio
    async def test_request_and_response(self) -> None:
        """Listing sends auth headers and query parameters."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "total_count": 1,
                    "artifacts": [
                        {
                            "id": 7,
                            "name": "last-run",
                            "created_at": "2025-01-01T00:00:00Z",
                            "expired": False,
                            "size_in_bytes": 140,
                            "archive_download_url": "https://api.github.com/zip/7",
                            "workflow_run": {"id": 1},
                        }
                    ],
                },
            )

        async with make_client(handler) as client:
            page = await client.list_artifacts("last-run", page=2, per_page=50)

        request = seen[0]
        assert request.url.path == "/repos/octo/repo/actions/artifacts"
        assert request.url.params["name"] == "last-run"
        assert request.url.params["page"] == "2"
        assert request.url.params["per_page"] == "50"
        assert request.headers["Authorization"] == "Bearer gh-token"
        assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"

        assert page.total_count == 1
        assert page.artifacts[0].id == 7
        assert page.artifacts[0].archive_download_url == "https://api.github.com/zip/7"

    @pytest.mark.asyncio
    async def test_null_created_at(self) -> None:
        """Records without a creation time still parse."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"artifacts": [{"id": 1, "name": "last-run", "created_at": None}]},
            )

        async with make_client(handler) as client:
            page = await client.list_artifacts("last-run")

        assert page.artifacts[0].created_at == ""
        assert page.total_count is None

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        """Error statuses become ArtifactStoreError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"message": "unavailable"})

        async with make_client(handler) as client:
            with pytest.raises(ArtifactStoreError) as exc_info:
                await client.list_artifacts("last-run")

        assert exc_info.value.status_code == 503
        assert exc_info.value.operation == "list"

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        """Connection failures become ArtifactStoreError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ArtifactStoreError, match="connection refused"):
                await client.list_artifacts("last-run")

    @pytest.mark.asyncio
    async def test_requires_repository(self) -> None:
        """Listing without a repository is a configuration error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        async with make_client(handler, repository=None) as client:
            with pytest.raises(ConfigurationError):
                await client.list_artifacts("last-run")


class TestDownload:
    """Tests for GitHubArtifactClient.download."""

    @pytest.mark.asyncio
    async def test_follows_redirect(self, temp_dir: Path) -> None:
        """The archive is fetched through the storage redirect."""
        archive = io.BytesIO()
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("last-run.txt", "2025-01-01T00:00:00.000Z")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.github.com":
                return httpx.Response(
                    302, headers={"Location": "https://storage.example.com/blob/7"}
                )
            return httpx.Response(200, content=archive.getvalue())

        handle = ArtifactHandle(
            id=7, name="last-run", archive_download_url="https://api.github.com/zip/7"
        )
        async with make_client(handler) as client:
            result = await client.download(handle, temp_dir)

        assert isinstance(result, ArchiveDownload)
        assert result.path == temp_dir / "artifact.zip"
        assert read_from_zip(result.path, "last-run.txt") == "2025-01-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_default_url(self, temp_dir: Path) -> None:
        """Without an explicit URL the REST zip endpoint is used."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, content=b"")

        async with make_client(handler) as client:
            await client.download(ArtifactHandle(id=9, name="last-run"), temp_dir)

        assert seen == ["/repos/octo/repo/actions/artifacts/9/zip"]

    @pytest.mark.asyncio
    async def test_gone(self, temp_dir: Path) -> None:
        """An expired archive surfaces as ArtifactStoreError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(410)

        async with make_client(handler) as client:
            with pytest.raises(ArtifactStoreError) as exc_info:
                await client.download(ArtifactHandle(id=9, name="last-run"), temp_dir)

        assert exc_info.value.status_code == 410


class TestUpload:
    """Tests for GitHubArtifactClient.upload."""

    @pytest.mark.asyncio
    async def test_upload_flow(self, timestamp_file: Path) -> None:
        """Create, blob upload and finalize are called in order."""
        service = ResultsService()
        async with make_client(
            service, runtime_token=RUNTIME_TOKEN, results_url=RESULTS_URL + "/"
        ) as client:
            ack = await client.upload("last-run", timestamp_file, retention_days=5)

        assert [method for method, _ in service.calls] == ["POST", "PUT", "POST"]
        assert service.calls[0][1] == (
            "/twirp/github.actions.results.api.v1.ArtifactService/CreateArtifact"
        )

        create = service.bodies["create"]
        assert create["name"] == "last-run"
        assert create["version"] == 4
        assert create["workflow_run_backend_id"] == "run-1"
        assert create["workflow_job_run_backend_id"] == "job-2"
        assert create["expires_at"].endswith("Z")

        payload = service.payload
        finalize = service.bodies["finalize"]
        assert finalize["size"] == str(len(payload))
        assert finalize["hash"] == f"sha256:{hashlib.sha256(payload).hexdigest()}"

        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            assert zf.read("last-run.txt").decode() == "2025-01-01T00:00:00.000Z"

        assert ack.artifact_id == 42
        assert ack.name == "last-run"
        assert ack.size == len(payload)

    @pytest.mark.asyncio
    async def test_retry_after_blob_failure_reuses_artifact(self, timestamp_file: Path) -> None:
        """A retried upload skips CreateArtifact once the artifact exists."""
        service = ResultsService(put_failures=1)
        policy = RetryPolicy(retries=2, min_delay=0, max_delay=0)

        async with make_client(
            service, runtime_token=RUNTIME_TOKEN, results_url=RESULTS_URL
        ) as client:
            ack = await with_retry(
                lambda: client.upload("last-run", timestamp_file, retention_days=1),
                policy,
            )

        assert ack.artifact_id == 42
        assert service.count("/CreateArtifact") == 1
        assert sum(1 for method, _ in service.calls if method == "PUT") == 2
        assert service.count("/FinalizeArtifact") == 1

    @pytest.mark.asyncio
    async def test_next_upload_creates_again(self, timestamp_file: Path) -> None:
        """A finalized upload does not leave its signed URL behind."""
        service = ResultsService()
        async with make_client(
            service, runtime_token=RUNTIME_TOKEN, results_url=RESULTS_URL
        ) as client:
            await client.upload("last-run", timestamp_file, retention_days=1)
            await client.upload("last-run", timestamp_file, retention_days=1)

        assert service.count("/CreateArtifact") == 2

    @pytest.mark.asyncio
    async def test_rejected_create(self, timestamp_file: Path) -> None:
        """A service response without ok is an error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False})

        async with make_client(
            handler, runtime_token=RUNTIME_TOKEN, results_url=RESULTS_URL
        ) as client:
            with pytest.raises(ArtifactStoreError, match="CreateArtifact was rejected"):
                await client.upload("last-run", timestamp_file, retention_days=1)

    @pytest.mark.asyncio
    async def test_missing_runtime_credentials(self, temp_dir: Path) -> None:
        """Upload without runtime credentials is a configuration error."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as client:
            with pytest.raises(ConfigurationError, match="ACTIONS_RUNTIME_TOKEN"):
                await client.upload("last-run", temp_dir / "x.txt", retention_days=1)

        assert requests == []


class TestBuildZip:
    """Tests for build_zip."""

    def test_single_entry(self, temp_dir: Path) -> None:
        """The archive holds exactly the file under its own name."""
        file_path = temp_dir / "last-run.txt"
        file_path.write_text("value", encoding="utf-8")

        with zipfile.ZipFile(io.BytesIO(build_zip(file_path))) as zf:
            assert zf.namelist() == ["last-run.txt"]
            assert zf.read("last-run.txt") == b"value"
