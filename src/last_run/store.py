"""
Timestamp store.

Composes the locator, extractor and validator to retrieve the previous
run's timestamp, and a monotonicity guard plus the remote upload to store
the current one. ``run`` drives both according to the configured mode.
"""

import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from last_run.artifacts import ArtifactClient, ArtifactLocator, ContentExtractor
from last_run.config import LastRunConfig, Mode, Operations
from last_run.core.exceptions import UploadError, format_exception
from last_run.retry import RetryPolicy, with_retry
from last_run.validation import (
    ValidationReason,
    format_timestamp,
    parse_timestamp,
    validate_timestamp,
)

logger = logging.getLogger(__name__)

OUTPUT_NAME = "last-run"
MISSING_MESSAGE = "No valid previous run timestamp found."
MAX_REGENERATIONS = 1000

Stage = Callable[[str], AbstractContextManager]


def _no_stage(title: str) -> AbstractContextManager:
    return nullcontext()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def successor(previous: str) -> str:
    """
    Smallest millisecond-precision timestamp after ``previous`` that also
    compares greater as a string.

    Raises:
        ValueError: If no representable timestamp follows ``previous``
    """
    moment = parse_timestamp(previous)
    try:
        candidate = format_timestamp(moment + timedelta(milliseconds=1))
        if candidate <= previous:
            # "...:00Z" sorts after "...:00.001Z"; move to the next whole second
            candidate = format_timestamp(
                moment.replace(microsecond=0) + timedelta(seconds=1)
            )
    except OverflowError as e:
        raise ValueError(f"No timestamp can follow {previous!r}") from e
    return candidate


@dataclass
class RunOutcome:
    """Result of one invocation."""

    operations: Operations
    last_run: str | None = None
    stored: str | None = None
    failures: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        """Return True if the invocation must be reported as failed."""
        return bool(self.failures)

    @property
    def failure_message(self) -> str | None:
        """All failure messages joined, or None."""
        return "; ".join(self.failures) if self.failures else None

    def fail(self, message: str) -> None:
        """Mark the invocation failed without stopping remaining stages."""
        logger.error(message)
        self.failures.append(message)


class TimestampStore:
    """
    Retrieve and store the last-run timestamp.

    Retrieval never raises: absence, malformed data and exhausted retries
    all collapse to None with a warning. Storing raises UploadError when
    the upload cannot be completed.
    """

    def __init__(
        self,
        client: ArtifactClient,
        locator: ArtifactLocator,
        extractor: ContentExtractor,
        *,
        work_dir: Path,
        artifact_name: str = "last-run",
        filename: str = "last-run.txt",
        retention_days: int = 90,
        upload_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._client = client
        self._locator = locator
        self._extractor = extractor
        self._work_dir = work_dir
        self._artifact_name = artifact_name
        self._filename = filename
        self._retention_days = retention_days
        self._upload_policy = upload_policy or RetryPolicy(min_delay=0.5, max_delay=2.0)
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: LastRunConfig,
        client: ArtifactClient,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> "TimestampStore":
        """Build a store and its components from configuration."""
        locator = ArtifactLocator(
            client,
            token=config.token,
            policy=config.list_retry,
            page_size=config.page_size,
            max_pages=config.max_pages,
        )
        extractor = ContentExtractor(
            client,
            token=config.token,
            work_dir=config.work_dir,
            filename=config.filename,
            policy=config.download_retry,
        )
        return cls(
            client,
            locator,
            extractor,
            work_dir=config.work_dir,
            artifact_name=config.artifact_name,
            filename=config.filename,
            retention_days=config.retention_days,
            upload_policy=config.upload_retry,
            clock=clock,
        )

    async def retrieve(self) -> str | None:
        """
        Return the most recent valid stored timestamp, or None.
        """
        try:
            handle = await self._locator.locate_latest(self._artifact_name)
            if handle is None:
                logger.debug("retrieve: no artifact named '%s'", self._artifact_name)
                return None
            raw = await self._extractor.extract(handle)
        except Exception as e:
            logger.warning("Unable to retrieve last run artifact: %s", format_exception(e))
            return None

        result = validate_timestamp(raw)
        logger.debug("retrieve: raw=%r ok=%s reason=%s", raw, result.ok, result.reason)
        if not result.ok:
            if result.reason is ValidationReason.PATTERN:
                logger.warning("Invalid timestamp format in artifact: '%s'", raw)
            elif result.reason is ValidationReason.PARSE:
                logger.warning("Timestamp parse failed: '%s'", raw)
            return None
        return raw

    def next_timestamp(self, previous: str | None = None) -> str:
        """
        Current time, guaranteed strictly greater than ``previous``.

        The clock is re-read up to MAX_REGENERATIONS times; if it still has
        not passed ``previous`` (for instance ``previous`` lies in the
        future) the value is derived from ``previous`` instead.
        """
        value = format_timestamp(self._clock())
        if previous is None:
            return value

        regenerations = 0
        while value <= previous and regenerations < MAX_REGENERATIONS:
            value = format_timestamp(self._clock())
            regenerations += 1
        if value > previous:
            return value

        logger.warning(
            "Clock did not advance past previous timestamp '%s'; using its successor",
            previous,
        )
        return successor(previous)

    async def store(self, previous: str | None = None) -> str:
        """
        Upload the current timestamp and return the stored value.

        Raises:
            UploadError: If writing or uploading the artifact fails
        """
        if previous is not None and not validate_timestamp(previous).ok:
            logger.warning("Ignoring invalid previous timestamp: '%s'", previous)
            previous = None

        file_path = self._work_dir / self._filename
        try:
            value = self.next_timestamp(previous)
            logger.debug("store: uploading %s via %s", value, file_path)
            self._work_dir.mkdir(parents=True, exist_ok=True)
            file_path.write_text(value, encoding="utf-8")
            await with_retry(
                lambda: self._client.upload(
                    self._artifact_name, file_path, retention_days=self._retention_days
                ),
                self._upload_policy,
                label="upload_artifact",
            )
        except Exception as e:
            raise UploadError(
                f"Failed to store last run timestamp: {format_exception(e)}",
                artifact_name=self._artifact_name,
            ) from e

        return value

    async def retrieve_then_store(
        self,
        on_retrieved: Callable[[str | None], None] | None = None,
        *,
        stage: Stage = _no_stage,
    ) -> tuple[str | None, str]:
        """
        Retrieve the previous timestamp, report it, then store a newer one.

        ``on_retrieved`` is called before the upload starts, so the caller
        sees the previous value even if storing fails.

        Raises:
            UploadError: If the store step fails
        """
        with stage("Retrieve last run timestamp"):
            previous = await self.retrieve()
            if on_retrieved is not None:
                on_retrieved(previous)
        with stage("Store current timestamp"):
            stored = await self.store(previous)
        return previous, stored

    async def run(
        self,
        mode: Mode | str,
        *,
        fail_if_missing: bool = False,
        on_output: Callable[[str, str], None] | None = None,
        stage: Stage = _no_stage,
    ) -> RunOutcome:
        """
        Execute one invocation for ``mode``.

        Args:
            mode: Mode or raw mode string (aliases and unknown values allowed)
            fail_if_missing: Fail when no valid previous timestamp exists
            on_output: Receives (name, value) for the retrieved timestamp
            stage: Context manager factory wrapping each stage (log groups)

        Returns:
            RunOutcome describing what happened
        """
        if not isinstance(mode, Mode):
            mode = Mode.parse(mode)
        outcome = RunOutcome(operations=Operations.for_mode(mode))
        logger.debug("run: mode=%s operations=%s", mode.value, outcome.operations)

        def report(previous: str | None) -> None:
            if previous:
                outcome.last_run = previous
                if on_output is not None:
                    on_output(OUTPUT_NAME, previous)
                logger.info("Last run timestamp: %s", previous)
            elif fail_if_missing:
                outcome.fail(MISSING_MESSAGE)
            else:
                logger.warning(MISSING_MESSAGE)

        try:
            if outcome.operations.get and outcome.operations.set:
                _, outcome.stored = await self.retrieve_then_store(report, stage=stage)
            elif outcome.operations.set:
                with stage("Store current timestamp"):
                    outcome.stored = await self.store()
            else:
                with stage("Retrieve last run timestamp"):
                    report(await self.retrieve())
        except UploadError as e:
            outcome.fail(str(e))

        if outcome.stored:
            logger.info("Stored last run timestamp: %s", outcome.stored)
        return outcome
