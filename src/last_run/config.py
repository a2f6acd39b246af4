"""
Configuration for last-run.

Values come from the GitHub Actions environment: action inputs arrive as
``INPUT_<NAME>`` variables (hyphens kept, name upper-cased) and runner
context as ``GITHUB_*``/``ACTIONS_*``/``RUNNER_*`` variables.
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator

from last_run.core.exceptions import ConfigurationError
from last_run.retry import RetryPolicy

ARTIFACT_NAME = "last-run"
FILENAME = "last-run.txt"
DEFAULT_RETENTION_DAYS = 90

_REPOSITORY_PATTERN = re.compile(r"[^/\s]+/[^/\s]+")
_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off", ""}


class Mode(Enum):
    """Operation selector."""

    GET = "get"
    SET = "set"
    GET_AND_SET = "get-and-set"

    @classmethod
    def parse(cls, raw: str | None) -> "Mode":
        """
        Normalize a raw mode value.

        Blank means ``get``; ``getset`` and ``get_and_set`` are accepted
        spellings of ``get-and-set``; anything unrecognized falls back to
        ``get``.
        """
        value = (raw or "").strip().lower() or cls.GET.value
        if value in ("get-and-set", "getset", "get_and_set"):
            return cls.GET_AND_SET
        if value == cls.SET.value:
            return cls.SET
        return cls.GET


@dataclass(frozen=True)
class Operations:
    """Which stages an invocation runs."""

    get: bool
    set: bool

    @classmethod
    def for_mode(cls, mode: Mode) -> "Operations":
        """Derive the stages for a mode."""
        return cls(
            get=mode in (Mode.GET, Mode.GET_AND_SET),
            set=mode in (Mode.SET, Mode.GET_AND_SET),
        )


class LastRunConfig(BaseModel):
    """Configuration for one last-run invocation."""

    mode: Mode = Mode.GET
    fail_if_missing: bool = False

    token: str | None = Field(default=None, description="Token for listing/downloading")
    repository: str | None = Field(default=None, description="owner/repo")
    api_url: str = "https://api.github.com"
    runtime_token: str | None = Field(default=None, description="ACTIONS_RUNTIME_TOKEN")
    results_url: str | None = Field(default=None, description="ACTIONS_RESULTS_URL")
    work_dir: Path = Field(default_factory=Path.cwd)

    artifact_name: str = ARTIFACT_NAME
    filename: str = FILENAME
    retention_days: int = Field(default=DEFAULT_RETENTION_DAYS, ge=1, le=90)

    list_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(retries=2, factor=2, min_delay=0.25, max_delay=1.0)
    )
    download_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(retries=2, factor=2, min_delay=0.4, max_delay=1.5)
    )
    upload_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(retries=2, factor=2, min_delay=0.5, max_delay=2.0)
    )
    page_size: int = Field(default=100, ge=1, le=100)
    max_pages: int = Field(default=10, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v):
        """Accept any raw string, including aliases and unknown values."""
        if isinstance(v, Mode):
            return v
        return Mode.parse(v)

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v):
        """Ensure repository has the owner/repo shape."""
        if v is not None and not _REPOSITORY_PATTERN.fullmatch(v):
            raise ValueError("repository must look like 'owner/repo'")
        return v

    @property
    def operations(self) -> Operations:
        """Stages selected by the configured mode."""
        return Operations.for_mode(self.mode)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides
    ) -> "LastRunConfig":
        """
        Load configuration from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            **overrides: Explicit values taking precedence over the environment

        Raises:
            ConfigurationError: If a value is malformed
        """
        env = os.environ if environ is None else environ

        values: dict = {
            "mode": env.get("INPUT_MODE", ""),
            "fail_if_missing": _parse_bool(
                env.get("INPUT_FAIL-IF-MISSING", ""), "INPUT_FAIL-IF-MISSING"
            ),
            "token": env.get("INPUT_GITHUB-TOKEN") or env.get("GITHUB_TOKEN") or None,
            "repository": env.get("GITHUB_REPOSITORY") or None,
            "api_url": env.get("GITHUB_API_URL") or "https://api.github.com",
            "runtime_token": env.get("ACTIONS_RUNTIME_TOKEN") or None,
            "results_url": env.get("ACTIONS_RESULTS_URL") or None,
            "work_dir": Path(env.get("RUNNER_TEMP") or Path.cwd()),
        }

        retention = env.get("INPUT_RETENTION-DAYS", "").strip()
        if retention:
            try:
                values["retention_days"] = int(retention)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid retention days: {retention!r}",
                    env_var="INPUT_RETENTION-DAYS",
                ) from e

        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid last-run configuration",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e


def _parse_bool(raw: str, env_var: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean value: {raw!r}", env_var=env_var)
