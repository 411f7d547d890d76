from __future__ import annotations

import asyncio
from dataclasses import dataclass
import enum
import logging
from typing import Awaitable, Callable, Mapping, Optional, Protocol

from themis.exceptions import (
    MissingPrerequisiteError,
    PollTimeoutError,
    TransientFetchError,
    TriggerError,
)
from themis.model import CheckStatus, CheckType, IssueSummary
from themis.storage.types import CheckRunRow

logger = logging.getLogger("themis")

POLL_INTERVAL = 5.0
MAX_ATTEMPTS = 60

ACTIVE_STATUSES = frozenset({CheckStatus.PENDING, CheckStatus.IN_PROGRESS})

Sleep = Callable[[float], Awaitable[None]]


class ChecksApi(Protocol):
    async def trigger_check(
        self, owner: str, repo: str, branch_name: str, check_type: CheckType
    ) -> str:
        ...

    async def get_check(self, check_run_id: str) -> CheckRunRow:
        ...

    def results_url(self, check_run_id: str) -> str:
        ...


class Outcome(str, enum.Enum):
    PASSED = "passed"
    JOB_FAILED = "job_failed"
    HIGH_SEVERITY = "high_severity"
    TIMEOUT = "timeout"
    MISSING_PREREQUISITE = "missing_prerequisite"
    TRIGGER_FAILED = "trigger_failed"

    @property
    def exit_code(self) -> int:
        return 0 if self is Outcome.PASSED else 1


@dataclass(frozen=True)
class PollerSettings:
    api_key: str
    app_url: str
    owner: str
    repo: str
    branch: str
    check_type: CheckType

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> PollerSettings:
        api_key = environ.get("THEMIS_API_KEY")
        if not api_key:
            raise MissingPrerequisiteError(
                "THEMIS_API_KEY environment variable is required"
            )

        repository = environ.get("GITHUB_REPOSITORY")
        if not repository:
            raise MissingPrerequisiteError(
                'GITHUB_REPOSITORY environment variable is required (e.g. "owner/repo")'
            )
        owner, _, repo = repository.partition("/")
        if not owner or not repo or "/" in repo:
            raise MissingPrerequisiteError(
                f'GITHUB_REPOSITORY must look like "owner/repo", got "{repository}"'
            )

        raw_check_type = environ.get("THEMIS_CHECK_TYPE") or "MOBILE_PLATFORMS"
        try:
            check_type = CheckType(raw_check_type)
        except ValueError:
            raise MissingPrerequisiteError(
                f"THEMIS_CHECK_TYPE must be one of "
                f"{', '.join(t.value for t in CheckType)}, got {raw_check_type}"
            ) from None

        return cls(
            api_key=api_key,
            app_url=environ.get("THEMIS_APP_URL") or "http://localhost:3000",
            owner=owner,
            repo=repo,
            branch=environ.get("GITHUB_REF_NAME") or "main",
            check_type=check_type,
        )


@dataclass(frozen=True)
class PollResult:
    outcome: Outcome
    detail: str = ""
    check_run_id: Optional[str] = None
    attempts: int = 0
    summary: Optional[IssueSummary] = None

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code


async def poll_until_terminal(
    api: ChecksApi,
    check_run_id: str,
    *,
    interval: float = POLL_INTERVAL,
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Sleep = asyncio.sleep,
) -> tuple[CheckRunRow, int]:
    """Poll a check run until it leaves PENDING/IN_PROGRESS.

    Every fetch counts against ``max_attempts``, including failed ones, so a
    backend that stays unreachable ends in :class:`PollTimeoutError`.
    """
    attempts = 0
    check_run: Optional[CheckRunRow] = None
    while check_run is None or check_run.status in ACTIVE_STATUSES:
        if attempts >= max_attempts:
            raise PollTimeoutError(
                f"Check timed out after {attempts} attempts "
                f"({attempts * interval:.0f}s)"
            )

        await sleep(interval)
        attempts += 1

        try:
            fetched = await api.get_check(check_run_id)
        except TransientFetchError as e:
            logger.warning(
                "Failed to fetch status (attempt %d/%d), retrying: %s",
                attempts,
                max_attempts,
                e.detail,
            )
            continue

        logger.debug("Check run %s is %s", check_run_id, fetched.status.value)
        check_run = fetched

    return check_run, attempts


async def run_check(
    settings: PollerSettings,
    api: ChecksApi,
    *,
    interval: float = POLL_INTERVAL,
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Sleep = asyncio.sleep,
    echo: Callable[[str], None] = print,
) -> PollResult:
    echo(
        f"Starting Themis compliance check for "
        f"{settings.owner}/{settings.repo}@{settings.branch}..."
    )

    try:
        check_run_id = await api.trigger_check(
            settings.owner, settings.repo, settings.branch, settings.check_type
        )
    except TriggerError as e:
        return PollResult(outcome=Outcome.TRIGGER_FAILED, detail=e.detail)

    echo(f"Check started! ID: {check_run_id}")
    echo(f"View results at: {api.results_url(check_run_id)}")

    try:
        check_run, attempts = await poll_until_terminal(
            api,
            check_run_id,
            interval=interval,
            max_attempts=max_attempts,
            sleep=sleep,
        )
    except PollTimeoutError as e:
        return PollResult(
            outcome=Outcome.TIMEOUT,
            detail=e.detail,
            check_run_id=check_run_id,
            attempts=max_attempts,
        )

    if check_run.status == CheckStatus.FAILED:
        return PollResult(
            outcome=Outcome.JOB_FAILED,
            detail=check_run.error_message or "Unknown error",
            check_run_id=check_run_id,
            attempts=attempts,
        )

    summary = IssueSummary.from_issues(check_run.issues)
    outcome = Outcome.HIGH_SEVERITY if summary.high_severity > 0 else Outcome.PASSED
    return PollResult(
        outcome=outcome,
        check_run_id=check_run_id,
        attempts=attempts,
        summary=summary,
    )


def describe(result: PollResult) -> list[str]:
    lines: list[str] = []
    if result.summary is not None:
        summary = result.summary
        lines += [
            "Analysis Complete!",
            "----------------------------------------",
            f"Total Issues: {summary.total_issues}",
            f"High Severity: {summary.high_severity}",
            f"Medium Severity: {summary.medium_severity}",
            f"Low Severity: {summary.low_severity}",
            "----------------------------------------",
        ]

    if result.outcome is Outcome.PASSED:
        lines.append("Check passed!")
    elif result.outcome is Outcome.HIGH_SEVERITY:
        lines.append("Build failed: Critical/High severity issues found.")
    elif result.outcome is Outcome.JOB_FAILED:
        lines.append("Check failed to complete!")
        lines.append(f"Error: {result.detail}")
    else:
        lines.append(f"Error: {result.detail}")
    return lines
