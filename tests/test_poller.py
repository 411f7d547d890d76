from datetime import datetime, timezone

import pytest

from themis.exceptions import MissingPrerequisiteError, TransientFetchError, TriggerError
from themis.model import CheckStatus, CheckType
from themis.poller import (
    MAX_ATTEMPTS,
    Outcome,
    PollerSettings,
    PollResult,
    describe,
    run_check,
)
from themis.storage.types import CheckRunRow

SETTINGS = PollerSettings(
    api_key="secret",
    app_url="https://themis.example",
    owner="org",
    repo="app",
    branch="main",
    check_type=CheckType.MOBILE_PLATFORMS,
)


def check_run(status: CheckStatus, **kwargs) -> CheckRunRow:
    return CheckRunRow(
        id="run-1",
        repository_id="org/app",
        owner="org",
        repo="app",
        check_type=CheckType.MOBILE_PLATFORMS,
        status=status,
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        **kwargs,
    )


class FakeApi:
    def __init__(self, responses, trigger_error=None):
        self.responses = list(responses)
        self.trigger_error = trigger_error
        self.fetches = 0

    async def trigger_check(self, owner, repo, branch_name, check_type):
        if self.trigger_error is not None:
            raise self.trigger_error
        return "run-1"

    async def get_check(self, check_run_id):
        self.fetches += 1
        response = self.responses[min(self.fetches, len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    def results_url(self, check_run_id):
        return f"https://themis.example/check/results/{check_run_id}"


class FakeSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


async def run(api, **kwargs):
    sleep = FakeSleep()
    lines: list[str] = []
    result = await run_check(SETTINGS, api, sleep=sleep, echo=lines.append, **kwargs)
    return result, sleep, lines


@pytest.mark.asyncio
async def test_passes_after_progressing_to_completed():
    api = FakeApi(
        [
            check_run(CheckStatus.PENDING),
            check_run(CheckStatus.PENDING),
            check_run(CheckStatus.IN_PROGRESS),
            check_run(
                CheckStatus.COMPLETED,
                issues=[{"severity": "low", "description": "wording"}],
            ),
        ]
    )

    result, sleep, lines = await run(api)

    assert result.outcome is Outcome.PASSED
    assert result.exit_code == 0
    assert result.attempts == 4
    assert api.fetches == 4
    assert sleep.calls == [5.0, 5.0, 5.0, 5.0]
    assert result.summary.low_severity == 1
    assert "View results at: https://themis.example/check/results/run-1" in lines


@pytest.mark.asyncio
async def test_times_out_after_max_attempts():
    api = FakeApi([check_run(CheckStatus.IN_PROGRESS)])

    result, sleep, _ = await run(api)

    assert result.outcome is Outcome.TIMEOUT
    assert result.exit_code == 1
    assert api.fetches == MAX_ATTEMPTS == 60
    assert len(sleep.calls) == 60
    assert "300s" in result.detail


@pytest.mark.asyncio
async def test_transient_failures_count_towards_budget():
    api = FakeApi([TransientFetchError("503 Service Unavailable")])

    result, _, _ = await run(api, max_attempts=3)

    assert result.outcome is Outcome.TIMEOUT
    assert api.fetches == 3


@pytest.mark.asyncio
async def test_recovers_from_transient_failure():
    api = FakeApi(
        [
            TransientFetchError("connection reset"),
            check_run(CheckStatus.COMPLETED),
        ]
    )

    result, _, _ = await run(api)

    assert result.outcome is Outcome.PASSED
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_failed_job_reports_error_message():
    api = FakeApi(
        [check_run(CheckStatus.FAILED, error_message="Repository not accessible")]
    )

    result, _, _ = await run(api)

    assert result.outcome is Outcome.JOB_FAILED
    assert result.exit_code == 1
    assert result.detail == "Repository not accessible"
    assert describe(result)[-1] == "Error: Repository not accessible"


@pytest.mark.asyncio
async def test_high_severity_issue_fails_build():
    api = FakeApi(
        [
            check_run(
                CheckStatus.COMPLETED,
                issues=[
                    {"severity": "high", "description": "private API use"},
                    {"severity": "medium", "description": "missing privacy label"},
                ],
            )
        ]
    )

    result, _, _ = await run(api)

    assert result.outcome is Outcome.HIGH_SEVERITY
    assert result.exit_code == 1
    lines = describe(result)
    assert "High Severity: 1" in lines
    assert lines[-1] == "Build failed: Critical/High severity issues found."


@pytest.mark.asyncio
async def test_trigger_failure_does_not_poll():
    api = FakeApi([], trigger_error=TriggerError("Failed to trigger check: 401"))

    result, sleep, _ = await run(api)

    assert result.outcome is Outcome.TRIGGER_FAILED
    assert result.exit_code == 1
    assert sleep.calls == []
    assert api.fetches == 0


def test_only_passed_exits_zero():
    assert [o for o in Outcome if o.exit_code == 0] == [Outcome.PASSED]


def test_describe_passed():
    assert describe(PollResult(outcome=Outcome.PASSED)) == ["Check passed!"]


def test_settings_from_env():
    settings = PollerSettings.from_env(
        {
            "THEMIS_API_KEY": "secret",
            "GITHUB_REPOSITORY": "org/app",
            "GITHUB_REF_NAME": "feature",
            "THEMIS_CHECK_TYPE": "APPLE_APP_STORE",
        }
    )

    assert (settings.owner, settings.repo, settings.branch) == ("org", "app", "feature")
    assert settings.check_type == CheckType.APPLE_APP_STORE
    assert settings.app_url == "http://localhost:3000"


def test_settings_defaults():
    settings = PollerSettings.from_env(
        {"THEMIS_API_KEY": "secret", "GITHUB_REPOSITORY": "org/app"}
    )

    assert settings.branch == "main"
    assert settings.check_type == CheckType.MOBILE_PLATFORMS


@pytest.mark.parametrize(
    "environ",
    [
        {"GITHUB_REPOSITORY": "org/app"},
        {"THEMIS_API_KEY": "secret"},
        {"THEMIS_API_KEY": "secret", "GITHUB_REPOSITORY": "org"},
        {"THEMIS_API_KEY": "secret", "GITHUB_REPOSITORY": "org/app/extra"},
        {
            "THEMIS_API_KEY": "secret",
            "GITHUB_REPOSITORY": "org/app",
            "THEMIS_CHECK_TYPE": "WINDOWS",
        },
    ],
)
def test_settings_missing_prerequisite(environ):
    with pytest.raises(MissingPrerequisiteError):
        PollerSettings.from_env(environ)
