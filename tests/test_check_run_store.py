from datetime import timedelta
import sqlite3

import pytest

from themis.db_migrations import current_revision, migrate_db
from themis.exceptions import AnalysisErrorType, InvalidTransition
from themis.model import CheckStatus, CheckType, Issue
from themis.storage import CheckRunStore


def make_issues(*severities: str) -> list[Issue]:
    return [
        Issue(severity=severity, description=f"{severity} issue {i}")
        for i, severity in enumerate(severities)
    ]


def create(store, owner="org", repo="app", check_type=CheckType.APPLE_APP_STORE):
    return store.create(
        owner=owner, repo=repo, branch_name="main", check_type=check_type
    )


def test_initialize_schema(tmp_path):
    db_path = tmp_path / "themis.sqlite3"
    store = CheckRunStore(str(db_path))
    store.initialize()
    store.initialize()

    with sqlite3.connect(str(db_path)) as conn:
        tables = {
            row[0]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }

    assert "check_runs" in tables


def test_initialized_database_accepts_migrations(tmp_path):
    db_path = tmp_path / "themis.sqlite3"
    CheckRunStore(str(db_path)).initialize()

    migrate_db(db_path)

    assert current_revision(db_path) == "0002_add_worker_claim_and_error_type"


def test_initialize_on_migrated_database(tmp_path):
    db_path = tmp_path / "themis.sqlite3"
    migrate_db(db_path)
    store = CheckRunStore(str(db_path))

    store.initialize()

    assert current_revision(db_path) == "0002_add_worker_claim_and_error_type"
    assert store.create(owner="org", repo="app", check_type=CheckType.BOTH)


def test_created_check_run_is_pending_without_completion(store, clock):
    row = create(store)

    assert row.status == CheckStatus.PENDING
    assert row.repository_id == "org/app"
    assert row.created_at == clock.now
    assert row.completed_at is None
    assert row.issues == []
    assert row.error_message is None
    assert store.get(row.id) == row


def test_unknown_id_returns_none(store):
    assert store.get("does-not-exist") is None


def test_claim_succeeds_only_once(store):
    row = create(store)

    assert store.claim(row.id)
    assert not store.claim(row.id)
    assert store.get(row.id).status == CheckStatus.IN_PROGRESS
    assert store.get(row.id).started_at is not None
    assert store.get(row.id).completed_at is None


def test_complete_sets_issues_and_completed_at_once(store, clock):
    row = create(store)
    store.claim(row.id)
    clock.advance(seconds=42)

    done = store.complete(row.id, make_issues("high", "low"))

    assert done.status == CheckStatus.COMPLETED
    assert done.completed_at == clock.now
    assert [issue.severity.value for issue in done.issues] == ["high", "low"]
    assert done.summary.high_severity == 1

    clock.advance(seconds=10)
    with pytest.raises(InvalidTransition):
        store.complete(row.id, [])
    with pytest.raises(InvalidTransition):
        store.fail(row.id, "late failure")

    assert store.get(row.id).completed_at == done.completed_at


def test_complete_requires_claim(store):
    row = create(store)

    with pytest.raises(InvalidTransition):
        store.complete(row.id, [])

    assert store.get(row.id).status == CheckStatus.PENDING


def test_fail_records_message_and_type(store):
    row = create(store)
    store.claim(row.id)

    failed = store.fail(row.id, "model overloaded", AnalysisErrorType.AI_SERVICE_ERROR)

    assert failed.status == CheckStatus.FAILED
    assert failed.error_message == "model overloaded"
    assert failed.error_type == "AI_SERVICE_ERROR"
    assert failed.issues == []
    assert failed.completed_at is not None
    assert not store.claim(row.id)


def test_pending_check_run_can_fail_directly(store):
    row = create(store)

    failed = store.fail(row.id, "could not start")

    assert failed.status == CheckStatus.FAILED
    assert failed.error_type == "UNKNOWN"


def test_completed_payload_includes_summary(store):
    row = create(store)
    store.claim(row.id)
    done = store.complete(row.id, make_issues("high", "medium", "medium"))

    payload = done.to_payload()

    assert payload["status"] == "COMPLETED"
    assert payload["checkType"] == "APPLE_APP_STORE"
    assert payload["summary"] == {
        "totalIssues": 3,
        "highSeverity": 1,
        "mediumSeverity": 2,
        "lowSeverity": 0,
    }
    assert "summary" not in create(store).to_payload()


def test_issue_extra_fields_survive_storage(store):
    row = create(store)
    store.claim(row.id)
    issue = Issue(severity="low", description="d", file="Info.plist", rule="5.1.1")
    store.complete(row.id, [issue])

    stored = store.get(row.id).issues[0]

    assert stored.model_dump() == {
        "severity": "low",
        "description": "d",
        "file": "Info.plist",
        "rule": "5.1.1",
    }


def test_list_completed_since_orders_and_counts(store, clock):
    first = create(store, repo="one")
    second = create(store, repo="two")
    running = create(store, repo="three")
    failed = create(store, repo="four")
    for row in (first, second, running, failed):
        store.claim(row.id)

    store.complete(first.id, make_issues("low"))
    clock.advance(minutes=1)
    store.complete(second.id, make_issues("low", "high"))
    store.fail(failed.id, "boom")

    since = clock.now - timedelta(minutes=5)
    completed = store.list_completed_since(since)

    assert [row.id for row in completed] == [second.id, first.id]
    assert [row.issue_count for row in completed] == [2, 1]
    assert completed[0].to_payload()["issueCount"] == 2

    assert store.list_completed_since(clock.now + timedelta(seconds=1)) == []


def test_list_completed_since_tolerates_malformed_issues(store, clock):
    row = create(store)
    store.claim(row.id)
    store.complete(row.id, [])

    with sqlite3.connect(str(store.db_path)) as conn:
        conn.execute(
            "UPDATE check_runs SET issues_json = ? WHERE id = ?", ("{not json", row.id)
        )
        conn.commit()

    completed = store.list_completed_since(clock.now - timedelta(minutes=1))
    assert completed[0].issue_count == 0
    assert store.get(row.id).issues == []


def test_list_running_and_repository_history(store, clock):
    old = create(store)
    clock.advance(seconds=5)
    new = create(store)
    create(store, repo="other")
    store.claim(new.id)

    assert [row.id for row in store.list_running()] == [new.id]
    assert [row.id for row in store.list_for_repository("org", "app")] == [
        new.id,
        old.id,
    ]
    assert store.latest_for_repository("org", "app").id == new.id
    assert store.latest_for_repository("org", "missing") is None


def test_pending_ids_oldest_first(store, clock):
    first = create(store)
    clock.advance(seconds=1)
    second = create(store)
    clock.advance(seconds=1)
    third = create(store)
    store.claim(second.id)

    assert store.pending_ids(10) == [first.id, third.id]
    assert store.pending_ids(1) == [first.id]


def test_delete_many_reports_rows_removed(store):
    a = create(store)
    c = create(store)

    assert store.delete_many([a.id, "b", c.id]) == 2
    assert store.get(a.id) is None
    assert store.delete_many([]) == 0
