from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import json
from pathlib import Path
import sqlite3
from typing import Any, Callable, Iterator, Optional, Sequence
import uuid

from sanic.log import logger

from themis.db_migrations import migrate_db
from themis.exceptions import AnalysisErrorType, InvalidTransition
from themis.metric import check_transition_counter
from themis.model import CheckStatus, CheckType, Issue
from themis.storage.types import (
    CheckRunRow,
    CompletedCheckRow,
    RunningCheckRow,
    format_utc_datetime,
    issue_count,
)


_ROW_COLUMNS = """
    id, repository_id, owner, repo, branch_name, check_type, status,
    issues_json AS issues, error_type, error_message,
    created_at, started_at, completed_at
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckRunStore:
    def __init__(
        self,
        db_path: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = Path(db_path)
        self.clock = clock

    def initialize(self) -> None:
        migrate_db(self.db_path)

    def create(
        self,
        *,
        owner: str,
        repo: str,
        check_type: CheckType,
        branch_name: Optional[str] = None,
    ) -> CheckRunRow:
        check_run_id = str(uuid.uuid4())
        now = format_utc_datetime(self.clock())
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO check_runs (
                    id,
                    repository_id,
                    owner,
                    repo,
                    branch_name,
                    check_type,
                    status,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    check_run_id,
                    f"{owner}/{repo}",
                    owner,
                    repo,
                    branch_name,
                    CheckType(check_type).value,
                    CheckStatus.PENDING.value,
                    now,
                ),
            )
            row = self._fetch(conn, check_run_id)
        assert row is not None
        logger.debug("Created check run %s for %s", check_run_id, row.repository_id)
        return row

    def get(self, check_run_id: str) -> Optional[CheckRunRow]:
        with self._connection() as conn:
            return self._fetch(conn, check_run_id)

    def claim(self, check_run_id: str) -> bool:
        """Move a PENDING check run to IN_PROGRESS.

        The update is conditional on the current status, so of several
        concurrent callers at most one gets ``True``.
        """
        now = format_utc_datetime(self.clock())
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE check_runs
                SET status = ?, started_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    CheckStatus.IN_PROGRESS.value,
                    now,
                    check_run_id,
                    CheckStatus.PENDING.value,
                ),
            )
            claimed = cursor.rowcount == 1
        check_transition_counter.labels(
            status=CheckStatus.IN_PROGRESS.value,
            result="applied" if claimed else "lost",
        ).inc()
        return claimed

    def complete(self, check_run_id: str, issues: Sequence[Issue]) -> CheckRunRow:
        issues_json = json.dumps(
            [issue.model_dump(mode="json") for issue in issues],
            separators=(",", ":"),
        )
        return self._finish(
            check_run_id,
            CheckStatus.COMPLETED,
            from_statuses=(CheckStatus.IN_PROGRESS,),
            issues_json=issues_json,
        )

    def fail(
        self,
        check_run_id: str,
        error_message: str,
        error_type: AnalysisErrorType = AnalysisErrorType.UNKNOWN,
    ) -> CheckRunRow:
        return self._finish(
            check_run_id,
            CheckStatus.FAILED,
            from_statuses=(CheckStatus.PENDING, CheckStatus.IN_PROGRESS),
            error_message=error_message,
            error_type=AnalysisErrorType(error_type).value,
        )

    def _finish(
        self,
        check_run_id: str,
        status: CheckStatus,
        *,
        from_statuses: Sequence[CheckStatus],
        issues_json: Optional[str] = None,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> CheckRunRow:
        now = format_utc_datetime(self.clock())
        placeholders = ", ".join("?" for _ in from_statuses)
        with self._connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE check_runs
                SET status = ?,
                    issues_json = ?,
                    error_message = ?,
                    error_type = ?,
                    completed_at = ?
                WHERE id = ?
                  AND completed_at IS NULL
                  AND status IN ({placeholders})
                """,
                (
                    status.value,
                    issues_json,
                    error_message,
                    error_type,
                    now,
                    check_run_id,
                    *(s.value for s in from_statuses),
                ),
            )
            if cursor.rowcount != 1:
                check_transition_counter.labels(
                    status=status.value, result="rejected"
                ).inc()
                current = self._fetch(conn, check_run_id)
                raise InvalidTransition(
                    f"Cannot move check run {check_run_id} to {status.value} "
                    f"from {current.status.value if current else 'missing'}"
                )
            row = self._fetch(conn, check_run_id)
        check_transition_counter.labels(status=status.value, result="applied").inc()
        assert row is not None
        return row

    def pending_ids(self, limit: int) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id FROM check_runs
                WHERE status = ?
                ORDER BY created_at ASC
                LIMIT ?
                """,
                (CheckStatus.PENDING.value, limit),
            ).fetchall()
        return [row["id"] for row in rows]

    def list_completed_since(self, since: datetime) -> list[CompletedCheckRow]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, repository_id, owner, repo, check_type,
                       completed_at, issues_json
                FROM check_runs
                WHERE status = ? AND completed_at >= ?
                ORDER BY completed_at DESC
                """,
                (CheckStatus.COMPLETED.value, format_utc_datetime(since)),
            ).fetchall()
        return [
            CompletedCheckRow(
                **{k: row[k] for k in row.keys() if k != "issues_json"},
                issue_count=issue_count(row["issues_json"]),
            )
            for row in rows
        ]

    def list_running(self) -> list[RunningCheckRow]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, repository_id, owner, repo, check_type, status, created_at
                FROM check_runs
                WHERE status = ?
                ORDER BY created_at DESC
                """,
                (CheckStatus.IN_PROGRESS.value,),
            ).fetchall()
        return [RunningCheckRow(**dict(row)) for row in rows]

    def list_for_repository(self, owner: str, repo: str) -> list[CheckRunRow]:
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_ROW_COLUMNS}
                FROM check_runs
                WHERE owner = ? AND repo = ?
                ORDER BY created_at DESC
                """,
                (owner, repo),
            ).fetchall()
        return [self._to_row(row) for row in rows]

    def latest_for_repository(self, owner: str, repo: str) -> Optional[CheckRunRow]:
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_ROW_COLUMNS}
                FROM check_runs
                WHERE owner = ? AND repo = ?
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (owner, repo),
            ).fetchone()
        return None if row is None else self._to_row(row)

    def list_completed_created_between(
        self, start: datetime, end: datetime
    ) -> list[CheckRunRow]:
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_ROW_COLUMNS}
                FROM check_runs
                WHERE status = ? AND created_at >= ? AND created_at < ?
                ORDER BY created_at DESC
                """,
                (
                    CheckStatus.COMPLETED.value,
                    format_utc_datetime(start),
                    format_utc_datetime(end),
                ),
            ).fetchall()
        return [self._to_row(row) for row in rows]

    def delete_many(self, check_run_ids: Sequence[str]) -> int:
        if not check_run_ids:
            return 0
        placeholders = ", ".join("?" for _ in check_run_ids)
        with self._connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM check_runs WHERE id IN ({placeholders})",
                tuple(check_run_ids),
            )
            return cursor.rowcount

    def _fetch(self, conn: sqlite3.Connection, check_run_id: str) -> Optional[CheckRunRow]:
        row = conn.execute(
            f"SELECT {_ROW_COLUMNS} FROM check_runs WHERE id = ?",
            (check_run_id,),
        ).fetchone()
        return None if row is None else self._to_row(row)

    @staticmethod
    def _to_row(row: sqlite3.Row) -> CheckRunRow:
        data: dict[str, Any] = dict(row)
        try:
            return CheckRunRow(**data)
        except ValueError:
            logger.warning("Discarding malformed issues of check run %s", data["id"])
            data["issues"] = None
            return CheckRunRow(**data)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=10000")
            with conn:
                yield conn
        finally:
            conn.close()
