from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from sanic.log import logger

from themis.exceptions import NotFoundError, ValidationError
from themis.metric import bulk_deleted_counter
from themis.storage import (
    CheckRunRow,
    CheckRunStore,
    CompletedCheckRow,
    RunningCheckRow,
)
from themis.tagcache import (
    CHECK_HISTORY_TAG,
    CHECKS_TAG,
    DASHBOARD_STATS_TAG,
    TaggedCache,
)

INVALIDATED_BY_DELETE = (CHECKS_TAG, DASHBOARD_STATS_TAG, CHECK_HISTORY_TAG)


class StatusService:
    """Per-record reads, always answered from the store."""

    def __init__(self, store: CheckRunStore):
        self.store = store

    def get(self, check_run_id: str) -> CheckRunRow:
        row = self.store.get(check_run_id)
        if row is None:
            raise NotFoundError("Check run not found")
        return row

    def list_completed_since(self, since: datetime) -> list[CompletedCheckRow]:
        return self.store.list_completed_since(since)

    def list_running(self) -> list[RunningCheckRow]:
        return self.store.list_running()

    def history(self, owner: str, repo: str) -> list[CheckRunRow]:
        return self.store.list_for_repository(owner, repo)

    def latest(self, owner: str, repo: str) -> CheckRunRow:
        row = self.store.latest_for_repository(owner, repo)
        if row is None:
            raise NotFoundError("No check runs found for this repository")
        return row


@dataclass(frozen=True)
class BulkDeleteResult:
    deleted_count: int

    @property
    def message(self) -> str:
        plural = "" if self.deleted_count == 1 else "s"
        return f"Successfully deleted {self.deleted_count} check run{plural}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "deletedCount": self.deleted_count,
            "message": self.message,
        }


def validate_check_run_ids(value: Any) -> list[str]:
    if not isinstance(value, list) or not value:
        raise ValidationError("Check run IDs are required")
    if not all(isinstance(item, str) for item in value):
        raise ValidationError("Invalid check run ID format")
    return value


class BulkInvalidator:
    def __init__(self, store: CheckRunStore, cache: TaggedCache):
        self.store = store
        self.cache = cache

    def bulk_delete(self, check_run_ids: Sequence[Any]) -> BulkDeleteResult:
        ids = validate_check_run_ids(check_run_ids)
        count = self.store.delete_many(ids)
        bulk_deleted_counter.inc(count)
        if count < len(ids):
            logger.info(
                "Bulk delete removed %d of %d requested check runs", count, len(ids)
            )
        self.cache.invalidate(*INVALIDATED_BY_DELETE)
        return BulkDeleteResult(deleted_count=count)
