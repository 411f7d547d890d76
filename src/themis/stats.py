from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Literal, Optional

from themis.model import ApiModel
from themis.storage import CheckRunRow, CheckRunStore
from themis.tagcache import DASHBOARD_STATS_TAG, TaggedCache

WINDOW = timedelta(days=30)


class Trend(ApiModel):
    value: int
    direction: Literal["up", "down"]

    @classmethod
    def between(cls, current: int, previous: int) -> Trend:
        change = round((current - previous) / previous * 100) if previous > 0 else 0
        return cls(value=abs(change), direction="up" if change >= 0 else "down")


class DashboardStats(ApiModel):
    total_repositories: int
    pending_issues: int
    recent_checks: int
    compliance_rate: int
    issue_trend: Trend


def latest_per_repository(rows: Iterable[CheckRunRow]) -> dict[str, CheckRunRow]:
    latest: dict[str, CheckRunRow] = {}
    for row in rows:
        existing = latest.get(row.repository_id)
        if existing is None or row.created_at > existing.created_at:
            latest[row.repository_id] = row
    return latest


def compute_dashboard_stats(
    store: CheckRunStore, now: datetime, total_repositories: int = 0
) -> DashboardStats:
    recent = store.list_completed_created_between(now - WINDOW, now)
    previous = store.list_completed_created_between(now - 2 * WINDOW, now - WINDOW)

    issue_counts = {
        repo: len(row.issues) for repo, row in latest_per_repository(recent).items()
    }
    pending_issues = sum(issue_counts.values())
    previous_pending_issues = sum(
        len(row.issues) for row in latest_per_repository(previous).values()
    )

    if issue_counts:
        compliant = sum(1 for count in issue_counts.values() if count == 0)
        compliance_rate = round(compliant / len(issue_counts) * 100)
    else:
        compliance_rate = 100

    return DashboardStats(
        total_repositories=total_repositories,
        pending_issues=pending_issues,
        recent_checks=len(recent),
        compliance_rate=compliance_rate,
        issue_trend=Trend.between(pending_issues, previous_pending_issues),
    )


class DashboardStatsReader:
    def __init__(self, store: CheckRunStore, cache: TaggedCache):
        self.store = store
        self.cache = cache

    def get(self, now: datetime, total_repositories: Optional[int] = None) -> DashboardStats:
        total = total_repositories or 0
        return self.cache.get_or_compute(
            DASHBOARD_STATS_TAG,
            total,
            lambda: compute_dashboard_stats(self.store, now, total),
        )
