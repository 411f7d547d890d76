from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional, Protocol, Sequence

import diskcache
import humanize
import notifiers

from themis.exceptions import ThemisError
from themis.metric import notification_counter
from themis.model import format_check_type
from themis.storage.types import CompletedCheckRow

logger = logging.getLogger("themis")

LEDGER_TTL = timedelta(hours=1)
FEED_WINDOW = timedelta(minutes=5)
POLL_INTERVAL = 10.0

LEDGER_KEY = "themis-notified-checks"


class LedgerStore(Protocol):
    def get_all(self) -> Dict[str, float]:
        ...

    def set_all(self, entries: Mapping[str, float]) -> None:
        ...


class MemoryLedgerStore:
    def __init__(self, entries: Optional[Mapping[str, float]] = None):
        self.entries: Dict[str, float] = dict(entries or {})
        self.writes = 0

    def get_all(self) -> Dict[str, float]:
        return dict(self.entries)

    def set_all(self, entries: Mapping[str, float]) -> None:
        self.writes += 1
        self.entries = dict(entries)


class DiskLedgerStore:
    """Ledger kept in a diskcache directory so it survives restarts."""

    def __init__(self, directory: str, key: str = LEDGER_KEY):
        self.cache = diskcache.Cache(directory)
        self.key = key

    def get_all(self) -> Dict[str, float]:
        data = self.cache.get(self.key)
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("Ignoring unreadable notification ledger")
            return {}
        entries: Dict[str, float] = {}
        for check_id, timestamp in data.items():
            if isinstance(check_id, str) and isinstance(timestamp, (int, float)):
                entries[check_id] = float(timestamp)
        return entries

    def set_all(self, entries: Mapping[str, float]) -> None:
        self.cache.set(self.key, dict(entries))

    def close(self) -> None:
        self.cache.close()


def sweep_expired(
    entries: Mapping[str, float], now: float, ttl: timedelta = LEDGER_TTL
) -> Dict[str, float]:
    cutoff = now - ttl.total_seconds()
    return {
        check_id: timestamp
        for check_id, timestamp in entries.items()
        if timestamp >= cutoff
    }


@dataclass(frozen=True)
class Notification:
    check_run_id: str
    title: str
    message: str
    url: str
    issue_count: int


def build_notification(
    check: CompletedCheckRow, app_url: str, now: Optional[datetime] = None
) -> Notification:
    store = format_check_type(check.check_type)
    message = f"{store} compliance check completed for {check.owner}/{check.repo}!"
    if now is not None:
        message += f" ({humanize.naturaltime(now - check.completed_at)})"
    return Notification(
        check_run_id=check.id,
        title=f"{store} check complete",
        message=message,
        url=f"{app_url.rstrip('/')}/check/results/{check.id}",
        issue_count=check.issue_count,
    )


class NotificationSink(Protocol):
    def __call__(self, notification: Notification) -> None:
        ...


class LogSink:
    def __call__(self, notification: Notification) -> None:
        logger.info(
            "%s %s View results: %s",
            notification.title,
            notification.message,
            notification.url,
        )


class NotifiersSink:
    """Sends notifications through any provider of the ``notifiers`` library."""

    def __init__(self, provider: str, **defaults):
        self.notifier = notifiers.get_notifier(provider)
        if self.notifier is None:
            raise ValueError(f"Unknown notification provider {provider}")
        self.defaults = defaults

    def __call__(self, notification: Notification) -> None:
        text = (
            f"{notification.message}\n"
            f"{humanize.intcomma(notification.issue_count)} issues found\n"
            f"{notification.url}"
        )
        response = self.notifier.notify(message=text, **self.defaults)
        response.raise_on_errors()


CompletedFeed = Callable[[datetime], Awaitable[Sequence[CompletedCheckRow]]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDeduplicator:
    """Emits one notification per completed check run.

    Seen ids are kept in a ledger that is swept once at :meth:`load`; entries
    older than the TTL are dropped there and nowhere else. A check is only
    recorded once its notification was delivered, so a failed delivery is
    retried while the check is still in the feed window. Dismissing a
    notification refreshes its entry.
    """

    def __init__(
        self,
        feed: CompletedFeed,
        store: LedgerStore,
        sink: NotificationSink,
        app_url: str,
        clock: Callable[[], datetime] = utcnow,
        ttl: timedelta = LEDGER_TTL,
        window: timedelta = FEED_WINDOW,
    ):
        self.feed = feed
        self.store = store
        self.sink = sink
        self.app_url = app_url
        self.clock = clock
        self.ttl = ttl
        self.window = window
        self.notified: Dict[str, float] = {}

    def load(self) -> None:
        stored = self.store.get_all()
        cleaned = sweep_expired(stored, self.clock().timestamp(), self.ttl)
        self.notified = cleaned
        if len(cleaned) != len(stored):
            logger.debug(
                "Swept %d expired notification entries", len(stored) - len(cleaned)
            )
            self.store.set_all(cleaned)

    def process(self, checks: Sequence[CompletedCheckRow]) -> list[Notification]:
        emitted: list[Notification] = []
        for check in checks:
            if check.id in self.notified:
                notification_counter.labels(result="suppressed").inc()
                continue

            now = self.clock()
            notification = build_notification(check, self.app_url, now)
            try:
                self.sink(notification)
            except Exception:  # noqa: BLE001
                notification_counter.labels(result="error").inc()
                logger.error(
                    "Could not deliver notification for %s", check.id, exc_info=True
                )
                continue

            self.notified[check.id] = now.timestamp()
            self.store.set_all(self.notified)
            notification_counter.labels(result="sent").inc()
            emitted.append(notification)
        return emitted

    def dismiss(self, check_run_id: str) -> None:
        self.notified[check_run_id] = self.clock().timestamp()
        self.store.set_all(self.notified)

    async def poll_once(self) -> list[Notification]:
        since = self.clock() - self.window
        checks = await self.feed(since)
        return self.process(checks)

    async def run(
        self,
        interval: float = POLL_INTERVAL,
        iterations: Optional[int] = None,
    ) -> None:
        self.load()
        i = 0
        while iterations is None or i < iterations:
            i += 1
            try:
                await self.poll_once()
            except ThemisError as e:
                logger.warning("Failed to fetch completed checks: %s", e.detail)
            if iterations is None or i < iterations:
                await asyncio.sleep(interval)
