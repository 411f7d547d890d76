from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from sanic.log import logger

from themis.exceptions import ValidationError
from themis.metric import installation_cache_counter
from themis.sessions import InstallationCache, UserSession

CACHE_TTL = timedelta(minutes=5)


@dataclass(frozen=True)
class InstallationInfo:
    installation_id: str
    total_repositories: int


class InstallationLookup(Protocol):
    async def fetch(self, github_username: str) -> Optional[InstallationInfo]:
        """Return ``None`` when the app is not installed for the user."""
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_cache_valid(
    cached_at: Optional[datetime],
    now: Optional[datetime] = None,
    ttl: timedelta = CACHE_TTL,
) -> bool:
    if cached_at is None:
        return False
    if now is None:
        now = utcnow()
    return now - cached_at < ttl


def with_refreshed_cache(session: UserSession, cache: InstallationCache) -> UserSession:
    return session.model_copy(update={"installation": cache})


def cleared_cache(session: UserSession) -> UserSession:
    return session.model_copy(update={"installation": None})


class InstallationCacheManager:
    """Keeps the installation data on a session fresh.

    All methods return a session snapshot; persisting it is up to the caller.
    """

    def __init__(
        self,
        lookup: InstallationLookup,
        clock: Callable[[], datetime] = utcnow,
        ttl: timedelta = CACHE_TTL,
    ):
        self.lookup = lookup
        self.clock = clock
        self.ttl = ttl

    def is_fresh(self, session: UserSession) -> bool:
        installation = session.installation
        return installation is not None and is_cache_valid(
            installation.cached_at, self.clock(), self.ttl
        )

    async def current_user(self, session: UserSession) -> UserSession:
        if self.is_fresh(session):
            installation_cache_counter.labels(result="hit").inc()
            return session

        try:
            refreshed = await self._fetch(session)
        except Exception:  # noqa: BLE001
            installation_cache_counter.labels(result="error").inc()
            logger.error(
                "Error refreshing installation cache for %s",
                session.github_username,
                exc_info=True,
            )
            return session

        if refreshed is None:
            installation_cache_counter.labels(result="miss").inc()
            return session
        installation_cache_counter.labels(result="refreshed").inc()
        return with_refreshed_cache(session, refreshed)

    async def refresh(self, session: UserSession) -> UserSession:
        if not session.github_username:
            raise ValidationError("GitHub username not found in session")
        refreshed = await self._fetch(session)
        if refreshed is None:
            return cleared_cache(session)
        return with_refreshed_cache(session, refreshed)

    async def _fetch(self, session: UserSession) -> Optional[InstallationCache]:
        if not session.github_username:
            return None
        info = await self.lookup.fetch(session.github_username)
        if info is None:
            return None
        return InstallationCache(
            installation_id=info.installation_id,
            total_repositories=info.total_repositories,
            cached_at=self.clock(),
        )
