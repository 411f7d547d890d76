from __future__ import annotations

from typing import Any, Optional

import diskcache
import pydantic
from sanic.log import logger

from themis import config
from themis.storage.types import UTCDateTime


class InstallationCache(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    installation_id: str
    total_repositories: int
    cached_at: UTCDateTime


class UserSession(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    github_username: Optional[str] = None
    email: Optional[str] = None
    installation: Optional[InstallationCache] = None

    def to_payload(self) -> dict[str, Any]:
        installation = self.installation
        return {
            "githubUsername": self.github_username,
            "email": self.email,
            "installationId": installation.installation_id if installation else None,
            "totalRepositories": (
                installation.total_repositories if installation else None
            ),
            "installationCachedAt": (
                installation.model_dump(mode="json")["cached_at"]
                if installation
                else None
            ),
        }


class SessionStore(diskcache.Cache):
    session_prefix: str = "session"

    def load_session(self, session_id: Optional[str]) -> Optional[UserSession]:
        if not session_id:
            return None
        data = self.get(f"{self.session_prefix}_{session_id}")
        if data is None:
            return None
        try:
            return UserSession.model_validate(data)
        except pydantic.ValidationError:
            logger.warning("Dropping unreadable session %s", session_id)
            self.delete(f"{self.session_prefix}_{session_id}")
            return None

    def save_session(
        self,
        session_id: str,
        session: UserSession,
        expire: Optional[float] = None,
    ) -> None:
        self.set(
            f"{self.session_prefix}_{session_id}",
            session.model_dump(mode="json"),
            expire=expire,
        )


def get_session_store() -> SessionStore:
    logger.info("Opening session cache dir: %s", config.DISKCACHE_DIR)
    return SessionStore(config.DISKCACHE_DIR + "/sessions")
