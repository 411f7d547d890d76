from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiohttp
import gidgethub
from gidgethub import aiohttp as gh_aiohttp
from gidgethub.apps import get_installation_access_token, get_jwt
from sanic.log import logger

from themis.exceptions import NotFoundError, TriggerError
from themis.installation import InstallationInfo

GITHUB_API_URL = "https://api.github.com"


class GitHubAppClient:
    gh_requester: str = "themis"

    def __init__(
        self,
        app_id: Optional[int],
        private_key: Optional[str],
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = GITHUB_API_URL,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.session = session
        self.base_url = base_url
        self.call_count = 0

    def _api(self, session: aiohttp.ClientSession) -> gh_aiohttp.GitHubAPI:
        return gh_aiohttp.GitHubAPI(session, self.gh_requester, base_url=self.base_url)

    async def _access_token(self, gh: gh_aiohttp.GitHubAPI, installation_id: int) -> str:
        self.call_count += 1
        logger.debug("Getting installation access token for %d", installation_id)
        response = await get_installation_access_token(
            gh,
            installation_id=installation_id,
            app_id=str(self.app_id),
            private_key=self.private_key,
        )
        return response["token"]

    @asynccontextmanager
    async def _client_session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            yield self.session
            return
        async with aiohttp.ClientSession() as session:
            yield session


class GitHubInstallationLookup(GitHubAppClient):
    async def fetch(self, github_username: str) -> Optional[InstallationInfo]:
        async with self._client_session() as session:
            gh = self._api(session)
            jwt = get_jwt(app_id=self.app_id, private_key=self.private_key)

            self.call_count += 1
            logger.debug("Get installation for user %s", github_username)
            try:
                installation = await gh.getitem(
                    "/users/{username}/installation",
                    {"username": github_username},
                    jwt=jwt,
                )
            except gidgethub.BadRequest as e:
                if e.status_code == 404:
                    logger.debug("App not installed for %s", github_username)
                    return None
                raise

            installation_id = installation["id"]
            token = await self._access_token(gh, installation_id)

            self.call_count += 1
            repos = await gh.getitem(
                "/installation/repositories?per_page=1", oauth_token=token
            )

        return InstallationInfo(
            installation_id=str(installation_id),
            total_repositories=repos.get("total_count") or 0,
        )


class GitHubRepositoryLookup(GitHubAppClient):
    """Resolves repository ids for ``POST /checks``.

    With app credentials and an installation id the request uses an
    installation token; otherwise it is anonymous and sees public
    repositories only.
    """

    def __init__(self, *args, installation_id: Optional[int] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.installation_id = installation_id

    async def resolve(self, repo_id: int) -> tuple[str, str]:
        async with self._client_session() as session:
            gh = self._api(session)
            token = None
            if self.installation_id is not None and self.app_id is not None:
                token = await self._access_token(gh, self.installation_id)

            self.call_count += 1
            logger.debug("Resolving repository %d", repo_id)
            try:
                data = await gh.getitem(
                    "/repositories/{id}", {"id": repo_id}, oauth_token=token
                )
            except gidgethub.BadRequest as e:
                if e.status_code == 404:
                    raise NotFoundError(f"Repository {repo_id} not found") from e
                raise TriggerError(f"Could not resolve repository {repo_id}: {e}") from e
            except gidgethub.GitHubException as e:
                raise TriggerError(f"Could not resolve repository {repo_id}: {e}") from e

        return data["owner"]["login"], data["name"]


class UnavailableInstallationLookup:
    async def fetch(self, github_username: str) -> Optional[InstallationInfo]:
        raise RuntimeError("GitHub App credentials are not configured")
