from datetime import datetime, timezone

from aiohttp import web
from aiohttp.test_utils import TestServer
import gidgethub
import pytest

from themis.exceptions import NotFoundError, TriggerError
from themis.github import GitHubInstallationLookup, GitHubRepositoryLookup
from themis.installation import InstallationCacheManager, InstallationInfo
from themis.sessions import UserSession


@pytest.fixture(autouse=True)
def fake_jwt(monkeypatch):
    def get_jwt(*, app_id, private_key, expiration=600):
        return f"jwt-{app_id}"

    monkeypatch.setattr("themis.github.api.get_jwt", get_jwt)
    monkeypatch.setattr("gidgethub.apps.get_jwt", get_jwt)


class FakeGitHub:
    def __init__(self, installation_status=200, repositories_status=200):
        self.installation_status = installation_status
        self.repositories_status = repositories_status
        self.requests: list[tuple[str, str]] = []

    def routes(self):
        return [
            web.get("/users/{username}/installation", self.installation),
            web.post("/app/installations/{id}/access_tokens", self.access_token),
            web.get("/installation/repositories", self.installation_repositories),
            web.get("/repositories/{id}", self.repository),
        ]

    def record(self, request):
        self.requests.append((request.path, request.headers.get("Authorization")))

    async def installation(self, request):
        self.record(request)
        if self.installation_status != 200:
            return web.json_response(
                {"message": "Not Found"}, status=self.installation_status
            )
        return web.json_response({"id": 4242, "account": {"login": "octocat"}})

    async def access_token(self, request):
        self.record(request)
        return web.json_response(
            {"token": f"token-{request.match_info['id']}"}, status=201
        )

    async def installation_repositories(self, request):
        self.record(request)
        assert request.query["per_page"] == "1"
        return web.json_response({"total_count": 17, "repositories": [{}]})

    async def repository(self, request):
        self.record(request)
        if self.repositories_status != 200:
            return web.json_response(
                {"message": "Not Found"}, status=self.repositories_status
            )
        return web.json_response(
            {
                "id": int(request.match_info["id"]),
                "name": "Hello-World",
                "owner": {"login": "octocat"},
            }
        )


def serve(github: FakeGitHub) -> TestServer:
    app = web.Application()
    app.add_routes(github.routes())
    return TestServer(app)


@pytest.mark.asyncio
async def test_installation_lookup_counts_repositories():
    github = FakeGitHub()
    async with serve(github) as server:
        lookup = GitHubInstallationLookup(
            123, "private-key", base_url=str(server.make_url(""))
        )
        info = await lookup.fetch("octocat")

    assert info == InstallationInfo(installation_id="4242", total_repositories=17)
    assert github.requests == [
        ("/users/octocat/installation", "bearer jwt-123"),
        ("/app/installations/4242/access_tokens", "bearer jwt-123"),
        ("/installation/repositories", "token token-4242"),
    ]
    assert lookup.call_count == 3


@pytest.mark.asyncio
async def test_installation_lookup_not_installed():
    github = FakeGitHub(installation_status=404)
    async with serve(github) as server:
        lookup = GitHubInstallationLookup(
            123, "private-key", base_url=str(server.make_url(""))
        )
        info = await lookup.fetch("octocat")

    assert info is None
    assert [path for path, _ in github.requests] == ["/users/octocat/installation"]


@pytest.mark.asyncio
async def test_installation_lookup_error_propagates():
    github = FakeGitHub(installation_status=500)
    async with serve(github) as server:
        lookup = GitHubInstallationLookup(
            123, "private-key", base_url=str(server.make_url(""))
        )
        with pytest.raises(gidgethub.GitHubException):
            await lookup.fetch("octocat")

        session = UserSession(github_username="octocat")
        manager = InstallationCacheManager(
            lookup, clock=lambda: datetime(2026, 10, 1, tzinfo=timezone.utc)
        )
        assert await manager.current_user(session) is session


@pytest.mark.asyncio
async def test_repository_lookup_with_installation_token():
    github = FakeGitHub()
    async with serve(github) as server:
        lookup = GitHubRepositoryLookup(
            123,
            "private-key",
            base_url=str(server.make_url("")),
            installation_id=4242,
        )
        target = await lookup.resolve(1296269)

    assert target == ("octocat", "Hello-World")
    assert github.requests == [
        ("/app/installations/4242/access_tokens", "bearer jwt-123"),
        ("/repositories/1296269", "token token-4242"),
    ]


@pytest.mark.asyncio
async def test_repository_lookup_without_credentials_is_anonymous():
    github = FakeGitHub()
    async with serve(github) as server:
        lookup = GitHubRepositoryLookup(None, None, base_url=str(server.make_url("")))
        target = await lookup.resolve(1296269)

    assert target == ("octocat", "Hello-World")
    assert github.requests == [("/repositories/1296269", None)]


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error", [(404, NotFoundError), (500, TriggerError)])
async def test_repository_lookup_errors(status, error):
    github = FakeGitHub(repositories_status=status)
    async with serve(github) as server:
        lookup = GitHubRepositoryLookup(None, None, base_url=str(server.make_url("")))
        with pytest.raises(error):
            await lookup.resolve(1296269)
