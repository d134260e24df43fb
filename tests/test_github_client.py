"""Tests for the GitHub API client."""

import httpx
import pytest

from matrixci.services.github_client import GitHubClient

REPOS = [
    {
        "id": 1296269,
        "name": "minimal",
        "private": False,
        "description": "Minimal test repository",
        "owner": {"login": "svenfuchs", "id": 2208, "type": "User"},
        "permissions": {"admin": True, "push": True, "pull": True},
    },
    {
        "id": 1296270,
        "name": "travis-core",
        "private": True,
        "owner": {"login": "travis-ci", "id": 639823, "type": "Organization"},
        "permissions": {"admin": False, "push": False, "pull": True},
    },
]


def paged_transport(pages: list[list[dict]], seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        page = int(request.url.params["page"])
        return httpx.Response(200, json=pages[page - 1] if page <= len(pages) else [])

    return httpx.MockTransport(handler)


async def test_get_user_repositories_pages_until_empty():
    """Test every page is fetched and parsed into descriptors."""
    seen: list[httpx.Request] = []
    transport = paged_transport([REPOS[:1], REPOS[1:]], seen)

    async with GitHubClient("secret", transport=transport) as gh:
        repositories = await gh.get_user_repositories()

    assert [r.slug for r in repositories] == ["svenfuchs/minimal", "travis-ci/travis-core"]
    assert repositories[0].permissions.admin is True
    assert repositories[1].owner.type == "Organization"
    assert repositories[1].private is True
    assert [int(r.url.params["page"]) for r in seen] == [1, 2, 3]
    assert all(r.url.path == "/user/repos" for r in seen)
    assert seen[0].headers["Authorization"] == "token secret"


async def test_errors_are_raised():
    """Test HTTP errors surface to the caller."""
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={}))

    async with GitHubClient("expired", transport=transport) as gh:
        with pytest.raises(httpx.HTTPStatusError):
            await gh.get_user_repositories()
