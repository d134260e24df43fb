"""Async GitHub API client authenticated with a user's OAuth token."""

from typing import Any

import httpx

from ..config import settings
from ..schemas.github import RemoteRepository


class GitHubClient:
    """Async GitHub API client for one user."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.base_url = base_url or settings.github_api_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GitHubClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"token {self.token}",
                "Accept": "application/vnd.github.v3+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=30.0,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def get_user_repositories(self) -> list[RemoteRepository]:
        """All repositories the user can see, with the user's permissions on each."""
        assert self._client is not None
        repositories: list[RemoteRepository] = []
        page = 1
        while True:
            response = await self._client.get(
                "/user/repos",
                params={"per_page": 100, "page": page},
            )
            response.raise_for_status()
            batch = response.json()
            if not batch:
                break
            repositories.extend(RemoteRepository.model_validate(repo) for repo in batch)
            page += 1
        return repositories
