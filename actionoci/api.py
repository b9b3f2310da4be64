"""Minimal GitHub REST API client for the values the publisher needs."""

import logging

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when the GitHub API returns an unusable response."""


class RepositoryMetadata(BaseModel):
    repo_id: str
    owner_id: str
    visibility: str


async def get_repository_metadata(
    client: httpx.AsyncClient, api_base_url: str, repository: str, token: str
) -> RepositoryMetadata:
    """Fetch the ids and visibility of `repository` (owner/name)

    ref: https://docs.github.com/en/rest/repos/repos#get-a-repository
    """
    response = await client.get(
        f"{api_base_url}/repos/{repository}",
        headers={
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
        },
    )
    if not response.is_success:
        raise GitHubAPIError(
            "Failed to fetch repository metadata due to bad status code: "
            f"{response.status_code}"
        )

    data = response.json()
    if not data.get("id") or not (data.get("owner") or {}).get("id"):
        raise GitHubAPIError(
            "Failed to fetch repository metadata: unexpected response format"
        )
    return RepositoryMetadata(
        repo_id=str(data["id"]),
        owner_id=str(data["owner"]["id"]),
        visibility=str(data.get("visibility") or ""),
    )


async def get_container_registry_url(
    client: httpx.AsyncClient, api_base_url: str
) -> str:
    """Fetch the container registry serving this GitHub instance"""
    response = await client.get(f"{api_base_url}/packages/container-registry-url")
    if not response.is_success:
        raise GitHubAPIError(
            "Failed to fetch container registry url due to bad status code: "
            f"{response.status_code}"
        )

    url = response.json().get("url")
    if not url:
        raise GitHubAPIError(
            "Failed to fetch container registry url: unexpected response format"
        )
    logger.debug("Container registry URL: %s", url)
    return url
