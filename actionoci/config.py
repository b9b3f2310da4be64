"""Resolve the options of a publish run from the GitHub Actions environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict, Field

from actionoci import api

logger = logging.getLogger(__name__)

# Not shown when the options are logged
INTERNAL_KEYS = frozenset(
    {"token", "runner_temp_dir", "repository_id", "repository_owner_id"}
)


class ConfigurationError(Exception):
    """Raised when a required setting is missing or invalid.

    Attributes:
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2


class PublishOptions(BaseModel):
    """Everything a publish run needs to know about its environment"""

    model_config = ConfigDict(frozen=True)

    # The name of the repository in the format owner/repo
    name_with_owner: str
    token: str = Field(repr=False)
    api_base_url: str
    container_registry_url: str
    # The directory where the action is checked out
    workspace_dir: Path
    # The directory set up by the runner for temporary files
    runner_temp_dir: Path
    # Attestations cannot be stored on GitHub Enterprise Server
    is_enterprise: bool
    # "public", "internal" or "private"
    repository_visibility: str
    repository_id: str
    repository_owner_id: str
    event: str
    ref: str
    sha: str


def serialize_options(options: PublishOptions) -> str:
    return options.model_dump_json(exclude=set(INTERNAL_KEYS), indent=2)


def is_enterprise_server(server_url: str) -> bool:
    return "https://github.com" not in server_url and not server_url.endswith(
        ".ghe.com"
    )


def _require(env: Mapping[str, str], *names: str) -> str:
    """First non-empty value of `names` in `env`"""
    for name in names:
        if value := env.get(name, ""):
            return value
    raise ConfigurationError(f"Could not find {names[0]}.")


async def resolve_publish_options(
    env: Mapping[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> PublishOptions:
    """Read the workflow environment and complete it with the GitHub API

    :param env: environment variables, defaults to `os.environ`.
    :param client: HTTP client for the GitHub API.
    """
    env = os.environ if env is None else env

    token = _require(env, "INPUT_GITHUB-TOKEN", "GITHUB_TOKEN")
    event = _require(env, "GITHUB_EVENT_NAME")
    ref = _require(env, "GITHUB_REF")
    name_with_owner = _require(env, "GITHUB_REPOSITORY")
    sha = _require(env, "GITHUB_SHA")
    api_base_url = _require(env, "GITHUB_API_URL")
    server_url = _require(env, "GITHUB_SERVER_URL")
    workspace_dir = _require(env, "GITHUB_WORKSPACE")
    runner_temp_dir = _require(env, "RUNNER_TEMP")
    repository_id = _require(env, "GITHUB_REPOSITORY_ID")
    repository_owner_id = _require(env, "GITHUB_REPOSITORY_OWNER_ID")

    owns_client = client is None
    client = client or httpx.AsyncClient()
    try:
        container_registry_url = await api.get_container_registry_url(
            client, api_base_url
        )
        metadata = await api.get_repository_metadata(
            client, api_base_url, name_with_owner, token
        )
    finally:
        if owns_client:
            await client.aclose()

    if not metadata.visibility:
        raise ConfigurationError("Could not find repository visibility.")
    if metadata.repo_id != repository_id:
        raise ConfigurationError("Repository ID mismatch.")
    if metadata.owner_id != repository_owner_id:
        raise ConfigurationError("Repository Owner ID mismatch.")

    return PublishOptions(
        name_with_owner=name_with_owner,
        token=token,
        api_base_url=api_base_url,
        container_registry_url=container_registry_url,
        workspace_dir=Path(workspace_dir),
        runner_temp_dir=Path(runner_temp_dir),
        is_enterprise=is_enterprise_server(server_url),
        repository_visibility=metadata.visibility,
        repository_id=repository_id,
        repository_owner_id=repository_owner_id,
        event=event,
        ref=ref,
        sha=sha,
    )
