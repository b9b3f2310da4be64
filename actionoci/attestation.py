"""Build provenance attestations for a published action package.

The attestation is an in-toto statement with a SLSA provenance predicate,
signed as a DSSE envelope and returned as a Sigstore bundle. Keyless signing
uses sigstore-python with the ambient OIDC credential of the workflow.

ref: https://slsa.dev/spec/v1.0/provenance
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Mapping
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from actionoci.oci import media_types

logger = logging.getLogger(__name__)

SLSA_PROVENANCE_PREDICATE_TYPE = "https://slsa.dev/provenance/v1"
GITHUB_WORKFLOW_BUILD_TYPE = "https://actions.github.io/buildtypes/workflow/v1"


class AttestationError(Exception):
    """Raised when an attestation cannot be created or stored."""

    exit_code: int = 1


class Attestation(BaseModel):
    """A signed attestation bundle"""

    model_config = ConfigDict(frozen=True)

    bundle: bytes
    media_type: str
    predicate_type: str
    # Only set once the attestation is stored through the GitHub API
    attestation_id: str | None = None


class Attester(Protocol):
    async def attest(
        self,
        subject_name: str,
        subject_digest: dict[str, str],
        token: str,
        skip_write: bool,
    ) -> Attestation: ...


def build_provenance_predicate(env: Mapping[str, str]) -> dict:
    """SLSA v1 provenance of the running GitHub Actions workflow"""
    server_url = env.get("GITHUB_SERVER_URL", "")
    repository = env.get("GITHUB_REPOSITORY", "")
    workflow_ref = env.get("GITHUB_WORKFLOW_REF", "")
    workflow_path = workflow_ref.removeprefix(f"{repository}/").split("@", 1)[0]
    return {
        "buildDefinition": {
            "buildType": GITHUB_WORKFLOW_BUILD_TYPE,
            "externalParameters": {
                "workflow": {
                    "ref": env.get("GITHUB_REF", ""),
                    "repository": f"{server_url}/{repository}",
                    "path": workflow_path,
                }
            },
            "internalParameters": {
                "github": {
                    "event_name": env.get("GITHUB_EVENT_NAME", ""),
                    "repository_id": env.get("GITHUB_REPOSITORY_ID", ""),
                    "repository_owner_id": env.get("GITHUB_REPOSITORY_OWNER_ID", ""),
                    "runner_environment": env.get("RUNNER_ENVIRONMENT", ""),
                }
            },
            "resolvedDependencies": [
                {
                    "uri": f"git+{server_url}/{repository}@{env.get('GITHUB_REF', '')}",
                    "digest": {"gitCommit": env.get("GITHUB_SHA", "")},
                }
            ],
        },
        "runDetails": {
            "builder": {"id": f"{server_url}/{workflow_ref}"},
            "metadata": {
                "invocationId": (
                    f"{server_url}/{repository}/actions/runs/"
                    f"{env.get('GITHUB_RUN_ID', '')}/attempts/"
                    f"{env.get('GITHUB_RUN_ATTEMPT', '')}"
                )
            },
        },
    }


class SigstoreAttester:
    """Sign provenance statements with Sigstore

    Attributes:
        api_base_url: GitHub API used to store attestations.
        repository: Repository (owner/name) attestations are stored for.
        env: Environment the provenance is read from.
    """

    def __init__(
        self,
        api_base_url: str,
        repository: str,
        env: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_base_url = api_base_url
        self.repository = repository
        self.env = os.environ if env is None else env
        self._client = client

    async def attest(
        self,
        subject_name: str,
        subject_digest: dict[str, str],
        token: str,
        skip_write: bool,
    ) -> Attestation:
        predicate = build_provenance_predicate(self.env)
        logger.info("Signing provenance attestation for %s", subject_name)
        bundle = await asyncio.to_thread(
            self._sign, subject_name, subject_digest, predicate
        )
        attestation_id = None
        if not skip_write:
            attestation_id = await self._store(bundle, token)
        return Attestation(
            bundle=bundle,
            media_type=json.loads(bundle).get("mediaType", media_types.SIGSTORE_BUNDLE),
            predicate_type=SLSA_PROVENANCE_PREDICATE_TYPE,
            attestation_id=attestation_id,
        )

    def _sign(
        self, subject_name: str, subject_digest: dict[str, str], predicate: dict
    ) -> bytes:
        from sigstore.dsse import StatementBuilder, Subject
        from sigstore.oidc import IdentityError, IdentityToken, detect_credential
        from sigstore.sign import SigningContext

        try:
            credential = detect_credential()
        except IdentityError as e:
            raise AttestationError(f"Could not detect an OIDC credential: {e}") from e
        if credential is None:
            raise AttestationError("No ambient OIDC credential to sign with.")

        statement = (
            StatementBuilder()
            .subjects([Subject(name=subject_name, digest=subject_digest)])
            .predicate_type(SLSA_PROVENANCE_PREDICATE_TYPE)
            .predicate(predicate)
        ).build()

        context = SigningContext.production()
        with context.signer(IdentityToken(credential), cache=True) as signer:
            bundle = signer.sign_dsse(statement)
        return bundle.to_json().encode("utf-8")

    async def _store(self, bundle: bytes, token: str) -> str:
        """Store `bundle` with the GitHub attestations API

        ref: https://docs.github.com/en/rest/repos/repos#create-an-attestation
        """
        client = self._client or httpx.AsyncClient()
        try:
            response = await client.post(
                f"{self.api_base_url}/repos/{self.repository}/attestations",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                },
                json={"bundle": json.loads(bundle)},
            )
        finally:
            if self._client is None:
                await client.aclose()
        if not response.is_success:
            raise AttestationError(
                f"Failed to store attestation due to bad status code: "
                f"{response.status_code}"
            )
        return str(response.json()["id"])
