from hashlib import sha256
from pathlib import Path

import httpx
import pytest

from actionoci.attestation import SLSA_PROVENANCE_PREDICATE_TYPE, Attestation
from actionoci.oci import media_types

TEST_DATA = Path(__file__).parent / "testdata"

BUNDLE = b'{"mediaType":"application/vnd.dev.sigstore.bundle.v0.3+json"}'


@pytest.fixture
def testdata() -> Path:
    """Return the testdata dir for this module"""
    return TEST_DATA


class FakeRegistry:
    """In-memory OCI registry speaking the push subset of the distribution API

    Every request is recorded in `calls` as (kind, method, path) where kind is
    one of "check", "initiate", "upload" or "manifest".
    """

    def __init__(self, location: str = "/v2/upload/session"):
        self.location = location
        self.calls: list[tuple[str, str, str]] = []
        self.requests: list[httpx.Request] = []
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, bytes] = {}
        # Number of requests of a kind to answer with `failure_status`
        self.failures: dict[str, int] = {}
        self.failure_status = 503
        self.digest_override: str | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)

    def _kind(self, request: httpx.Request) -> str:
        path = request.url.path
        if "/manifests/" in path:
            return "manifest"
        if request.method == "HEAD":
            return "check"
        if request.method == "POST":
            return "initiate"
        return "upload"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        kind = self._kind(request)
        self.calls.append((kind, request.method, request.url.path))
        self.requests.append(request)

        if self.failures.get(kind, 0) > 0:
            self.failures[kind] -= 1
            return httpx.Response(self.failure_status)

        if kind == "check":
            digest = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200 if digest in self.blobs else 404)
        if kind == "initiate":
            return httpx.Response(202, headers={"location": self.location})
        if kind == "upload":
            self.blobs[request.url.params["digest"]] = request.content
            return httpx.Response(201)

        reference = request.url.path.rsplit("/", 1)[-1]
        self.manifests[reference] = request.content
        digest = self.digest_override or (
            f"sha256:{sha256(request.content).hexdigest()}"
        )
        return httpx.Response(201, headers={"docker-content-digest": digest})


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


class FakeAttester:
    def __init__(self):
        self.calls = []

    async def attest(self, subject_name, subject_digest, token, skip_write):
        self.calls.append(
            {
                "subject_name": subject_name,
                "subject_digest": subject_digest,
                "token": token,
                "skip_write": skip_write,
            }
        )
        return Attestation(
            bundle=BUNDLE,
            media_type=media_types.SIGSTORE_BUNDLE,
            predicate_type=SLSA_PROVENANCE_PREDICATE_TYPE,
        )


@pytest.fixture
def attester() -> FakeAttester:
    return FakeAttester()


@pytest.fixture
def attestation() -> Attestation:
    return Attestation(
        bundle=BUNDLE,
        media_type=media_types.SIGSTORE_BUNDLE,
        predicate_type=SLSA_PROVENANCE_PREDICATE_TYPE,
    )


@pytest.fixture
def github_env(tmp_path) -> dict[str, str]:
    """Environment of a workflow run triggered by a release of v1.2.3"""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    runner_temp = tmp_path / "runner_temp"
    runner_temp.mkdir()
    return {
        "INPUT_GITHUB-TOKEN": "token",
        "GITHUB_EVENT_NAME": "release",
        "GITHUB_REF": "refs/tags/v1.2.3",
        "GITHUB_REPOSITORY": "test-org/test-repo",
        "GITHUB_SHA": "abc",
        "GITHUB_API_URL": "https://api.github.com",
        "GITHUB_SERVER_URL": "https://github.com",
        "GITHUB_WORKSPACE": str(workspace),
        "RUNNER_TEMP": str(runner_temp),
        "GITHUB_REPOSITORY_ID": "123",
        "GITHUB_REPOSITORY_OWNER_ID": "456",
        "GITHUB_OUTPUT": str(tmp_path / "output"),
    }


@pytest.fixture
def github_api():
    """Factory for a client talking to a fake GitHub API"""

    def factory(
        repo_id=123,
        owner_id=456,
        visibility="public",
        registry_url="https://ghcr.io",
    ) -> httpx.AsyncClient:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/packages/container-registry-url":
                return httpx.Response(200, json={"url": registry_url})
            if request.url.path == "/repos/test-org/test-repo":
                return httpx.Response(
                    200,
                    json={
                        "id": repo_id,
                        "owner": {"id": owner_id},
                        "visibility": visibility,
                    },
                )
            return httpx.Response(404)

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
