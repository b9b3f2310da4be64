import asyncio
import base64
import gc
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from actionoci.archive import FileMetadata
from actionoci.oci import Client, RetryConfig, media_types
from actionoci.oci.config import EMPTY_CONFIG_DATA, EMPTY_CONFIG_DIGEST
from actionoci.oci.descriptor import Descriptor, sha256_hexdigest
from actionoci.oci.errors import (
    BlobNotFoundError,
    BlobSizeMismatchError,
    DigestMismatchError,
    MissingHeaderError,
    RegistryResponseError,
    UnknownMediaTypeError,
)
from actionoci.oci.index import create_referrer_tag_manifest
from actionoci.oci.manifest import (
    Manifest,
    canonical_json,
    create_action_package_manifest,
    sha256_digest,
)

TAR_DATA = b"tar archive"
ZIP_DATA = b"zip archive"
NO_RETRY = RetryConfig(retries=0, backoff=0)


def _file(name: str, data: bytes) -> FileMetadata:
    return FileMetadata(path=Path(name), size=len(data), sha256=sha256_hexdigest(data))


@pytest.fixture
def manifest() -> Manifest:
    return create_action_package_manifest(
        tar_file=_file("archive.tar.gz", TAR_DATA),
        zip_file=_file("archive.zip", ZIP_DATA),
        repository="test-org/test-repo",
        repo_id="123",
        owner_id="456",
        source_commit="abc",
        version="1.2.3",
    )


@pytest.fixture
def blobs() -> dict[str, bytes]:
    return {
        EMPTY_CONFIG_DIGEST: EMPTY_CONFIG_DATA,
        sha256_hexdigest(TAR_DATA): TAR_DATA,
        sha256_hexdigest(ZIP_DATA): ZIP_DATA,
    }


def _client(registry, retry=NO_RETRY) -> Client:
    return Client(
        "registry.example.com", "token", retry=retry, transport=registry.transport
    )


def upload(registry, manifest, blobs, tag="1.2.3", retry=NO_RETRY) -> str:
    async def _upload():
        async with _client(registry, retry) as client:
            return await client.upload_oci_image_manifest(
                "test-org/test-repo", manifest, blobs, tag=tag
            )

    return asyncio.run(_upload())


def test_upload_all_blobs(registry, manifest, blobs):
    digest = upload(registry, manifest, blobs)

    assert digest == sha256_digest(manifest)
    assert registry.count("check") == 3
    assert registry.count("initiate") == 3
    assert registry.count("upload") == 3
    assert registry.count("manifest") == 1
    # The manifest is only pushed once every blob is in place
    assert registry.calls[-1] == (
        "manifest",
        "PUT",
        "/v2/test-org/test-repo/manifests/1.2.3",
    )
    assert registry.blobs == blobs
    assert registry.manifests["1.2.3"] == canonical_json(manifest)


def test_upload_skips_existing_blob(registry, manifest, blobs):
    registry.blobs[EMPTY_CONFIG_DIGEST] = EMPTY_CONFIG_DATA

    upload(registry, manifest, blobs)

    assert registry.count("check") == 3
    assert registry.count("initiate") == 2
    assert registry.count("upload") == 2
    assert registry.count("manifest") == 1


def test_upload_without_tag_uses_digest(registry, manifest, blobs):
    digest = upload(registry, manifest, blobs, tag=None)
    assert list(registry.manifests) == [digest]


def test_upload_request_details(registry, manifest, blobs):
    upload(registry, manifest, blobs)

    expected_auth = "Bearer " + base64.b64encode(b"token").decode("ascii")
    for request in registry.requests:
        assert request.headers["Authorization"] == expected_auth
        assert request.url.host == "registry.example.com"

    blob_puts = [r for r in registry.requests if r.url.path == "/v2/upload/session"]
    assert len(blob_puts) == 3
    for request in blob_puts:
        assert request.method == "PUT"
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.headers["Content-Length"] == str(len(request.content))
        assert sha256_hexdigest(request.content) == request.url.params["digest"]

    manifest_put = registry.requests[-1]
    assert manifest_put.headers["Content-Type"] == media_types.IMAGE_MANIFEST


def test_upload_absolute_location(registry, manifest, blobs):
    registry.location = "https://uploads.example.com/v2/upload/session"
    upload(registry, manifest, blobs)

    blob_puts = [r for r in registry.requests if r.url.path == "/v2/upload/session"]
    assert {r.url.host for r in blob_puts} == {"uploads.example.com"}


def test_digest_mismatch_is_fatal(registry, manifest, blobs):
    registry.digest_override = "sha256:other"

    with pytest.raises(DigestMismatchError) as exc_info:
        upload(registry, manifest, blobs)

    message = str(exc_info.value)
    assert sha256_digest(manifest) in message
    assert "sha256:other" in message
    assert registry.count("manifest") == 1
    assert registry.calls[-1][0] == "manifest"


def test_unknown_media_type(registry, manifest, blobs):
    layer = Descriptor.from_bytes(b'{"a": 1}', "application/json")
    manifest = manifest.model_copy(update={"layers": [*manifest.layers, layer]})

    with pytest.raises(UnknownMediaTypeError, match="application/json"):
        upload(registry, manifest, blobs)
    assert registry.calls == []


def test_missing_blob(registry, manifest, blobs):
    missing = sha256_hexdigest(ZIP_DATA)
    del blobs[missing]

    with pytest.raises(BlobNotFoundError, match=missing):
        upload(registry, manifest, blobs)
    assert registry.calls == []


def test_blob_size_mismatch(registry, manifest, blobs):
    blobs[sha256_hexdigest(TAR_DATA)] = TAR_DATA + b"extra"

    with pytest.raises(BlobSizeMismatchError):
        upload(registry, manifest, blobs)
    assert registry.calls == []


def test_failed_blob_upload_skips_manifest(registry, manifest, blobs):
    registry.failures["upload"] = 1
    registry.failure_status = 400

    with pytest.raises(RegistryResponseError, match="upload"):
        upload(registry, manifest, blobs)
    assert registry.count("manifest") == 0


def _check_blob(registry, digest="sha256:abc", retry=NO_RETRY) -> bool:
    async def _check():
        async with _client(registry, retry) as client:
            return await client.check_blob_exists("test-org/test-repo", digest)

    return asyncio.run(_check())


def test_check_blob_exists(registry):
    registry.blobs["sha256:abc"] = b"abc"
    assert _check_blob(registry) is True
    assert _check_blob(registry, "sha256:def") is False


def _respond(response: httpx.Response) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: response)


def _check_with(transport) -> bool:
    async def _check():
        async with Client(
            "registry.example.com", "token", retry=NO_RETRY, transport=transport
        ) as client:
            return await client.check_blob_exists("test-org/test-repo", "sha256:abc")

    return asyncio.run(_check())


def test_registry_error_body():
    transport = _respond(
        httpx.Response(
            403,
            json={
                "errors": [
                    {"code": "DENIED", "message": "access denied"},
                    {"code": "UNAUTHORIZED", "message": "bad token"},
                ]
            },
        )
    )
    with pytest.raises(RegistryResponseError) as exc_info:
        _check_with(transport)

    assert exc_info.value.status_code == 403
    assert str(exc_info.value) == (
        "Unexpected 403 Forbidden response from check blob (sha256:abc) exists. "
        "Errors: DENIED - access denied, UNAUTHORIZED - bad token"
    )


@pytest.mark.parametrize(
    "body",
    [
        "oops",
        '{"errors": "not a list"}',
        '{"errors": [{"code": 1}]}',
    ],
)
def test_raw_error_body(body):
    transport = _respond(httpx.Response(400, text=body))
    with pytest.raises(RegistryResponseError) as exc_info:
        _check_with(transport)
    assert str(exc_info.value).endswith(f"Response Body: {body}.")


def test_missing_location_header(manifest, blobs):
    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(404)
        return httpx.Response(202)

    async def _upload():
        async with Client(
            "registry.example.com",
            "token",
            retry=NO_RETRY,
            transport=httpx.MockTransport(handler),
        ) as client:
            return await client.upload_oci_image_manifest(
                "test-org/test-repo", manifest, blobs
            )

    with pytest.raises(MissingHeaderError, match="No location header") as exc_info:
        asyncio.run(_upload())
    assert exc_info.value.header == "location"


def test_missing_content_digest_header(manifest):
    transport = _respond(httpx.Response(201))

    async def _upload():
        async with Client(
            "registry.example.com", "token", retry=NO_RETRY, transport=transport
        ) as client:
            return await client.upload_manifest(
                canonical_json(manifest),
                media_types.IMAGE_MANIFEST,
                "test-org/test-repo",
                "1.2.3",
            )

    with pytest.raises(MissingHeaderError) as exc_info:
        asyncio.run(_upload())
    assert exc_info.value.header == "docker-content-digest"


def test_retry_until_success(registry):
    registry.failures["check"] = 2

    assert _check_blob(registry, retry=RetryConfig(retries=5, backoff=0)) is False
    assert registry.count("check") == 3


def test_retry_exhausted(registry):
    registry.failures["check"] = 10

    with pytest.raises(RegistryResponseError) as exc_info:
        _check_blob(registry, retry=RetryConfig(retries=1, backoff=0))

    assert exc_info.value.status_code == 503
    assert registry.count("check") == 2


def test_upload_index_manifest(registry):
    index = create_referrer_tag_manifest(
        attestation_digest="sha256:attestation",
        attestation_size=512,
        bundle_media_type=media_types.SIGSTORE_BUNDLE,
        bundle_predicate_type="https://slsa.dev/provenance/v1",
        attestation_created=datetime(2021, 1, 1, tzinfo=timezone.utc),
    )

    async def _upload():
        async with _client(registry) as client:
            return await client.upload_oci_index_manifest(
                "test-org/test-repo", index, "sha256-subject"
            )

    digest = asyncio.run(_upload())

    assert digest == sha256_digest(index)
    assert registry.calls == [
        ("manifest", "PUT", "/v2/test-org/test-repo/manifests/sha256-subject")
    ]
    assert registry.requests[0].headers["Content-Type"] == media_types.IMAGE_INDEX


@pytest.mark.parametrize(
    "url,expected",
    [
        ("ghcr.io", "https://ghcr.io"),
        ("https://ghcr.io/", "https://ghcr.io"),
        ("http://localhost:5000", "http://localhost:5000"),
        ("localhost:5000", "https://localhost:5000"),
    ],
)
def test_registry_url(url, expected):
    assert Client(url, "token").registry_url == expected


def test_upload_location_keeps_query(registry, manifest, blobs):
    registry.location = "/v2/upload/session?_state=abc"
    upload(registry, manifest, blobs)

    blob_puts = [r for r in registry.requests if r.url.path == "/v2/upload/session"]
    assert len(blob_puts) == 3
    for request in blob_puts:
        assert request.url.params["_state"] == "abc"
        assert request.url.params["digest"] == sha256_hexdigest(request.content)


def test_blob_uploads_run_concurrently(registry, manifest, blobs):
    in_flight = peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return registry(request)

    async def _upload():
        async with Client(
            "registry.example.com",
            "token",
            retry=NO_RETRY,
            transport=httpx.MockTransport(handler),
        ) as client:
            return await client.upload_oci_image_manifest(
                "test-org/test-repo", manifest, blobs, tag="1.2.3"
            )

    asyncio.run(_upload())

    assert peak == 3
    assert registry.calls[-1][0] == "manifest"


@pytest.mark.parametrize(
    "kind,expected",
    [("initiate", 5), ("upload", 5), ("manifest", 3)],
)
def test_retry_each_request_type(registry, manifest, blobs, kind, expected):
    registry.failures[kind] = 2

    upload(registry, manifest, blobs, retry=RetryConfig(retries=5, backoff=0))

    assert registry.count(kind) == expected
    assert registry.manifests["1.2.3"] == canonical_json(manifest)


def test_concurrent_failures_are_retrieved(registry, manifest, blobs):
    registry.failures["upload"] = 3
    registry.failure_status = 400
    unhandled = []

    async def _upload():
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda loop, context: unhandled.append(context))
        async with _client(registry) as client:
            try:
                await client.upload_oci_image_manifest(
                    "test-org/test-repo", manifest, blobs, tag="1.2.3"
                )
            except RegistryResponseError:
                pass
            else:
                pytest.fail("upload did not fail")
        gc.collect()

    asyncio.run(_upload())

    assert unhandled == []
    assert registry.count("manifest") == 0
