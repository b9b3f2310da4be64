from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import httpx

from actionoci.oci import media_types
from actionoci.oci.errors import (
    BlobNotFoundError,
    BlobSizeMismatchError,
    DigestMismatchError,
    MissingHeaderError,
    RegistryResponseError,
    UnknownMediaTypeError,
)
from actionoci.oci.manifest import canonical_json, sha256_digest
from actionoci.oci.retry import RetryConfig, RetryPolicy

if TYPE_CHECKING:
    from actionoci.oci.descriptor import Descriptor
    from actionoci.oci.index import Index
    from actionoci.oci.manifest import Manifest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _clean_url(registry_url: str) -> str:
    if "://" not in registry_url:
        registry_url = f"https://{registry_url}"
    return registry_url.rstrip("/")


def _is_registry_error(obj) -> bool:
    return (
        isinstance(obj, dict)
        and isinstance(obj.get("code"), str)
        and isinstance(obj.get("message"), str)
    )


def error_detail(response: httpx.Response) -> str:
    """Render the error body of a registry response

    ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#error-codes

    A body like `{"errors": [{"code": "...", "message": "..."}]}` is rendered
    as its `code - message` pairs, anything else as the raw body.
    """
    body = response.text
    try:
        errors = json.loads(body)["errors"]
    except (ValueError, KeyError, TypeError):
        errors = None
    if isinstance(errors, list) and errors and all(map(_is_registry_error, errors)):
        messages = ", ".join(f"{e['code']} - {e['message']}" for e in errors)
        return f"Errors: {messages}"
    return f"Response Body: {body}."


def unexpected_response(description: str, response: httpx.Response):
    return RegistryResponseError(
        description=description,
        status_code=response.status_code,
        reason=response.reason_phrase,
        detail=error_detail(response),
    )


class BearerAuth:
    """Attaches HTTP Bearer Authentication to the given Request object.

    The registry expects the base64 encoded token,
    it is encoded once and reused for every request.
    """

    def __init__(self, token: str):
        self.token = base64.b64encode(token.encode("utf-8")).decode("ascii")

    def __call__(self, request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        return request


class Client:
    """Client for the push subset of the OCI registry API.

    ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md
    """

    def __init__(
        self,
        registry_url: str,
        token: str,
        retry: RetryConfig | None = None,
        debug: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.registry_url = _clean_url(registry_url)
        self.retry_policy = RetryPolicy(retry)
        self.debug = debug
        self.timeout = timeout
        self._auth = BearerAuth(token)
        self._transport = transport
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def session(self) -> httpx.AsyncClient:
        if self._session is None:
            self._session = httpx.AsyncClient(
                auth=self._auth,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._session

    async def close(self):
        if self._session is not None:
            await self._session.aclose()
            self._session = None

    def url(self, uri: str) -> str:
        return f"{self.registry_url}{uri}"

    async def _send(
        self, method: str, url: str | httpx.URL, **kwargs
    ) -> httpx.Response:
        if self.debug:
            logger.debug("Request %s %s headers=%s", method, url, kwargs.get("headers"))
        try:
            response = await self.session.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            if self.debug:
                logger.debug("Error for %s %s: %r", method, url, exc)
            raise
        if self.debug:
            logger.debug(
                "Response %s %s: %d %s",
                method,
                url,
                response.status_code,
                dict(response.headers),
            )
        return response

    async def request(
        self, method: str, url: str | httpx.URL, **kwargs
    ) -> httpx.Response:
        """Send a request, retrying transient failures"""
        return await self.retry_policy.execute(
            lambda: self._send(method, url, **kwargs)
        )

    async def check_blob_exists(self, repository: str, digest: str) -> bool:
        """Check if a blob exists in `repository`

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#checking-if-content-exists-in-the-registry
        """
        response = await self.request(
            "HEAD", self.url(f"/v2/{repository}/blobs/{digest}")
        )
        if response.status_code in (200, 202):
            return True
        if response.status_code == 404:
            return False
        raise unexpected_response(f"check blob ({digest}) exists", response)

    async def upload_blob(self, repository: str, descriptor: Descriptor, blob: bytes):
        """Push a blob for `repository` using the POST then PUT method

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-blobs
        """
        initiate_url = self.url(f"/v2/{repository}/blobs/uploads/")
        response = await self.request("POST", initiate_url)
        if response.status_code != 202:
            raise unexpected_response("initiate layer upload", response)

        location = response.headers.get("location")
        if not location:
            raise MissingHeaderError(
                "location",
                f"No location header in response from upload post {initiate_url} "
                f"for layer {descriptor.digest}",
            )

        # The location may be relative or absolute, and may carry a query string
        response = await self.request(
            "PUT",
            httpx.URL(urljoin(f"{self.registry_url}/", location)).copy_merge_params(
                {"digest": descriptor.digest}
            ),
            content=blob,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(descriptor.size),
            },
        )
        if response.status_code != 201:
            raise unexpected_response(f"layer ({descriptor.digest}) upload", response)

    async def upload_manifest(
        self, manifest_json: bytes, media_type: str, repository: str, reference: str
    ) -> str:
        """Push a manifest for `repository` under `reference`, a tag or its digest

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-manifests

        :return: the digest the registry computed for the manifest.
        """
        url = self.url(f"/v2/{repository}/manifests/{reference}")
        logger.info("Uploading manifest to %s.", url)
        response = await self.request(
            "PUT",
            url,
            content=manifest_json,
            headers={"Content-Type": media_type},
        )
        if response.status_code != 201:
            raise unexpected_response("manifest upload", response)

        digest = response.headers.get("docker-content-digest")
        if not digest:
            raise MissingHeaderError(
                "docker-content-digest",
                f"No docker-content-digest header in response from manifest upload {url}",
            )
        return digest

    async def _upload_layer(self, repository: str, layer: Descriptor, blob: bytes):
        if await self.check_blob_exists(repository, layer.digest):
            logger.info("Layer %s already exists. Skipping upload.", layer.digest)
            return
        logger.info("Uploading layer %s.", layer.digest)
        await self.upload_blob(repository, layer, blob)

    async def upload_oci_image_manifest(
        self,
        repository: str,
        manifest: Manifest,
        blobs: dict[str, bytes],
        tag: str | None = None,
    ) -> str:
        """Push the blobs of `manifest` and then the manifest itself

        Without a `tag` the manifest is pushed by its own digest.

        :param blobs: blob content by digest, for every layer and the config.
        :return: the digest of the manifest.
        """
        digest = sha256_digest(manifest)
        if tag:
            logger.info(
                "Uploading manifest %s with tag %s to %s.", digest, tag, repository
            )
        else:
            logger.info("Uploading manifest %s to %s.", digest, repository)

        # The config is uploaded like any other layer
        layers = {}
        for layer in [*manifest.layers, manifest.config]:
            if layer.mediaType not in media_types.LAYER_MEDIA_TYPES:
                raise UnknownMediaTypeError(layer.mediaType)
            layers.setdefault(layer.digest, layer)

        uploads = []
        for layer in layers.values():
            blob = blobs.get(layer.digest)
            if blob is None:
                raise BlobNotFoundError(layer.digest)
            if len(blob) != layer.size:
                raise BlobSizeMismatchError(layer.digest, layer.size, len(blob))
            uploads.append((layer, blob))

        tasks = [
            asyncio.ensure_future(self._upload_layer(repository, layer, blob))
            for layer, blob in uploads
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return await self._upload_and_verify(manifest, repository, tag or digest)

    async def upload_oci_index_manifest(
        self, repository: str, manifest: Index, tag: str
    ) -> str:
        """Push an index manifest under `tag`

        An index only references other manifests, there are no blobs to push.
        """
        logger.info(
            "Uploading index manifest %s with tag %s to %s.",
            sha256_digest(manifest),
            tag,
            repository,
        )
        return await self._upload_and_verify(manifest, repository, tag)

    async def _upload_and_verify(
        self, manifest: Manifest | Index, repository: str, reference: str
    ) -> str:
        expected = sha256_digest(manifest)
        published = await self.upload_manifest(
            canonical_json(manifest), manifest.mediaType, repository, reference
        )
        if published != expected:
            raise DigestMismatchError(expected=expected, actual=published)
        return expected
