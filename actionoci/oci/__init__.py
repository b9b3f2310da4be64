"""OCI client library for publishing GitHub Actions packages

This module provides a Python API for the push subset of the OCI registry API.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from actionoci.oci.client import Client
from actionoci.oci.config import EMPTY_CONFIG_DATA, EMPTY_CONFIG_DIGEST
from actionoci.oci.descriptor import Descriptor
from actionoci.oci.errors import DigestMismatchError, OCIError
from actionoci.oci.index import Index, create_referrer_tag_manifest, referrer_tag
from actionoci.oci.manifest import (
    Manifest,
    canonical_json,
    create_action_package_manifest,
    create_sigstore_attestation_manifest,
    sha256_digest,
    size_in_bytes,
)
from actionoci.oci.retry import RetryConfig, RetryPolicy

if TYPE_CHECKING:
    from actionoci.archive import Archives
    from actionoci.attestation import Attestation

logger = logging.getLogger(__name__)

__all__ = [
    "Client",
    "Descriptor",
    "DigestMismatchError",
    "Index",
    "Manifest",
    "OCIError",
    "PublishResult",
    "RetryConfig",
    "RetryPolicy",
    "action_package_blobs",
    "canonical_json",
    "create_action_package_manifest",
    "create_referrer_tag_manifest",
    "create_sigstore_attestation_manifest",
    "publish_action_package",
    "publish_attestation",
    "referrer_tag",
    "sha256_digest",
    "size_in_bytes",
]


@dataclass(frozen=True, slots=True)
class PublishResult:
    package_url: str
    manifest: Manifest
    manifest_digest: str
    attestation_manifest_digest: str | None = None
    referrer_index_digest: str | None = None


def action_package_blobs(archives: Archives) -> dict[str, bytes]:
    """Blob content by digest for every layer of an action package manifest"""
    return {
        EMPTY_CONFIG_DIGEST: EMPTY_CONFIG_DATA,
        archives.tar_file.sha256: archives.tar_file.read_bytes(),
        archives.zip_file.sha256: archives.zip_file.read_bytes(),
    }


async def publish_attestation(
    client: Client,
    repository: str,
    subject: Manifest,
    attestation: Attestation,
    created: datetime | None = None,
) -> tuple[str, str]:
    """Publish `attestation` as a referrer of the `subject` manifest

    The attestation manifest is pushed by digest,
    the referrer index under the `sha256-<subject digest>` tag.

    :return: the digests of the attestation manifest and the referrer index.
    """
    created = created or datetime.now(timezone.utc)
    subject_descriptor = subject.descriptor
    bundle = Descriptor.from_bytes(attestation.bundle, attestation.media_type)

    attestation_manifest = create_sigstore_attestation_manifest(
        bundle_size=bundle.size,
        bundle_digest=bundle.digest,
        bundle_media_type=attestation.media_type,
        bundle_predicate_type=attestation.predicate_type,
        subject_size=subject_descriptor.size,
        subject_digest=subject_descriptor.digest,
        created=created,
    )
    attestation_descriptor = attestation_manifest.descriptor
    referrer_index = create_referrer_tag_manifest(
        attestation_digest=attestation_descriptor.digest,
        attestation_size=attestation_descriptor.size,
        bundle_media_type=attestation.media_type,
        bundle_predicate_type=attestation.predicate_type,
        attestation_created=created,
        created=created,
    )

    attestation_digest = await client.upload_oci_image_manifest(
        repository,
        attestation_manifest,
        {
            EMPTY_CONFIG_DIGEST: EMPTY_CONFIG_DATA,
            bundle.digest: attestation.bundle,
        },
    )
    index_digest = await client.upload_oci_index_manifest(
        repository, referrer_index, referrer_tag(subject_descriptor.digest)
    )
    logger.info(
        "Published attestation %s for %s", attestation_digest, subject_descriptor.digest
    )
    return attestation_digest, index_digest


async def publish_action_package(
    client: Client,
    repository: str,
    tag: str,
    manifest: Manifest,
    blobs: dict[str, bytes],
    attestation: Attestation | None = None,
    created: datetime | None = None,
) -> PublishResult:
    """Publish an action package, and its attestation when given

    The attestation and its referrer index are pushed before the package is
    tagged, so the attestation can be found as soon as the tag is visible.
    Every pushed manifest is checked against the digest the registry
    computed, any failure aborts the remaining uploads.
    """
    manifest_digest = sha256_digest(manifest)
    logger.info("Publishing %s:%s (%s)", repository, tag, manifest_digest)

    attestation_digest = index_digest = None
    if attestation is not None:
        attestation_digest, index_digest = await publish_attestation(
            client, repository, manifest, attestation, created=created
        )

    await client.upload_oci_image_manifest(repository, manifest, blobs, tag=tag)

    return PublishResult(
        package_url=f"{client.registry_url}/{repository}:{tag}",
        manifest=manifest,
        manifest_digest=manifest_digest,
        attestation_manifest_digest=attestation_digest,
        referrer_index_digest=index_digest,
    )
