from __future__ import annotations

from datetime import datetime, timezone
from hashlib import sha256
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict

from actionoci.archive import FileMetadata
from actionoci.oci import media_types
from actionoci.oci.config import empty_config
from actionoci.oci.descriptor import Descriptor
from actionoci.oci.layer import create_tar_layer, create_zip_layer

if TYPE_CHECKING:
    from actionoci.oci.index import Index

CREATED_ANNOTATION = "org.opencontainers.image.created"
PACKAGE_TYPE_ANNOTATION = "com.github.package.type"
SIGSTORE_CONTENT_ANNOTATION = "dev.sigstore.bundle.content"
SIGSTORE_PREDICATE_TYPE_ANNOTATION = "dev.sigstore.bundle.predicateType"

ACTION_PACKAGE_TYPE = "actions_oci_pkg"
ATTESTATION_PACKAGE_TYPE = "actions_oci_pkg_attestation"
REFERRER_INDEX_PACKAGE_TYPE = "actions_oci_pkg_referrer_index"
DSSE_ENVELOPE = "dsse-envelope"


def format_created(created: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2021-01-01T00:00:00.000Z

    Naive datetimes are taken to be UTC.
    """
    if created is None:
        created = datetime.now(timezone.utc)
    elif created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    created = created.astimezone(timezone.utc)
    return created.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md

    Field order is the serialized key order and part of the digest.
    """

    model_config = ConfigDict(frozen=True)

    schemaVersion: Literal[2] = 2
    mediaType: str = media_types.IMAGE_MANIFEST
    artifactType: str
    config: Descriptor
    layers: list[Descriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] = {}

    @property
    def descriptor(self) -> Descriptor:
        """Descriptor referencing this manifest"""
        return Descriptor(
            mediaType=self.mediaType,
            size=size_in_bytes(self),
            digest=sha256_digest(self),
        )


def canonical_json(manifest: Manifest | Index) -> bytes:
    """Serialize `manifest` to the exact bytes pushed to the registry

    Compact UTF-8 JSON, keys in field order, fields that are None left out.
    """
    return manifest.model_dump_json(exclude_none=True).encode("utf-8")


def sha256_digest(manifest: Manifest | Index) -> str:
    return f"sha256:{sha256(canonical_json(manifest)).hexdigest()}"


def size_in_bytes(manifest: Manifest | Index) -> int:
    return len(canonical_json(manifest))


def create_action_package_manifest(
    tar_file: FileMetadata,
    zip_file: FileMetadata,
    repository: str,
    repo_id: str,
    owner_id: str,
    source_commit: str,
    version: str,
    created: datetime | None = None,
) -> Manifest:
    """Create the manifest of an Actions package

    The empty config is both the config and the first layer,
    followed by the tar.gz and zip archive layers.
    """
    config = empty_config()
    return Manifest(
        artifactType=media_types.ACTION_PACKAGE,
        config=config,
        layers=[
            config,
            create_tar_layer(tar_file, repository, version),
            create_zip_layer(zip_file, repository, version),
        ],
        annotations={
            CREATED_ANNOTATION: format_created(created),
            "action.tar.gz.digest": tar_file.sha256,
            "action.zip.digest": zip_file.sha256,
            PACKAGE_TYPE_ANNOTATION: ACTION_PACKAGE_TYPE,
            "com.github.package.version": version,
            "com.github.source.repo.id": repo_id,
            "com.github.source.repo.owner.id": owner_id,
            "com.github.source.commit": source_commit,
        },
    )


def create_sigstore_attestation_manifest(
    bundle_size: int,
    bundle_digest: str,
    bundle_media_type: str,
    bundle_predicate_type: str,
    subject_size: int,
    subject_digest: str,
    created: datetime | None = None,
) -> Manifest:
    """Create the manifest storing a Sigstore bundle that refers to `subject_digest`

    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md#image-manifest-property-descriptions
    """
    return Manifest(
        artifactType=bundle_media_type,
        config=empty_config(),
        layers=[
            Descriptor(
                mediaType=bundle_media_type,
                size=bundle_size,
                digest=bundle_digest,
            )
        ],
        subject=Descriptor(
            mediaType=media_types.IMAGE_MANIFEST,
            size=subject_size,
            digest=subject_digest,
        ),
        annotations={
            SIGSTORE_CONTENT_ANNOTATION: DSSE_ENVELOPE,
            SIGSTORE_PREDICATE_TYPE_ANNOTATION: bundle_predicate_type,
            PACKAGE_TYPE_ANNOTATION: ATTESTATION_PACKAGE_TYPE,
            CREATED_ANNOTATION: format_created(created),
        },
    )
