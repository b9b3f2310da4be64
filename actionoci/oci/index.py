from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from actionoci.oci import media_types
from actionoci.oci.descriptor import Descriptor
from actionoci.oci.manifest import (
    ATTESTATION_PACKAGE_TYPE,
    CREATED_ANNOTATION,
    DSSE_ENVELOPE,
    PACKAGE_TYPE_ANNOTATION,
    REFERRER_INDEX_PACKAGE_TYPE,
    SIGSTORE_CONTENT_ANNOTATION,
    SIGSTORE_PREDICATE_TYPE_ANNOTATION,
    format_created,
    sha256_digest,
    size_in_bytes,
)


class Index(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(frozen=True)

    schemaVersion: Literal[2] = 2
    mediaType: str = media_types.IMAGE_INDEX
    manifests: list[Descriptor] = []
    annotations: dict[str, str] = {}

    @property
    def descriptor(self) -> Descriptor:
        return Descriptor(
            mediaType=self.mediaType,
            size=size_in_bytes(self),
            digest=sha256_digest(self),
        )


def referrer_tag(subject_digest: str) -> str:
    """Tag under which the referrers of `subject_digest` are published

    ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#referrers-tag-schema
    """
    return subject_digest.replace(":", "-")


def create_referrer_tag_manifest(
    attestation_digest: str,
    attestation_size: int,
    bundle_media_type: str,
    bundle_predicate_type: str,
    attestation_created: datetime,
    created: datetime | None = None,
) -> Index:
    """Create the index listing the attestation manifest as a referrer"""
    return Index(
        manifests=[
            Descriptor(
                mediaType=media_types.IMAGE_MANIFEST,
                size=attestation_size,
                digest=attestation_digest,
                artifactType=bundle_media_type,
                annotations={
                    PACKAGE_TYPE_ANNOTATION: ATTESTATION_PACKAGE_TYPE,
                    CREATED_ANNOTATION: format_created(attestation_created),
                    SIGSTORE_CONTENT_ANNOTATION: DSSE_ENVELOPE,
                    SIGSTORE_PREDICATE_TYPE_ANNOTATION: bundle_predicate_type,
                },
            )
        ],
        annotations={
            PACKAGE_TYPE_ANNOTATION: REFERRER_INDEX_PACKAGE_TYPE,
            CREATED_ANNOTATION: format_created(created),
        },
    )
