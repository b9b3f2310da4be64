from typing import Final

IMAGE_MANIFEST: Final = "application/vnd.oci.image.manifest.v1+json"
IMAGE_INDEX: Final = "application/vnd.oci.image.index.v1+json"
EMPTY: Final = "application/vnd.oci.empty.v1+json"

ACTION_PACKAGE: Final = "application/vnd.github.actions.package.v1+json"
ACTION_PACKAGE_TAR_LAYER: Final = (
    "application/vnd.github.actions.package.layer.v1.tar+gzip"
)
ACTION_PACKAGE_ZIP_LAYER: Final = "application/vnd.github.actions.package.layer.v1.zip"

SIGSTORE_BUNDLE: Final = "application/vnd.dev.sigstore.bundle.v0.3+json"

# Blob media types the registry client knows how to upload
LAYER_MEDIA_TYPES: Final = frozenset(
    {
        EMPTY,
        ACTION_PACKAGE_TAR_LAYER,
        ACTION_PACKAGE_ZIP_LAYER,
        SIGSTORE_BUNDLE,
    }
)
