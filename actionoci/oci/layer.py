from actionoci.archive import FileMetadata
from actionoci.oci import media_types
from actionoci.oci.descriptor import Descriptor

TITLE_ANNOTATION = "org.opencontainers.image.title"


def sanitize_repository(repository: str) -> str:
    """Make `owner/repo` usable in a file name

    Only the first "/" is replaced, `owner/repo` becomes `owner-repo`.
    """
    return repository.replace("/", "-", 1)


def _archive_layer(
    file: FileMetadata, media_type: str, repository: str, version: str, suffix: str
) -> Descriptor:
    return Descriptor(
        mediaType=media_type,
        size=file.size,
        digest=file.sha256,
        annotations={
            TITLE_ANNOTATION: f"{sanitize_repository(repository)}_{version}{suffix}"
        },
    )


def create_tar_layer(file: FileMetadata, repository: str, version: str) -> Descriptor:
    return _archive_layer(
        file, media_types.ACTION_PACKAGE_TAR_LAYER, repository, version, ".tar.gz"
    )


def create_zip_layer(file: FileMetadata, repository: str, version: str) -> Descriptor:
    return _archive_layer(
        file, media_types.ACTION_PACKAGE_ZIP_LAYER, repository, version, ".zip"
    )
