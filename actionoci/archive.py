"""Stage an action's files and package them as tar.gz and zip archives."""

import logging
import shutil
import tarfile
import zipfile
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path

logger = logging.getLogger(__name__)

# Directories never shipped in an action package
IGNORED_DIRECTORIES = (".git", ".github")
CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class FileMetadata:
    path: Path
    size: int
    sha256: str

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass(frozen=True, slots=True)
class Archives:
    tar_file: FileMetadata
    zip_file: FileMetadata


def file_metadata(path: Path) -> FileMetadata:
    """Size and sha256 digest of the file at `path`"""
    digest = sha256()
    with path.open("rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
    return FileMetadata(
        path=path,
        size=path.stat().st_size,
        sha256=f"sha256:{digest.hexdigest()}",
    )


def stage_action_files(source: Path, target: Path):
    """Copy the action in `source` to `target`, leaving out VCS and workflow files"""
    if not source.is_dir():
        raise ValueError(f"{source} is not a directory")
    logger.debug("Staging %s in %s", source, target)
    shutil.copytree(
        source,
        target,
        ignore=shutil.ignore_patterns(*IGNORED_DIRECTORIES),
        dirs_exist_ok=True,
    )


def _sorted_files(source: Path) -> list[Path]:
    return sorted(p for p in source.rglob("*") if p.is_file() or p.is_symlink())


def create_tar_archive(source: Path, path: Path) -> FileMetadata:
    with tarfile.open(path, "w:gz") as tar:
        for file in _sorted_files(source):
            tar.add(file, arcname=file.relative_to(source).as_posix())
    return file_metadata(path)


def create_zip_archive(source: Path, path: Path) -> FileMetadata:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for file in _sorted_files(source):
            archive.write(file, arcname=file.relative_to(source).as_posix())
    return file_metadata(path)


def create_archives(source: Path, target: Path) -> Archives:
    """Create `archive.tar.gz` and `archive.zip` of `source` in `target`"""
    archives = Archives(
        tar_file=create_tar_archive(source, target / "archive.tar.gz"),
        zip_file=create_zip_archive(source, target / "archive.zip"),
    )
    logger.info(
        "Created archives %s (%s) and %s (%s)",
        archives.tar_file.path.name,
        archives.tar_file.sha256,
        archives.zip_file.path.name,
        archives.zip_file.sha256,
    )
    return archives
