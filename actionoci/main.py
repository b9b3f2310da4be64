"""Publish the action in the workspace as an OCI package."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path

import httpx

from actionoci import oci
from actionoci.archive import create_archives, stage_action_files
from actionoci.attestation import Attestation, Attester, SigstoreAttester
from actionoci.config import (
    ConfigurationError,
    PublishOptions,
    resolve_publish_options,
    serialize_options,
)
from actionoci.version import ActionVersion

logger = logging.getLogger(__name__)

# A release, or a push of a tag, names the version to publish
TRIGGER_EVENTS = ("release", "push")


def set_output(name: str, value: str, env: Mapping[str, str] | None = None):
    """Set a step output of the running GitHub Actions job"""
    env = os.environ if env is None else env
    logger.info("%s: %s", name, value)
    output_file = env.get("GITHUB_OUTPUT")
    if output_file:
        with open(output_file, "a", encoding="utf-8") as f:
            f.write(f"{name}={value}\n")


async def attest_package(
    attester: Attester, options: PublishOptions, manifest: oci.Manifest
) -> Attestation:
    """Request a provenance attestation for `manifest`

    The bundle is stored alongside the package, not with the attestations API.
    """
    digest = oci.sha256_digest(manifest)
    return await attester.attest(
        subject_name=f"{options.name_with_owner}@{digest}",
        subject_digest={"sha256": digest.removeprefix("sha256:")},
        token=options.token,
        skip_write=True,
    )


async def run(
    path: Path | None = None,
    retry: oci.RetryConfig | None = None,
    debug: bool = False,
    env: Mapping[str, str] | None = None,
    attester: Attester | None = None,
    api_client: httpx.AsyncClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> oci.PublishResult:
    """Package the action at `path` (default: the workspace) and publish it

    Configuration and version errors are raised before anything is uploaded.
    Temporary directories are removed whether or not publishing succeeds.
    """
    env = os.environ if env is None else env
    options = await resolve_publish_options(env, client=api_client)
    logger.debug("Options: %s", serialize_options(options))

    if options.event not in TRIGGER_EVENTS:
        raise ConfigurationError(
            "This action can only be triggered by release events or tag push events."
        )
    version = ActionVersion.from_ref(options.ref)
    logger.info(
        "Publishing %s version %s from a %s repository",
        options.name_with_owner,
        version,
        options.repository_visibility,
    )
    source = path or options.workspace_dir

    with (
        tempfile.TemporaryDirectory(dir=options.runner_temp_dir) as staging_dir,
        tempfile.TemporaryDirectory(dir=options.runner_temp_dir) as archive_dir,
    ):
        stage_action_files(source, Path(staging_dir))
        archives = create_archives(Path(staging_dir), Path(archive_dir))

        manifest = oci.create_action_package_manifest(
            tar_file=archives.tar_file,
            zip_file=archives.zip_file,
            repository=options.name_with_owner,
            repo_id=options.repository_id,
            owner_id=options.repository_owner_id,
            source_commit=options.sha,
            version=str(version),
            created=datetime.now(timezone.utc),
        )

        attestation = None
        if options.is_enterprise:
            logger.info("Skipping attestation, not supported on GitHub Enterprise Server")
        else:
            attester = attester or SigstoreAttester(
                options.api_base_url, options.name_with_owner, env=env
            )
            attestation = await attest_package(attester, options, manifest)

        async with oci.Client(
            registry_url=options.container_registry_url,
            token=options.token,
            retry=retry,
            debug=debug,
            transport=transport,
        ) as client:
            result = await oci.publish_action_package(
                client,
                repository=options.name_with_owner,
                tag=version.tag,
                manifest=manifest,
                blobs=oci.action_package_blobs(archives),
                attestation=attestation,
            )

    set_output("package-url", result.package_url, env)
    set_output("package-manifest", oci.canonical_json(manifest).decode("utf-8"), env)
    set_output("package-manifest-sha", result.manifest_digest, env)
    if result.attestation_manifest_digest is not None:
        set_output("attestation-manifest-sha", result.attestation_manifest_digest, env)
        set_output("referrer-index-manifest-sha", result.referrer_index_digest, env)
    return result
