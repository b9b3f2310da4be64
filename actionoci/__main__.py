import asyncio
import logging
from pathlib import Path

import click
import httpx

from actionoci import main
from actionoci.api import GitHubAPIError
from actionoci.attestation import AttestationError
from actionoci.config import ConfigurationError
from actionoci.oci import OCIError, RetryConfig

logger = logging.getLogger("actionoci")


@click.group()
def cli():
    pass


@cli.command()
@click.argument(
    "path",
    required=False,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
@click.option("--retries", help="Retries per registry request", type=int, default=5)
@click.option("--backoff", help="Seconds between retries", type=float, default=1.0)
def publish(path: Path | None, debug: bool, retries: int, backoff: float):
    """Publish an action as an OCI package to the container registry.

    PATH defaults to the GitHub workspace.
    """
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)
    retry = RetryConfig(retries=retries, backoff=backoff)
    try:
        asyncio.run(main.run(path=path, retry=retry, debug=debug))
    except (OCIError, ConfigurationError, AttestationError) as e:
        logger.error("%s", e)
        raise SystemExit(e.exit_code) from e
    except (GitHubAPIError, httpx.HTTPError) as e:
        logger.error("%s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    cli()
