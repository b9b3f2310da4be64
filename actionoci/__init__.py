"""Publish GitHub Actions as OCI packages to the GitHub container registry."""

__version__ = "0.1.0"
