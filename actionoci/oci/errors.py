"""Exceptions raised while pushing artifacts to an OCI registry.

Exception Hierarchy:
    OCIError (base)
    ├── RegistryResponseError   # Registry answered with an unexpected status
    ├── MissingHeaderError      # A required response header was absent
    ├── DigestMismatchError     # Registry digest differs from the local digest
    ├── BlobNotFoundError       # No blob supplied for a declared layer
    ├── BlobSizeMismatchError   # Blob length differs from its descriptor
    └── UnknownMediaTypeError   # Layer media type cannot be uploaded

None of these are retried: transient faults are handled per request by
:class:`actionoci.oci.retry.RetryPolicy` before an error is raised.
"""

from __future__ import annotations


class OCIError(Exception):
    """Base exception for all registry client errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = 1


class RegistryResponseError(OCIError):
    """Raised when the registry returns a status the protocol does not allow.

    Attributes:
        description: The request that failed, e.g. ``manifest upload``.
        status_code: HTTP status of the final response.
        reason: HTTP reason phrase of the final response.
        detail: Parsed registry errors or the raw response body.
    """

    def __init__(
        self, description: str, status_code: int, reason: str, detail: str
    ) -> None:
        self.description = description
        self.status_code = status_code
        self.reason = reason
        self.detail = detail
        super().__init__(
            f"Unexpected {status_code} {reason} response from {description}. {detail}"
        )


class MissingHeaderError(OCIError):
    """Raised when a successful response lacks a header the protocol requires."""

    def __init__(self, header: str, message: str) -> None:
        self.header = header
        super().__init__(message)


class DigestMismatchError(OCIError):
    """Raised when the registry computed a different manifest digest.

    This points at payload corruption or a serialization bug, retrying the
    same upload would reproduce it.
    """

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Digest mismatch. Expected {expected}, got {actual}.")


class BlobNotFoundError(OCIError):
    """Raised when a manifest references a blob that was not supplied."""

    def __init__(self, digest: str) -> None:
        self.digest = digest
        super().__init__(f"Blob for layer {digest} not found")


class BlobSizeMismatchError(OCIError):
    """Raised when a blob does not have the size its descriptor declares."""

    def __init__(self, digest: str, expected: int, actual: int) -> None:
        self.digest = digest
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Blob for layer {digest} is {actual} bytes, descriptor declares {expected}"
        )


class UnknownMediaTypeError(OCIError):
    """Raised when a layer has a media type the client does not upload."""

    def __init__(self, media_type: str) -> None:
        self.media_type = media_type
        super().__init__(f"Unknown media type {media_type}")
