from hashlib import sha256

from pydantic import BaseModel, ConfigDict


def sha256_hexdigest(data: bytes) -> str:
    return f"sha256:{sha256(data).hexdigest()}"


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md

    The field order is the serialized key order.
    """

    model_config = ConfigDict(frozen=True)

    mediaType: str
    size: int
    digest: str
    artifactType: str | None = None
    annotations: dict[str, str] | None = None

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str, **kwargs) -> "Descriptor":
        """Describe `data`, computing its size and digest"""
        return cls(
            mediaType=media_type,
            size=len(data),
            digest=sha256_hexdigest(data),
            **kwargs,
        )
