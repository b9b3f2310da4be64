from typing import Final

from actionoci.oci import media_types
from actionoci.oci.descriptor import Descriptor

EMPTY_CONFIG_DATA: Final = b"{}"
EMPTY_CONFIG_DIGEST: Final = (
    "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
)


def empty_config() -> Descriptor:
    """The well-known empty config blob, `{}`

    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md#guidance-for-an-empty-descriptor
    """
    return Descriptor(
        mediaType=media_types.EMPTY,
        size=len(EMPTY_CONFIG_DATA),
        digest=EMPTY_CONFIG_DIGEST,
    )
