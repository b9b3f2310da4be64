import re
from dataclasses import dataclass

from actionoci.config import ConfigurationError

TAG_REF_PREFIX = "refs/tags/"

# ref: https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
SEMVER = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


class InvalidVersionError(ConfigurationError):
    """Raised when the triggering ref is not a semantic version tag."""


@dataclass(frozen=True, slots=True)
class ActionVersion:
    """Semantic version of an action release

    ref: https://semver.org/
    """

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    def __str__(self):
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version

    @property
    def tag(self) -> str:
        """Return the version as an OCI tag

        Semver strings can contain '<version>+<build metadata>' information.
        The "+" is not allowed in OCI tag names, it is replaced by "-".
        """
        return str(self).replace("+", "-")

    @classmethod
    def from_string(cls, value: str) -> "ActionVersion":
        """Parse a tag like `v1.2.3` or `1.2.3-rc.1`"""
        match = SEMVER.match(value.removeprefix("v"))
        if match is None:
            raise InvalidVersionError(
                f"{value} is not a valid semantic version tag, "
                "and so cannot be uploaded to the action package."
            )
        return cls(
            major=int(match["major"]),
            minor=int(match["minor"]),
            patch=int(match["patch"]),
            prerelease=match["prerelease"],
            build=match["build"],
        )

    @classmethod
    def from_ref(cls, ref: str) -> "ActionVersion":
        """Parse a git ref like `refs/tags/v1.2.3`"""
        if not ref.startswith(TAG_REF_PREFIX):
            raise InvalidVersionError(f"The ref {ref} is not a valid tag reference.")
        return cls.from_string(ref.removeprefix(TAG_REF_PREFIX))
