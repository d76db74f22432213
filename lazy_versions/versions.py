"""Version parsing, precedence, and bumping.

Versions follow the grammar ``[v]MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]``.
Precedence follows semantic versioning: build metadata is ignored, and a
release outranks every pre-release of the same core version:

    1.0.0-alpha < 1.0.0-alpha.1 < 1.0.0-beta.11 < 1.0.0-rc.1 < 1.0.0
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Any

import semver
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import FormatError, InvalidChangeType


class ChangeType(str, Enum):
    """Kind of change a consignment makes, in increasing significance."""

    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def priority(self) -> int:
        """patch=1, minor=2, major=3."""
        return _PRIORITY[self]

    @classmethod
    def parse(cls, value: ChangeType | str) -> ChangeType:
        """Coerce a string into a ChangeType, raising InvalidChangeType."""
        try:
            return cls(value)
        except ValueError:
            raise InvalidChangeType(
                f"invalid change type: {value!r} (must be patch, minor, or major)"
            ) from None


_PRIORITY = {ChangeType.PATCH: 1, ChangeType.MINOR: 2, ChangeType.MAJOR: 3}


def highest_change_type(change_types: Iterable[ChangeType | str]) -> ChangeType:
    """Return the most significant change type; patch for empty input."""
    parsed = [ChangeType.parse(ct) for ct in change_types]
    return max(parsed, key=lambda ct: ct.priority, default=ChangeType.PATCH)


class Version(BaseModel):
    """An immutable semantic version.

    Equality (``==``) compares every field, build metadata included.
    Ordering operators use precedence, where build metadata is ignored,
    so two versions that differ only in build metadata are neither
    less nor greater than each other.

    Construction validates every field and raises FormatError, so a
    Version always renders to text that parse_version accepts.
    """

    model_config = ConfigDict(frozen=True)

    major: int = Field(ge=0)
    minor: int = Field(ge=0)
    patch: int = Field(ge=0)
    prerelease: str = ""
    build: str = ""

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(map(str, err['loc']))}: {err['msg']}"
                for err in exc.errors()
            )
            raise FormatError(f"invalid version fields: {details}") from exc

    @field_validator("prerelease")
    @classmethod
    def _check_prerelease(cls, value: str) -> str:
        if value:
            _validate_part(value, "prerelease")
        return value

    @field_validator("build")
    @classmethod
    def _check_build(cls, value: str) -> str:
        if value:
            _validate_part(value, "build")
        return value

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def base_version(self) -> Version:
        """The major.minor.patch core with pre-release and build removed."""
        return Version(major=self.major, minor=self.minor, patch=self.patch)

    def with_prerelease(self, identifier: str) -> Version:
        """Return a copy with the pre-release replaced (empty string clears it)."""
        return Version(**{**self.model_dump(), "prerelease": identifier})

    def with_build_metadata(self, metadata: str) -> Version:
        """Return a copy with the build metadata replaced (empty string clears it)."""
        return Version(**{**self.model_dump(), "build": metadata})

    def compare(self, other: Version) -> int:
        return compare_versions(self, other)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) < 0

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) <= 0

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) > 0

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) >= 0


def _parse_semver(text: str) -> semver.Version | None:
    """Parse with semver, or return None if ``text`` is not a whole version.

    semver's pattern ends in ``$``, which also matches before a trailing
    newline, so the parsed value must render back to exactly ``text``.
    """
    try:
        parsed = semver.Version.parse(text)
    except ValueError:
        return None
    return parsed if str(parsed) == text else None


def _validate_part(value: str, part: str) -> str:
    separator = "-" if part == "prerelease" else "+"
    parsed = _parse_semver(f"0.0.0{separator}{value}")
    if parsed is None or getattr(parsed, part) != value:
        raise FormatError(f"invalid {part} {value!r}")
    return value


def _as_semver(version: Version) -> semver.Version:
    return semver.Version(
        version.major,
        version.minor,
        version.patch,
        prerelease=version.prerelease or None,
        build=version.build or None,
    )


def parse_version(text: str) -> Version:
    """Parse a version string into a Version.

    Accepts an optional leading ``v``. Exactly three numeric core segments
    are required; unlike pip-style versions, "1.2" is not padded.

    Raises:
        FormatError: If the text does not match the version grammar.
    """
    original = text
    text = text.strip()
    if not text:
        raise FormatError("empty version string")
    if text.startswith("v"):
        text = text[1:]

    parsed = _parse_semver(text)
    if parsed is None:
        raise FormatError(
            f"invalid version {original!r} "
            "(expected major.minor.patch[-prerelease][+build])"
        )
    return Version(
        major=parsed.major,
        minor=parsed.minor,
        patch=parsed.patch,
        prerelease=parsed.prerelease or "",
        build=parsed.build or "",
    )


def compare_versions(a: Version | str, b: Version | str) -> int:
    """Compare two versions by precedence, returning -1, 0, or 1.

    Strings are parsed first. Build metadata never participates.
    """
    if isinstance(a, str):
        a = parse_version(a)
    if isinstance(b, str):
        b = parse_version(b)
    return _as_semver(a).compare(_as_semver(b))


def bump_version(version: Version, change_type: ChangeType | str) -> Version:
    """Bump the base version of ``version`` by ``change_type``.

    Any pre-release and build metadata are discarded first, so
    bumping 1.2.3-beta.4 by patch yields 1.2.4.

    Raises:
        InvalidChangeType: If change_type is not patch, minor, or major.
    """
    kind = ChangeType.parse(change_type)
    base = semver.Version(version.major, version.minor, version.patch)
    if kind is ChangeType.MAJOR:
        bumped = base.bump_major()
    elif kind is ChangeType.MINOR:
        bumped = base.bump_minor()
    else:
        bumped = base.bump_patch()
    return Version(major=bumped.major, minor=bumped.minor, patch=bumped.patch)


def bump_patch(version_str: str) -> str:
    """Increment the patch version and return as a string.

    Examples:
        "1.2.3" → "1.2.4"
        "v1.2.3-rc.1" → "1.2.4"
    """
    return str(bump_version(parse_version(version_str), ChangeType.PATCH))


def max_version(versions: Iterable[Version | str]) -> Version | None:
    """Return the highest-precedence version, or None for empty input."""
    parsed = [parse_version(v) if isinstance(v, str) else v for v in versions]
    return max(parsed, default=None)
