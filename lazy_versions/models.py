"""Data models for lazy-versions.

These Pydantic models describe the two persisted documents: the
pre-release state file and the release history ledger. Field aliases
match the on-disk camelCase keys.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    field_serializer,
    field_validator,
    model_serializer,
)

from .versions import ChangeType, Version, parse_version

_SUBMICRO = re.compile(r"(\.\d{6})\d+")


class PackageState(BaseModel):
    """Pre-release progress for a single package.

    Attributes:
        stage: Name of the current pre-release stage (e.g., "alpha").
        counter: Build number within the stage; never decreases while the
                 package stays in the same stage.
        target_version: The stable version this pre-release leads up to.
    """

    model_config = ConfigDict(populate_by_name=True)

    stage: str
    counter: NonNegativeInt = 0
    target_version: str = Field(alias="targetVersion")

    @field_validator("target_version")
    @classmethod
    def _check_target(cls, value: str) -> str:
        parse_version(value)
        return value

    @property
    def target(self) -> Version:
        return parse_version(self.target_version)


class PrereleaseState(BaseModel):
    """Contents of the pre-release state file, keyed by package name."""

    packages: dict[str, PackageState] = Field(default_factory=dict)

    @field_validator("packages", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        # "packages:" with no children loads as null.
        return {} if value is None else value


class Consignment(BaseModel):
    """A single recorded change that shipped in a release."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    summary: str
    change_type: ChangeType = Field(alias="changeType")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_serializer(mode="wrap")
    def _omit_empty_metadata(self, handler):
        data = handler(self)
        if not self.metadata:
            data.pop("metadata", None)
        return data


class HistoryEntry(BaseModel):
    """One released version of one package, with the consignments it shipped.

    Attributes:
        version: Released version string.
        package: Package name.
        tag: Git tag created for this release (may be empty).
        timestamp: When the release was recorded (RFC 3339 on disk).
        consignments: Changes included in the release, in recorded order.
    """

    version: str
    package: str
    tag: str = ""
    timestamp: AwareDatetime
    consignments: list[Consignment] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        parse_version(value)
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _truncate_nanoseconds(cls, value: Any) -> Any:
        # datetime keeps microseconds; other writers emit nanoseconds.
        if isinstance(value, str):
            return _SUBMICRO.sub(r"\1", value)
        return value

    @field_serializer("timestamp")
    def _rfc3339(self, value: AwareDatetime) -> str:
        return value.isoformat().replace("+00:00", "Z")

