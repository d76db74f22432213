"""Configuration loaded from the [tool.lazy-versions] table of pyproject.toml.

Uses tomlkit, the same parser that reads and rewrites package manifests,
so reading the config never reformats the file. There is no global
settings object: callers load a Settings value and pass it along.

Example:

    [tool.lazy-versions]
    state-file = ".lazy-versions/prerelease.yml"
    history-file = ".lazy-versions/history.json"

    [[tool.lazy-versions.prerelease.stages]]
    name = "alpha"
    order = 1

    [[tool.lazy-versions.prerelease.stages]]
    name = "rc"
    order = 2
    tag-template = "{package}/v{version}-rc.{counter}"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError, FormatError
from .versions import Version

DEFAULT_STATE_FILE = ".lazy-versions/prerelease.yml"
DEFAULT_HISTORY_FILE = ".lazy-versions/history.json"
DEFAULT_TAG_TEMPLATE = "{package}/v{version}-{stage}.{counter}"


class StageConfig(BaseModel):
    """A single pre-release stage (e.g., alpha → beta → rc)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    order: int
    tag_template: str = Field(default=DEFAULT_TAG_TEMPLATE, alias="tag-template")

    @field_validator("name")
    @classmethod
    def _valid_identifier(cls, value: str) -> str:
        if not value or "." in value:
            raise ValueError(f"stage name {value!r} must be a single identifier")
        try:
            Version(major=0, minor=0, patch=0, prerelease=value)
        except FormatError as exc:
            raise ValueError(
                f"stage name {value!r} is not a valid pre-release identifier"
            ) from exc
        return value

    def render_tag(self, *, package: str, version: str, counter: int) -> str:
        """Render this stage's tag template.

        Available fields: {package}, {version}, {stage}, {counter}.
        """
        try:
            return self.tag_template.format(
                package=package, version=version, stage=self.name, counter=counter
            )
        except (KeyError, IndexError, ValueError) as exc:
            raise ConfigError(
                f"invalid tag template {self.tag_template!r} "
                f"for stage {self.name!r}: {exc}"
            ) from exc


class PrereleaseConfig(BaseModel):
    """Ordered pre-release stages."""

    stages: list[StageConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique(self) -> PrereleaseConfig:
        names = [s.name for s in self.stages]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate stage names: {names}")
        orders = [s.order for s in self.stages]
        if len(set(orders)) != len(orders):
            raise ValueError(f"duplicate stage orders: {orders}")
        return self

    def ordered(self) -> list[StageConfig]:
        return sorted(self.stages, key=lambda s: s.order)

    def lowest_stage(self) -> StageConfig | None:
        ordered = self.ordered()
        return ordered[0] if ordered else None

    def get_stage(self, name: str) -> StageConfig | None:
        return next((s for s in self.stages if s.name == name), None)

    def next_stage(self, name: str) -> StageConfig | None:
        """Return the stage after ``name``, or None if it is the last one."""
        ordered = self.ordered()
        for i, stage in enumerate(ordered):
            if stage.name == name:
                return ordered[i + 1] if i + 1 < len(ordered) else None
        return None

    def is_highest_stage(self, name: str) -> bool:
        ordered = self.ordered()
        return bool(ordered) and ordered[-1].name == name


class Settings(BaseModel):
    """Resolved settings for one repository.

    Attributes:
        state_file: Absolute path to the pre-release state file.
        history_file: Absolute path to the history ledger.
        prerelease: Configured pre-release stages.
    """

    state_file: Path
    history_file: Path
    prerelease: PrereleaseConfig = Field(default_factory=PrereleaseConfig)


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a pyproject.toml file."""
    try:
        return tomlkit.parse(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    except TOMLKitError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def get_tool_table(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Extract [tool.lazy-versions] as plain Python values ({} when absent)."""
    table = doc.get("tool", {}).get("lazy-versions", {})
    return table.unwrap() if hasattr(table, "unwrap") else dict(table)


def settings_from_table(table: dict[str, Any], root: Path) -> Settings:
    """Build Settings from a raw tool table, resolving paths against root."""
    try:
        prerelease = PrereleaseConfig.model_validate(table.get("prerelease", {}))
    except ValidationError as exc:
        raise ConfigError(f"invalid [tool.lazy-versions.prerelease]: {exc}") from exc

    state_file = table.get("state-file", DEFAULT_STATE_FILE)
    history_file = table.get("history-file", DEFAULT_HISTORY_FILE)
    for key, value in (("state-file", state_file), ("history-file", history_file)):
        if not isinstance(value, str) or not value:
            raise ConfigError(f"[tool.lazy-versions].{key} must be a non-empty string")

    return Settings(
        state_file=root / state_file,
        history_file=root / history_file,
        prerelease=prerelease,
    )


def load_config(pyproject_path: Path) -> Settings:
    """Load Settings from a pyproject.toml, defaulting every missing key.

    Relative paths are resolved against the directory holding the file.

    Raises:
        ConfigError: If the file cannot be read or the table is invalid.
    """
    pyproject_path = Path(pyproject_path)
    doc = load_pyproject(pyproject_path)
    return settings_from_table(get_tool_table(doc), pyproject_path.parent.resolve())
