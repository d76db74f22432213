"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from loguru import logger

from lazy_versions.config import PrereleaseConfig, StageConfig
from lazy_versions.history import init_history
from lazy_versions.models import Consignment, HistoryEntry

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_pyproject(tmp_path: Path) -> Path:
    """Create a temporary pyproject.toml with a [tool.lazy-versions] table."""
    content = """\
[project]
name = "test-package"
version = "1.0.0"

[tool.lazy-versions]
state-file = ".release/prerelease.yml"
history-file = ".release/history.json"

[[tool.lazy-versions.prerelease.stages]]
name = "beta"
order = 2

[[tool.lazy-versions.prerelease.stages]]
name = "alpha"
order = 1

[[tool.lazy-versions.prerelease.stages]]
name = "rc"
order = 3
tag-template = "v{version}-rc.{counter}"
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def stages() -> PrereleaseConfig:
    """alpha → beta → rc with the default tag template."""
    return PrereleaseConfig(
        stages=[
            StageConfig(name="alpha", order=1),
            StageConfig(name="beta", order=2),
            StageConfig(name="rc", order=3),
        ]
    )


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / ".release" / "prerelease.yml"


@pytest.fixture
def history_path(tmp_path: Path) -> Path:
    """An initialized, empty history ledger."""
    path = tmp_path / ".release" / "history.json"
    init_history(path)
    return path


def make_entry(
    package: str = "core",
    version: str = "1.0.0",
    *,
    minutes: int = 0,
    tag: str | None = None,
    consignments: list[Consignment] | None = None,
) -> HistoryEntry:
    """Build a HistoryEntry offset ``minutes`` from a fixed base time."""
    return HistoryEntry(
        version=version,
        package=package,
        tag=tag if tag is not None else f"{package}/v{version}",
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        consignments=consignments
        if consignments is not None
        else [
            Consignment(id=f"{package}-{version}", summary="Change", change_type="patch")
        ],
    )


@pytest.fixture
def sample_entries() -> list[HistoryEntry]:
    """Three releases across two packages, recorded out of time order."""
    return [
        make_entry("core", "1.0.0", minutes=10),
        make_entry("api", "0.3.0", minutes=0),
        make_entry(
            "core",
            "1.1.0",
            minutes=20,
            consignments=[
                Consignment(
                    id="c1",
                    summary="Add streaming",
                    change_type="minor",
                    metadata={"author": "alice", "labels": ["feature", "api"]},
                ),
                Consignment(
                    id="c2",
                    summary="Fix timeout",
                    change_type="patch",
                    metadata={"author": "bob", "breaking": False},
                ),
            ],
        ),
    ]


@pytest.fixture
def log_messages():
    """Capture lazy_versions log records as "LEVEL message" strings."""
    messages: list[str] = []
    logger.enable("lazy_versions")
    sink_id = logger.add(
        lambda m: messages.append(f"{m.record['level'].name} {m.record['message']}")
    )
    yield messages
    logger.remove(sink_id)
    logger.disable("lazy_versions")
