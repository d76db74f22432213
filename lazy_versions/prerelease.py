"""Pre-release state store and stage progression.

The state file records, per package, which pre-release stage it is in,
how many builds it has had in that stage, and the stable version it is
heading towards:

    packages:
      core:
        stage: beta
        counter: 3
        targetVersion: 1.4.0

The store functions (read/write/delete) are stage-agnostic: they only
guarantee lock-coordinated, atomic replacement of the whole document.
Progression rules live in the ``plan_*`` functions, which are pure and
return new values:

    absent ──plan_prerelease──▶ (lowest stage, 1)
    (stage, n) ──plan_prerelease──▶ (stage, n + 1)
    (stage, n) ──plan_promotion──▶ (next stage, 1)
    (stage, n) ──finalize──▶ absent

A single lock covers a single call. ``advance_prerelease`` reads, plans,
and writes in separate calls, so two concurrent callers can still lose
one update (last writer wins).
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel, ValidationError

from .config import PrereleaseConfig, StageConfig
from .errors import DataError, PrereleaseError, StorageIOError
from .locking import atomic_write_text, exclusive_lock, read_text, shared_lock
from .models import PackageState, PrereleaseState
from .versions import Version, parse_version


def state_exists(path: Path) -> bool:
    """Return True if the state file exists. Takes no lock."""
    return Path(path).exists()


def read_state(path: Path) -> PrereleaseState:
    """Read the pre-release state under a shared lock.

    A missing file is not an error: it means no package is in pre-release,
    and an empty state is returned without creating a lock file.

    Raises:
        DataError: If the file content is not a valid state document.
        LockError: If the shared lock cannot be acquired.
    """
    path = Path(path)
    if not path.exists():
        return PrereleaseState()

    with shared_lock(path):
        try:
            text = read_text(path)
        except StorageIOError:
            # Deleted between the existence check and the read.
            if not path.exists():
                return PrereleaseState()
            raise

    return _parse_state(text, path)


def _parse_state(text: str, path: Path) -> PrereleaseState:
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise DataError(f"failed to parse prerelease state {path}: {exc}") from exc
    if raw is None:
        return PrereleaseState()
    if not isinstance(raw, dict):
        raise DataError(
            f"prerelease state {path} must be a mapping, got {type(raw).__name__}"
        )
    try:
        return PrereleaseState.model_validate(raw)
    except ValidationError as exc:
        raise DataError(f"invalid prerelease state {path}: {exc}") from exc


def write_state(path: Path, state: PrereleaseState) -> None:
    """Replace the state file with ``state`` under an exclusive lock.

    The document is written to a temporary sibling and renamed over the
    target, so readers never observe a partial file.
    """
    path = Path(path)
    content = yaml.safe_dump(
        state.model_dump(mode="json", by_alias=True),
        sort_keys=False,
        default_flow_style=False,
    )
    with exclusive_lock(path):
        atomic_write_text(path, content)
    logger.info(
        "Saved prerelease state for {} package(s) to {}", len(state.packages), path
    )


def delete_state(path: Path) -> None:
    """Remove the state file; a missing file is not an error."""
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise StorageIOError(
            f"failed to delete prerelease state {path}: {exc}"
        ) from exc
    logger.info("Deleted prerelease state {}", path)


class PrereleasePlan(BaseModel):
    """The outcome of one pre-release step for one package.

    Attributes:
        package: Package name.
        previous: State before the step (None if the package was not in
                  pre-release).
        state: State after the step.
        version: The pre-release version to write, e.g. 1.4.0-beta.3.
        tag: Tag rendered from the stage's template.
    """

    package: str
    previous: PackageState | None = None
    state: PackageState
    version: Version
    tag: str


def _build_plan(
    package: str,
    previous: PackageState | None,
    stage: StageConfig,
    counter: int,
    target: Version,
) -> PrereleasePlan:
    return PrereleasePlan(
        package=package,
        previous=previous,
        state=PackageState(
            stage=stage.name, counter=counter, target_version=str(target)
        ),
        version=target.with_prerelease(f"{stage.name}.{counter}"),
        tag=stage.render_tag(package=package, version=str(target), counter=counter),
    )


def _require_stage(config: PrereleaseConfig, name: str) -> StageConfig:
    stage = config.get_stage(name)
    if stage is None:
        raise PrereleaseError(f"stage {name!r} not found in configuration")
    return stage


def plan_prerelease(
    state: PrereleaseState,
    package: str,
    target_version: Version | str,
    config: PrereleaseConfig,
) -> PrereleasePlan:
    """Compute the next pre-release build of ``package``.

    - Not in pre-release: start at the lowest-order stage with counter 1.
    - Target version changed since the last build: keep the stage and
      reset the counter to 1.
    - Otherwise: same stage, counter + 1.

    Raises:
        PrereleaseError: If no stages are configured or the recorded stage
            no longer exists.
    """
    if isinstance(target_version, str):
        target_version = parse_version(target_version)
    target = target_version.base_version
    current = state.packages.get(package)

    if current is None:
        stage = config.lowest_stage()
        if stage is None:
            raise PrereleaseError("no pre-release stages configured")
        return _build_plan(package, None, stage, 1, target)

    stage = _require_stage(config, current.stage)
    if current.target.base_version != target:
        logger.warning(
            "Target version changed from {} to {} for {}; restarting {} at 1",
            current.target_version,
            target,
            package,
            stage.name,
        )
        return _build_plan(package, current, stage, 1, target)
    return _build_plan(package, current, stage, current.counter + 1, target)


def plan_promotion(
    state: PrereleaseState, package: str, config: PrereleaseConfig
) -> PrereleasePlan:
    """Move ``package`` to the next pre-release stage, restarting at 1.

    Raises:
        PrereleaseError: If the package is not in pre-release or is already
            at the highest stage.
    """
    current = state.packages.get(package)
    if current is None:
        raise PrereleaseError(f"package {package!r} is not in pre-release")
    _require_stage(config, current.stage)
    if config.is_highest_stage(current.stage):
        raise PrereleaseError(
            f"already at highest pre-release stage {current.stage!r} for {package}"
        )
    next_stage = config.next_stage(current.stage)
    if next_stage is None:
        raise PrereleaseError(f"failed to find next stage after {current.stage!r}")
    return _build_plan(package, current, next_stage, 1, current.target.base_version)


def apply_plans(
    state: PrereleaseState, plans: Iterable[PrereleasePlan]
) -> PrereleaseState:
    """Return a new state with each plan's package state recorded."""
    packages = dict(state.packages)
    for plan in plans:
        packages[plan.package] = plan.state
    return PrereleaseState(packages=packages)


def finalize(state: PrereleaseState, packages: Iterable[str]) -> PrereleaseState:
    """Return a new state with ``packages`` removed (released as stable)."""
    released = set(packages)
    return PrereleaseState(
        packages={
            name: ps for name, ps in state.packages.items() if name not in released
        }
    )


def advance_prerelease(
    path: Path,
    package: str,
    target_version: Version | str,
    config: PrereleaseConfig,
) -> PrereleasePlan:
    """Read the state, plan the next pre-release of ``package``, and save it."""
    state = read_state(path)
    plan = plan_prerelease(state, package, target_version, config)
    write_state(path, apply_plans(state, [plan]))
    logger.info("{}: {} ({})", package, plan.version, plan.tag)
    return plan
