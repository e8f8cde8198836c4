from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass

from .lockfile import LockDescription
from .validator import InstalledModule


class TreeState(str, enum.Enum):
    CLEAN = "clean"
    DISK_MISSING = "disk-missing"
    MANIFEST_CHANGED = "manifest-changed"
    UNRESOLVABLE = "unresolvable"  # only assigned after an install attempt fails


class Action(str, enum.Enum):
    NONE = "none"
    INSTALL_FROM_LOCK = "install-from-lock"
    INSTALL_FULL = "install-full"


@dataclass(frozen=True)
class Reconciliation:
    action: Action
    state: TreeState
    reasons: tuple[str, ...] = ()


def _manifest_differences(manifest: Mapping[str, str], lock: LockDescription) -> list[str]:
    # Plain string comparison: a textually different requirement always counts as a change.
    locked = lock.requirements()
    out: list[str] = []
    for name in sorted(set(manifest) | set(locked)):
        declared = manifest.get(name)
        pinned = locked.get(name)
        if declared == pinned:
            continue
        if pinned is None:
            out.append(f"added {name}@{declared}")
        elif declared is None:
            out.append(f"removed {name}@{pinned}")
        else:
            out.append(f"changed {name}: {pinned} -> {declared}")
    return out


def _disk_differences(lock: LockDescription, installed: Mapping[str, InstalledModule]) -> list[str]:
    out: list[str] = []
    for name in lock.names():
        entry = lock.dependencies[name]
        module = installed.get(name)
        if module is None or not module.has_evidence:
            out.append(f"{name} is not installed")
            continue
        if entry.origin == "registry" and module.version != entry.version:
            out.append(f"{name} is installed at {module.version or 'an unknown version'}, locked at {entry.version}")
    return out


def reconcile(
    manifest: Mapping[str, str],
    prior_lock: LockDescription | None,
    installed: Mapping[str, InstalledModule],
) -> Reconciliation:
    """Decide the smallest install that brings a package's npm tree in line with its manifest."""
    if prior_lock is None:
        return Reconciliation(
            action=Action.INSTALL_FULL,
            state=TreeState.MANIFEST_CHANGED,
            reasons=("no npm-shrinkwrap.json",),
        )

    changed = _manifest_differences(manifest, prior_lock)
    if changed:
        return Reconciliation(action=Action.INSTALL_FULL, state=TreeState.MANIFEST_CHANGED, reasons=tuple(changed))

    drift = _disk_differences(prior_lock, installed)
    if drift:
        # Reinstall everything from the lock in one go; installing missing names one by one
        # would let npm pick newer sub-dependencies than the ones pinned in the lock.
        return Reconciliation(action=Action.INSTALL_FROM_LOCK, state=TreeState.DISK_MISSING, reasons=tuple(drift))

    return Reconciliation(action=Action.NONE, state=TreeState.CLEAN)
