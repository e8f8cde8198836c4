from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import TreeDriftError
from .lockfile import DependencyDir, LockDescription

logger = logging.getLogger(__name__)

# Packages follow different conventions, but every one we install ships at least one of these.
EVIDENCE_FILENAMES = ("README.md", "README", "LICENSE", "LICENSE.md", "LICENSE.txt")


@dataclass(frozen=True)
class InstalledModule:
    name: str
    path: Path
    version: str | None
    has_evidence: bool


@dataclass(frozen=True)
class ValidationResult:
    missing: tuple[str, ...]
    pruned: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not self.missing

    def raise_for_drift(self) -> None:
        if self.missing:
            raise TreeDriftError(list(self.missing))


def looks_installed(module_dir: Path) -> bool:
    return any((module_dir / name).is_file() for name in EVIDENCE_FILENAMES)


def _read_installed_version(module_dir: Path) -> str | None:
    path = module_dir / "package.json"
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    version = data.get("version")
    return version if isinstance(version, str) and version else None


def _top_level_entries(node_modules: Path) -> list[tuple[str, Path]]:
    if not node_modules.is_dir():
        return []
    out: list[tuple[str, Path]] = []
    for child in sorted(node_modules.iterdir(), key=lambda p: p.name):
        if child.name.startswith("."):
            # npm bookkeeping such as .bin and .package-lock.json
            continue
        if child.name.startswith("@") and child.is_dir() and not child.is_symlink():
            for sub in sorted(child.iterdir(), key=lambda p: p.name):
                if sub.name.startswith("."):
                    continue
                out.append((f"{child.name}/{sub.name}", sub))
            continue
        out.append((child.name, child))
    return out


def scan_tree(node_modules: Path) -> dict[str, InstalledModule]:
    modules: dict[str, InstalledModule] = {}
    for name, path in _top_level_entries(node_modules):
        if not path.is_dir():
            continue
        modules[name] = InstalledModule(
            name=name,
            path=path,
            version=_read_installed_version(path),
            has_evidence=looks_installed(path),
        )
    return modules


def _remove_entry(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def validate(dep_dir: DependencyDir, lock: LockDescription) -> ValidationResult:
    """Prune top-level entries the lock doesn't know about and report locked names that are missing."""
    node_modules = dep_dir.node_modules
    pruned: list[str] = []
    for name, path in _top_level_entries(node_modules):
        if name in lock:
            continue
        logger.info("Removing stale npm module %s from %s", name, node_modules)
        _remove_entry(path)
        pruned.append(name)

    if node_modules.is_dir():
        for child in node_modules.iterdir():
            if child.name.startswith("@") and child.is_dir() and not child.is_symlink() and not any(child.iterdir()):
                child.rmdir()

    missing = [name for name in lock.names() if not looks_installed(node_modules / name)]
    if missing:
        logger.warning("npm modules missing from %s: %s", node_modules, ", ".join(missing))
    return ValidationResult(missing=tuple(missing), pruned=tuple(pruned))
