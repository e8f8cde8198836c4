from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from .errors import BundledepsError, VersionUnresolvableError
from .installer import Installer, InstallMode, InstallResult
from .jobs import MessageSet
from .lockfile import DependencyDir, LockDescription
from .manifest import Manifest, load_manifest_file, validate_package_name
from .reconcile import Action, Reconciliation, TreeState, reconcile
from .validator import scan_tree, validate

logger = logging.getLogger(__name__)


def build_job_title(package_name: str) -> str:
    return f"building package {package_name}"


@dataclass(frozen=True)
class Package:
    name: str
    source_dir: Path
    manifest: Manifest

    def __post_init__(self) -> None:
        validate_package_name(self.name)

    @classmethod
    def from_dir(cls, path: Path) -> Package:
        source_dir = path.expanduser().resolve()
        if not source_dir.is_dir():
            raise BundledepsError(f"Package directory does not exist: {source_dir}")
        name, manifest = load_manifest_file(source_dir)
        return cls(name=name, source_dir=source_dir, manifest=manifest)

    @property
    def dep_dir(self) -> DependencyDir:
        return DependencyDir(self.source_dir)

    @property
    def has_npm_dependencies(self) -> bool:
        return bool(self.manifest)


@dataclass(frozen=True)
class PackageBuildResult:
    package: Package
    state: TreeState
    action: Action
    lock: LockDescription | None = None
    pruned: tuple[str, ...] = ()
    error: BundledepsError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def plan_package(package: Package) -> Reconciliation:
    """Reconcile a package against what is on disk, without installing anything."""
    dep_dir = package.dep_dir
    return reconcile(package.manifest, dep_dir.read_lock(), scan_tree(dep_dir.node_modules))


class DependencyBuilder:
    def __init__(self, installer: Installer, *, messages: MessageSet | None = None) -> None:
        self.installer = installer
        self.messages = messages if messages is not None else MessageSet()
        self._dir_locks: dict[Path, threading.Lock] = {}
        self._dir_locks_guard = threading.Lock()

    def _lock_for(self, package: Package) -> threading.Lock:
        key = package.dep_dir.path.resolve()
        with self._dir_locks_guard:
            lock = self._dir_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._dir_locks[key] = lock
            return lock

    def build(self, package: Package) -> PackageBuildResult:
        job = self.messages.add_job(build_job_title(package.name))
        with self._lock_for(package):
            try:
                result = self._build_locked(package)
            except (BundledepsError, OSError) as e:
                err = e if isinstance(e, BundledepsError) else BundledepsError(f"{package.dep_dir.path}: {e}")
                result = PackageBuildResult(
                    package=package,
                    state=TreeState.UNRESOLVABLE if isinstance(err, VersionUnresolvableError) else TreeState.DISK_MISSING,
                    action=Action.NONE,
                    lock=package.dep_dir.read_lock(),
                    error=err,
                )
        if result.error is not None:
            job.error(str(result.error))
        return result

    def build_all(self, packages: Iterable[Package], *, workers: int = 1) -> list[PackageBuildResult]:
        items = list(packages)
        if workers <= 1 or len(items) <= 1:
            return [self.build(p) for p in items]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bundledeps") as pool:
            return list(pool.map(self.build, items))

    def _build_locked(self, package: Package) -> PackageBuildResult:
        dep_dir = package.dep_dir
        if not package.manifest:
            if dep_dir.exists():
                logger.info("%s no longer declares npm dependencies; removing %s", package.name, dep_dir.path)
                dep_dir.remove()
            return PackageBuildResult(package=package, state=TreeState.CLEAN, action=Action.NONE)

        prior_lock = dep_dir.read_lock()
        plan = reconcile(package.manifest, prior_lock, scan_tree(dep_dir.node_modules))
        logger.debug("%s: %s -> %s %s", package.name, plan.state.value, plan.action.value, list(plan.reasons))

        lock = prior_lock
        install: InstallResult | None = None
        if plan.action is Action.INSTALL_FULL:
            install = self.installer.install(dep_dir, package.manifest, InstallMode.FULL)
        elif plan.action is Action.INSTALL_FROM_LOCK and prior_lock is not None:
            install = self.installer.install(dep_dir, prior_lock, InstallMode.FROM_LOCK)

        if install is not None:
            if install.error is not None:
                state = TreeState.UNRESOLVABLE if isinstance(install.error, VersionUnresolvableError) else plan.state
                return PackageBuildResult(
                    package=package,
                    state=state,
                    action=plan.action,
                    lock=prior_lock,
                    error=install.error,
                )
            lock = install.lock

        if lock is None:
            lock = LockDescription()
        validation = validate(dep_dir, lock)
        validation.raise_for_drift()
        return PackageBuildResult(
            package=package,
            state=plan.state,
            action=plan.action,
            lock=lock,
            pruned=validation.pruned,
        )
