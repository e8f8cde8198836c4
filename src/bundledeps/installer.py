from __future__ import annotations

import enum
import json
import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import BundledepsError, InstallError, InstallTransportError, VersionUnresolvableError
from .lockfile import NODE_MODULES_DIRNAME, SHRINKWRAP_FILENAME, DependencyDir, LockDescription
from .manifest import DependencyRequirement, Manifest
from .npm import NESTED_INSTALL_FLAG, NpmResult, NpmRunner
from .registry import RegistryClient

logger = logging.getLogger(__name__)

# Nested layout keeps every sub-dependency under its parent, so the top level of
# node_modules holds exactly the declared dependencies. SubprocessNpmRunner
# translates the flag for npm releases that predate it.
INSTALL_FLAGS = (NESTED_INSTALL_FLAG, "--no-audit", "--no-fund")

_NOT_FOUND_VERSION_RES = (
    re.compile(r"No matching version found for (\S+?)\.?$", re.MULTILINE),
    re.compile(r"No compatible version found: (\S+)", re.MULTILINE),
    re.compile(r"version not found: (\S+)", re.MULTILINE),
)
_NOT_FOUND_PACKAGE_RES = (
    re.compile(r"'(\S+)' is not in (?:this|the npm) registry"),
    re.compile(r"404 Not Found\s*-\s*GET \S+"),
)


class InstallMode(str, enum.Enum):
    FULL = "full"
    FROM_LOCK = "from-lock"


@dataclass(frozen=True)
class InstallResult:
    mode: InstallMode
    lock: LockDescription | None = None
    error: BundledepsError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _split_spec(spec: str) -> tuple[str, str | None]:
    value = spec.strip().strip("'\"")
    at_idx = value.rfind("@")
    if at_idx > 0:
        return value[:at_idx], value[at_idx + 1 :].strip("'\"") or None
    return value, None


def _tail(text: str, lines: int = 5) -> str:
    kept = [line for line in text.strip().splitlines() if line.strip()]
    return "\n".join(kept[-lines:]) if kept else "no output"


def classify_npm_failure(command: str, result: NpmResult, requirement: DependencyRequirement | None = None) -> InstallError:
    output = f"{result.stderr}\n{result.stdout}"
    unresolvable_version = "ETARGET" in output or any(r.search(output) for r in _NOT_FOUND_VERSION_RES)
    if unresolvable_version:
        for pattern in _NOT_FOUND_VERSION_RES:
            m = pattern.search(output)
            if m:
                name, version = _split_spec(m.group(1))
                if version is not None:
                    return VersionUnresolvableError(name, version)
        if requirement is not None:
            return VersionUnresolvableError(requirement.name, requirement.source)

    if "E404" in output or any(r.search(output) for r in _NOT_FOUND_PACKAGE_RES):
        if requirement is not None and requirement.is_url:
            return VersionUnresolvableError(requirement.name, requirement.source, detail="source not found")
        m = _NOT_FOUND_PACKAGE_RES[0].search(output)
        if m:
            return VersionUnresolvableError(_split_spec(m.group(1))[0], None)
        if requirement is not None:
            return VersionUnresolvableError(requirement.name, None)

    return InstallTransportError(command, f"exit status {result.returncode}: {_tail(result.stderr or result.stdout)}")


def _write_package_json(staging: Path, dependencies: dict[str, str]) -> None:
    payload = {
        "name": "bundledeps-staging",
        "private": True,
        "dependencies": {k: dependencies[k] for k in sorted(dependencies)},
    }
    (staging / "package.json").write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


class Installer:
    def __init__(
        self,
        *,
        runner: NpmRunner,
        registry: RegistryClient | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.runner = runner
        self.registry = registry
        self.timeout_s = timeout_s

    def install(
        self,
        dep_dir: DependencyDir,
        source: Manifest | LockDescription,
        mode: InstallMode,
    ) -> InstallResult:
        """
        Materialize a dependency tree into `dep_dir`.

        FULL resolves `source` (a Manifest) from scratch and replaces the lock.
        FROM_LOCK reinstalls `source` (a LockDescription) with a single bulk npm
        call and leaves the persisted lock as it is. Either way the live tree and
        lock are only replaced once the whole install has succeeded.
        """
        if mode is InstallMode.FULL and not isinstance(source, Manifest):
            raise TypeError("FULL installs need a Manifest")
        if mode is InstallMode.FROM_LOCK and not isinstance(source, LockDescription):
            raise TypeError("FROM_LOCK installs need a LockDescription")

        logger.info("Installing npm dependencies into %s (%s)", dep_dir.path, mode.value)
        npm_dir = dep_dir.path.parent
        try:
            npm_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix="package-staging-", dir=npm_dir) as td:
                staging = Path(td)
                if isinstance(source, Manifest):
                    lock = self._install_full(staging, source)
                else:
                    lock = self._install_from_lock(staging, source)
                self._commit(dep_dir, staging, lock, write_lock=mode is InstallMode.FULL)
        except BundledepsError as e:
            logger.warning("npm install into %s failed: %s", dep_dir.path, e)
            return InstallResult(mode=mode, error=e)
        except OSError as e:
            err = InstallTransportError(f"install into {dep_dir.path}", str(e))
            logger.warning("npm install into %s failed: %s", dep_dir.path, err)
            return InstallResult(mode=mode, error=err)
        return InstallResult(mode=mode, lock=lock)

    def _npm(self, staging: Path, args: list[str]) -> NpmResult:
        return self.runner.run(staging, args, timeout_s=self.timeout_s)

    def _preflight(self, manifest: Manifest) -> None:
        if self.registry is None:
            return
        for req in manifest.requirements():
            if req.is_url:
                continue
            self.registry.ensure_available(req.name, req.source)

    def _install_full(self, staging: Path, manifest: Manifest) -> LockDescription:
        if not manifest:
            return LockDescription()
        self._preflight(manifest)
        _write_package_json(staging, {})
        for req in manifest.requirements():
            args = ["install", *INSTALL_FLAGS, req.install_spec]
            result = self._npm(staging, args)
            if not result.ok:
                raise classify_npm_failure("npm " + " ".join(args), result, req)

        result = self._npm(staging, ["shrinkwrap"])
        if not result.ok:
            raise InstallTransportError("npm shrinkwrap", _tail(result.stderr or result.stdout))
        shrinkwrap_path = staging / SHRINKWRAP_FILENAME
        try:
            raw = json.loads(shrinkwrap_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise InstallTransportError("npm shrinkwrap", f"could not read {SHRINKWRAP_FILENAME}: {e}") from e
        return LockDescription.from_npm_shrinkwrap(raw, manifest)

    def _install_from_lock(self, staging: Path, lock: LockDescription) -> LockDescription:
        if not lock:
            return lock
        _write_package_json(staging, lock.requirements())
        (staging / SHRINKWRAP_FILENAME).write_text(lock.dumps(), encoding="utf-8")
        args = ["install", *INSTALL_FLAGS]
        result = self._npm(staging, args)
        if not result.ok:
            raise classify_npm_failure("npm " + " ".join(args), result)
        return lock

    def _commit(self, dep_dir: DependencyDir, staging: Path, lock: LockDescription, *, write_lock: bool) -> None:
        new_modules = staging / NODE_MODULES_DIRNAME
        new_modules.mkdir(exist_ok=True)
        dep_dir.path.mkdir(parents=True, exist_ok=True)

        dest = dep_dir.node_modules
        backup = dest.with_name(dest.name + ".bundledeps-backup")
        had_existing = dest.exists()
        if backup.exists():
            shutil.rmtree(backup, ignore_errors=True)
        if had_existing:
            dest.rename(backup)

        try:
            shutil.move(str(new_modules), str(dest))
            dep_dir.write_scaffold()
            # Lock last, so a failed commit keeps the old lock beside the restored tree.
            if write_lock:
                dep_dir.write_lock(lock)
        except Exception:
            if dest.exists():
                shutil.rmtree(dest, ignore_errors=True)
            if had_existing and backup.exists():
                backup.rename(dest)
            raise
        finally:
            if backup.exists():
                shutil.rmtree(backup, ignore_errors=True)
