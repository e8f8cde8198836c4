from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import BundledepsError
from .manifest import is_url_requirement

logger = logging.getLogger(__name__)

NPM_DIRNAME = ".npm"
PACKAGE_SUBDIR = "package"
SHRINKWRAP_FILENAME = "npm-shrinkwrap.json"
GITIGNORE_FILENAME = ".gitignore"
README_FILENAME = "README"
NODE_MODULES_DIRNAME = "node_modules"

GITIGNORE_CONTENTS = "node_modules\n"
README_CONTENTS = (
    "This directory and the files immediately inside it are generated\n"
    "automatically whenever this package's npm dependencies change.\n"
    "\n"
    "Commit npm-shrinkwrap.json, .gitignore and this README to source control\n"
    "so that everyone building the package installs the same versions of every\n"
    "sub-dependency.\n"
    "\n"
    "Do NOT commit the node_modules directory created next to them; the\n"
    ".gitignore file keeps git from picking it up.\n"
)


@dataclass(frozen=True)
class ResolvedDependency:
    name: str
    version: str | None = None
    source_url: str | None = None
    dependencies: dict[str, ResolvedDependency] = field(default_factory=dict)

    @property
    def origin(self) -> str:
        return "url" if self.source_url is not None else "registry"

    @property
    def requirement(self) -> str:
        """The value a manifest must declare for this entry to be up to date."""
        if self.source_url is not None:
            return self.source_url
        return self.version or ""

    def to_payload(self) -> dict[str, Any]:
        item: dict[str, Any] = {}
        if self.source_url is not None:
            item["from"] = self.source_url
        elif self.version is not None:
            item["version"] = self.version
        if self.dependencies:
            item["dependencies"] = {k: self.dependencies[k].to_payload() for k in sorted(self.dependencies)}
        return item

    @classmethod
    def from_payload(cls, name: str, raw: Any) -> ResolvedDependency:
        if not isinstance(raw, dict):
            raise BundledepsError(f"Lock entry for {name!r} must be an object")
        version = raw.get("version")
        source = raw.get("from")
        nested_raw = raw.get("dependencies")
        if nested_raw is not None and not isinstance(nested_raw, dict):
            raise BundledepsError(f"Lock entry for {name!r} has malformed dependencies")
        nested = {k: cls.from_payload(k, v) for k, v in sorted((nested_raw or {}).items())}
        if isinstance(source, str) and source:
            return cls(name=name, source_url=source, dependencies=nested)
        if isinstance(version, str) and version:
            return cls(name=name, version=version, dependencies=nested)
        raise BundledepsError(f"Lock entry for {name!r} has neither a version nor a source")


@dataclass(frozen=True)
class LockDescription:
    dependencies: dict[str, ResolvedDependency] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.dependencies

    def __len__(self) -> int:
        return len(self.dependencies)

    def names(self) -> list[str]:
        return sorted(self.dependencies)

    def get(self, name: str) -> ResolvedDependency | None:
        return self.dependencies.get(name)

    def requirements(self) -> dict[str, str]:
        return {k: self.dependencies[k].requirement for k in sorted(self.dependencies)}

    def to_payload(self) -> dict[str, Any]:
        return {"dependencies": {k: self.dependencies[k].to_payload() for k in sorted(self.dependencies)}}

    def dumps(self) -> str:
        return json.dumps(self.to_payload(), indent=2) + "\n"

    @classmethod
    def loads(cls, text: str) -> LockDescription:
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise BundledepsError(f"{SHRINKWRAP_FILENAME} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise BundledepsError(f"{SHRINKWRAP_FILENAME} must contain a JSON object")
        deps = raw.get("dependencies", {})
        if not isinstance(deps, dict):
            raise BundledepsError(f"{SHRINKWRAP_FILENAME} has a malformed 'dependencies' key")
        return cls(dependencies={k: ResolvedDependency.from_payload(k, v) for k, v in sorted(deps.items())})

    @classmethod
    def from_npm_shrinkwrap(cls, raw: Any, manifest: Mapping[str, str] | None = None) -> LockDescription:
        """Reduce npm's own lock output to the fields worth committing.

        npm records resolved tarball URLs, integrity hashes and other churn; only
        the version (or, for URL requirements, the declared source) is kept, along
        with the nested sub-dependency tree.
        """
        if not isinstance(raw, dict):
            raise BundledepsError("npm shrinkwrap output must be a JSON object")
        tree = raw.get("dependencies")
        if not isinstance(tree, dict):
            packages = raw.get("packages")
            tree = _tree_from_packages(packages) if isinstance(packages, dict) else {}
        declared = dict(manifest or {})
        return cls(
            dependencies={k: _minimize(k, tree[k], declared.get(k)) for k in sorted(tree)},
        )


def _tree_from_packages(packages: dict[str, Any]) -> dict[str, Any]:
    # "node_modules/a/node_modules/b" -> {"a": {"dependencies": {"b": {...}}}}
    root: dict[str, Any] = {}
    prefix = NODE_MODULES_DIRNAME + "/"
    for path in sorted(packages):
        meta = packages[path]
        if not path.startswith(prefix) or not isinstance(meta, dict):
            continue
        chain = path[len(prefix) :].split("/" + prefix)
        node = root
        for parent in chain[:-1]:
            node = node.setdefault(parent, {}).setdefault("dependencies", {})
        entry = node.setdefault(chain[-1], {})
        for key in ("version", "from", "resolved"):
            if key in meta:
                entry[key] = meta[key]
    return root


def _minimize(name: str, raw: Any, declared: str | None) -> ResolvedDependency:
    if not isinstance(raw, dict):
        raise BundledepsError(f"npm shrinkwrap entry for {name!r} must be an object")

    nested_raw = raw.get("dependencies")
    nested: dict[str, ResolvedDependency] = {}
    if isinstance(nested_raw, dict):
        nested = {k: _minimize(k, nested_raw[k], None) for k in sorted(nested_raw)}

    # Versions read back from URL-sourced packages are not trustworthy; record the declared source.
    if declared is not None and is_url_requirement(declared):
        return ResolvedDependency(name=name, source_url=declared, dependencies=nested)

    version = raw.get("version")
    if isinstance(version, str) and version:
        if is_url_requirement(version):
            return ResolvedDependency(name=name, source_url=version, dependencies=nested)
        return ResolvedDependency(name=name, version=version, dependencies=nested)

    source = raw.get("from") or raw.get("resolved")
    if isinstance(source, str) and source:
        return ResolvedDependency(name=name, source_url=source, dependencies=nested)
    raise BundledepsError(f"npm shrinkwrap entry for {name!r} has no version")


def _write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


class DependencyDir:
    """The generated `.npm/package` directory of one package."""

    def __init__(self, package_dir: Path) -> None:
        self.package_dir = package_dir
        self.path = package_dir / NPM_DIRNAME / PACKAGE_SUBDIR
        self.lock_path = self.path / SHRINKWRAP_FILENAME
        self.node_modules = self.path / NODE_MODULES_DIRNAME

    def __repr__(self) -> str:
        return f"DependencyDir({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.is_dir()

    def read_lock(self) -> LockDescription | None:
        if not self.lock_path.is_file():
            return None
        try:
            return LockDescription.loads(self.lock_path.read_text(encoding="utf-8"))
        except (BundledepsError, OSError, ValueError) as e:
            # Treated like a missing lock: the next install regenerates it from the manifest.
            logger.warning("Ignoring unreadable %s: %s", self.lock_path, e)
            return None

    def write_lock(self, lock: LockDescription) -> None:
        _write_text_atomic(self.lock_path, lock.dumps())

    def write_scaffold(self) -> None:
        _write_text_atomic(self.path / GITIGNORE_FILENAME, GITIGNORE_CONTENTS)
        _write_text_atomic(self.path / README_FILENAME, README_CONTENTS)

    def remove(self) -> None:
        if self.path.exists():
            shutil.rmtree(self.path)
        npm_dir = self.path.parent
        if npm_dir.is_dir() and not any(npm_dir.iterdir()):
            npm_dir.rmdir()
