from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .builder import DependencyBuilder, Package, PackageBuildResult
from .errors import BundleIOError
from .lockfile import NODE_MODULES_DIRNAME, DependencyDir
from .manifest import validate_package_name

logger = logging.getLogger(__name__)

SERVER_PROGRAM_PARTS = ("programs", "server")


def npm_root(bundle_dir: Path) -> Path:
    return bundle_dir.joinpath(*SERVER_PROGRAM_PARTS, "npm")


def bundle_placement(bundle_dir: Path, package_name: str) -> Path:
    return npm_root(bundle_dir) / validate_package_name(package_name) / NODE_MODULES_DIRNAME


def integrate(bundle_dir: Path, package_name: str, dep_dir: DependencyDir) -> Path:
    """Copy a package's installed node_modules verbatim into the bundle; returns the destination."""
    source = dep_dir.node_modules
    dest = bundle_placement(bundle_dir, package_name)
    if not source.is_dir():
        raise BundleIOError(dest, f"{source} does not exist")

    tmp = dest.with_name(dest.name + ".tmp")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if tmp.exists():
            shutil.rmtree(tmp)
        shutil.copytree(source, tmp, symlinks=True)
        if dest.exists():
            shutil.rmtree(dest)
        tmp.rename(dest)
    except OSError as e:
        shutil.rmtree(tmp, ignore_errors=True)
        raise BundleIOError(dest, str(e)) from e
    logger.debug("Copied %s -> %s", source, dest)
    return dest


@dataclass(frozen=True)
class BundleResult:
    output_dir: Path
    results: tuple[PackageBuildResult, ...]
    bundled: tuple[str, ...]
    errors: tuple[str, ...]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def _prune_stale_placements(bundle_dir: Path, keep: set[str]) -> None:
    root = npm_root(bundle_dir)
    if not root.is_dir():
        return
    for child in root.iterdir():
        if child.name in keep:
            continue
        try:
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        except OSError as e:
            raise BundleIOError(child, str(e)) from e


def bundle_packages(
    packages: Iterable[Package],
    output_dir: Path,
    builder: DependencyBuilder,
    *,
    workers: int = 1,
) -> BundleResult:
    """Build every package's npm tree, then place each valid tree into the bundle."""
    items = list(packages)
    results = builder.build_all(items, workers=workers)
    messages = builder.messages

    with messages.job(f"bundling npm modules into {output_dir}"):
        _prune_stale_placements(output_dir, {p.name for p in items if p.has_npm_dependencies})

    bundled: list[str] = []
    for result in results:
        package = result.package
        if not package.has_npm_dependencies or not result.ok:
            continue
        with messages.job(f"bundling package {package.name}"):
            integrate(output_dir, package.name, package.dep_dir)
            bundled.append(package.name)

    return BundleResult(
        output_dir=output_dir,
        results=tuple(results),
        bundled=tuple(bundled),
        errors=tuple(messages.errors()),
    )
