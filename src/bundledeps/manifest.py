from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import BundledepsError, ManifestInvalidError

MANIFEST_FILENAME = "npm-depends.json"

_URL_RE = re.compile(r"^(https?|git|git\+https?|git\+ssh|file)://", re.IGNORECASE)
_EXACT_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+(-[0-9A-Za-z.\-]+)?(\+[0-9A-Za-z.\-]+)?$")
_NAME_RE = re.compile(r"^(@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$")
# Package names become a directory under the bundle, so no separators and no leading dot.
_PACKAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][\w.:~-]*$")


def is_url_requirement(requirement: str) -> bool:
    return bool(_URL_RE.match(requirement)) or "/tarball/" in requirement


@dataclass(frozen=True)
class DependencyRequirement:
    name: str
    source: str  # exact version or direct source URL, exactly as declared

    @property
    def is_url(self) -> bool:
        return is_url_requirement(self.source)

    @property
    def install_spec(self) -> str:
        """Argument handed to `npm install`; URL sources are aliased so the module lands under `name`."""
        return f"{self.name}@{self.source}"


class Manifest(Mapping[str, str]):
    """Declared npm dependencies of one package: name -> requirement string."""

    def __init__(self, requirements: Mapping[str, str] | None = None) -> None:
        reqs = dict(requirements or {})
        self._requirements = {k: reqs[k] for k in sorted(reqs)}

    def __getitem__(self, name: str) -> str:
        return self._requirements[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._requirements)

    def __len__(self) -> int:
        return len(self._requirements)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Manifest):
            return self._requirements == other._requirements
        if isinstance(other, Mapping):
            return self._requirements == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._requirements.items()))

    def __repr__(self) -> str:
        return f"Manifest({self._requirements!r})"

    def requirements(self) -> list[DependencyRequirement]:
        return [DependencyRequirement(name=k, source=v) for k, v in self._requirements.items()]

    def as_dict(self) -> dict[str, str]:
        return dict(self._requirements)


def _validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ManifestInvalidError(str(name), None, "dependency name must be a non-empty string")
    if name != name.strip():
        raise ManifestInvalidError(name, None, "dependency name must not contain surrounding whitespace")
    if len(name) > 214:
        raise ManifestInvalidError(name, None, "dependency name is longer than 214 characters")
    if not _NAME_RE.match(name):
        raise ManifestInvalidError(name, None, "not a valid npm package name")
    return name


def validate_package_name(name: Any) -> str:
    if not isinstance(name, str) or not _PACKAGE_NAME_RE.fullmatch(name):
        raise ManifestInvalidError(
            str(name), None, "must start with a letter or digit and contain no path separators", subject="package name"
        )
    return name


def _validate_requirement(name: str, requirement: Any) -> str:
    if not isinstance(requirement, str) or not requirement.strip():
        raise ManifestInvalidError(name, None, "requirement must be a non-empty string")
    value = requirement.strip()
    if is_url_requirement(value):
        return value
    if not _EXACT_VERSION_RE.match(value):
        raise ManifestInvalidError(name, value, "must declare an exact version or a source URL")
    return value


def parse_manifest(raw: Mapping[str, Any] | None) -> Manifest:
    if raw is None:
        return Manifest()
    if not isinstance(raw, Mapping):
        raise BundledepsError("npm dependencies must be an object mapping names to requirements")
    out: dict[str, str] = {}
    for name, requirement in raw.items():
        key = _validate_name(name)
        out[key] = _validate_requirement(key, requirement)
    return Manifest(out)


def load_manifest_file(package_dir: Path) -> tuple[str, Manifest]:
    """Read `npm-depends.json` from a package directory; returns (package name, manifest)."""
    path = package_dir / MANIFEST_FILENAME
    default_name = package_dir.resolve().name
    if not path.exists():
        return default_name, Manifest()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise BundledepsError(f"Could not read {path}: {e}") from e
    if not isinstance(raw, dict):
        raise BundledepsError(f"{path} must contain a JSON object")
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        name = default_name
    return validate_package_name(name.strip()), parse_manifest(raw.get("dependencies"))
