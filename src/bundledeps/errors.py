from __future__ import annotations

from pathlib import Path


class BundledepsError(RuntimeError):
    pass


class ManifestInvalidError(BundledepsError):
    def __init__(self, name: str, requirement: str | None, reason: str, *, subject: str = "npm dependency") -> None:
        self.name = name
        self.requirement = requirement
        self.reason = reason
        if requirement is None:
            super().__init__(f"Invalid {subject} {name!r}: {reason}")
        else:
            super().__init__(f"Invalid {subject} {name}@{requirement}: {reason}")


class InstallError(BundledepsError):
    pass


class VersionUnresolvableError(InstallError):
    """The registry (or the installer) could not satisfy a requested version."""

    def __init__(self, name: str, version: str | None, *, detail: str | None = None) -> None:
        self.name = name
        self.version = version
        self.detail = detail
        if version is None:
            message = f"there is no npm package named '{name}'"
        else:
            message = f"{name} version {version} is not available in the npm registry"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InstallTransportError(InstallError):
    """npm could not be run, timed out, or failed for a reason other than resolution."""

    def __init__(self, command: str, detail: str) -> None:
        self.command = command
        self.detail = detail
        super().__init__(f"{command} failed: {detail}")


class TreeDriftError(BundledepsError):
    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "npm dependencies listed in npm-shrinkwrap.json are not installed: " + ", ".join(self.missing)
        )


class BundleIOError(BundledepsError):
    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        super().__init__(f"Could not write bundle npm modules to {path}: {detail}")
