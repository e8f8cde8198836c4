from ._version import __version__
from .builder import DependencyBuilder, Package, PackageBuildResult
from .bundle import BundleResult, bundle_packages, integrate
from .errors import (
    BundledepsError,
    BundleIOError,
    InstallError,
    InstallTransportError,
    ManifestInvalidError,
    TreeDriftError,
    VersionUnresolvableError,
)
from .installer import Installer, InstallMode, InstallResult
from .jobs import Job, MessageSet
from .lockfile import DependencyDir, LockDescription, ResolvedDependency
from .manifest import DependencyRequirement, Manifest, parse_manifest
from .reconcile import Action, Reconciliation, TreeState, reconcile
from .validator import ValidationResult, scan_tree, validate

__all__ = [
    "__version__",
    "Action",
    "BundleIOError",
    "BundleResult",
    "BundledepsError",
    "DependencyBuilder",
    "DependencyDir",
    "DependencyRequirement",
    "InstallError",
    "InstallMode",
    "InstallResult",
    "InstallTransportError",
    "Installer",
    "Job",
    "LockDescription",
    "Manifest",
    "ManifestInvalidError",
    "MessageSet",
    "Package",
    "PackageBuildResult",
    "Reconciliation",
    "ResolvedDependency",
    "TreeDriftError",
    "TreeState",
    "ValidationResult",
    "VersionUnresolvableError",
    "bundle_packages",
    "integrate",
    "parse_manifest",
    "reconcile",
    "scan_tree",
    "validate",
]
