import os
import tempfile
import unittest
from pathlib import Path

from bundledeps.builder import DependencyBuilder, Package
from bundledeps.bundle import bundle_packages, bundle_placement, integrate
from bundledeps.errors import BundleIOError, ManifestInvalidError
from bundledeps.installer import Installer
from bundledeps.lockfile import DependencyDir
from bundledeps.manifest import parse_manifest
from npm_fakes import FakeNpm, Tarball

GZIPPO_URL = "https://github.com/meteor/gzippo/tarball/1e4b955439abc643879ae264b28a761521818f3b"


def _catalog() -> dict[str, dict[str, list[str]]]:
    return {"gcd": {"0.0.0": []}, "mime": {"1.2.7": []}, "send": {"0.1.0": ["mime"]}}


def _snapshot(root: Path) -> dict[str, bytes]:
    out: dict[str, bytes] = {}
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            out[str(path.relative_to(root))] = path.read_bytes()
    return out


class TestIntegrate(unittest.TestCase):
    def test_copies_tree_verbatim_and_idempotently(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            dep_dir = DependencyDir(root / "pkg")
            module = dep_dir.node_modules / "gcd"
            module.mkdir(parents=True)
            (module / "README.md").write_text("# gcd\n", encoding="utf-8")
            (module / "package.json").write_text('{"version": "0.0.0"}', encoding="utf-8")
            bundle_dir = root / "bundle"

            dest = integrate(bundle_dir, "test-package", dep_dir)
            first = _snapshot(dest)
            integrate(bundle_dir, "test-package", dep_dir)

            self.assertEqual(dest, bundle_dir / "programs" / "server" / "npm" / "test-package" / "node_modules")
            self.assertEqual(dest, bundle_placement(bundle_dir, "test-package"))
            self.assertEqual(first, _snapshot(dep_dir.node_modules))
            self.assertEqual(_snapshot(dest), first)
            self.assertEqual(sorted(p.name for p in dest.parent.iterdir()), ["node_modules"])

    def test_replaces_previous_contents(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            dep_dir = DependencyDir(root / "pkg")
            (dep_dir.node_modules / "gcd").mkdir(parents=True)
            stale = bundle_placement(root / "bundle", "p") / "old"
            stale.mkdir(parents=True)

            dest = integrate(root / "bundle", "p", dep_dir)

            self.assertEqual(sorted(p.name for p in dest.iterdir()), ["gcd"])

    def test_missing_source_is_an_io_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(BundleIOError):
                integrate(Path(td) / "bundle", "p", DependencyDir(Path(td) / "pkg"))

    def test_escaping_package_name_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            dep_dir = DependencyDir(root / "pkg")
            (dep_dir.node_modules / "gcd").mkdir(parents=True)

            with self.assertRaises(ManifestInvalidError):
                integrate(root / "bundle", "../../../../escaped", dep_dir)

            self.assertFalse((root / "escaped").exists())
            self.assertFalse((root / "bundle").exists())


class TestBundlePackages(unittest.TestCase):
    def test_builds_and_bundles_packages_with_dependencies(self) -> None:
        npm = FakeNpm(_catalog(), tarballs={GZIPPO_URL: Tarball("gzippo", reported_version="0.0.0-from-tarball")})
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "a").mkdir()
            (root / "b").mkdir()
            (root / "plain").mkdir()
            packages = [
                Package(name="a", source_dir=root / "a", manifest=parse_manifest({"send": "0.1.0"})),
                Package(name="b", source_dir=root / "b", manifest=parse_manifest({"gzippo": GZIPPO_URL})),
                Package(name="plain", source_dir=root / "plain", manifest=parse_manifest({})),
            ]
            builder = DependencyBuilder(Installer(runner=npm))
            bundle_dir = root / "bundle"
            stale = bundle_dir / "programs" / "server" / "npm" / "removed-package"
            stale.mkdir(parents=True)

            result = bundle_packages(packages, bundle_dir, builder, workers=2)

            self.assertFalse(result.has_errors, result.errors)
            self.assertEqual(result.bundled, ("a", "b"))
            npm_root = bundle_dir / "programs" / "server" / "npm"
            self.assertEqual(sorted(p.name for p in npm_root.iterdir()), ["a", "b"])
            self.assertTrue((npm_root / "a" / "node_modules" / "send" / "node_modules" / "mime" / "README.md").is_file())
            self.assertTrue((npm_root / "b" / "node_modules" / "gzippo" / "README.md").is_file())

            # a second bundle from an unchanged tree is identical
            first = _snapshot(npm_root)
            npm.calls.clear()
            again = bundle_packages(packages, bundle_dir, builder)
            self.assertFalse(again.has_errors)
            self.assertEqual(npm.calls, [])
            self.assertEqual(_snapshot(npm_root), first)

    def test_failed_package_is_reported_and_others_bundled(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "good").mkdir()
            (root / "bad").mkdir()
            packages = [
                Package(name="good", source_dir=root / "good", manifest=parse_manifest({"gcd": "0.0.0"})),
                Package(name="bad", source_dir=root / "bad", manifest=parse_manifest({"mime": "0.1.2"})),
            ]

            result = bundle_packages(packages, root / "bundle", DependencyBuilder(Installer(runner=FakeNpm(_catalog()))))

            self.assertTrue(result.has_errors)
            self.assertEqual(result.bundled, ("good",))
            self.assertEqual(len(result.errors), 1)
            self.assertIn("building package bad", result.errors[0])
            self.assertIn("mime version 0.1.2 is not available", result.errors[0])


if __name__ == "__main__":
    unittest.main()
