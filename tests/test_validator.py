import json
import tempfile
import unittest
from pathlib import Path

from bundledeps.errors import TreeDriftError
from bundledeps.lockfile import DependencyDir, LockDescription, ResolvedDependency
from bundledeps.validator import looks_installed, scan_tree, validate


def _module(node_modules: Path, name: str, version: str, evidence: str = "README.md") -> Path:
    module_dir = node_modules / name
    module_dir.mkdir(parents=True)
    (module_dir / "package.json").write_text(json.dumps({"name": name, "version": version}), encoding="utf-8")
    if evidence:
        (module_dir / evidence).write_text("x\n", encoding="utf-8")
    return module_dir


def _lock(**versions: str) -> LockDescription:
    return LockDescription(dependencies={k: ResolvedDependency(name=k, version=v) for k, v in versions.items()})


class TestScanTree(unittest.TestCase):
    def test_lists_top_level_modules_with_versions(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            nm = Path(td) / "node_modules"
            _module(nm, "gcd", "0.0.0")
            _module(nm, "mime", "1.2.7", evidence="LICENSE")
            _module(nm, "@scope/tool", "2.0.0")
            _module(nm, "bare", "1.0.0", evidence="")
            (nm / ".bin").mkdir()

            tree = scan_tree(nm)

            self.assertEqual(sorted(tree), ["@scope/tool", "bare", "gcd", "mime"])
            self.assertEqual(tree["mime"].version, "1.2.7")
            self.assertTrue(tree["mime"].has_evidence)
            self.assertFalse(tree["bare"].has_evidence)

    def test_missing_directory_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(scan_tree(Path(td) / "node_modules"), {})

    def test_evidence_requires_exact_file_names(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            module_dir = Path(td)
            (module_dir / "readme.markdown").write_text("x", encoding="utf-8")
            self.assertFalse(looks_installed(module_dir))
            (module_dir / "README").write_text("x", encoding="utf-8")
            self.assertTrue(looks_installed(module_dir))


class TestValidate(unittest.TestCase):
    def test_prunes_exactly_the_stale_entry(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            dep_dir = DependencyDir(Path(td))
            nm = dep_dir.node_modules
            gcd = _module(nm, "gcd", "0.0.0")
            mime = _module(nm, "mime", "1.2.7")
            _module(nm, "semver", "1.1.0")
            (nm / ".bin").mkdir()

            result = validate(dep_dir, _lock(gcd="0.0.0", mime="1.2.7"))

            self.assertTrue(result.ok)
            self.assertEqual(result.pruned, ("semver",))
            self.assertFalse((nm / "semver").exists())
            self.assertTrue((gcd / "README.md").exists())
            self.assertTrue((mime / "package.json").exists())
            self.assertTrue((nm / ".bin").exists())

    def test_is_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            dep_dir = DependencyDir(Path(td))
            _module(dep_dir.node_modules, "gcd", "0.0.0")
            _module(dep_dir.node_modules, "old", "0.1.0")
            lock = _lock(gcd="0.0.0")

            first = validate(dep_dir, lock)
            second = validate(dep_dir, lock)

            self.assertEqual(first.pruned, ("old",))
            self.assertEqual(second.pruned, ())
            self.assertTrue(second.ok)

    def test_prunes_scoped_modules_and_empty_scopes(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            dep_dir = DependencyDir(Path(td))
            _module(dep_dir.node_modules, "@scope/tool", "2.0.0")
            _module(dep_dir.node_modules, "gcd", "0.0.0")

            result = validate(dep_dir, _lock(gcd="0.0.0"))

            self.assertEqual(result.pruned, ("@scope/tool",))
            self.assertFalse((dep_dir.node_modules / "@scope").exists())

    def test_reports_missing_modules(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            dep_dir = DependencyDir(Path(td))
            _module(dep_dir.node_modules, "gcd", "0.0.0")

            result = validate(dep_dir, _lock(gcd="0.0.0", mime="1.2.7"))

            self.assertEqual(result.missing, ("mime",))
            with self.assertRaises(TreeDriftError) as ctx:
                result.raise_for_drift()
            self.assertEqual(ctx.exception.missing, ["mime"])


if __name__ == "__main__":
    unittest.main()
