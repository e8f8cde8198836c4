from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict
from pathlib import Path
from typing import Any

from ._version import __version__
from .builder import DependencyBuilder, Package, PackageBuildResult, build_job_title, plan_package
from .bundle import bundle_packages
from .config import Config, apply_env, config_path, load_config, save_config
from .errors import BundledepsError
from .installer import Installer
from .jobs import MessageSet
from .npm import SubprocessNpmRunner
from .registry import RegistryClient


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [max(len(r[i]) for r in rows) for i in range(len(rows[0]))]
    for r in rows:
        print("  ".join(r[i].ljust(widths[i]) for i in range(len(widths))).rstrip())


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    cfg = apply_env(base)
    timeout_s = getattr(args, "timeout_s", None)
    workers = getattr(args, "workers", None)
    return Config(
        npm_command=getattr(args, "npm", None) or cfg.npm_command,
        registry_url=getattr(args, "registry_url", None) or cfg.registry_url,
        timeout_s=float(timeout_s) if timeout_s is not None else cfg.timeout_s,
        print_npm_calls=bool(getattr(args, "verbose", False)) or cfg.print_npm_calls,
        check_registry=cfg.check_registry and not getattr(args, "no_registry_check", False),
        workers=max(1, int(workers)) if workers is not None else cfg.workers,
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bundledeps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Reproducible npm dependency trees for packages, and their placement in bundles.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              BUNDLEDEPS_CONFIG_PATH, BUNDLEDEPS_NPM, BUNDLEDEPS_REGISTRY_URL, BUNDLEDEPS_TIMEOUT_S,
              BUNDLEDEPS_WORKERS, BUNDLEDEPS_PRINT_NPM_CALLS, BUNDLEDEPS_CHECK_REGISTRY
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"bundledeps {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging, including every npm call")

    def _add_runtime_overrides(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--npm", help="npm executable (default: npm)")
        parser.add_argument("--registry-url", help="npm registry URL used for version checks")
        parser.add_argument("--timeout-s", type=float, help="Timeout for each npm invocation, in seconds")
        parser.add_argument("--workers", type=int, help="Packages to build in parallel")
        parser.add_argument(
            "--no-registry-check",
            action="store_true",
            help="Skip checking exact versions against the registry before installing",
        )

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config")

    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--npm")
    cfg_set.add_argument("--registry-url")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--workers", type=int)
    cfg_set.add_argument("--print-npm-calls", choices=["true", "false"])
    cfg_set.add_argument("--check-registry", choices=["true", "false"])

    # status
    status = sub.add_parser("status", help="Show what a build would do, without installing")
    status.add_argument("packages", nargs="+", help="Package directories")
    status.add_argument("--json", action="store_true", help="Output JSON")

    # build
    build = sub.add_parser("build", help="Bring packages' npm dependency trees up to date")
    _add_runtime_overrides(build)
    build.add_argument("packages", nargs="+", help="Package directories")
    build.add_argument("--json", action="store_true", help="Output JSON")

    # bundle
    bundle = sub.add_parser("bundle", help="Build packages and copy their npm trees into a bundle")
    _add_runtime_overrides(bundle)
    bundle.add_argument("packages", nargs="+", help="Package directories")
    bundle.add_argument("--output", "-o", required=True, help="Bundle output directory")
    bundle.add_argument("--json", action="store_true", help="Output JSON")

    return p


def _load_packages(paths: list[str], messages: MessageSet) -> list[Package]:
    packages: list[Package] = []
    for raw in paths:
        path = Path(raw).expanduser()
        with messages.job(build_job_title(path.resolve().name)):
            packages.append(Package.from_dir(path))
    return packages


def _make_builder(cfg: Config, messages: MessageSet) -> tuple[DependencyBuilder, RegistryClient | None]:
    registry = RegistryClient(registry_url=cfg.registry_url, timeout_s=cfg.timeout_s) if cfg.check_registry else None
    installer = Installer(runner=SubprocessNpmRunner.from_config(cfg), registry=registry, timeout_s=cfg.timeout_s)
    return DependencyBuilder(installer, messages=messages), registry


def _result_payload(result: PackageBuildResult) -> dict[str, Any]:
    return {
        "package": result.package.name,
        "dir": str(result.package.source_dir),
        "state": result.state.value,
        "action": result.action.value,
        "dependencies": result.lock.requirements() if result.lock is not None else {},
        "pruned": list(result.pruned),
        "error": str(result.error) if result.error is not None else None,
    }


def _print_results(results: list[PackageBuildResult], messages: MessageSet) -> None:
    rows = [["PACKAGE", "STATE", "ACTION", "DEPENDENCIES"]]
    for r in results:
        count = len(r.lock) if r.lock is not None else 0
        rows.append([r.package.name, r.state.value, r.action.value, str(count)])
    _print_table(rows)
    for r in results:
        for name in r.pruned:
            print(f"pruned: {r.package.name}/{name}")
    if messages.has_messages():
        print(messages.format_messages(), file=sys.stderr, end="")


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0
    if args.subcmd == "show":
        print(json.dumps(asdict(load_config()), indent=2, sort_keys=True))
        return 0
    if args.subcmd == "set":
        current = load_config()
        updated = Config(
            npm_command=args.npm if args.npm is not None else current.npm_command,
            registry_url=args.registry_url if args.registry_url is not None else current.registry_url,
            timeout_s=args.timeout_s if args.timeout_s is not None else current.timeout_s,
            print_npm_calls=(args.print_npm_calls == "true") if args.print_npm_calls is not None else current.print_npm_calls,
            check_registry=(args.check_registry == "true") if args.check_registry is not None else current.check_registry,
            workers=max(1, args.workers) if args.workers is not None else current.workers,
        )
        path = save_config(updated)
        print(f"saved: {path}")
        return 0
    raise AssertionError("unreachable")


def cmd_status(args: argparse.Namespace) -> int:
    messages = MessageSet()
    packages = _load_packages(args.packages, messages)
    payload: list[dict[str, Any]] = []
    for package in packages:
        if not package.has_npm_dependencies:
            payload.append({"package": package.name, "state": "clean", "action": "none", "reasons": []})
            continue
        plan = plan_package(package)
        payload.append(
            {
                "package": package.name,
                "state": plan.state.value,
                "action": plan.action.value,
                "reasons": list(plan.reasons),
            }
        )

    if args.json:
        print(json.dumps({"packages": payload, "errors": messages.to_list()}, indent=2, sort_keys=True))
    else:
        _print_table([["PACKAGE", "STATE", "ACTION"]] + [[p["package"], p["state"], p["action"]] for p in payload])
        for p in payload:
            for reason in p["reasons"]:
                print(f"{p['package']}: {reason}")
        if messages.has_messages():
            print(messages.format_messages(), file=sys.stderr, end="")
    return 1 if messages.has_messages() else 0


def cmd_build(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    messages = MessageSet()
    packages = _load_packages(args.packages, messages)
    builder, registry = _make_builder(cfg, messages)
    try:
        results = builder.build_all(packages, workers=cfg.workers)
    finally:
        if registry is not None:
            registry.close()

    if args.json:
        print(
            json.dumps(
                {"packages": [_result_payload(r) for r in results], "errors": messages.to_list()},
                indent=2,
                sort_keys=True,
            )
        )
    else:
        _print_results(results, messages)
    return 1 if messages.has_messages() else 0


def cmd_bundle(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    output_dir = Path(args.output).expanduser().resolve()
    messages = MessageSet()
    packages = _load_packages(args.packages, messages)
    builder, registry = _make_builder(cfg, messages)
    try:
        result = bundle_packages(packages, output_dir, builder, workers=cfg.workers)
    finally:
        if registry is not None:
            registry.close()

    if args.json:
        print(
            json.dumps(
                {
                    "output_dir": str(result.output_dir),
                    "packages": [_result_payload(r) for r in result.results],
                    "bundled": list(result.bundled),
                    "errors": messages.to_list(),
                },
                indent=2,
                sort_keys=True,
            )
        )
    else:
        print(f"bundle: {result.output_dir}")
        _print_results(list(result.results), messages)
        for name in result.bundled:
            print(f"bundled: {name}")
    return 1 if result.has_errors or messages.has_messages() else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "status":
            return cmd_status(args)
        if args.cmd == "build":
            return cmd_build(args)
        if args.cmd == "bundle":
            return cmd_bundle(args)
        raise AssertionError("unreachable")
    except BundledepsError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
