from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

DEFAULT_NPM_COMMAND = "npm"
DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_TIMEOUT_S = 600.0
DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class Config:
    npm_command: str = DEFAULT_NPM_COMMAND
    registry_url: str = DEFAULT_REGISTRY_URL
    timeout_s: float = DEFAULT_TIMEOUT_S  # per npm invocation
    print_npm_calls: bool = False
    check_registry: bool = True  # pre-flight exact versions against the registry before installing
    workers: int = DEFAULT_WORKERS


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("BUNDLEDEPS_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("bundledeps") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Config(**filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env(cfg: Config) -> Config:
    """Overlay BUNDLEDEPS_* environment variables on top of a loaded config."""
    npm_command = os.getenv("BUNDLEDEPS_NPM") or cfg.npm_command
    registry_url = os.getenv("BUNDLEDEPS_REGISTRY_URL") or cfg.registry_url

    timeout_s: float = cfg.timeout_s
    if raw_timeout := os.getenv("BUNDLEDEPS_TIMEOUT_S"):
        try:
            timeout_s = float(raw_timeout)
        except ValueError:
            timeout_s = cfg.timeout_s

    workers = cfg.workers
    if raw_workers := os.getenv("BUNDLEDEPS_WORKERS"):
        try:
            workers = max(1, int(raw_workers))
        except ValueError:
            workers = cfg.workers

    print_npm_calls = cfg.print_npm_calls
    if raw_print := os.getenv("BUNDLEDEPS_PRINT_NPM_CALLS"):
        print_npm_calls = _env_bool(raw_print)

    check_registry = cfg.check_registry
    if raw_check := os.getenv("BUNDLEDEPS_CHECK_REGISTRY"):
        check_registry = _env_bool(raw_check)

    return Config(
        npm_command=npm_command,
        registry_url=registry_url,
        timeout_s=timeout_s,
        print_npm_calls=print_npm_calls,
        check_registry=check_registry,
        workers=workers,
    )
