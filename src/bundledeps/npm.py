from __future__ import annotations

import logging
import re
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .config import Config
from .errors import InstallTransportError

logger = logging.getLogger(__name__)

NESTED_INSTALL_FLAG = "--install-strategy=nested"
LEGACY_NESTED_INSTALL_FLAG = "--legacy-bundling"
NESTED_STRATEGY_MIN_MAJOR = 9

_VERSION_RE = re.compile(r"(\d+)\.\d+\.\d+")


@dataclass(frozen=True)
class NpmResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class NpmRunner(Protocol):
    def run(self, cwd: Path, args: list[str], *, timeout_s: float | None = None) -> NpmResult:
        ...


def parse_major_version(output: str) -> int | None:
    m = _VERSION_RE.search(output)
    return int(m.group(1)) if m else None


class SubprocessNpmRunner:
    """
    Runs the real npm executable.

    `--install-strategy=nested` only exists from npm 9 on. Older npm silently
    ignores it and hoists, so on npm 7/8 the flag is swapped for
    `--legacy-bundling`. The npm version is asked for once per runner.
    """

    def __init__(self, *, npm_command: str = "npm", print_calls: bool = False, env: dict[str, str] | None = None) -> None:
        self.npm_command = npm_command
        self.print_calls = print_calls
        self._env = env
        self._major_version: int | None = None
        self._version_checked = False
        self._version_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: Config) -> SubprocessNpmRunner:
        return cls(npm_command=cfg.npm_command, print_calls=cfg.print_npm_calls)

    def major_version(self, cwd: Path, *, timeout_s: float | None = None) -> int | None:
        with self._version_lock:
            if not self._version_checked:
                result = self._exec(cwd, ["--version"], timeout_s=timeout_s)
                self._major_version = parse_major_version(result.stdout) if result.ok else None
                self._version_checked = True
                logger.debug("npm major version: %s", self._major_version)
            return self._major_version

    def run(self, cwd: Path, args: list[str], *, timeout_s: float | None = None) -> NpmResult:
        if NESTED_INSTALL_FLAG in args:
            major = self.major_version(cwd, timeout_s=timeout_s)
            if major is not None and major < NESTED_STRATEGY_MIN_MAJOR:
                args = [LEGACY_NESTED_INSTALL_FLAG if a == NESTED_INSTALL_FLAG else a for a in args]
        return self._exec(cwd, args, timeout_s=timeout_s)

    def _exec(self, cwd: Path, args: list[str], *, timeout_s: float | None) -> NpmResult:
        argv = [self.npm_command, *args]
        command = " ".join(argv)
        if self.print_calls:
            logger.info("cd %s && %s", cwd, command)
        else:
            logger.debug("cd %s && %s", cwd, command)
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=timeout_s,
                env=self._env,
                check=False,
            )
        except FileNotFoundError as e:
            raise InstallTransportError(command, f"npm executable not found ({self.npm_command})") from e
        except subprocess.TimeoutExpired as e:
            raise InstallTransportError(command, f"timed out after {timeout_s}s") from e
        except OSError as e:
            raise InstallTransportError(command, str(e)) from e

        if self.print_calls and proc.returncode != 0:
            logger.info("%s exited with %s", command, proc.returncode)
        return NpmResult(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
