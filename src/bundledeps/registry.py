from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_REGISTRY_URL, DEFAULT_TIMEOUT_S
from .errors import BundledepsError, InstallTransportError, VersionUnresolvableError

logger = logging.getLogger(__name__)


class RegistryHTTPError(BundledepsError):
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")


class RegistryClient:
    """
    Minimal read-only client for the npm registry metadata API.

    Only used to check that exact versions exist before npm is run, so a bad
    request fails fast without touching the package's dependency directory.
    """

    def __init__(
        self,
        *,
        registry_url: str = DEFAULT_REGISTRY_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http: httpx.Client | None = None,
    ) -> None:
        self.registry_url = registry_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http = http or httpx.Client(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"Accept": "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8"},
        )
        self._cache: dict[str, dict[str, Any] | None] = {}

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def package_url(self, name: str) -> str:
        # Scoped names keep their "@" but encode the slash: @scope%2fname
        return f"{self.registry_url}/{quote(name, safe='@')}"

    def get_package(self, name: str) -> dict[str, Any] | None:
        if name in self._cache:
            return self._cache[name]
        url = self.package_url(name)
        try:
            resp = self._http.get(url)
        except httpx.HTTPError as e:
            raise InstallTransportError(f"GET {url}", str(e)) from e
        if resp.status_code == 404:
            self._cache[name] = None
            return None
        if resp.status_code >= 400:
            raise RegistryHTTPError(status_code=resp.status_code, body=resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise InstallTransportError(f"GET {url}", f"registry returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            data = {}
        self._cache[name] = data
        return data

    def available_versions(self, name: str) -> set[str]:
        data = self.get_package(name)
        if data is None:
            return set()
        versions = data.get("versions")
        if not isinstance(versions, dict):
            return set()
        return {v for v in versions if isinstance(v, str)}

    def ensure_available(self, name: str, version: str) -> None:
        try:
            data = self.get_package(name)
        except RegistryHTTPError as e:
            raise InstallTransportError(f"GET {self.package_url(name)}", str(e)) from e
        if data is None:
            raise VersionUnresolvableError(name, None)
        if version not in self.available_versions(name):
            logger.debug("registry has no %s@%s", name, version)
            raise VersionUnresolvableError(name, version)
