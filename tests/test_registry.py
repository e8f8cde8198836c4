import unittest

import httpx

from bundledeps.errors import InstallTransportError, VersionUnresolvableError
from bundledeps.registry import RegistryClient, RegistryHTTPError


def _client(handler) -> RegistryClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return RegistryClient(registry_url="https://registry.example.test/", http=http)


class TestRegistryClient(unittest.TestCase):
    def test_versions_and_cache(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"name": "mime", "versions": {"1.2.7": {}, "1.2.8": {}}})

        with _client(handler) as client:
            self.assertEqual(client.available_versions("mime"), {"1.2.7", "1.2.8"})
            client.ensure_available("mime", "1.2.7")
            with self.assertRaises(VersionUnresolvableError) as ctx:
                client.ensure_available("mime", "0.1.2")

        self.assertEqual(str(ctx.exception), "mime version 0.1.2 is not available in the npm registry")
        self.assertEqual(seen, ["https://registry.example.test/mime"])

    def test_unknown_package(self) -> None:
        with _client(lambda request: httpx.Response(404, json={"error": "Not found"})) as client:
            self.assertIsNone(client.get_package("no-such-thing"))
            self.assertEqual(client.available_versions("no-such-thing"), set())
            with self.assertRaises(VersionUnresolvableError) as ctx:
                client.ensure_available("no-such-thing", "1.0.0")

        self.assertIn("there is no npm package named 'no-such-thing'", str(ctx.exception))

    def test_scoped_package_url(self) -> None:
        client = RegistryClient(registry_url="https://registry.example.test", http=httpx.Client())
        try:
            self.assertEqual(client.package_url("@types/node"), "https://registry.example.test/@types%2Fnode")
        finally:
            client.close()

    def test_server_error(self) -> None:
        with _client(lambda request: httpx.Response(503, text="unavailable")) as client:
            with self.assertRaises(RegistryHTTPError) as ctx:
                client.get_package("mime")
            self.assertEqual(ctx.exception.status_code, 503)
            with self.assertRaises(InstallTransportError):
                client.ensure_available("mime", "1.2.7")

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with _client(handler) as client:
            with self.assertRaises(InstallTransportError) as ctx:
                client.get_package("mime")

        self.assertIn("connection refused", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
