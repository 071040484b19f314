import json
import tempfile
import unittest
from pathlib import Path

import httpx

from setup_nimskull import __version__
from setup_nimskull.client import GitHubClient, SetupError, TransportError

GRAPHQL_URL = "https://api.github.com/graphql"


def _client(handler, token: str | None = "ghp_123") -> GitHubClient:
    client = GitHubClient(token=token, graphql_url=GRAPHQL_URL)
    client._http = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)  # type: ignore[attr-defined]
    return client


class TestAuthorization(unittest.TestCase):
    def test_token_is_sent_to_graphql_endpoint(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("authorization"))
            return httpx.Response(200, json={"data": {"viewer": {"login": "octocat"}}})

        client = _client(handler)
        try:
            data = client.graphql("query { viewer { login } }")
        finally:
            client.close()

        self.assertEqual(data, {"viewer": {"login": "octocat"}})
        self.assertEqual(seen, ["Bearer ghp_123"])

    def test_token_is_not_sent_to_asset_storage(self) -> None:
        seen: list[tuple[str, str | None]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.host, request.headers.get("authorization")))
            if request.url.host == "github.com":
                return httpx.Response(302, headers={"location": "https://objects.githubusercontent.com/blob"})
            return httpx.Response(200, content=b"payload")

        client = _client(handler)
        try:
            resp = client.get("https://github.com/nim-works/nimskull/releases/download/0.1.0/manifest.json")
        finally:
            client.close()

        self.assertEqual(resp.content, b"payload")
        self.assertEqual(seen, [("github.com", None), ("objects.githubusercontent.com", None)])

    def test_anonymous_client_sends_no_token(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("authorization"))
            return httpx.Response(200, json={"data": {}})

        client = _client(handler, token=None)
        try:
            client.graphql("query { viewer { login } }")
        finally:
            client.close()
        self.assertEqual(seen, [None])


class TestDefaultHeaders(unittest.TestCase):
    def test_user_agent_is_sent_everywhere(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("user-agent"))
            return httpx.Response(200, json={"data": {}})

        client = _client(handler)
        try:
            client.graphql("query { viewer { login } }")
            client.get("https://objects.example/manifest.json")
        finally:
            client.close()
        self.assertEqual(seen, [f"setup-nimskull/{__version__}"] * 2)

    def test_caller_headers_extend_and_override(self) -> None:
        seen: list[httpx.Headers] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers)
            return httpx.Response(200, content=b"ok")

        client = GitHubClient(default_headers={"User-Agent": "ci-bot/1.0", "Accept": "application/octet-stream"})
        client._http = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)  # type: ignore[attr-defined]
        try:
            client.get("https://objects.example/nim.tar.zst")
        finally:
            client.close()
        self.assertEqual(seen[0]["user-agent"], "ci-bot/1.0")
        self.assertEqual(seen[0]["accept"], "application/octet-stream")


class TestGraphQL(unittest.TestCase):
    def test_sends_query_and_variables(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.method, "POST")
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"ok": True}})

        client = _client(handler)
        try:
            client.graphql("query ($id: ID!) { node(id: $id) { id } }", {"id": "R_1"})
        finally:
            client.close()
        self.assertEqual(bodies[0]["variables"], {"id": "R_1"})

    def test_errors_are_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": None, "errors": [{"message": "Bad credentials"}, {"message": "Rate limited"}]},
            )

        client = _client(handler)
        try:
            with self.assertRaises(SetupError) as ctx:
                client.graphql("query { viewer { login } }")
        finally:
            client.close()
        self.assertIn("Bad credentials; Rate limited", str(ctx.exception))

    def test_non_json_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        client = _client(handler)
        try:
            with self.assertRaises(SetupError):
                client.graphql("query { viewer { login } }")
        finally:
            client.close()

    def test_http_error_status_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Bad credentials"})

        client = _client(handler)
        try:
            with self.assertRaises(TransportError) as ctx:
                client.graphql("query { viewer { login } }")
        finally:
            client.close()
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(str(ctx.exception), f"Request to {GRAPHQL_URL} failed with status code: 401")

    def test_network_failure_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        try:
            with self.assertRaises(SetupError) as ctx:
                client.graphql("query { viewer { login } }")
        finally:
            client.close()
        self.assertNotIsInstance(ctx.exception, TransportError)


class TestStreamToFile(unittest.TestCase):
    def test_writes_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"x" * 4096)

        client = _client(handler)
        try:
            with tempfile.TemporaryDirectory() as td:
                out = client.stream_to_file("https://objects.example/nim.tar.zst", Path(td) / "nim.tar.zst")
                self.assertEqual(out.read_bytes(), b"x" * 4096)
        finally:
            client.close()

    def test_error_status_raises_before_writing(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        client = _client(handler)
        try:
            with tempfile.TemporaryDirectory() as td:
                target = Path(td) / "nim.tar.zst"
                with self.assertRaises(TransportError) as ctx:
                    client.stream_to_file("https://objects.example/nim.tar.zst", target)
                self.assertFalse(target.exists())
        finally:
            client.close()
        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
