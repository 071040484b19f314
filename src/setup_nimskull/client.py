from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx

from ._version import __version__
from .config import DEFAULT_GRAPHQL_URL, DEFAULT_TIMEOUT_S

log = logging.getLogger(__name__)


class SetupError(RuntimeError):
    pass


class TransportError(SetupError):
    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(status_code, url)
        self.status_code = status_code
        self.url = url

    def __str__(self) -> str:
        return f"Request to {self.url} failed with status code: {self.status_code}"


def _origin(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return urlunsplit((parts.scheme, parts.netloc, "", "", "")).rstrip("/")


class GitHubClient:
    """
    Minimal GitHub client: GraphQL queries against the API plus plain GETs for release assets.

    The token is only attached to requests that go to the GraphQL endpoint's origin; asset
    downloads redirect to storage hosts that must not see it.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        graphql_url: str = DEFAULT_GRAPHQL_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self.token = token
        self.graphql_url = graphql_url
        self.timeout_s = timeout_s
        self._default_headers = {"User-Agent": f"setup-nimskull/{__version__}", **(default_headers or {})}
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _headers_for(self, url: str) -> dict[str, str]:
        headers = dict(self._default_headers)
        if self.token and _origin(url) == _origin(self.graphql_url):
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._http.request(method, url, headers=self._headers_for(url), **kwargs)
        except httpx.HTTPError as e:
            raise SetupError(f"Request to {url} failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(resp.status_code, url)
        return resp

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        resp = self._send("POST", self.graphql_url, json={"query": query, "variables": variables or {}})
        try:
            body = resp.json()
        except ValueError as e:
            raise SetupError(f"GraphQL endpoint returned a non-JSON response: {e}") from e
        if not isinstance(body, dict):
            raise SetupError("GraphQL endpoint returned an unexpected payload.")

        errors = body.get("errors")
        if errors:
            messages = [str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors]
            raise SetupError(f"GraphQL query failed: {'; '.join(messages)}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise SetupError("GraphQL response has no data.")
        return data

    def get(self, url: str) -> httpx.Response:
        return self._send("GET", url)

    def stream_to_file(self, url: str, path: Path) -> Path:
        headers = self._headers_for(url)
        try:
            with self._http.stream("GET", url, headers=headers) as resp:
                if resp.status_code >= 400:
                    raise TransportError(resp.status_code, url)
                with path.open("wb") as out:
                    for chunk in resp.iter_bytes():
                        out.write(chunk)
        except httpx.HTTPError as e:
            raise SetupError(f"Download of {url} failed: {e}") from e
        log.debug("Downloaded %s to %s", url, path)
        return path
