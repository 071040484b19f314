from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Protocol

from .client import GitHubClient, SetupError
from .config import DEFAULT_PAGE_SIZE, DEFAULT_REPO
from .versions import VersionRange, parse_range, parse_version

log = logging.getLogger(__name__)


class AssetMissing(SetupError):
    pass


@dataclass(frozen=True)
class Release:
    id: str  # feed node id, stable across renames
    tag: str


@dataclass(frozen=True)
class ReleasePage:
    releases: tuple[Release, ...]
    cursor: str | None
    has_more: bool


class ReleaseFeed(Protocol):
    def releases(self) -> Iterator[Release]:
        ...

    def asset_url(self, release: Release, asset_name: str) -> str:
        ...


class ReleaseScanner:
    """
    Pull-based iterator over a newest-first, cursor-paginated release listing.

    A page is only requested once the previous one has been fully consumed and
    reported more results, so a consumer that stops early never causes extra
    fetches. Scanners are single-use; ask the feed for a new one to start over.
    """

    def __init__(self, fetch_page: Callable[[str | None], ReleasePage]) -> None:
        self._fetch_page = fetch_page
        self._buffer: list[Release] = []
        self._cursor: str | None = None
        self._has_more = True
        self.pages_fetched = 0

    def __iter__(self) -> "ReleaseScanner":
        return self

    def __next__(self) -> Release:
        while not self._buffer:
            if not self._has_more:
                raise StopIteration
            page = self._fetch_page(self._cursor)
            self.pages_fetched += 1
            self._buffer = list(page.releases)
            self._cursor = page.cursor
            self._has_more = bool(page.has_more and page.cursor)
        return self._buffer.pop(0)


_RELEASES_QUERY = """
query ($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    releases(first: $first, after: $after, orderBy: {field: CREATED_AT, direction: DESC}) {
      nodes {
        id
        tagName
      }
      pageInfo {
        endCursor
        hasNextPage
      }
    }
  }
}
"""

_ASSET_QUERY = """
query ($id: ID!, $assetName: String!) {
  node(id: $id) {
    ... on Release {
      releaseAssets(first: 1, name: $assetName) {
        nodes {
          name
          downloadUrl
        }
      }
    }
  }
}
"""


def _split_repo(repo: str) -> tuple[str, str]:
    owner, sep, name = repo.strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise SetupError(f"Invalid repository {repo!r}. Expected <owner>/<name>.")
    return owner, name


def _parse_release_node(obj: Any) -> Release | None:
    if not isinstance(obj, dict):
        return None
    release_id = obj.get("id")
    tag = obj.get("tagName")
    if not isinstance(release_id, str) or not isinstance(tag, str) or not tag.strip():
        return None
    return Release(id=release_id, tag=tag.strip())


class GitHubReleaseFeed:
    def __init__(self, client: GitHubClient, *, repo: str = DEFAULT_REPO, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._client = client
        self.repo = repo
        self.owner, self.name = _split_repo(repo)
        try:
            self.page_size = max(1, int(page_size))
        except (TypeError, ValueError) as e:
            raise SetupError(f"Invalid page size {page_size!r}. Expected an integer.") from e

    def fetch_page(self, cursor: str | None) -> ReleasePage:
        log.debug("Fetching releases of %s after cursor %s", self.repo, cursor)
        data = self._client.graphql(
            _RELEASES_QUERY,
            {"owner": self.owner, "name": self.name, "first": self.page_size, "after": cursor},
        )
        repository = data.get("repository")
        if not isinstance(repository, dict):
            raise SetupError(f"Repository not found: {self.repo}")
        releases = repository.get("releases") or {}
        page_info = releases.get("pageInfo") or {}

        items: list[Release] = []
        for node in releases.get("nodes") or []:
            rel = _parse_release_node(node)
            if rel is not None:
                items.append(rel)

        end_cursor = page_info.get("endCursor")
        return ReleasePage(
            releases=tuple(items),
            cursor=end_cursor if isinstance(end_cursor, str) else None,
            has_more=bool(page_info.get("hasNextPage")),
        )

    def releases(self) -> ReleaseScanner:
        return ReleaseScanner(self.fetch_page)

    def asset_url(self, release: Release, asset_name: str) -> str:
        data = self._client.graphql(_ASSET_QUERY, {"id": release.id, "assetName": asset_name})
        node = data.get("node") or {}
        assets = (node.get("releaseAssets") or {}).get("nodes") or []
        for asset in assets:
            if not isinstance(asset, dict) or asset.get("name") != asset_name:
                continue
            url = asset.get("downloadUrl")
            if isinstance(url, str) and url:
                return url
        raise AssetMissing(f"Release {release.tag} has no asset named {asset_name!r}")


def find_version(releases: Iterable[Release], specifier: str | VersionRange) -> Release | None:
    """
    Find the newest release whose tag satisfies ``specifier``.

    ``releases`` must already be ordered newest first. Pre-releases are included,
    as the project does not have any stable release at the moment. Tags that are
    not valid semantic versions are skipped.
    """
    rng = specifier if isinstance(specifier, VersionRange) else parse_range(specifier)
    for release in releases:
        version = parse_version(release.tag)
        if version is None:
            log.debug("Skipping release %s: tag is not a semantic version", release.tag)
            continue
        if rng.test(version):
            return release
    return None
