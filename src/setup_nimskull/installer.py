from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .archive import download, extract_archive, single_top_level_dir, verify_checksum
from .cache import ToolCache
from .client import GitHubClient, SetupError
from .config import TOOL_NAME, Config, default_cache_root
from .manifest import ManifestResolver, ResolvedBinary
from .releases import GitHubReleaseFeed, ReleaseFeed, find_version
from .triplet import HostDescriptor
from .versions import parse_range

log = logging.getLogger(__name__)

RELEASE_INFO_FILENAME = "release.json"


class ResolutionNotFound(SetupError):
    pass


class PlatformUnsupported(SetupError):
    pass


@dataclass(frozen=True)
class InstallResult:
    path: Path
    bin_path: Path
    version: str
    commit: str


def read_release_info(install_dir: Path) -> tuple[str, str]:
    info_path = install_dir / RELEASE_INFO_FILENAME
    try:
        raw = json.loads(info_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise SetupError(f"Installed compiler at {install_dir} has no {RELEASE_INFO_FILENAME}") from e
    except ValueError as e:
        raise SetupError(f"Could not parse {info_path}: {e}") from e
    if not isinstance(raw, dict):
        raise SetupError(f"{info_path} must contain a JSON object")
    version = raw.get("version")
    commit = raw.get("commit")
    if not isinstance(version, str) or not isinstance(commit, str):
        raise SetupError(f"{info_path} must provide string 'version' and 'commit' fields")
    return version, commit


class Installer:
    """
    Resolve a version range to an installed compiler directory.

    The cache is consulted with the requested range first and again with the resolved
    tag, so an exact version that is already installed never touches the network.
    Nothing is written to the cache unless download, verification, extraction and
    layout checks all succeeded.
    """

    def __init__(
        self,
        *,
        feed: ReleaseFeed,
        resolver: ManifestResolver,
        cache: ToolCache,
        client: GitHubClient,
        host: HostDescriptor | None = None,
        tool_name: str = TOOL_NAME,
        work_dir: Path | None = None,
    ) -> None:
        self.feed = feed
        self.resolver = resolver
        self.cache = cache
        self.client = client
        self.host = host or HostDescriptor.current()
        self.tool_name = tool_name
        self.work_dir = work_dir

    def acquire(self, version_range: str, force_refresh: bool = False) -> InstallResult:
        rng = parse_range(version_range)
        install_dir = self.cache.find(self.tool_name, version_range)

        if install_dir is None or force_refresh:
            release = find_version(self.feed.releases(), rng)
            if release is None:
                raise ResolutionNotFound(f"Could not find any release matching the specification: {version_range}")
            log.info("Latest version matching specification: %s", release.tag)

            install_dir = self.cache.find(self.tool_name, release.tag)
            if install_dir is None:
                log.info("Version %s is not cached, downloading", release.tag)
                binary = self.resolver.resolve_binary(release, self.host)
                if binary is None:
                    raise PlatformUnsupported("There are no prebuilt binaries for the current platform.")
                install_dir = self._install(binary, release.tag)
                log.info("Added %s to cache", release.tag)
        else:
            log.info("Found cached %s matching %s at %s", self.tool_name, version_range, install_dir)

        version, commit = read_release_info(install_dir)
        return InstallResult(path=install_dir, bin_path=install_dir / "bin", version=version, commit=commit)

    def _install(self, binary: ResolvedBinary, tag: str) -> Path:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="setup-nimskull-", dir=self.work_dir) as td:
            work = Path(td)
            archive = download(self.client, binary.url, work / "download")
            verify_checksum(archive, binary.sha256, name=binary.name)
            extracted = extract_archive(archive, work / "extracted", name=binary.name)
            compiler_dir = single_top_level_dir(extracted)
            return self.cache.store(compiler_dir, self.tool_name, tag)


def _runner_temp() -> Path | None:
    value = os.getenv("RUNNER_TEMP")
    return Path(value) if value else None


def acquire(
    version_range: str = "*",
    force_refresh: bool = True,
    *,
    cfg: Config | None = None,
    host: HostDescriptor | None = None,
) -> InstallResult:
    """Build the default GitHub-backed pipeline from ``cfg`` and run it once."""
    cfg = cfg or Config()
    host = host or HostDescriptor.current()
    with GitHubClient(token=cfg.token, graphql_url=cfg.graphql_url, timeout_s=cfg.timeout_s) as client:
        feed = GitHubReleaseFeed(client, repo=cfg.repo, page_size=cfg.page_size)
        installer = Installer(
            feed=feed,
            resolver=ManifestResolver(feed, client),
            cache=ToolCache(default_cache_root(cfg), arch=host.arch),
            client=client,
            host=host,
            work_dir=_runner_temp(),
        )
        return installer.acquire(version_range, force_refresh)
