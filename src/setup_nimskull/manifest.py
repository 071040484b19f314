from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .client import GitHubClient, SetupError, TransportError
from .releases import Release, ReleaseFeed
from .triplet import HostDescriptor, triplet_matches

log = logging.getLogger(__name__)

MANIFEST_ASSET_NAME = "manifest.json"
SUPPORTED_MANIFEST_VERSION = 0


class ManifestError(SetupError):
    pass


class SchemaMismatch(ManifestError):
    pass


@dataclass(frozen=True)
class ArtifactData:
    name: str
    sha256: str


@dataclass(frozen=True)
class BinaryArtifactData(ArtifactData):
    target: str


@dataclass(frozen=True)
class ReleaseManifest:
    manifest_version: int
    version: str
    source: ArtifactData
    binaries: tuple[BinaryArtifactData, ...]


@dataclass(frozen=True)
class ResolvedBinary:
    name: str
    url: str
    sha256: str
    target: str


def _require_str(obj: dict[str, Any], key: str, *, where: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise ManifestError(f"Manifest field {where}.{key} must be a string")
    return value


def _decode_v0(data: dict[str, Any]) -> ReleaseManifest:
    source_raw = data.get("source")
    if not isinstance(source_raw, dict):
        raise ManifestError("Manifest field 'source' must be an object")
    binaries_raw = data.get("binaries")
    if not isinstance(binaries_raw, list):
        raise ManifestError("Manifest field 'binaries' must be a list")

    binaries: list[BinaryArtifactData] = []
    for idx, item in enumerate(binaries_raw):
        if not isinstance(item, dict):
            raise ManifestError(f"Manifest entry binaries[{idx}] must be an object")
        where = f"binaries[{idx}]"
        binaries.append(
            BinaryArtifactData(
                name=_require_str(item, "name", where=where),
                sha256=_require_str(item, "sha256", where=where),
                target=_require_str(item, "target", where=where),
            )
        )

    return ReleaseManifest(
        manifest_version=0,
        version=_require_str(data, "version", where="manifest"),
        source=ArtifactData(
            name=_require_str(source_raw, "name", where="source"),
            sha256=_require_str(source_raw, "sha256", where="source"),
        ),
        binaries=tuple(binaries),
    )


# One decoder per manifest schema version. New versions are added here; a document
# is never coerced from one version's shape into another.
_DECODERS: dict[int, Callable[[dict[str, Any]], ReleaseManifest]] = {
    0: _decode_v0,
}


def parse_manifest(data: Any, *, supported_version: int = SUPPORTED_MANIFEST_VERSION) -> ReleaseManifest:
    if not isinstance(data, dict):
        raise ManifestError("Release manifest must be a JSON object")
    declared = data.get("manifestVersion")
    if declared != supported_version or isinstance(declared, bool):
        raise SchemaMismatch(f"Expected manifest version {supported_version} but got {declared}")
    return _DECODERS[supported_version](data)


def select_binary(manifest: ReleaseManifest, host: HostDescriptor) -> BinaryArtifactData | None:
    """
    Pick the binary for ``host``.

    The first entry whose target matches wins: the manifest's authoring order is the
    tie-break when more than one triplet fits.
    """
    for binary in manifest.binaries:
        if triplet_matches(binary.target, host):
            return binary
    return None


class ManifestResolver:
    def __init__(self, feed: ReleaseFeed, client: GitHubClient) -> None:
        self._feed = feed
        self._client = client

    def fetch_manifest(self, release: Release) -> ReleaseManifest:
        url = self._feed.asset_url(release, MANIFEST_ASSET_NAME)
        log.debug("Fetching release manifest from %s", url)
        resp = self._client.get(url)
        if resp.status_code != 200:
            raise TransportError(resp.status_code, url)
        try:
            data = json.loads(resp.content)
        except ValueError as e:
            raise ManifestError(f"Release manifest of {release.tag} is not valid JSON: {e}") from e
        return parse_manifest(data)

    def resolve_binary(self, release: Release, host: HostDescriptor) -> ResolvedBinary | None:
        manifest = self.fetch_manifest(release)
        binary = select_binary(manifest, host)
        if binary is None:
            return None
        log.debug("Selected %s (%s) for %s/%s", binary.name, binary.target, host.platform, host.arch)
        return ResolvedBinary(
            name=binary.name,
            url=self._feed.asset_url(release, binary.name),
            sha256=binary.sha256,
            target=binary.target,
        )

    def resolve(self, release: Release, host: HostDescriptor) -> str | None:
        binary = self.resolve_binary(release, host)
        return binary.url if binary else None
