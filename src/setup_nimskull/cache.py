from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from .client import SetupError
from .versions import max_satisfying, parse_range, parse_version

log = logging.getLogger(__name__)


class ToolCache:
    """
    Directory store of installed tools, laid out as ``<root>/<tool>/<version>/<arch>``.

    An entry only counts once its ``<arch>.complete`` marker exists next to it. Complete
    entries are never modified; storing a version that is already cached is a no-op.
    An unmarked entry is treated as an interrupted store and replaced, so concurrent
    stores of one version race until a marker is written and the last rename wins.
    """

    def __init__(self, root: Path, *, arch: str) -> None:
        self.root = root.expanduser()
        self.arch = arch

    def _entry_dir(self, tool: str, version: str) -> Path:
        return self.root / tool / version / self.arch

    def _marker(self, entry: Path) -> Path:
        return entry.with_name(entry.name + ".complete")

    def _is_complete(self, entry: Path) -> bool:
        return entry.is_dir() and self._marker(entry).is_file()

    def versions(self, tool: str) -> list[str]:
        tool_dir = self.root / tool
        if not tool_dir.is_dir():
            return []
        out: list[str] = []
        for child in sorted(tool_dir.iterdir()):
            if parse_version(child.name) is None:
                continue
            if self._is_complete(child / self.arch):
                out.append(child.name)
        return out

    def find(self, tool: str, version_spec: str) -> Path | None:
        exact = parse_version(version_spec)
        if exact is not None:
            entry = self._entry_dir(tool, str(exact))
            return entry if self._is_complete(entry) else None

        best = max_satisfying(self.versions(tool), parse_range(version_spec))
        if best is None:
            return None
        return self._entry_dir(tool, best)

    def store(self, source_dir: Path, tool: str, version: str) -> Path:
        parsed = parse_version(version)
        if parsed is None:
            raise SetupError(f"Refusing to cache {tool} under non-semver version {version!r}")
        entry = self._entry_dir(tool, str(parsed))
        if self._is_complete(entry):
            log.info("%s %s is already cached at %s", tool, parsed, entry)
            return entry

        entry.parent.mkdir(parents=True, exist_ok=True)
        staging = entry.with_name(f".{entry.name}.{uuid.uuid4().hex}.tmp")
        try:
            shutil.copytree(source_dir, staging, symlinks=True)
            if entry.exists():
                # Leftover from an interrupted store (no marker).
                shutil.rmtree(entry)
            try:
                staging.rename(entry)
            except OSError:
                if self._is_complete(entry):
                    log.info("%s %s was cached concurrently; keeping existing entry", tool, parsed)
                    return entry
                raise
            self._marker(entry).write_text("", encoding="utf-8")
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        return entry
