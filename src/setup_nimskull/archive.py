from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import uuid
import zipfile
from pathlib import Path
from urllib.parse import unquote, urlsplit

import zstandard

from .client import GitHubClient, SetupError

log = logging.getLogger(__name__)

_HAS_DATA_FILTER = hasattr(tarfile, "data_filter")


class ArchiveLayoutViolation(SetupError):
    def __init__(self, count: int, message: str | None = None) -> None:
        super().__init__(message or f"Expected 1 folder in extracted archive but got {count}")
        self.count = count


class ChecksumMismatch(SetupError):
    pass


def _basename_from_url(url: str) -> str:
    name = unquote(urlsplit(url).path.rsplit("/", 1)[-1])
    return name or "artifact"


def download(client: GitHubClient, url: str, dest_dir: Path) -> Path:
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / f"{uuid.uuid4().hex}-{_basename_from_url(url)}"
    log.info("Downloading %s", url)
    return client.stream_to_file(url, target)


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        while True:
            data = fh.read(chunk_size)
            if not data:
                break
            h.update(data)
    return h.hexdigest()


def verify_checksum(path: Path, expected: str | None, *, name: str) -> None:
    if not expected or not expected.strip():
        log.warning("No checksum published for %s; skipping verification", name)
        return
    actual = sha256_file(path)
    if actual.lower() != expected.strip().lower():
        raise ChecksumMismatch(f"Checksum mismatch for {name}: expected sha256 {expected.strip()} but got {actual}")
    log.debug("Checksum verified for %s", name)


def _check_member_path(name: str, dest: Path) -> Path:
    if name.startswith("/") or name.startswith("\\"):
        raise SetupError(f"Archive contains an absolute path entry: {name!r}")
    target = (dest / name).resolve()
    base = dest.resolve()
    if not str(target).startswith(str(base) + os.sep) and target != base:
        raise SetupError(f"Archive contains an invalid path entry: {name!r}")
    return target


def _safe_extract_zip(archive: Path, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive, "r") as zf:
            for info in zf.infolist():
                name = info.filename
                if not name:
                    continue
                target = _check_member_path(name, dest)

                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info, "r") as src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)

                # Keep unix permission bits so binaries stay executable.
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    os.chmod(target, mode)
    except zipfile.BadZipFile as e:
        raise SetupError(f"Could not extract zip archive {archive.name}: {e}") from e


def _unzstd(archive: Path, work_dir: Path) -> Path:
    # Compatibility shim: decompress to a plain tar first, then extract that. A tar reader
    # with native zstd support could do this in one step.
    tar_path = work_dir / f"{uuid.uuid4().hex}.tar"
    dctx = zstandard.ZstdDecompressor()
    try:
        with archive.open("rb") as ifh, tar_path.open("wb") as ofh:
            dctx.copy_stream(ifh, ofh)
    except zstandard.ZstdError as e:
        tar_path.unlink(missing_ok=True)
        raise SetupError(f"Could not decompress {archive.name} as zstd: {e}") from e
    return tar_path


def _check_tar_member(member: tarfile.TarInfo, dest: Path) -> None:
    _check_member_path(member.name, dest)
    if member.issym():
        if os.path.isabs(member.linkname):
            raise SetupError(f"Archive contains an absolute symlink: {member.name!r}")
        _check_member_path(os.path.join(os.path.dirname(member.name), member.linkname), dest)
    elif member.islnk():
        _check_member_path(member.linkname, dest)
    elif not (member.isfile() or member.isdir()):
        raise SetupError(f"Archive contains an unsupported entry: {member.name!r}")


def _safe_extract_tar(tar_path: Path, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(tar_path, "r:") as tar:
            members = tar.getmembers()
            for member in members:
                _check_tar_member(member, dest)
            if _HAS_DATA_FILTER:
                tar.extractall(dest, members=members, filter="data")
            else:
                # Older 3.10/3.11 patch releases lack extraction filters; members were checked above.
                tar.extractall(dest, members=members)
    except tarfile.TarError as e:
        raise SetupError(f"Could not extract tar archive {tar_path.name}: {e}") from e


def extract_archive(archive: Path, dest: Path, *, name: str) -> Path:
    """
    Extract ``archive`` into ``dest`` and return ``dest``.

    ``name`` (the asset name or URL) decides the format: ``.zip`` is extracted as zip,
    everything else is a zstd-compressed tarball.
    """
    if name.lower().endswith(".zip"):
        _safe_extract_zip(archive, dest)
        return dest

    tar_path = _unzstd(archive, archive.parent)
    try:
        _safe_extract_tar(tar_path, dest)
    finally:
        tar_path.unlink(missing_ok=True)
    return dest


def single_top_level_dir(root: Path) -> Path:
    """The archive must consist of one top-level folder holding the compiler and tools."""
    entries = sorted(root.iterdir())
    if len(entries) != 1:
        raise ArchiveLayoutViolation(len(entries))
    top = entries[0]
    if not top.is_dir():
        raise ArchiveLayoutViolation(1, f"Expected 1 folder in extracted archive but got file {top.name!r}")
    return top
