from __future__ import annotations

import argparse
import json
import os
import sys
import textwrap
import uuid
from typing import Any

from ._version import __version__
from .cache import ToolCache
from .client import GitHubClient, SetupError
from .config import TOOL_NAME, Config, default_cache_root, load_config, redact_token
from .installer import InstallResult, ResolutionNotFound, acquire
from .logging_utils import configure_logging
from .releases import GitHubReleaseFeed, find_version
from .triplet import HostDescriptor
from .versions import parse_range


def _env_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    v = value.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    repo = getattr(args, "repo", None) or os.getenv("NIMSKULL_REPO") or base.repo
    token = (
        getattr(args, "token", None)
        or os.getenv("NIMSKULL_TOKEN")
        or os.getenv("GITHUB_TOKEN")
        or base.token
    )
    cache_dir = getattr(args, "cache_dir", None) or os.getenv("NIMSKULL_CACHE_DIR") or base.cache_dir
    timeout_s: Any = getattr(args, "timeout_s", None) or os.getenv("NIMSKULL_TIMEOUT_S") or base.timeout_s
    try:
        timeout_s_f = float(timeout_s)
    except (TypeError, ValueError):
        timeout_s_f = base.timeout_s

    return Config(
        repo=repo,
        token=token,
        graphql_url=base.graphql_url,
        timeout_s=timeout_s_f,
        cache_dir=str(cache_dir) if cache_dir else None,
        page_size=base.page_size,
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="setup-nimskull",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install a prebuilt nimskull compiler from GitHub Releases.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              GITHUB_TOKEN / NIMSKULL_TOKEN, NIMSKULL_REPO, NIMSKULL_CACHE_DIR, NIMSKULL_TIMEOUT_S,
              NIMSKULL_VERSION, NIMSKULL_CHECK_LATEST, NIMSKULL_SETUP_CONFIG_PATH
            When GITHUB_OUTPUT / GITHUB_PATH are set, install results are written there.
            """
        ),
    )
    p.add_argument("--repo", help="Release repository as <owner>/<name>")
    p.add_argument("--token", help="GitHub token (overrides config/env)")
    p.add_argument("--cache-dir", help="Tool cache root directory")
    p.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    p.add_argument("--log-level", default=os.getenv("NIMSKULL_LOG_LEVEL", "INFO"), help="Logging level (default: INFO)")
    p.add_argument("--version", action="version", version=f"setup-nimskull {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    def _add_range(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--nimskull-version",
            dest="nimskull_version",
            default=os.getenv("NIMSKULL_VERSION", "*"),
            help='Semver range of the compiler to use (default: "*")',
        )

    install = sub.add_parser("install", help="Resolve, download and cache the compiler")
    _add_range(install)
    check = install.add_mutually_exclusive_group()
    check.add_argument(
        "--check-latest",
        dest="check_latest",
        action="store_true",
        default=None,
        help="Always look for the newest release matching the range (default)",
    )
    check.add_argument(
        "--no-check-latest",
        dest="check_latest",
        action="store_false",
        help="Use a cached version matching the range without asking GitHub",
    )
    install.add_argument("--json", action="store_true", help="Print the result as JSON")

    resolve = sub.add_parser("resolve", help="Print the newest release tag matching the range")
    _add_range(resolve)

    cache = sub.add_parser("cache", help="Inspect the local tool cache")
    cache_sub = cache.add_subparsers(dest="subcmd", required=True)
    cache_sub.add_parser("list", help="List cached versions")
    cache_sub.add_parser("path", help="Print the cache root")

    sub.add_parser("config", help="Show effective configuration (token redacted)")
    return p


def _write_github_file(env_name: str, lines: list[str]) -> bool:
    target = os.getenv(env_name)
    if not target:
        return False
    with open(target, "a", encoding="utf-8") as fh:
        for line in lines:
            fh.write(line + "\n")
    return True


def _set_outputs(outputs: dict[str, str]) -> bool:
    lines: list[str] = []
    for key, value in outputs.items():
        if "\n" in value:
            delim = f"ghadelimiter_{uuid.uuid4()}"
            lines.extend([f"{key}<<{delim}", value, delim])
        else:
            lines.append(f"{key}={value}")
    return _write_github_file("GITHUB_OUTPUT", lines)


def _publish(result: InstallResult) -> None:
    _write_github_file("GITHUB_PATH", [str(result.bin_path)])
    _set_outputs(
        {
            "path": str(result.path),
            "bin-path": str(result.bin_path),
            "nimskull-version": result.version,
            "nimskull-commit": result.commit,
        }
    )


def _check_latest(args: argparse.Namespace) -> bool:
    if args.check_latest is not None:
        return bool(args.check_latest)
    env = _env_bool(os.getenv("NIMSKULL_CHECK_LATEST"))
    # nimskull is pre-alpha, so default to always looking for a newer build.
    return True if env is None else env


def cmd_install(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    result = acquire(args.nimskull_version, _check_latest(args), cfg=cfg)
    _publish(result)

    payload = {
        "path": str(result.path),
        "bin_path": str(result.bin_path),
        "version": result.version,
        "commit": result.commit,
    }
    if args.json:
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0
    for key, value in payload.items():
        print(f"{key}: {value}")
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    rng = parse_range(args.nimskull_version)
    with GitHubClient(token=cfg.token, graphql_url=cfg.graphql_url, timeout_s=cfg.timeout_s) as client:
        feed = GitHubReleaseFeed(client, repo=cfg.repo, page_size=cfg.page_size)
        release = find_version(feed.releases(), rng)
    if release is None:
        raise ResolutionNotFound(f"Could not find any release matching the specification: {args.nimskull_version}")
    print(release.tag)
    return 0


def cmd_cache(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    root = default_cache_root(cfg)
    if args.subcmd == "path":
        print(str(root))
        return 0
    cache = ToolCache(root, arch=HostDescriptor.current().arch)
    for version in cache.versions(TOOL_NAME):
        print(version)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    payload = {
        "repo": cfg.repo,
        "token": redact_token(cfg.token),
        "graphql_url": cfg.graphql_url,
        "timeout_s": cfg.timeout_s,
        "cache_dir": str(default_cache_root(cfg)),
        "page_size": cfg.page_size,
    }
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        if args.cmd == "install":
            return cmd_install(args)
        if args.cmd == "resolve":
            return cmd_resolve(args)
        if args.cmd == "cache":
            return cmd_cache(args)
        if args.cmd == "config":
            return cmd_config(args)
        raise AssertionError("unreachable")
    except (SetupError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
