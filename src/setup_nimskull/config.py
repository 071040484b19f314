from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from platformdirs import user_cache_path, user_config_path

log = logging.getLogger(__name__)

TOOL_NAME = "nimskull"
DEFAULT_REPO = "nim-works/nimskull"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class Config:
    repo: str = DEFAULT_REPO
    token: str | None = None
    graphql_url: str = DEFAULT_GRAPHQL_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    cache_dir: str | None = None  # falls back to RUNNER_TOOL_CACHE, then the user cache dir
    page_size: int = DEFAULT_PAGE_SIZE


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _as_positive(kind: type) -> Callable[[Any], Any]:
    def coerce(value: Any) -> Any:
        if isinstance(value, bool):
            raise TypeError("expected a number, got bool")
        out = kind(value)
        if out <= 0:
            raise ValueError(f"expected a positive number, got {value!r}")
        return out

    return coerce


_FIELD_TYPES: dict[str, Callable[[Any], Any]] = {
    "repo": _as_str,
    "token": _as_str,
    "graphql_url": _as_str,
    "timeout_s": _as_positive(float),
    "cache_dir": _as_str,
    "page_size": _as_positive(int),
}


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("NIMSKULL_SETUP_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("setup-nimskull") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except ValueError:
        # Covers both JSONDecodeError and UnicodeDecodeError.
        log.warning("Ignoring unreadable config file %s", path)
        return Config()
    if not isinstance(raw, dict):
        return Config()

    filtered: dict[str, Any] = {}
    for key, coerce in _FIELD_TYPES.items():
        if key not in raw or raw[key] is None:
            continue
        try:
            filtered[key] = coerce(raw[key])
        except (TypeError, ValueError):
            log.warning("Ignoring invalid %r in config file %s", key, path)
    return Config(**filtered)


def default_cache_root(cfg: Config | None = None) -> Path:
    if cfg is not None and cfg.cache_dir:
        return Path(cfg.cache_dir).expanduser()
    if env := os.getenv("NIMSKULL_CACHE_DIR"):
        return Path(env).expanduser()
    if env := os.getenv("RUNNER_TOOL_CACHE"):
        return Path(env).expanduser()
    return user_cache_path("setup-nimskull") / "tool-cache"


def redact_token(token: str | None) -> str | None:
    if not token:
        return token
    if len(token) <= 10:
        return token[:2] + "..." + token[-2:]
    return token[:6] + "..." + token[-4:]
