"""
Semantic versions and version ranges.

Ranges follow the npm-style grammar release tags are usually matched with
(``^1.2``, ``~0.1.0``, ``>=1.0.0 <2``, ``1.x``, ``1.2.3 - 1.4``, ``a || b``).
Matching always includes pre-releases: nimskull has no stable release yet, so
``0.1.0-dev.20072`` must satisfy ``>0.1.0-dev.20066 <0.1.0-dev.20074`` and ``*``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Union

from .client import SetupError

Identifier = Union[int, str]


class InvalidRangeError(SetupError):
    pass


@dataclass(frozen=True)
class Version:
    major: int
    minor: int
    patch: int
    prerelease: tuple[Identifier, ...] = ()
    build: tuple[str, ...] = field(default=(), compare=False)

    def __str__(self) -> str:
        out = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            out += "-" + ".".join(str(p) for p in self.prerelease)
        if self.build:
            out += "+" + ".".join(self.build)
        return out

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)


_IDENT = r"[0-9A-Za-z-]+"
_PRERELEASE = rf"(?:-({_IDENT}(?:\.{_IDENT})*))?"
_BUILD = rf"(?:\+({_IDENT}(?:\.{_IDENT})*))?"
_VERSION_RE = re.compile(rf"^=?v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*){_PRERELEASE}{_BUILD}$")
_XNUM = r"(\d+|[xX*])"
_PARTIAL_RE = re.compile(rf"^v?{_XNUM}(?:\.{_XNUM}(?:\.{_XNUM}{_PRERELEASE}{_BUILD})?)?$")
_TOKEN_RE = re.compile(r"^(>=|<=|>|<|=|\^|~>|~)?(.+)$")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_OP_SPACE_RE = re.compile(r"(>=|<=|>|<|=|\^|~>|~)\s+")

# Lowest possible pre-release of a version triple (``X.Y.Z-0``).
_LOWEST = (0,)


def _parse_identifiers(raw: str | None) -> tuple[Identifier, ...]:
    if not raw:
        return ()
    return tuple(int(p) if p.isdigit() else p for p in raw.split("."))


def parse_version(text: str) -> Version | None:
    if not isinstance(text, str):
        return None
    m = _VERSION_RE.match(text.strip())
    if not m:
        return None
    return Version(
        major=int(m.group(1)),
        minor=int(m.group(2)),
        patch=int(m.group(3)),
        prerelease=_parse_identifiers(m.group(4)),
        build=tuple(m.group(5).split(".")) if m.group(5) else (),
    )


def _compare_identifiers(a: Identifier, b: Identifier) -> int:
    a_num = isinstance(a, int)
    b_num = isinstance(b, int)
    if a_num and not b_num:
        return -1
    if b_num and not a_num:
        return 1
    if a < b:  # type: ignore[operator]
        return -1
    if a > b:  # type: ignore[operator]
        return 1
    return 0


def _compare(a: Version, b: Version) -> int:
    ma = (a.major, a.minor, a.patch)
    mb = (b.major, b.minor, b.patch)
    if ma < mb:
        return -1
    if ma > mb:
        return 1

    pa, pb = a.prerelease, b.prerelease
    if not pa and not pb:
        return 0
    # A release sorts after all of its pre-releases.
    if not pa:
        return 1
    if not pb:
        return -1

    for x, y in zip(pa, pb):
        c = _compare_identifiers(x, y)
        if c:
            return c
    if len(pa) < len(pb):
        return -1
    if len(pa) > len(pb):
        return 1
    return 0


def compare_versions(a: str, b: str) -> int:
    va = parse_version(a)
    vb = parse_version(b)
    if va is None or vb is None:
        bad = a if va is None else b
        raise ValueError(f"Invalid version: {bad!r}")
    return _compare(va, vb)


@dataclass(frozen=True)
class Comparator:
    op: str  # one of <, <=, >, >=, =
    version: Version

    def test(self, version: Version) -> bool:
        c = _compare(version, self.version)
        if self.op == "=":
            return c == 0
        if self.op == "<":
            return c < 0
        if self.op == "<=":
            return c <= 0
        if self.op == ">":
            return c > 0
        if self.op == ">=":
            return c >= 0
        raise AssertionError(f"unknown comparator operator: {self.op}")

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


# Matches nothing; used for `<*` and `>*`.
_NOTHING = Comparator("<", Version(0, 0, 0, _LOWEST))


@dataclass(frozen=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    prerelease: tuple[Identifier, ...] = ()

    @property
    def is_full(self) -> bool:
        return self.patch is not None

    def floor(self) -> Version:
        if self.is_full:
            return Version(self.major or 0, self.minor or 0, self.patch or 0, self.prerelease)
        return Version(self.major or 0, self.minor or 0, 0, _LOWEST)

    def next_ceiling(self) -> Version:
        """First version past everything this partial covers (exclusive bound)."""
        assert self.major is not None
        if self.minor is None:
            return Version(self.major + 1, 0, 0, _LOWEST)
        return Version(self.major, self.minor + 1, 0, _LOWEST)


def _parse_partial(raw: str, *, source: str) -> _Partial:
    m = _PARTIAL_RE.match(raw)
    if not m:
        raise InvalidRangeError(f"Invalid version range: {source!r}")
    nums: list[int | None] = []
    wildcard = False
    for g in (m.group(1), m.group(2), m.group(3)):
        if wildcard or g is None or g in ("x", "X", "*"):
            wildcard = True
            nums.append(None)
            continue
        nums.append(int(g))
    prerelease = _parse_identifiers(m.group(4)) if nums[2] is not None else ()
    return _Partial(nums[0], nums[1], nums[2], prerelease)


def _expand_primitive(op: str, p: _Partial) -> list[Comparator]:
    if p.major is None:
        if op in ("<", ">"):
            return [_NOTHING]
        return []
    if op in ("", "="):
        if p.is_full:
            return [Comparator("=", p.floor())]
        return [Comparator(">=", p.floor()), Comparator("<", p.next_ceiling())]
    if p.is_full:
        return [Comparator(op, p.floor())]
    if op == ">":
        return [Comparator(">=", p.next_ceiling())]
    if op == ">=":
        return [Comparator(">=", p.floor())]
    if op == "<":
        return [Comparator("<", p.floor())]
    if op == "<=":
        return [Comparator("<", p.next_ceiling())]
    raise AssertionError(f"unknown operator: {op}")


def _expand_caret(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return []
    if p.minor is None or p.patch is None:
        if p.major == 0 and p.minor is not None:
            upper = Version(0, p.minor + 1, 0, _LOWEST)
        else:
            upper = Version(p.major + 1, 0, 0, _LOWEST)
        return [Comparator(">=", p.floor()), Comparator("<", upper)]
    if p.major > 0:
        upper = Version(p.major + 1, 0, 0, _LOWEST)
    elif p.minor > 0:
        upper = Version(0, p.minor + 1, 0, _LOWEST)
    else:
        upper = Version(0, 0, p.patch + 1, _LOWEST)
    return [Comparator(">=", p.floor()), Comparator("<", upper)]


def _expand_tilde(p: _Partial) -> list[Comparator]:
    if p.major is None:
        return []
    return [Comparator(">=", p.floor()), Comparator("<", p.next_ceiling())]


def _expand_hyphen(lo: _Partial, hi: _Partial) -> list[Comparator]:
    out: list[Comparator] = []
    if lo.major is not None:
        out.append(Comparator(">=", lo.floor()))
    if hi.major is not None:
        if hi.is_full:
            out.append(Comparator("<=", hi.floor()))
        else:
            out.append(Comparator("<", hi.next_ceiling()))
    return out


def _parse_alternative(raw: str, *, source: str) -> tuple[Comparator, ...]:
    raw = raw.strip()
    if not raw:
        return ()

    hm = _HYPHEN_RE.match(raw)
    if hm:
        lo = _parse_partial(hm.group(1), source=source)
        hi = _parse_partial(hm.group(2), source=source)
        return tuple(_expand_hyphen(lo, hi))

    out: list[Comparator] = []
    for token in _OP_SPACE_RE.sub(r"\1", raw).split():
        if token.lower() == "latest":
            continue
        m = _TOKEN_RE.match(token)
        if not m:
            raise InvalidRangeError(f"Invalid version range: {source!r}")
        op = m.group(1) or ""
        partial = _parse_partial(m.group(2), source=source)
        if op == "^":
            out.extend(_expand_caret(partial))
        elif op in ("~", "~>"):
            out.extend(_expand_tilde(partial))
        else:
            out.extend(_expand_primitive(op, partial))
    return tuple(out)


@dataclass(frozen=True)
class VersionRange:
    text: str
    alternatives: tuple[tuple[Comparator, ...], ...]

    def test(self, version: Version | str) -> bool:
        if isinstance(version, str):
            parsed = parse_version(version)
            if parsed is None:
                return False
            version = parsed
        return any(all(c.test(version) for c in alt) for alt in self.alternatives)

    def __str__(self) -> str:
        return " || ".join(" ".join(str(c) for c in alt) or "*" for alt in self.alternatives)


def parse_range(text: str) -> VersionRange:
    if not isinstance(text, str):
        raise InvalidRangeError(f"Invalid version range: {text!r}")
    alternatives = tuple(_parse_alternative(part, source=text) for part in text.split("||"))
    return VersionRange(text=text, alternatives=alternatives)


def version_satisfies(version: str, specifier: str | VersionRange) -> bool:
    rng = specifier if isinstance(specifier, VersionRange) else parse_range(specifier)
    return rng.test(version)


def max_satisfying(versions: Iterable[str], specifier: str | VersionRange) -> str | None:
    rng = specifier if isinstance(specifier, VersionRange) else parse_range(specifier)
    best: tuple[Version, str] | None = None
    for raw in versions:
        v = parse_version(raw)
        if v is None or not rng.test(v):
            continue
        if best is None or _compare(v, best[0]) > 0:
            best = (v, raw)
    return best[1] if best else None
