"""
model.py — Value types shared by the fetcher, index, resolver and composer.

All types are frozen: a locator or descriptor never changes after it has been
constructed, which is what lets indexes be cached by revision and
environments be reproduced byte-for-byte.
"""

from __future__ import annotations

import json
import os
import re
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

# Attribute-path segments that may be written without quotes.
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_'\-]*$")
_REVISION_RE = re.compile(r"^[0-9a-f]{7,64}$")

# Characters that end an unquoted segment (besides '.').
_SEGMENT_STOP = set(' \t"=@')


# =========================
# Attribute paths
# =========================

def split_attr_path(text: str) -> List[str]:
    """Split ``a.b."c.d".e`` into ``["a", "b", "c.d", "e"]``.

    Raises ValueError on empty segments, stray characters or an unterminated
    quote.
    """
    segments: List[str] = []
    i, n = 0, len(text)
    if not text:
        raise ValueError("empty attribute path")
    while True:
        if i < n and text[i] == '"':
            i += 1
            buf = []
            while i < n and text[i] != '"':
                if text[i] == "\\" and i + 1 < n:
                    i += 1
                buf.append(text[i])
                i += 1
            if i >= n:
                raise ValueError(f"unterminated quote in attribute path {text!r}")
            i += 1
            seg = "".join(buf)
        else:
            start = i
            while i < n and text[i] != "." and text[i] not in _SEGMENT_STOP:
                i += 1
            seg = text[start:i]
        if not seg:
            raise ValueError(f"empty segment in attribute path {text!r}")
        segments.append(seg)
        if i == n:
            return segments
        if text[i] != ".":
            raise ValueError(f"unexpected {text[i]!r} in attribute path {text!r}")
        i += 1
        if i == n:
            raise ValueError(f"trailing '.' in attribute path {text!r}")


def join_attr_path(segments: List[str]) -> str:
    """Canonical spelling: identifiers bare, everything else double-quoted."""
    out = []
    for seg in segments:
        if _IDENT_RE.match(seg):
            out.append(seg)
        else:
            escaped = seg.replace("\\", "\\\\").replace('"', '\\"')
            out.append(f'"{escaped}"')
    return ".".join(out)


def canonical_attr_path(text: str) -> str:
    return join_attr_path(split_attr_path(text.strip()))


# =========================
# Snapshot identity
# =========================

@dataclass(frozen=True)
class SnapshotLocator:
    """Where a snapshot lives and which content it must hash to.

    ``revision`` is a lowercase hex prefix of the SHA-256 digest of the raw
    snapshot bytes; ``url`` may contain a ``{revision}`` placeholder.
    """

    url: str
    revision: str

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("snapshot url must not be empty")
        if not _REVISION_RE.match(self.revision):
            raise ValueError(
                f"revision {self.revision!r} must be 7-64 lowercase hex characters"
            )

    @property
    def resolved_url(self) -> str:
        return self.url.replace("{revision}", self.revision)

    def matches_digest(self, hexdigest: str) -> bool:
        return hexdigest.startswith(self.revision)

    def __str__(self) -> str:
        return f"{self.resolved_url}@{self.revision}"


# =========================
# Packages
# =========================

@dataclass(frozen=True)
class PackageDescriptor:
    """One package of a snapshot and the capabilities it exposes.

    Path collections are de-duplicated tuples kept in snapshot order.
    """

    attr_path: str
    version: str
    bin: Tuple[str, ...] = ()
    lib: Tuple[str, ...] = ()
    include: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    channel: Optional[str] = None

    @property
    def env_map(self) -> Dict[str, str]:
        return dict(self.env)

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {
            "attr_path": self.attr_path,
            "version": self.version,
            "bin": list(self.bin),
            "lib": list(self.lib),
            "include": list(self.include),
            "env": dict(self.env),
        }
        if self.channel is not None:
            out["channel"] = self.channel
        return out


@dataclass(frozen=True)
class InputSpecifier:
    """A requested build input: attribute path plus optional constraints."""

    attr_path: str
    version: Optional[str] = None
    channel: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "InputSpecifier":
        """Parse ``path``, ``path==1.2``, ``path==1.*`` or ``path@channel``.

        The attribute path is canonicalised; raises ValueError when malformed.
        """
        text = text.strip()
        cut = _find_qualifier(text)
        path_text, rest = text[:cut], text[cut:]
        version = channel = None
        while rest:
            if rest.startswith("=="):
                value, rest = _take_qualifier(rest[2:])
                if version is not None:
                    raise ValueError(f"duplicate version in {text!r}")
                version = value
            elif rest.startswith("@"):
                value, rest = _take_qualifier(rest[1:])
                if channel is not None:
                    raise ValueError(f"duplicate channel in {text!r}")
                channel = value
            else:
                raise ValueError(f"unexpected {rest!r} in input {text!r}")
            if not value:
                raise ValueError(f"empty qualifier in input {text!r}")
        return cls(canonical_attr_path(path_text), version, channel)

    def __str__(self) -> str:
        out = self.attr_path
        if self.channel is not None:
            out += f"@{self.channel}"
        if self.version is not None:
            out += f"=={self.version}"
        return out


def _find_qualifier(text: str) -> int:
    in_quote = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_quote and ch == "\\":
            i += 2
            continue
        if ch == '"':
            in_quote = not in_quote
        elif not in_quote and (ch == "@" or text.startswith("==", i)):
            return i
        i += 1
    return len(text)


def _take_qualifier(text: str) -> Tuple[str, str]:
    m = re.search(r"==|@", text)
    if m is None:
        return text.strip(), ""
    return text[: m.start()].strip(), text[m.start():]


@dataclass(frozen=True)
class ResolvedInput:
    specifier: InputSpecifier
    descriptor: PackageDescriptor


# =========================
# Composed environment
# =========================

@dataclass(frozen=True)
class VariableOverrideWarning:
    """A later input replaced a variable set by an earlier one."""

    key: str
    previous: str
    new: str
    source: str = ""

    def __str__(self) -> str:
        by = f" by {self.source}" if self.source else ""
        return f"{self.key} overridden{by}: {self.previous!r} -> {self.new!r}"


@dataclass(frozen=True)
class EnvironmentDescriptor:
    search_path: Tuple[str, ...] = ()
    library_path: Tuple[str, ...] = ()
    include_path: Tuple[str, ...] = ()
    variables: Tuple[Tuple[str, str], ...] = ()
    warnings: Tuple[VariableOverrideWarning, ...] = field(default=(), compare=False)

    @property
    def variable_map(self) -> Dict[str, str]:
        return dict(self.variables)

    def to_dict(self) -> Dict[str, object]:
        return {
            "search_path": list(self.search_path),
            "library_path": list(self.library_path),
            "include_path": list(self.include_path),
            "variables": dict(self.variables),
        }

    def to_json(self) -> str:
        """Stable serialisation; identical descriptors give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def to_environ(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Apply the descriptor on top of *base* (an ``os.environ``-like map).

        Composed paths are prepended to any existing value; the path-derived
        keys are written after ``variables`` and take precedence over them.
        """
        env = dict(base or {})
        env.update(self.variables)
        for key, paths in (
            ("PATH", self.search_path),
            ("LIBRARY_PATH", self.library_path),
            ("LD_LIBRARY_PATH", self.library_path),
            ("CPATH", self.include_path),
        ):
            if not paths:
                continue
            parts = list(paths)
            if base and base.get(key):
                parts.append(base[key])
            env[key] = os.pathsep.join(parts)
        return env

    def to_shell(self) -> str:
        """``export`` lines for a POSIX shell, sorted by key."""
        env = self.to_environ()
        return "".join(f"export {k}={shlex.quote(env[k])}\n" for k in sorted(env))
