"""
index.py — Flat, validated package index built from raw snapshot bytes.

The snapshot manifest nests packages inside attribute sets
(``rust-bin -> nightly -> "2022-02-21" -> complete``). ``build_index``
walks that tree once and produces a flat mapping from canonical attribute
path to ``PackageDescriptor``, so every lookup afterwards is a single dict
access and any malformed entry is reported when the index is built rather
than when somebody happens to ask for it.

Manifest shape (``packages.json``, either the whole snapshot or a member of
a gzip'd tarball)::

    {"format": 1,
     "packages": {
        "openssl": {"type": "package", "version": "1.1.1l",
                    "prefix": "/store/abc-openssl-1.1.1l",
                    "bin": ["bin"], "lib": ["lib"], "include": ["include"],
                    "env": {"OPENSSL_DIR": "/store/abc-openssl-1.1.1l"}},
        "pkgconfig": {"type": "alias", "target": "pkg-config"},
        "rust-bin": {"nightly": {"2022-02-21": {"complete": {...}}}}}}
"""

from __future__ import annotations

import difflib
import io
import json
import logging
import posixpath
import tarfile
import threading
import zlib
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import IndexCorruptError
from .model import PackageDescriptor, SnapshotLocator, canonical_attr_path, join_attr_path

log = logging.getLogger(__name__)

MANIFEST_NAME = "packages.json"
SUPPORTED_FORMATS = (1,)
_GZIP_MAGIC = b"\x1f\x8b"


class PackageIndex:
    """Read-only mapping from canonical attribute path to package."""

    def __init__(self, packages: Mapping[str, PackageDescriptor]) -> None:
        self._packages = MappingProxyType(dict(packages))

    def lookup(self, attr_path: str) -> Optional[PackageDescriptor]:
        try:
            key = canonical_attr_path(attr_path)
        except ValueError:
            return None
        return self._packages.get(key)

    def close_matches(self, attr_path: str, n: int = 3) -> List[str]:
        return difflib.get_close_matches(attr_path, list(self._packages), n=n)

    def paths(self) -> List[str]:
        return sorted(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def __contains__(self, attr_path: object) -> bool:
        return isinstance(attr_path, str) and self.lookup(attr_path) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths())


# =========================
# Decoding
# =========================

def _reject_duplicates(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in pairs:
        if k in out:
            raise IndexCorruptError(f"duplicate key {k!r}")
        out[k] = v
    return out


def _manifest_from_tar(raw: bytes) -> bytes:
    try:
        with tarfile.open(fileobj=io.BytesIO(raw), mode="r:*") as tf:
            members = [
                m for m in tf.getmembers()
                if m.isfile() and posixpath.basename(m.name) == MANIFEST_NAME
            ]
            if not members:
                raise IndexCorruptError(f"archive contains no {MANIFEST_NAME}")
            members.sort(key=lambda m: (m.name.count("/"), m.name))
            f = tf.extractfile(members[0])
            if f is None:
                raise IndexCorruptError(f"cannot read {members[0].name}")
            return f.read()
    except (tarfile.TarError, EOFError, OSError, zlib.error) as exc:
        raise IndexCorruptError(f"unreadable archive: {exc}") from exc


def _is_tar(raw: bytes) -> bool:
    if raw.lstrip()[:1] == b"{":
        return False
    return raw[:2] == _GZIP_MAGIC or raw[257:262] == b"ustar"


def decode_manifest(raw: bytes) -> Dict[str, Any]:
    payload = _manifest_from_tar(raw) if _is_tar(raw) else raw
    try:
        doc = json.loads(payload.decode("utf-8"), object_pairs_hook=_reject_duplicates)
    except UnicodeDecodeError as exc:
        raise IndexCorruptError(f"manifest is not UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise IndexCorruptError(f"manifest is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise IndexCorruptError("manifest must be a JSON object")
    fmt = doc.get("format")
    if fmt not in SUPPORTED_FORMATS:
        raise IndexCorruptError(f"unsupported manifest format {fmt!r}")
    if not isinstance(doc.get("packages"), dict):
        raise IndexCorruptError("manifest has no 'packages' object")
    return doc


# =========================
# Flattening
# =========================

def _str_list(node: Dict[str, Any], key: str, where: str) -> List[str]:
    value = node.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise IndexCorruptError(f"'{key}' must be a list of non-empty strings", where)
    return value


def _expand_paths(entries: List[str], prefix: Optional[str], where: str) -> Tuple[str, ...]:
    out: List[str] = []
    for entry in entries:
        if posixpath.isabs(entry):
            path = posixpath.normpath(entry)
        elif prefix:
            path = posixpath.normpath(posixpath.join(prefix, entry))
        else:
            raise IndexCorruptError(f"relative path {entry!r} without 'prefix'", where)
        if path not in out:
            out.append(path)
    return tuple(out)


def _descriptor(attr_path: str, node: Dict[str, Any]) -> PackageDescriptor:
    version = node.get("version")
    if not isinstance(version, str) or not version:
        raise IndexCorruptError("package has no 'version' string", attr_path)
    channel = node.get("channel")
    if channel is not None and not isinstance(channel, str):
        raise IndexCorruptError("'channel' must be a string", attr_path)
    prefix = node.get("prefix")
    if prefix is not None and (not isinstance(prefix, str) or not posixpath.isabs(prefix)):
        raise IndexCorruptError("'prefix' must be an absolute path", attr_path)
    env = node.get("env", {})
    if not isinstance(env, dict) or not all(isinstance(v, str) for v in env.values()):
        raise IndexCorruptError("'env' must map names to strings", attr_path)

    return PackageDescriptor(
        attr_path=attr_path,
        version=version,
        bin=_expand_paths(_str_list(node, "bin", attr_path), prefix, attr_path),
        lib=_expand_paths(_str_list(node, "lib", attr_path), prefix, attr_path),
        include=_expand_paths(_str_list(node, "include", attr_path), prefix, attr_path),
        env=tuple(sorted(env.items())),
        channel=channel,
    )


def _walk(node: Dict[str, Any],
          segments: List[str],
          packages: Dict[str, PackageDescriptor],
          aliases: Dict[str, str]) -> None:
    for name, child in node.items():
        path = segments + [name]
        where = join_attr_path(path)
        if not name:
            raise IndexCorruptError("empty attribute name", join_attr_path(segments) or None)
        if not isinstance(child, dict):
            raise IndexCorruptError(f"expected an object, got {type(child).__name__}", where)
        # a string "type" marks an entry; anything else is an attribute named type
        kind = child.get("type")
        if not isinstance(kind, str):
            _walk(child, path, packages, aliases)
        elif kind == "package":
            packages[where] = _descriptor(where, child)
        elif kind == "alias":
            target = child.get("target")
            if not isinstance(target, str):
                raise IndexCorruptError("alias has no 'target' string", where)
            try:
                aliases[where] = canonical_attr_path(target)
            except ValueError as exc:
                raise IndexCorruptError(str(exc), where) from exc
        else:
            raise IndexCorruptError(f"unknown entry type {kind!r}", where)


def _link_aliases(packages: Dict[str, PackageDescriptor], aliases: Dict[str, str]) -> None:
    for alias in sorted(aliases):
        seen = [alias]
        target = aliases[alias]
        while target in aliases:
            if target in seen:
                raise IndexCorruptError(f"alias cycle {' -> '.join(seen + [target])}", alias)
            seen.append(target)
            target = aliases[target]
        if target not in packages:
            raise IndexCorruptError(f"alias target {target!r} does not exist", alias)
        packages[alias] = packages[target]


def build_index(raw: bytes) -> PackageIndex:
    """Parse snapshot bytes into a ``PackageIndex``. Pure; no I/O."""
    doc = decode_manifest(raw)
    packages: Dict[str, PackageDescriptor] = {}
    aliases: Dict[str, str] = {}
    _walk(doc["packages"], [], packages, aliases)
    _link_aliases(packages, aliases)
    log.debug("indexed %d packages (%d aliases)", len(packages), len(aliases))
    return PackageIndex(packages)


# =========================
# Per-revision cache
# =========================

class IndexCache:
    """Built indexes keyed by revision.

    Passed explicitly to whoever needs it; there is no module-level instance.
    """

    def __init__(self) -> None:
        self._indexes: Dict[str, PackageIndex] = {}
        self._lock = threading.Lock()

    def get(self,
            locator: SnapshotLocator,
            fetcher: Any,
            cancel: Optional[threading.Event] = None) -> PackageIndex:
        """Return the index for *locator*, fetching and building on first use."""
        with self._lock:
            index = self._indexes.get(locator.revision)
        if index is not None:
            return index
        index = build_index(fetcher.fetch(locator, cancel=cancel))
        with self._lock:
            return self._indexes.setdefault(locator.revision, index)

    def __contains__(self, revision: object) -> bool:
        return revision in self._indexes

    def __len__(self) -> int:
        return len(self._indexes)
