"""
lockfile.py — Record a resolution so it can be replayed exactly.

The lock names the snapshot and, for each input in order, the package it
resolved to. ``lock_specifiers`` turns a lock back into exact-version
specifiers, so re-resolving against the same snapshot reproduces the same
environment or fails loudly.
"""

from __future__ import annotations

import json
import tomllib
from typing import Any, Dict, List, Sequence, Tuple

import tomli_w

from .errors import DescriptorSyntaxError
from .model import InputSpecifier, ResolvedInput, SnapshotLocator

LOCK_VERSION = 1
LOCK_NAME = "envpin.lock"


def lock_document(locator: SnapshotLocator, resolved: Sequence[ResolvedInput]) -> Dict[str, Any]:
    packages = []
    for r in resolved:
        entry = {"requested": str(r.specifier), **r.descriptor.to_dict()}
        packages.append(entry)
    return {
        "lock": {"version": LOCK_VERSION},
        "snapshot": {"url": locator.url, "revision": locator.revision},
        "packages": packages,
    }


def write_lock_toml(path: str, locator: SnapshotLocator, resolved: Sequence[ResolvedInput]) -> None:
    doc = lock_document(locator, resolved)
    with open(path, "wb") as f:
        f.write(tomli_w.dumps(doc).encode("utf-8"))


def write_lock_json(path: str, locator: SnapshotLocator, resolved: Sequence[ResolvedInput]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(lock_document(locator, resolved), f, indent=2, sort_keys=True)
        f.write("\n")


def read_lock(path: str) -> Dict[str, Any]:
    """Load a TOML or JSON lock file."""
    with open(path, "rb") as f:
        raw = f.read()
    try:
        if path.endswith(".json"):
            doc = json.loads(raw.decode("utf-8"))
        else:
            doc = tomllib.loads(raw.decode("utf-8"))
    except (ValueError, tomllib.TOMLDecodeError) as exc:
        raise DescriptorSyntaxError(None, f"{path}: {exc}") from exc
    version = doc.get("lock", {}).get("version")
    if version != LOCK_VERSION:
        raise DescriptorSyntaxError(None, f"{path}: unsupported lock version {version!r}")
    return doc


def lock_specifiers(doc: Dict[str, Any]) -> Tuple[SnapshotLocator, List[InputSpecifier]]:
    snap = doc.get("snapshot", {})
    try:
        locator = SnapshotLocator(url=snap["url"], revision=snap["revision"])
        specs = [
            InputSpecifier(p["attr_path"], version=p["version"], channel=p.get("channel"))
            for p in doc.get("packages", [])
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise DescriptorSyntaxError(None, f"malformed lock: {exc}") from exc
    return locator, specs
