"""
resolver.py — Resolve requested inputs against a package index.

Resolution is all-or-nothing: every specifier is checked, every failure is
collected, and if any failed a single ``ResolutionError`` listing all of
them is raised. Output order mirrors input order because composition gives
earlier inputs search precedence.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .errors import EnvpinError, ResolutionError, UnresolvedInputError, VersionMismatchError
from .index import PackageIndex
from .model import InputSpecifier, PackageDescriptor, ResolvedInput

log = logging.getLogger(__name__)


def version_matches(found: str, wanted: str) -> bool:
    """Exact match, or prefix match when *wanted* ends in ``.*``.

    PEP 440 versions are compared semantically (``1.58 == 1.58.0``); anything
    else (``1.1.1l``, ``2022-02-21``) falls back to string comparison.
    """
    if wanted.endswith(".*"):
        try:
            return SpecifierSet(f"=={wanted}").contains(Version(found), prereleases=True)
        except (InvalidSpecifier, InvalidVersion):
            prefix = wanted[:-2]
            return found == prefix or found.startswith(prefix + ".")
    try:
        return Version(found) == Version(wanted)
    except InvalidVersion:
        return found == wanted


def check_constraints(spec: InputSpecifier, desc: PackageDescriptor) -> Optional[VersionMismatchError]:
    if spec.version is not None and not version_matches(desc.version, spec.version):
        return VersionMismatchError(spec, desc.version)
    if spec.channel is not None and desc.channel != spec.channel:
        return VersionMismatchError(spec, desc.channel)
    return None


def resolve(specifiers: Iterable[InputSpecifier], index: PackageIndex) -> List[ResolvedInput]:
    resolved: List[ResolvedInput] = []
    failures: List[EnvpinError] = []

    for spec in specifiers:
        desc = index.lookup(spec.attr_path)
        if desc is None:
            failures.append(UnresolvedInputError(spec, index.close_matches(spec.attr_path)))
            continue
        mismatch = check_constraints(spec, desc)
        if mismatch is not None:
            failures.append(mismatch)
            continue
        log.debug("resolved %s -> %s %s", spec, desc.attr_path, desc.version)
        resolved.append(ResolvedInput(specifier=spec, descriptor=desc))

    if failures:
        raise ResolutionError(failures)
    return resolved
