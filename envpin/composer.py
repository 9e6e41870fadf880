"""
composer.py — Merge resolved inputs into one environment descriptor.

Path capabilities keep first-seen order and drop repeated paths, so an
earlier input keeps search precedence. Scalar variables are last-wins; every
override is recorded on the result and logged, never raised. ``compose``
therefore cannot fail once its inputs resolved.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .model import EnvironmentDescriptor, ResolvedInput, VariableOverrideWarning

log = logging.getLogger(__name__)


class _OrderedPaths:
    def __init__(self) -> None:
        self._items: List[str] = []
        self._seen: set = set()

    def extend(self, paths: Iterable[str]) -> None:
        for p in paths:
            if p not in self._seen:
                self._seen.add(p)
                self._items.append(p)

    def freeze(self) -> tuple:
        return tuple(self._items)


def compose(resolved: Iterable[ResolvedInput]) -> EnvironmentDescriptor:
    search, libs, includes = _OrderedPaths(), _OrderedPaths(), _OrderedPaths()
    variables: Dict[str, str] = {}
    warnings: List[VariableOverrideWarning] = []

    for item in resolved:
        desc = item.descriptor
        search.extend(desc.bin)
        libs.extend(desc.lib)
        includes.extend(desc.include)
        for key, value in desc.env:
            previous = variables.get(key)
            if previous is not None and previous != value:
                w = VariableOverrideWarning(key, previous, value, source=desc.attr_path)
                log.warning("%s", w)
                warnings.append(w)
            variables[key] = value

    return EnvironmentDescriptor(
        search_path=search.freeze(),
        library_path=libs.freeze(),
        include_path=includes.freeze(),
        variables=tuple(sorted(variables.items())),
        warnings=tuple(warnings),
    )
