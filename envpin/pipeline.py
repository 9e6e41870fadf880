"""
pipeline.py — descriptor text → EnvironmentDescriptor.

Fetch and index errors abort before anything is resolved; resolution errors
abort before anything is composed. Nothing partial is ever returned.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Union

from .composer import compose
from .config import Settings
from .descriptor import Descriptor, load_descriptor
from .fetcher import SnapshotCache, SnapshotFetcher, request_session
from .index import IndexCache
from .model import EnvironmentDescriptor, ResolvedInput, SnapshotLocator
from .resolver import resolve

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Build:
    locator: SnapshotLocator
    resolved: List[ResolvedInput]
    environment: EnvironmentDescriptor


def make_fetcher(settings: Settings) -> SnapshotFetcher:
    return SnapshotFetcher(
        cache=SnapshotCache(settings.cache_dir),
        session=request_session(settings.user_agent),
        timeout=settings.timeout,
        retries=settings.retries,
    )


def build_environment(source: Union[str, Descriptor],
                      fetcher: SnapshotFetcher,
                      index_cache: IndexCache,
                      cancel: Optional[threading.Event] = None) -> Build:
    descriptor = load_descriptor(source) if isinstance(source, str) else source
    locator = descriptor.locator
    index = index_cache.get(locator, fetcher, cancel=cancel)

    resolved = resolve(descriptor.inputs, index)
    env = compose(resolved)
    log.info("composed environment from %d input(s) of %s", len(resolved), locator)
    return Build(locator=locator, resolved=resolved, environment=env)
