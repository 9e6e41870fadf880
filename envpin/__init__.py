"""
envpin — reproducible environment resolver/composer.

Pins a content-addressed package snapshot, resolves named build inputs
against it and composes one deterministic shell environment descriptor.
"""

from .composer import compose
from .descriptor import load_descriptor, parse_descriptor
from .errors import (
    DescriptorSyntaxError,
    EnvpinError,
    FetchCancelledError,
    FetchError,
    FetchTimeoutError,
    IndexCorruptError,
    ResolutionError,
    UnresolvedInputError,
    VersionMismatchError,
)
from .fetcher import SnapshotCache, SnapshotFetcher
from .index import IndexCache, PackageIndex, build_index
from .model import (
    EnvironmentDescriptor,
    InputSpecifier,
    PackageDescriptor,
    ResolvedInput,
    SnapshotLocator,
    VariableOverrideWarning,
)
from .pipeline import build_environment
from .resolver import resolve

__version__ = "0.1.0"

__all__ = [
    "compose", "load_descriptor", "parse_descriptor", "resolve", "build_index",
    "build_environment", "SnapshotCache", "SnapshotFetcher", "IndexCache", "PackageIndex",
    "EnvironmentDescriptor", "InputSpecifier", "PackageDescriptor", "ResolvedInput",
    "SnapshotLocator", "VariableOverrideWarning",
    "EnvpinError", "FetchError", "FetchTimeoutError", "FetchCancelledError",
    "IndexCorruptError", "UnresolvedInputError", "VersionMismatchError",
    "ResolutionError", "DescriptorSyntaxError",
]
