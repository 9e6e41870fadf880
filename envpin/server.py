"""
server.py — envpin MCP Server entrypoint.

Exposes the resolver pipeline as MCP tools so an agent can ask for an
environment without shelling out:

  resolve_environment — descriptor text → composed environment (or failures).
  lookup_package      — inspect one attribute path of a pinned snapshot.
  cache_status        — which snapshots are on disk / indexed in memory.

One fetcher and one index cache are shared for the lifetime of the server
process; the core modules themselves hold no global state.

Usage:
    python -m envpin.server          # stdio transport (default)
    envpin-mcp                       # via installed entry-point
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .errors import EnvpinError, ResolutionError
from .fetcher import SnapshotFetcher
from .index import IndexCache
from .model import SnapshotLocator
from .pipeline import build_environment, make_fetcher

# ---------------------------------------------------------------------------
# MCP server instance
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "envpin",
    instructions=(
        "envpin — reproducible environment resolver. "
        "Call `resolve_environment` with the text of an envpin.toml descriptor "
        "to get PATH/library/include paths and variables for a pinned snapshot; "
        "`lookup_package` to inspect a single package; `cache_status` to see "
        "which snapshots are already local."
    ),
)

_fetcher: Optional[SnapshotFetcher] = None
_index_cache: Optional[IndexCache] = None


def _get_state() -> tuple[SnapshotFetcher, IndexCache]:
    global _fetcher, _index_cache
    if _fetcher is None:
        _fetcher = make_fetcher(load_settings())
    if _index_cache is None:
        _index_cache = IndexCache()
    return _fetcher, _index_cache


def _error(exc: EnvpinError) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "status": "error",
        "kind": type(exc).__name__,
        "error": str(exc),
        "retryable": exc.retryable,
    }
    if isinstance(exc, ResolutionError):
        out["failures"] = [
            {"kind": type(f).__name__, "specifier": str(f.specifier), "error": str(f)}  # type: ignore[attr-defined]
            for f in exc.failures
        ]
    return out


# ---------------------------------------------------------------------------
# Tool: resolve_environment
# ---------------------------------------------------------------------------
@mcp.tool()
def resolve_environment(descriptor: str) -> Dict[str, Any]:
    """Resolve an envpin.toml descriptor into a composed environment.

    Args:
        descriptor: Full text of the TOML descriptor.

    Returns:
        ``{"status": "ok", "snapshot": ..., "inputs": [...], "environment": {...},
        "warnings": [...]}`` or ``{"status": "error", ...}``.
    """
    fetcher, index_cache = _get_state()
    try:
        build = build_environment(descriptor, fetcher, index_cache)
    except EnvpinError as exc:
        return _error(exc)
    return {
        "status": "ok",
        "snapshot": {"url": build.locator.url, "revision": build.locator.revision},
        "inputs": [
            {"requested": str(r.specifier), "attr_path": r.descriptor.attr_path,
             "version": r.descriptor.version}
            for r in build.resolved
        ],
        "environment": build.environment.to_dict(),
        "warnings": [str(w) for w in build.environment.warnings],
    }


# ---------------------------------------------------------------------------
# Tool: lookup_package
# ---------------------------------------------------------------------------
@mcp.tool()
def lookup_package(url: str, revision: str, attr_path: str) -> Dict[str, Any]:
    """Look up one attribute path in a pinned snapshot.

    Args:
        url:       Snapshot URL (may contain ``{revision}``).
        revision:  Hex prefix of the snapshot's SHA-256 digest.
        attr_path: Attribute path, e.g. ``rust-bin.nightly."2022-02-21".complete``.

    Returns:
        ``{"found": True, "package": {...}}`` or
        ``{"found": False, "suggestions": [...]}``.
    """
    fetcher, index_cache = _get_state()
    try:
        locator = SnapshotLocator(url=url, revision=revision)
        index = index_cache.get(locator, fetcher)
    except ValueError as exc:
        return {"status": "error", "kind": "ValueError", "error": str(exc), "retryable": False}
    except EnvpinError as exc:
        return _error(exc)
    desc = index.lookup(attr_path)
    if desc is None:
        return {"found": False, "suggestions": index.close_matches(attr_path)}
    return {"found": True, "package": desc.to_dict()}


# ---------------------------------------------------------------------------
# Tool: cache_status
# ---------------------------------------------------------------------------
@mcp.tool()
def cache_status() -> Dict[str, Any]:
    """Report cached snapshot revisions and how many indexes are loaded.

    Returns:
        ``{"cache_dir": str, "revisions": [str], "indexed": int}``
    """
    fetcher, index_cache = _get_state()
    return {
        "cache_dir": fetcher.cache.root,
        "revisions": fetcher.cache.revisions(),
        "indexed": len(index_cache),
    }


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
def main() -> None:
    """Run the MCP server over stdio (default transport)."""
    mcp.run()


if __name__ == "__main__":
    main()
