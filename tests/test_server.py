"""
tests/test_server.py — Smoke tests for the MCP tool functions in server.py.

The tool functions are called directly (bypassing the MCP transport layer)
with the module-level fetcher pointed at a pre-warmed cache.
"""

import pytest

import envpin.server as _server_mod
from envpin.fetcher import SnapshotFetcher
from envpin.index import IndexCache
from envpin.server import cache_status, lookup_package, resolve_environment

URL = "https://snap.example/archive/{revision}.tar.gz"


@pytest.fixture(autouse=True)
def server_state(warm_cache):
    """Point the server at the warm cache; reset afterwards."""
    _server_mod._fetcher = SnapshotFetcher(warm_cache, retries=0)
    _server_mod._index_cache = IndexCache()
    yield
    _server_mod._fetcher = None
    _server_mod._index_cache = None


def _descriptor(revision, *inputs):
    quoted = ", ".join(f"'{i}'" for i in inputs)
    return f'[snapshot]\nurl = "{URL}"\nrevision = "{revision}"\n[shell]\ninputs = [{quoted}]\n'


# ---------------------------------------------------------------------------
# resolve_environment
# ---------------------------------------------------------------------------

class TestResolveEnvironment:
    def test_ok(self, revision):
        result = resolve_environment(_descriptor(revision, "toolchain", "pkgconfig"))
        assert result["status"] == "ok"
        assert result["snapshot"]["revision"] == revision
        assert [i["attr_path"] for i in result["inputs"]] == ["toolchain", "pkg-config"]
        assert result["environment"]["search_path"][0] == "/store/aaa-toolchain-1.58/bin"
        assert result["warnings"] == []

    def test_resolution_failures_listed(self, revision):
        result = resolve_environment(_descriptor(revision, "ghost", "toolchain==2.0"))
        assert result["status"] == "error"
        assert result["kind"] == "ResolutionError"
        assert result["retryable"] is False
        assert [f["kind"] for f in result["failures"]] == ["UnresolvedInputError", "VersionMismatchError"]
        assert result["failures"][1]["specifier"] == "toolchain==2.0"

    def test_bad_descriptor(self):
        result = resolve_environment("[snapshot]\nurl = 1\n")
        assert result["status"] == "error"
        assert result["kind"] == "DescriptorSyntaxError"


# ---------------------------------------------------------------------------
# lookup_package
# ---------------------------------------------------------------------------

class TestLookupPackage:
    def test_found(self, revision):
        result = lookup_package(URL, revision, 'rust-bin.nightly."2022-02-21".complete')
        assert result["found"] is True
        assert result["package"]["channel"] == "nightly"

    def test_not_found_suggests(self, revision):
        result = lookup_package(URL, revision, "libsl")
        assert result["found"] is False
        assert "libssl" in result["suggestions"]

    def test_bad_revision(self):
        result = lookup_package(URL, "nothex", "toolchain")
        assert result["status"] == "error"
        assert result["retryable"] is False


# ---------------------------------------------------------------------------
# cache_status
# ---------------------------------------------------------------------------

class TestCacheStatus:
    def test_reports_cached_and_indexed(self, revision, warm_cache):
        before = cache_status()
        assert before["revisions"] == [revision]
        assert before["indexed"] == 0
        assert before["cache_dir"] == warm_cache.root

        lookup_package(URL, revision, "toolchain")
        assert cache_status()["indexed"] == 1
