"""
End-to-end tests for build_environment: descriptor text in, environment out,
with every failure aborting before anything partial is produced.
"""
import pytest

from conftest import manifest_bytes, revision_of
from envpin.errors import FetchError, IndexCorruptError, ResolutionError
from envpin.fetcher import SnapshotCache, SnapshotFetcher
from envpin.index import IndexCache
from envpin.pipeline import build_environment

URL = "https://snap.example/archive/{revision}.tar.gz"


def _descriptor(revision, inputs, url=URL):
    quoted = ",\n  ".join(f"'{i}'" for i in inputs)
    return (f'[snapshot]\nurl = "{url}"\nrevision = "{revision}"\n\n'
            f"[shell]\ninputs = [\n  {quoted},\n]\n")


@pytest.fixture()
def offline_fetcher(warm_cache):
    return SnapshotFetcher(warm_cache, retries=0)


class TestBuildEnvironment:
    def test_four_input_scenario_from_warm_cache(self, offline_fetcher, revision):
        text = _descriptor(revision, ["toolchain", "cli-tool", "libssl", "pkg-config"])
        build = build_environment(text, offline_fetcher, IndexCache())
        assert offline_fetcher.network_fetches == 0
        assert build.locator.revision == revision
        assert [r.descriptor.attr_path for r in build.resolved] == [
            "toolchain", "cli-tool", "libssl", "pkg-config",
        ]
        env = build.environment
        assert env.search_path[0] == "/store/aaa-toolchain-1.58/bin"
        assert env.include_path == ("/store/ccc-openssl-1.1.1l/include",)
        assert env.warnings == ()

    def test_nightly_path_in_descriptor(self, offline_fetcher, revision):
        text = _descriptor(revision, ['rust-bin.nightly."2022-02-21".complete'])
        build = build_environment(text, offline_fetcher, IndexCache())
        assert build.environment.search_path == ("/store/eee-rust-nightly-2022-02-21/bin",)

    def test_deterministic_across_index_caches(self, offline_fetcher, revision):
        text = _descriptor(revision, ["libssl", "toolchain", "pkgconfig"])
        first = build_environment(text, offline_fetcher, IndexCache()).environment
        second = build_environment(text, offline_fetcher, IndexCache()).environment
        assert first.to_json() == second.to_json()

    def test_index_reused_for_same_revision(self, offline_fetcher, revision):
        cache = IndexCache()
        build_environment(_descriptor(revision, ["toolchain"]), offline_fetcher, cache)
        build_environment(_descriptor(revision, ["libssl"]), offline_fetcher, cache)
        assert len(cache) == 1

    def test_local_snapshot_file(self, tmp_path, snapshot_bytes, revision):
        snap = tmp_path / "snap.json"
        snap.write_bytes(snapshot_bytes)
        fetcher = SnapshotFetcher(SnapshotCache(str(tmp_path / "cache")), retries=0)
        build = build_environment(_descriptor(revision, ["cli-tool"], url=str(snap)), fetcher, IndexCache())
        assert build.environment.search_path == ("/store/bbb-cli-tool-0.9.0/bin",)


class TestBuildFailures:
    def test_fetch_failure_aborts(self, tmp_path):
        fetcher = SnapshotFetcher(SnapshotCache(str(tmp_path / "cache")), timeout=2, retries=0)
        text = _descriptor("abcdef0", ["toolchain"], url="http://127.0.0.1:9/snap.json")
        with pytest.raises(FetchError):
            build_environment(text, fetcher, IndexCache())

    def test_corrupt_index_aborts(self, tmp_path):
        raw = b'{"format": 1, "packages": {"x": {"type": "package"}}}'
        rev = revision_of(raw)
        cache = SnapshotCache(str(tmp_path / "cache"))
        cache.write(rev, raw)
        index_cache = IndexCache()
        with pytest.raises(IndexCorruptError):
            build_environment(_descriptor(rev, ["x"]), SnapshotFetcher(cache, retries=0), index_cache)
        assert len(index_cache) == 0

    def test_resolution_failure_lists_every_bad_input(self, offline_fetcher, revision):
        text = _descriptor(revision, ["toolchain==9.9.9", "cli-tool", "ghost"])
        with pytest.raises(ResolutionError) as exc_info:
            build_environment(text, offline_fetcher, IndexCache())
        assert [str(s) for s in exc_info.value.specifiers] == ["toolchain==9.9.9", "ghost"]

    def test_empty_snapshot_resolves_nothing(self, tmp_path):
        raw = manifest_bytes({"format": 1, "packages": {}})
        rev = revision_of(raw)
        cache = SnapshotCache(str(tmp_path / "cache"))
        cache.write(rev, raw)
        with pytest.raises(ResolutionError):
            build_environment(_descriptor(rev, ["toolchain"]), SnapshotFetcher(cache, retries=0), IndexCache())
