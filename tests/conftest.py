"""
Shared fixtures: a small snapshot manifest shaped like a pinned package set
(toolchain, CLI utility, an SSL library, pkg-config and a nested nightly
toolchain), plus helpers to turn it into bytes, a revision and a warm cache.
"""
import copy
import hashlib
import json
import os
import sys

import pytest

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, REPO_ROOT)

from envpin.fetcher import SnapshotCache  # noqa: E402
from envpin.index import build_index  # noqa: E402

SAMPLE_MANIFEST = {
    "format": 1,
    "packages": {
        "toolchain": {
            "type": "package",
            "version": "1.58",
            "prefix": "/store/aaa-toolchain-1.58",
            "bin": ["bin"],
            "lib": ["lib"],
            "env": {"RUSTC": "/store/aaa-toolchain-1.58/bin/rustc"},
        },
        "cli-tool": {
            "type": "package",
            "version": "0.9.0",
            "prefix": "/store/bbb-cli-tool-0.9.0",
            "bin": ["bin"],
        },
        "libssl": {
            "type": "package",
            "version": "1.1.1l",
            "prefix": "/store/ccc-openssl-1.1.1l",
            "bin": ["bin"],
            "lib": ["lib"],
            "include": ["include"],
            "env": {"OPENSSL_DIR": "/store/ccc-openssl-1.1.1l"},
        },
        "pkg-config": {
            "type": "package",
            "version": "0.29.2",
            "prefix": "/store/ddd-pkg-config-0.29.2",
            "bin": ["bin"],
            "env": {"PKG_CONFIG_PATH": "/store/ccc-openssl-1.1.1l/lib/pkgconfig"},
        },
        "pkgconfig": {"type": "alias", "target": "pkg-config"},
        "rust-bin": {
            "nightly": {
                "2022-02-21": {
                    "complete": {
                        "type": "package",
                        "version": "1.61.0-nightly",
                        "channel": "nightly",
                        "prefix": "/store/eee-rust-nightly-2022-02-21",
                        "bin": ["bin"],
                        "lib": ["lib"],
                    }
                }
            }
        },
    },
}


def manifest_bytes(manifest):
    return json.dumps(manifest, sort_keys=True).encode("utf-8")


def revision_of(data, length=12):
    return hashlib.sha256(data).hexdigest()[:length]


@pytest.fixture()
def manifest():
    return copy.deepcopy(SAMPLE_MANIFEST)


@pytest.fixture()
def snapshot_bytes(manifest):
    return manifest_bytes(manifest)


@pytest.fixture()
def revision(snapshot_bytes):
    return revision_of(snapshot_bytes)


@pytest.fixture()
def index(snapshot_bytes):
    return build_index(snapshot_bytes)


@pytest.fixture()
def warm_cache(tmp_path, snapshot_bytes, revision):
    """A snapshot cache already holding the sample snapshot."""
    cache = SnapshotCache(str(tmp_path / "cache"))
    cache.write(revision, snapshot_bytes)
    return cache
