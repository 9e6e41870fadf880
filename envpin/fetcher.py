"""
fetcher.py — Content-addressed snapshot retrieval.

A snapshot is fetched once per revision: the first caller downloads it,
verifies its SHA-256 digest against the locator's revision and writes it into
the on-disk cache; every later caller (in this process or another one) reads
the cached bytes without touching the network.

Concurrent requests for the same revision inside one ``SnapshotFetcher`` are
coalesced onto a single transfer. Requests for different revisions never wait
on each other.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests
from urllib3.exceptions import ReadTimeoutError

from .errors import FetchCancelledError, FetchError, FetchTimeoutError
from .model import SnapshotLocator

log = logging.getLogger(__name__)

DEFAULT_UA = "envpin/0.1 (+snapshot-fetcher)"
CHUNK = 1 << 20


def ensure_dir(p: str) -> None:
    os.makedirs(p, exist_ok=True)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def request_session(user_agent: str = DEFAULT_UA) -> requests.Session:
    s = requests.Session()
    s.headers["User-Agent"] = user_agent
    return s


# =========================
# On-disk cache
# =========================

class SnapshotCache:
    """Append-only store of raw snapshot bytes keyed by revision.

    Entries are written to a temporary file and renamed into place, so a
    reader never observes a partially written entry and concurrent writers of
    the same (verified, hence identical) content are harmless.
    """

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)
        self.snapshot_dir = os.path.join(self.root, "snapshots")

    def path_for(self, revision: str) -> str:
        return os.path.join(self.snapshot_dir, revision[:2], f"{revision}.snapshot")

    def __contains__(self, revision: object) -> bool:
        return isinstance(revision, str) and os.path.exists(self.path_for(revision))

    def read(self, revision: str) -> Optional[bytes]:
        try:
            with open(self.path_for(revision), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def write(self, revision: str, data: bytes) -> str:
        dest = self.path_for(revision)
        ensure_dir(os.path.dirname(dest))
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(dest), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, dest)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return dest

    def discard(self, revision: str) -> None:
        try:
            os.unlink(self.path_for(revision))
        except FileNotFoundError:
            pass

    def revisions(self) -> List[str]:
        out: List[str] = []
        if not os.path.isdir(self.snapshot_dir):
            return out
        for shard in sorted(os.listdir(self.snapshot_dir)):
            shard_dir = os.path.join(self.snapshot_dir, shard)
            if not os.path.isdir(shard_dir):
                continue
            for name in sorted(os.listdir(shard_dir)):
                if name.endswith(".snapshot"):
                    out.append(name[: -len(".snapshot")])
        return out


# =========================
# Fetcher
# =========================

@dataclass
class _InFlight:
    done: threading.Event = field(default_factory=threading.Event)
    data: Optional[bytes] = None
    error: Optional[BaseException] = None


class SnapshotFetcher:
    def __init__(self,
                 cache: SnapshotCache,
                 session: Optional[requests.Session] = None,
                 timeout: float = 60,
                 retries: int = 2) -> None:
        self.cache = cache
        self.session = session or request_session()
        self.timeout = timeout
        self.retries = max(0, retries)
        self.network_fetches = 0

        self._lock = threading.Lock()
        self._inflight: Dict[str, _InFlight] = {}

    # --- public API ---

    def fetch(self,
              locator: SnapshotLocator,
              timeout: Optional[float] = None,
              cancel: Optional[threading.Event] = None) -> bytes:
        """Return the verified raw bytes of *locator*'s snapshot.

        *timeout* bounds each transfer attempt and, for a caller that joins a
        transfer already in flight, the time spent waiting on it. Setting
        *cancel* aborts only this caller.
        """
        timeout = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            cached = self._read_cache(locator)
            if cached is not None:
                return cached

            with self._lock:
                slot = self._inflight.get(locator.revision)
                leader = slot is None
                if leader:
                    slot = self._inflight[locator.revision] = _InFlight()

            if leader:
                return self._lead(locator, slot, timeout, cancel)

            self._wait(locator, slot, deadline, timeout, cancel)
            if isinstance(slot.error, FetchCancelledError):
                # the leader's cancellation is its own; take over the transfer
                log.debug("in-flight fetch of %s was cancelled; retrying", locator.revision)
                continue
            if slot.error is not None:
                raise slot.error
            return slot.data  # type: ignore[return-value]

    # --- internals ---

    def _wait(self,
              locator: SnapshotLocator,
              slot: _InFlight,
              deadline: float,
              timeout: float,
              cancel: Optional[threading.Event]) -> None:
        log.debug("waiting on in-flight fetch of %s", locator.revision)
        while not slot.done.wait(0.05):
            if cancel is not None and cancel.is_set():
                raise FetchCancelledError(locator)
            if time.monotonic() > deadline:
                raise FetchTimeoutError(locator, timeout)

    def _lead(self,
              locator: SnapshotLocator,
              slot: _InFlight,
              timeout: float,
              cancel: Optional[threading.Event]) -> bytes:
        try:
            # Another process may have filled the cache since the first check.
            data = self._read_cache(locator)
            if data is None:
                data = self._download(locator, timeout, cancel)
                self.cache.write(locator.revision, data)
                log.info("cached snapshot %s (%d bytes)", locator.revision, len(data))
            slot.data = data
            return data
        except BaseException as exc:
            slot.error = exc
            raise
        finally:
            with self._lock:
                self._inflight.pop(locator.revision, None)
            slot.done.set()

    def _read_cache(self, locator: SnapshotLocator) -> Optional[bytes]:
        data = self.cache.read(locator.revision)
        if data is None:
            log.debug("cache miss for %s", locator.revision)
            return None
        if not locator.matches_digest(sha256_bytes(data)):
            log.warning("discarding corrupt cache entry %s", self.cache.path_for(locator.revision))
            self.cache.discard(locator.revision)
            return None
        log.debug("cache hit for %s", locator.revision)
        return data

    def _download(self,
                  locator: SnapshotLocator,
                  timeout: float,
                  cancel: Optional[threading.Event]) -> bytes:
        url = locator.resolved_url
        scheme = urllib.parse.urlparse(url).scheme
        if scheme in ("", "file"):
            data = self._read_local(locator, url)
        else:
            data = self._get_with_retries(locator, url, timeout, cancel)

        digest = sha256_bytes(data)
        if not locator.matches_digest(digest):
            raise FetchError(locator, f"content hash {digest} does not match revision {locator.revision}")
        return data

    def _read_local(self, locator: SnapshotLocator, url: str) -> bytes:
        path = urllib.parse.urlparse(url).path if url.startswith("file:") else url
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise FetchError(locator, str(exc)) from exc

    def _get_with_retries(self,
                          locator: SnapshotLocator,
                          url: str,
                          timeout: float,
                          cancel: Optional[threading.Event]) -> bytes:
        for i in range(self.retries + 1):
            try:
                return self._get(locator, url, timeout, cancel)
            except FetchCancelledError:
                raise
            except (FetchError, FetchTimeoutError) as exc:
                if i == self.retries:
                    raise
                log.warning("fetch %s failed (%s); retry %d/%d", url, exc, i + 1, self.retries)
        raise RuntimeError("unreachable")

    def _get(self,
             locator: SnapshotLocator,
             url: str,
             timeout: float,
             cancel: Optional[threading.Event]) -> bytes:
        if cancel is not None and cancel.is_set():
            raise FetchCancelledError(locator)
        if timeout <= 0:
            raise FetchTimeoutError(locator, timeout)
        deadline = time.monotonic() + timeout
        with self._lock:
            self.network_fetches += 1
        log.info("fetching %s", url)
        try:
            with self.session.get(url, stream=True, timeout=timeout) as r:
                r.raise_for_status()
                parts = []
                for chunk in r.iter_content(CHUNK):
                    if cancel is not None and cancel.is_set():
                        raise FetchCancelledError(locator)
                    if time.monotonic() > deadline:
                        raise FetchTimeoutError(locator, timeout)
                    if chunk:
                        parts.append(chunk)
                return b"".join(parts)
        except requests.Timeout as exc:
            raise FetchTimeoutError(locator, timeout) from exc
        except requests.ConnectionError as exc:
            # a stalled body surfaces as ConnectionError(ReadTimeoutError)
            if exc.args and isinstance(exc.args[0], ReadTimeoutError):
                raise FetchTimeoutError(locator, timeout) from exc
            raise FetchError(locator, str(exc)) from exc
        except requests.RequestException as exc:
            raise FetchError(locator, str(exc)) from exc
