"""
errors.py — Exception taxonomy for the resolver pipeline.

Fetch errors are retryable by the caller; index corruption is not (it means
the pin itself is bad); resolution errors are collected and raised as one
``ResolutionError`` so every bad specifier is reported in a single pass.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:
    from .model import InputSpecifier, SnapshotLocator


class EnvpinError(Exception):
    """Base error for every failure raised by the core."""

    retryable = False


# ---------------------------------------------------------------------------
# Snapshot fetching
# ---------------------------------------------------------------------------

class FetchError(EnvpinError):
    """Network failure or integrity mismatch while fetching a snapshot."""

    retryable = True

    def __init__(self, locator: SnapshotLocator, detail: str) -> None:
        self.locator = locator
        self.detail = detail
        super().__init__(f"fetch {locator} failed: {detail}")


class FetchTimeoutError(EnvpinError):
    """The snapshot transfer did not finish within its timeout."""

    retryable = True

    def __init__(self, locator: SnapshotLocator, timeout: float) -> None:
        self.locator = locator
        self.timeout = timeout
        super().__init__(f"fetch {locator} timed out after {timeout:g}s")


class FetchCancelledError(FetchError):
    """The caller cancelled an in-progress transfer."""

    def __init__(self, locator: SnapshotLocator) -> None:
        super().__init__(locator, "cancelled")


# ---------------------------------------------------------------------------
# Index construction
# ---------------------------------------------------------------------------

class IndexCorruptError(EnvpinError):
    """Snapshot bytes cannot be parsed into well-formed descriptors."""

    def __init__(self, detail: str, attr_path: str | None = None) -> None:
        self.detail = detail
        self.attr_path = attr_path
        where = f" at {attr_path}" if attr_path else ""
        super().__init__(f"corrupt snapshot index{where}: {detail}")


# ---------------------------------------------------------------------------
# Input resolution
# ---------------------------------------------------------------------------

class UnresolvedInputError(EnvpinError):
    """No package exists at the requested attribute path."""

    def __init__(self, specifier: InputSpecifier, suggestions: Sequence[str] = ()) -> None:
        self.specifier = specifier
        self.suggestions = tuple(suggestions)
        message = f"{specifier}: no such package in snapshot"
        if self.suggestions:
            message += f" (did you mean {', '.join(self.suggestions)}?)"
        super().__init__(message)


class VersionMismatchError(EnvpinError):
    """The package exists but its version/channel violates the constraint."""

    def __init__(self, specifier: InputSpecifier, found: str | None) -> None:
        self.specifier = specifier
        self.found = found
        super().__init__(f"{specifier}: snapshot provides {found or '<none>'}")


class ResolutionError(EnvpinError, ExceptionGroup):
    """Every specifier that failed to resolve during one pass.

    An ``ExceptionGroup`` of the individual failures, so a caller can pick
    out one kind with ``except* VersionMismatchError``.
    """

    def __new__(cls, failures: Sequence[EnvpinError]) -> "ResolutionError":
        failures = list(failures)
        lines = [f"{len(failures)} input(s) failed to resolve:"]
        lines.extend(f"  - {f}" for f in failures)
        return super().__new__(cls, "\n".join(lines), failures)

    def __init__(self, failures: Sequence[EnvpinError]) -> None:
        super().__init__(self.message, self.exceptions)

    def __str__(self) -> str:
        return self.message

    def derive(self, excs: Sequence[EnvpinError]) -> "ResolutionError":
        return ResolutionError(excs)

    @property
    def failures(self) -> List[EnvpinError]:
        return list(self.exceptions)

    @property
    def specifiers(self) -> List[InputSpecifier]:
        return [f.specifier for f in self.failures]  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Descriptor parsing
# ---------------------------------------------------------------------------

class DescriptorSyntaxError(EnvpinError):
    """The declarative descriptor text is malformed."""

    def __init__(self, line: int | None, detail: str) -> None:
        self.line = line
        self.detail = detail
        where = f"line {line}: " if line is not None else ""
        super().__init__(f"descriptor {where}{detail}")
