"""
descriptor.py — Parse the declarative environment descriptor (TOML).

    [snapshot]
    url = "https://snap.example/archive/{revision}.tar.gz"
    revision = "e91ed60"

    [shell]
    inputs = [
      'rust-bin.nightly."2022-02-21".complete',
      "cargo-outdated",
      "openssl==1.1.1l",
      { path = "pkg-config", version = "0.29.2" },
    ]

    [tool.envpin]
    timeout = 30

Every error is reported as ``DescriptorSyntaxError`` with the 1-based line it
was found on.
"""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import DescriptorSyntaxError
from .model import InputSpecifier, SnapshotLocator, canonical_attr_path

DESCRIPTOR_NAME = "envpin.toml"
_TOML_LINE_RE = re.compile(r"\s*\(at line (\d+), column \d+\)")
_INPUT_KEYS = {"path", "version", "channel"}


@dataclass
class Descriptor:
    locator: SnapshotLocator
    inputs: List[InputSpecifier]
    settings: Dict[str, Any] = field(default_factory=dict)


def _line_of(text: str,
             pattern: str,
             default: Optional[int] = None,
             start: Optional[int] = None) -> Optional[int]:
    """First line at or after *start* matching *pattern*."""
    rx = re.compile(pattern)
    for n, line in enumerate(text.splitlines(), start=1):
        if start is not None and n < start:
            continue
        if rx.search(line):
            return n
    return default


def _key_line(text: str, key: str, start: Optional[int] = None) -> Optional[int]:
    return _line_of(text, rf"^\s*{re.escape(key)}\s*=", start=start)


def _quoted(value: str) -> str:
    """Pattern for *value* written as a TOML string literal."""
    return rf"([\"']){re.escape(value)}\1"


def _table_line(text: str, table: str) -> Optional[int]:
    return _line_of(text, rf"^\s*\[\s*{re.escape(table)}\s*\]")


def _loads(text: str) -> Dict[str, Any]:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        msg = str(exc)
        line = getattr(exc, "lineno", None)
        m = _TOML_LINE_RE.search(msg)
        if line is None and m:
            line = int(m.group(1))
        raise DescriptorSyntaxError(line, _TOML_LINE_RE.sub("", msg)) from exc


def _parse_locator(doc: Dict[str, Any], text: str) -> SnapshotLocator:
    snap = doc.get("snapshot")
    if not isinstance(snap, dict):
        raise DescriptorSyntaxError(None, "missing [snapshot] table")
    table_line = _table_line(text, "snapshot")
    for key in ("url", "revision"):
        if not isinstance(snap.get(key), str):
            raise DescriptorSyntaxError(
                _key_line(text, key, start=table_line) or table_line, f"[snapshot] needs a string '{key}'"
            )
    try:
        return SnapshotLocator(url=snap["url"].strip(), revision=snap["revision"].strip().lower())
    except ValueError as exc:
        bad = "url" if not snap["url"].strip() else "revision"
        raise DescriptorSyntaxError(_key_line(text, bad, start=table_line) or table_line, str(exc)) from exc


def _parse_input(item: Any, text: str, default_line: Optional[int]) -> InputSpecifier:
    if isinstance(item, str):
        line = _line_of(text, _quoted(item), default_line, start=default_line)
        try:
            return InputSpecifier.parse(item)
        except ValueError as exc:
            raise DescriptorSyntaxError(line, str(exc)) from exc

    if isinstance(item, dict):
        path = item.get("path")
        line = default_line
        if isinstance(path, str):
            line = _line_of(text, rf"\bpath\s*=\s*{_quoted(path)}", default_line, start=default_line)
        unknown = set(item) - _INPUT_KEYS
        if unknown:
            raise DescriptorSyntaxError(line, f"unknown input key(s): {', '.join(sorted(unknown))}")
        if not isinstance(path, str):
            raise DescriptorSyntaxError(line, "input table needs a string 'path'")
        for key in ("version", "channel"):
            if key in item and (not isinstance(item[key], str) or not item[key]):
                raise DescriptorSyntaxError(line, f"input '{key}' must be a non-empty string")
        try:
            return InputSpecifier(canonical_attr_path(path), item.get("version"), item.get("channel"))
        except ValueError as exc:
            raise DescriptorSyntaxError(line, str(exc)) from exc

    raise DescriptorSyntaxError(default_line, f"input must be a string or table, not {type(item).__name__}")


def load_descriptor(text: str) -> Descriptor:
    doc = _loads(text)
    locator = _parse_locator(doc, text)

    shell = doc.get("shell", {})
    if not isinstance(shell, dict):
        raise DescriptorSyntaxError(_key_line(text, "shell"), "'shell' must be a table")
    inputs_line = _key_line(text, "inputs", start=_table_line(text, "shell"))
    raw_inputs = shell.get("inputs", [])
    if not isinstance(raw_inputs, list):
        raise DescriptorSyntaxError(inputs_line, "[shell] inputs must be an array")
    inputs = [_parse_input(item, text, inputs_line) for item in raw_inputs]

    tool = doc.get("tool", {})
    settings = tool.get("envpin", {}) if isinstance(tool, dict) else {}
    if not isinstance(settings, dict):
        raise DescriptorSyntaxError(_table_line(text, "tool.envpin"), "[tool.envpin] must be a table")
    return Descriptor(locator=locator, inputs=inputs, settings=settings)


def parse_descriptor(text: str) -> Tuple[SnapshotLocator, List[InputSpecifier]]:
    d = load_descriptor(text)
    return d.locator, d.inputs
