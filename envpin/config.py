"""
config.py — Runtime settings.

Precedence, highest first: CLI flag, environment variable
(``ENVPIN_CACHE_DIR``, ``ENVPIN_TIMEOUT``, ``ENVPIN_RETRIES``), the
descriptor's ``[tool.envpin]`` table, built-in default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from .fetcher import DEFAULT_UA

ENV_PREFIX = "ENVPIN_"


def default_cache_dir(environ: Mapping[str, str] = os.environ) -> str:
    base = environ.get("XDG_CACHE_HOME") or os.path.join(os.path.expanduser("~"), ".cache")
    return os.path.join(base, "envpin")


@dataclass(frozen=True)
class Settings:
    cache_dir: str
    timeout: float = 60.0
    retries: int = 2
    user_agent: str = DEFAULT_UA


def _pick(name: str,
          flag: Any,
          environ: Mapping[str, str],
          table: Mapping[str, Any],
          convert: Callable[[Any], Any],
          default: Any) -> Any:
    if flag is not None:
        return convert(flag)
    env_val = environ.get(ENV_PREFIX + name.upper())
    if env_val:
        try:
            return convert(env_val)
        except ValueError as exc:
            raise ValueError(f"{ENV_PREFIX}{name.upper()}={env_val!r}: {exc}") from exc
    if name in table:
        try:
            return convert(table[name])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"[tool.envpin] {name}={table[name]!r}: {exc}") from exc
    return default


def load_settings(cache_dir: Optional[str] = None,
                  timeout: Optional[float] = None,
                  retries: Optional[int] = None,
                  user_agent: Optional[str] = None,
                  table: Optional[Mapping[str, Any]] = None,
                  environ: Mapping[str, str] = os.environ) -> Settings:
    table = table or {}
    return Settings(
        cache_dir=os.path.expanduser(_pick("cache_dir", cache_dir, environ, table, str, default_cache_dir(environ))),
        timeout=_pick("timeout", timeout, environ, table, float, 60.0),
        retries=_pick("retries", retries, environ, table, int, 2),
        user_agent=_pick("user_agent", user_agent, environ, table, str, DEFAULT_UA),
    )
