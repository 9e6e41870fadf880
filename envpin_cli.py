"""
envpin_cli — Entry point for the ``envpin`` console command.

Drives the resolver pipeline from an ``envpin.toml`` descriptor. Process
spawning is left to the caller: ``envpin env`` prints ``export`` lines that a
shell can ``eval``.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from envpin import __version__
from envpin.config import load_settings
from envpin.descriptor import DESCRIPTOR_NAME, Descriptor, load_descriptor
from envpin.errors import EnvpinError
from envpin.fetcher import SnapshotCache
from envpin.index import IndexCache
from envpin.lockfile import LOCK_NAME, lock_specifiers, read_lock, write_lock_json, write_lock_toml
from envpin.pipeline import build_environment, make_fetcher

EX_TEMPFAIL = 75


def _descriptor_path(args):
    return args.descriptor or os.path.join(args.root, DESCRIPTOR_NAME)


def _lock_path(args):
    return os.path.join(args.root, LOCK_NAME)


def _load(args):
    """Read the descriptor (or, with --locked, the lock) and the settings."""
    path = _descriptor_path(args)
    descriptor = None
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            descriptor = load_descriptor(f.read())
    elif not getattr(args, "locked", False):
        print(f"No {os.path.basename(path)} found at {path}.", file=sys.stderr)
        sys.exit(1)

    if getattr(args, "locked", False):
        locator, inputs = lock_specifiers(read_lock(_lock_path(args)))
        descriptor = Descriptor(locator, inputs, descriptor.settings if descriptor else {})

    settings = load_settings(
        cache_dir=args.cache_dir,
        timeout=args.timeout,
        retries=args.retries,
        table=descriptor.settings,
    )
    return descriptor, settings


def _build(args):
    descriptor, settings = _load(args)
    fetcher = make_fetcher(settings)
    return build_environment(descriptor, fetcher, IndexCache())


def cmd_fetch(args):
    """Fetch and cache the pinned snapshot."""
    descriptor, settings = _load(args)
    fetcher = make_fetcher(settings)
    data = fetcher.fetch(descriptor.locator)
    print(f"[ok] {descriptor.locator} ({len(data)} bytes) → "
          f"{fetcher.cache.path_for(descriptor.locator.revision)}")


def cmd_resolve(args):
    """Resolve inputs and print the composed environment."""
    build = _build(args)
    if args.json:
        print(json.dumps({
            "snapshot": {"url": build.locator.url, "revision": build.locator.revision},
            "inputs": [
                {"requested": str(r.specifier), **r.descriptor.to_dict()} for r in build.resolved
            ],
            "environment": build.environment.to_dict(),
        }, indent=2, sort_keys=True))
        return
    for r in build.resolved:
        print(f"  {str(r.specifier):40} {r.descriptor.attr_path} {r.descriptor.version}")
    print(f"Resolved {len(build.resolved)} input(s) against {build.locator}")


def cmd_env(args):
    """Print the environment as shell ``export`` lines."""
    build = _build(args)
    if args.json:
        print(build.environment.to_json())
    else:
        sys.stdout.write(build.environment.to_shell())


def cmd_lock(args):
    """Write envpin.lock from the current resolution."""
    build = _build(args)
    out = args.out or _lock_path(args)
    if args.json:
        write_lock_json(out, build.locator, build.resolved)
    else:
        write_lock_toml(out, build.locator, build.resolved)
    print(f"[ok] wrote {out} ({len(build.resolved)} packages)")


def cmd_doctor(args):
    """Diagnose the project and cache."""
    issues = []
    path = _descriptor_path(args)
    descriptor = None

    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                descriptor = load_descriptor(f.read())
            print(f"✅  {os.path.basename(path)} parses ({len(descriptor.inputs)} inputs)")
        except EnvpinError as exc:
            print(f"❌  {exc}")
            issues.append("bad descriptor")
    else:
        print(f"❌  {os.path.basename(path)} not found")
        issues.append(f"missing {os.path.basename(path)}")

    if os.path.exists(_lock_path(args)):
        print(f"✅  {LOCK_NAME} found")
    else:
        print(f"⚠️  {LOCK_NAME} not found (run `envpin lock`)")

    settings = load_settings(
        cache_dir=args.cache_dir,
        timeout=args.timeout,
        retries=args.retries,
        table=descriptor.settings if descriptor else None,
    )
    cache = SnapshotCache(settings.cache_dir)
    try:
        os.makedirs(settings.cache_dir, exist_ok=True)
        writable = os.access(settings.cache_dir, os.W_OK)
    except OSError:
        writable = False
    if writable:
        print(f"✅  cache {settings.cache_dir} writable ({len(cache.revisions())} snapshots)")
    else:
        print(f"❌  cache {settings.cache_dir} not writable")
        issues.append("cache not writable")

    if descriptor is not None:
        if descriptor.locator.revision in cache:
            print(f"✅  snapshot {descriptor.locator.revision} cached")
        else:
            print(f"⚠️  snapshot {descriptor.locator.revision} not cached (run `envpin fetch`)")

    if args.explain:
        if issues:
            print(f"\n📋  Issues: {', '.join(issues)}")
        else:
            print("\n📋  No issues found.")

    if args.fail_on_red and issues:
        sys.exit(1)

    print(f"\n🏁  Doctor complete ({len(issues)} issue{'s' if len(issues) != 1 else ''} found)")


def build_parser():
    ap = argparse.ArgumentParser(prog="envpin", description="envpin — reproducible environment resolver")
    ap.add_argument("--version", action="version", version=f"envpin {__version__}")
    ap.add_argument("--root", default=".", help="Project root directory")
    ap.add_argument("--descriptor", default=None, help=f"Descriptor file (default: <root>/{DESCRIPTOR_NAME})")
    ap.add_argument("--cache-dir", default=None, help="Snapshot cache directory")
    ap.add_argument("--timeout", type=float, default=None, help="Fetch timeout in seconds")
    ap.add_argument("--retries", type=int, default=None, help="Fetch retries")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")

    sub = ap.add_subparsers(dest="cmd")

    sub.add_parser("fetch").set_defaults(func=cmd_fetch)

    p = sub.add_parser("resolve")
    p.add_argument("--json", action="store_true")
    p.add_argument("--locked", action="store_true", help=f"Resolve exactly what {LOCK_NAME} records")
    p.set_defaults(func=cmd_resolve)

    p = sub.add_parser("env")
    p.add_argument("--json", action="store_true")
    p.add_argument("--locked", action="store_true", help=f"Resolve exactly what {LOCK_NAME} records")
    p.set_defaults(func=cmd_env)

    p = sub.add_parser("lock")
    p.add_argument("--out", default=None)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_lock)

    p = sub.add_parser("doctor")
    p.add_argument("--explain", action="store_true")
    p.add_argument("--fail-on-red", action="store_true")
    p.set_defaults(func=cmd_doctor)

    return ap


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except EnvpinError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EX_TEMPFAIL if exc.retryable else 1)
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
