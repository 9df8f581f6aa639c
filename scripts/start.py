#!/usr/bin/env python3
"""
Container entry point: run the release phase, then exec gunicorn.

Each gunicorn worker imports `app.wsgi`, which starts that worker's tracking
flush timer. Workers are not preloaded, so the timer thread is created after
the fork, and the graceful timeout leaves room for the final flush on shutdown.

Environment:
    PORT              listen port (default 8080)
    WEB_CONCURRENCY   gunicorn workers (default 2)
    GUNICORN_TIMEOUT  worker timeout in seconds (default 60)

Usage:
    python scripts/start.py [--skip-release] [--dry-run]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def _positive_int(name: str, default: int, *, upper: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"ERROR: {name} must be an integer (got {raw!r}).")
    if value < 1 or (upper is not None and value > upper):
        raise SystemExit(f"ERROR: {name} out of range (got {value}).")
    return value


def gunicorn_argv() -> list[str]:
    port = _positive_int("PORT", DEFAULT_PORT, upper=65535)
    timeout = _positive_int("GUNICORN_TIMEOUT", 60)
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(_positive_int("WEB_CONCURRENCY", 2)),
        "--timeout", str(timeout),
        "--graceful-timeout", str(max(timeout // 2, 10)),
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Release, then serve the commerce platform with gunicorn.")
    parser.add_argument("--skip-release", action="store_true", help="Do not run migrations and seeding first.")
    parser.add_argument("--dry-run", action="store_true", help="Print the gunicorn command instead of running it.")
    args = parser.parse_args(argv)

    cmd = gunicorn_argv()
    if args.dry_run:
        print(" ".join(cmd), flush=True)
        return

    if not args.skip_release:
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    print(f"Starting gunicorn on {cmd[3]} with {cmd[5]} workers; health check at /healthz", flush=True)
    os.execvp(cmd[0], cmd)


if __name__ == "__main__":
    main()
