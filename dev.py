#!/usr/bin/env -S uv run python
"""Development task runner for feedworker.

Usage:
    ./dev.py <command> [args...]

Worker:
    start                   Launch the ingestion worker in the background
    stop                    Send SIGTERM to the background worker
    status                  Report whether the worker is alive
    restart                 stop, then start
    logs [-f] [-n N]        Show the worker log (follow, or last N lines)
    run                     Run the worker attached to this terminal

Quality:
    fmt [--check]           ruff format
    lint [--fix]            ruff check
    typecheck               mypy over src/
    test [pytest args]      pytest
    check                   fmt --check, lint and typecheck together

Catalog:
    db-migrate              Create missing tables and indexes
    db-reset                Delete the dev catalog and start empty

Sources:
    ingest-once <kind>      One tick for rss, youtube or internal
    load-feeds <url>...     Register RSS feeds (or --file feeds.txt)
    add-channel <id> [name] Register a YouTube channel
    add-internal [name]     Register the internal posts source
    force-due <source_id>   Make a source due on the next tick

    clean                   Stop the worker and delete .dev/
    help                    This message
"""

from __future__ import annotations

import contextlib
import os
import shutil
import signal
import subprocess
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent

# Everything the dev loop writes lives here, including the catalog
DEV_DIR = PROJECT_ROOT / ".dev"
PID_FILE = DEV_DIR / "worker.pid"
LOG_FILE = DEV_DIR / "worker.log"

# Short ticks so changes show up quickly; exported values take precedence
DEFAULT_ENV = {
    "FEEDWORKER_DB_PATH": str(DEV_DIR / "feedworker.db"),
    "FEEDWORKER_LOG_LEVEL": "DEBUG",
    "FEEDWORKER_RSS_TICK_SECONDS": "30",
    "FEEDWORKER_YOUTUBE_TICK_SECONDS": "60",
    "FEEDWORKER_INTERNAL_TICK_SECONDS": "30",
}

STARTUP_GRACE_SECONDS = 3.0
STOP_TIMEOUT_SECONDS = 10.0


def worker_env() -> dict[str, str]:
    DEV_DIR.mkdir(exist_ok=True)
    return {**DEFAULT_ENV, **os.environ}


def module_cmd(module: str, *args: str) -> list[str]:
    return ["uv", "run", "python", "-m", module, *args]


def sh(cmd: list[str], env: dict[str, str] | None = None) -> int:
    """Echo and run a command from the project root; return its exit code."""
    print(f"\n→ {' '.join(cmd)}")
    return subprocess.run(cmd, cwd=PROJECT_ROOT, env=env, check=False).returncode


def alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Someone else's process, but it exists
        return True
    return True


def running_pid() -> int | None:
    """PID of a live background worker, dropping a PID file left by a crash."""
    try:
        pid = int(PID_FILE.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None
    if alive(pid):
        return pid
    print(f"(removing stale PID file for {pid})")
    PID_FILE.unlink(missing_ok=True)
    return None


def signal_group(pid: int, sig: signal.Signals) -> None:
    """Signal the worker's whole session, or just the process if that fails."""
    try:
        os.killpg(os.getpgid(pid), sig)
    except (ProcessLookupError, PermissionError):
        with contextlib.suppress(ProcessLookupError):
            os.kill(pid, sig)


def wait_for_exit(pid: int, timeout: float) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not alive(pid):
            return True
        time.sleep(0.1)
    return not alive(pid)


# Worker


def cmd_start() -> int:
    pid = running_pid()
    if pid is not None:
        print(f"Worker already running (PID {pid})")
        return 0

    env = worker_env()
    with LOG_FILE.open("w") as log:
        process = subprocess.Popen(
            module_cmd("feedworker.worker", "run"),
            cwd=PROJECT_ROOT,
            env=env,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    PID_FILE.write_text(str(process.pid))
    PID_FILE.chmod(0o600)

    # The worker has no health endpoint; surviving startup means it migrated
    # the catalog and launched its loops.
    time.sleep(STARTUP_GRACE_SECONDS)
    if process.poll() is not None:
        PID_FILE.unlink(missing_ok=True)
        print(f"✗ Worker exited during startup (code {process.returncode})")
        cmd_logs(lines=20)
        return 1

    print(f"✓ Worker running (PID {process.pid}), logging to {LOG_FILE}")
    return 0


def cmd_stop() -> int:
    pid = running_pid()
    if pid is None:
        print("Worker is not running")
        return 0

    print(f"Stopping worker (PID {pid})...")
    signal_group(pid, signal.SIGTERM)
    if not wait_for_exit(pid, STOP_TIMEOUT_SECONDS):
        print("Worker ignored SIGTERM; sending SIGKILL")
        signal_group(pid, signal.SIGKILL)
        if not wait_for_exit(pid, 1.0):
            print("✗ Could not stop worker")
            return 1

    PID_FILE.unlink(missing_ok=True)
    print("✓ Worker stopped")
    return 0


def cmd_status() -> int:
    pid = running_pid()
    env = worker_env()
    if pid is None:
        print("Worker: stopped")
    else:
        print(f"Worker: running (PID {pid})")
    print(f"Catalog: {env['FEEDWORKER_DB_PATH']}")
    print(f"Log: {LOG_FILE}")
    return 0


def cmd_logs(follow: bool = False, lines: int = 50) -> int:
    if not LOG_FILE.exists():
        print("No worker log yet; run ./dev.py start first.")
        return 1
    cmd = ["tail", "-f", str(LOG_FILE)] if follow else ["tail", "-n", str(lines), str(LOG_FILE)]
    with contextlib.suppress(KeyboardInterrupt):
        return subprocess.run(cmd, check=False).returncode
    return 0


def cmd_run() -> int:
    with contextlib.suppress(KeyboardInterrupt):
        return sh(module_cmd("feedworker.worker", "run"), env=worker_env())
    return 0


# Quality


def cmd_fmt(check: bool = False) -> int:
    return sh(["uv", "run", "ruff", "format", *(["--check"] if check else []), "."])


def cmd_lint(fix: bool = False) -> int:
    return sh(["uv", "run", "ruff", "check", *(["--fix"] if fix else []), "."])


def cmd_typecheck() -> int:
    return sh(["uv", "run", "mypy", "src"])


def cmd_test(args: list[str]) -> int:
    return sh(["uv", "run", "pytest", *args])


def cmd_check() -> int:
    results = {
        "format": cmd_fmt(check=True),
        "lint": cmd_lint(),
        "types": cmd_typecheck(),
    }
    failed = [name for name, rc in results.items() if rc != 0]
    if failed:
        print(f"\n✗ Failed: {', '.join(failed)}")
        return 1
    print("\n✓ format, lint and types all clean")
    return 0


# Catalog


def cmd_db_migrate() -> int:
    return sh(module_cmd("feedworker.db.migrate"), env=worker_env())


def cmd_db_reset() -> int:
    answer = input(f"Delete {worker_env()['FEEDWORKER_DB_PATH']} and all its data? [y/N] ")
    if answer.strip().lower() != "y":
        print("Left the catalog alone.")
        return 1
    return sh(module_cmd("feedworker.db.reset"), env=worker_env())


# Sources


def cmd_sources(*args: str) -> int:
    return sh(module_cmd("feedworker.sources", *args), env=worker_env())


def cmd_load_feeds(args: list[str]) -> int:
    """Register RSS feeds.

    ./dev.py load-feeds --file feeds.txt
    ./dev.py load-feeds https://example.com/rss https://example.org/feed
    """
    match args:
        case ["--file" | "-f", path]:
            return cmd_sources("feeds", "--file", path)
        case [_, *_] if not any(a.startswith("-") for a in args):
            return cmd_sources("feeds", *args)
        case _:
            print("Usage: ./dev.py load-feeds (--file FILE | URL ...)")
            return 1


def cmd_clean() -> int:
    if running_pid() is not None:
        cmd_stop()
    if not DEV_DIR.exists():
        print("Nothing to clean")
        return 0
    shutil.rmtree(DEV_DIR)
    print(f"✓ Removed {DEV_DIR}")
    return 0


def cmd_help() -> int:
    print(__doc__)
    return 0


def main(argv: list[str]) -> int:
    match argv:
        case [] | ["help" | "--help" | "-h"]:
            return cmd_help()
        case ["start"]:
            return cmd_start()
        case ["stop"]:
            return cmd_stop()
        case ["status"]:
            return cmd_status()
        case ["restart"]:
            cmd_stop()
            return cmd_start()
        case ["logs", *opts]:
            lines = int(opts[opts.index("-n") + 1]) if "-n" in opts[:-1] else 50
            return cmd_logs(follow="-f" in opts, lines=lines)
        case ["run"]:
            return cmd_run()
        case ["fmt", *opts]:
            return cmd_fmt(check="--check" in opts)
        case ["lint", *opts]:
            return cmd_lint(fix="--fix" in opts)
        case ["typecheck"]:
            return cmd_typecheck()
        case ["test", *rest]:
            return cmd_test(rest)
        case ["check"]:
            return cmd_check()
        case ["db-migrate"]:
            return cmd_db_migrate()
        case ["db-reset"]:
            return cmd_db_reset()
        case ["ingest-once", kind]:
            return sh(module_cmd("feedworker.worker", "once", kind), env=worker_env())
        case ["load-feeds", *rest]:
            return cmd_load_feeds(rest)
        case ["add-channel", channel_id, *name]:
            return cmd_sources("channel", channel_id, *name)
        case ["add-internal", *name]:
            return cmd_sources("internal", *name)
        case ["force-due", source_id]:
            return cmd_sources("force-due", source_id)
        case ["clean"]:
            return cmd_clean()
        case _:
            print(f"Unrecognized: {' '.join(argv)}")
            return cmd_help()


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
