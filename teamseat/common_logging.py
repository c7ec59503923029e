"""
Common logging helpers for CLI output with simple ANSI colors.

Functions:
- info(msg): Cyan info tag
- ok(msg):   Green check tag
- warn(msg): Yellow warning tag
- err(msg):  Red error tag
- log_event(evt): structured JSONL event (file and/or console)

Keep output stable and flush immediately so piped consumers see progress.
"""

import json
import os
import time

LOG_FILE = os.environ.get("TEAMSEAT_LOG_FILE", "").strip()
DEBUG = os.environ.get("TEAMSEAT_DEBUG", "0").lower() in {"1", "true", "yes", "on"}


def _print(tag: str, color: str, msg: str) -> None:
    try:
        print(f"\x1b[{color}{tag}\x1b[0m {msg}", flush=True)
    except Exception:
        # Fallback without ANSI if console does not support it
        print(f"{tag.strip('[]')} {msg}", flush=True)


def info(msg: str) -> None:
    _print("[i]", "36m", msg)  # cyan


def ok(msg: str) -> None:
    _print("[✓]", "32m", msg)  # green check


def warn(msg: str) -> None:
    _print("[!]", "33m", msg)  # yellow


def err(msg: str) -> None:
    _print("[x]", "31m", msg)  # red


def set_log_file(path: str) -> None:
    global LOG_FILE
    LOG_FILE = (path or "").strip()


def log_event(evt: dict) -> None:
    """Append a structured event to the JSONL log (if configured) and echo when DEBUG is on."""
    try:
        evt = dict(evt)
        evt.setdefault("ts", time.time())
        if LOG_FILE:
            try:
                with open(LOG_FILE, "a", encoding="utf-8") as f:
                    f.write(json.dumps(evt, ensure_ascii=False, default=str) + "\n")
            except OSError:
                pass
        if DEBUG:
            print("[event] " + json.dumps(evt, ensure_ascii=False, default=str), flush=True)
    except Exception:
        pass
