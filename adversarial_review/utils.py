#!/usr/bin/env python3
"""
Adversarial Review Utilities

Common helpers for file I/O, atomic persistence, hashing and the live log.
"""
from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, Dict, IO, Optional

from adversarial_review.models import PersistenceCorruption

logger = logging.getLogger("adversarial_review")

# Global live log file handle (set by the CLI for the duration of a run)
_live_log: Optional[IO[str]] = None


def set_live_log(log_file: Optional[IO[str]]) -> None:
    """Set the global live log file handle."""
    global _live_log
    _live_log = log_file


def write_live(msg: str, prefix: str = "") -> None:
    """Write to live log file for real-time monitoring via tail -f."""
    if _live_log:
        ts = dt.datetime.now().strftime("%H:%M:%S")
        line = f"[{ts}] {prefix}{msg}\n" if prefix else f"[{ts}] {msg}\n"
        _live_log.write(line)
        _live_log.flush()


def utc_now_iso() -> str:
    """Return current UTC time in ISO format."""
    return dt.datetime.now(dt.timezone.utc).isoformat()


def read_text(path: Path) -> str:
    """Read text from file, return empty string if file doesn't exist."""
    return path.read_text(encoding="utf-8", errors="replace") if path.exists() else ""


def ensure_secure_dir(path: Path) -> None:
    """Create directory with 0700 permissions (owner only)."""
    path.mkdir(parents=True, exist_ok=True)
    path.chmod(stat.S_IRWXU)


def write_text_atomic(path: Path, text: str) -> None:
    """Atomic write: write to temp file, fsync, then replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def load_json(path: Path, default: Any) -> Any:
    """Load JSON from file. Returns default if file missing or invalid."""
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON in {path}: {e}")
        return default


def load_json_object(path: Path) -> Optional[Dict[str, Any]]:
    """Load a JSON object from a state file.

    Returns None if the file does not exist.

    Raises:
        PersistenceCorruption: If the file exists but is not a JSON object
    """
    if not path.exists():
        return None
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PersistenceCorruption(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(obj, dict):
        raise PersistenceCorruption(
            f"Expected a JSON object in {path}, got {type(obj).__name__}"
        )
    return obj


def save_json_atomic(path: Path, obj: Any) -> None:
    """Save object as JSON with atomic write."""
    write_text_atomic(path, json.dumps(obj, indent=2, ensure_ascii=False))


def normalize_for_hash(s: str) -> str:
    """Normalize string for comparison/hashing."""
    return " ".join(s.strip().lower().split())


def sha256(s: str) -> str:
    """Return truncated SHA256 hash of string."""
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:16]
