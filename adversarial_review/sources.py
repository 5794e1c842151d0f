#!/usr/bin/env python3
"""
Adversarial Review Source Collection

Gathers the reviewable source files of a target directory into one text
block, each file under a ``=== FILE: <path> ===`` header.
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import List, Tuple

from adversarial_review.config import SourcesConfig

logger = logging.getLogger("adversarial_review")

MAX_FILE_SIZE = 1_000_000  # 1MB per file


@dataclasses.dataclass(frozen=True)
class SourceGroup:
    """A family of files collected with shared limits."""
    name: str
    patterns: Tuple[str, ...]
    excluded_dirs: Tuple[str, ...]
    max_files: int
    max_lines: int


def _is_excluded(rel: Path, excluded_dirs: Tuple[str, ...]) -> bool:
    for part in rel.parts:
        if part.startswith("."):
            return True
        if part in excluded_dirs:
            return True
    return False


def head_lines(path: Path, max_lines: int) -> str:
    lines: List[str] = []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for idx, line in enumerate(f):
            if idx >= max_lines:
                break
            lines.append(line.rstrip("\n"))
    return "\n".join(lines)


class SourceCollector:
    """Concatenates reviewable source files for the review prompt."""

    def __init__(self, config: SourcesConfig):
        self.groups = [
            SourceGroup(
                name="python",
                patterns=("*.py",),
                excluded_dirs=("__pycache__", "venv"),
                max_files=config.max_files,
                max_lines=config.max_lines,
            ),
            SourceGroup(
                name="javascript",
                patterns=("*.ts", "*.tsx", "*.js", "*.jsx"),
                excluded_dirs=("node_modules",),
                max_files=config.max_files,
                max_lines=config.max_lines,
            ),
            SourceGroup(
                name="shell",
                patterns=("*.sh",),
                excluded_dirs=(),
                max_files=config.max_shell_files,
                max_lines=config.max_shell_lines,
            ),
        ]

    def find_files(self, target_dir: Path, group: SourceGroup) -> List[Path]:
        found = set()
        for pattern in group.patterns:
            for path in target_dir.rglob(pattern):
                if not path.is_file():
                    continue
                if _is_excluded(path.relative_to(target_dir), group.excluded_dirs):
                    continue
                found.add(path)
        return sorted(found)[:group.max_files]

    def collect(self, target_dir: Path) -> str:
        """Return the concatenated source text of target_dir."""
        logger.debug(f"Collecting source code from {target_dir}")
        parts: List[str] = []
        errors: List[str] = []

        for group in self.groups:
            for path in self.find_files(target_dir, group):
                rel = path.relative_to(target_dir)
                try:
                    size = path.stat().st_size
                    if size > MAX_FILE_SIZE:
                        errors.append(f"File too large ({size} bytes, max {MAX_FILE_SIZE}): {rel}")
                        continue
                    text = head_lines(path, group.max_lines)
                except OSError as e:
                    errors.append(f"Error reading {rel}: {e}")
                    continue
                parts.append(f"\n=== FILE: {rel} ===\n{text}\n")

        for err in errors:
            logger.warning(err)
        logger.debug(f"Collected {len(parts)} files from {target_dir}")
        return "".join(parts)
