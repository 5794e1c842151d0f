#!/usr/bin/env python3
"""
Adversarial Review Status Block Parser

Extracts the delimited key/value status block agents append to their output:

    ---REVIEW_STATUS---
    Issues_Found: 3
    Exit_Signal: NO
    Confidence: HIGH
    ---END_REVIEW_STATUS---

A standalone NO_ISSUES line anywhere in the text is recognized even when the
block itself is missing.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List

from adversarial_review.models import MalformedStatusBlock, StatusRecord, StatusValue

logger = logging.getLogger("adversarial_review")

NO_ISSUES_SENTINEL = "NO_ISSUES"

REVIEW_STATUS = "REVIEW_STATUS"
CROSS_REVIEW_STATUS = "CROSS_REVIEW_STATUS"
META_REVIEW_STATUS = "META_REVIEW_STATUS"
SYNTHESIS_STATUS = "SYNTHESIS_STATUS"

TRUE_SYNONYMS = ("YES", "FULL")
FALSE_SYNONYMS = ("NO", "LOW")

_DIGITS = re.compile(r"^[0-9]+$")


def has_no_issues_sentinel(raw: str) -> bool:
    """True if some line consists only of the NO_ISSUES token (case-sensitive)."""
    return any(line.strip() == NO_ISSUES_SENTINEL for line in raw.splitlines())


def normalize_key(key: str) -> str:
    return "".join(key.split()).lower()


def parse_value(value: str) -> StatusValue:
    """Type a raw status value: int, literal bool, synonym bool, else string."""
    value = value.strip()
    if _DIGITS.match(value):
        return int(value)
    if value in ("true", "false"):
        return value == "true"
    if value in TRUE_SYNONYMS:
        return True
    if value in FALSE_SYNONYMS:
        return False
    return value


def extract_block_lines(raw: str, block_name: str) -> List[str]:
    """Return the interior lines of the first ``block_name`` block.

    Raises:
        MalformedStatusBlock: If there is no opening marker
    """
    opening = f"---{block_name}---"
    closing = f"---END_{block_name}---"

    lines = raw.splitlines()
    start = None
    for idx, line in enumerate(lines):
        if opening in line:
            start = idx
            break
    if start is None:
        raise MalformedStatusBlock(f"no status block {block_name}")

    interior: List[str] = []
    for line in lines[start + 1:]:
        if closing in line:
            break
        interior.append(line)
    # An unterminated block runs to the end of the output
    return interior


def parse_block_fields(lines: List[str]) -> Dict[str, StatusValue]:
    fields: Dict[str, StatusValue] = {}
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("---"):
            continue
        if ":" not in stripped:
            logger.debug(f"Skipping status line without separator: {stripped[:80]}")
            continue
        key, value = stripped.split(":", 1)
        key = normalize_key(key)
        if not key:
            continue
        fields[key] = parse_value(value)
    return fields


def parse_status_block_strict(raw: str, block_name: str = REVIEW_STATUS) -> StatusRecord:
    """Parse a status block, raising when no usable block exists.

    Raises:
        MalformedStatusBlock: If the block is absent (and there is no NO_ISSUES
            sentinel) or contains no key/value lines
    """
    try:
        lines = extract_block_lines(raw, block_name)
    except MalformedStatusBlock:
        if has_no_issues_sentinel(raw):
            return StatusRecord.no_issues()
        raise

    fields = parse_block_fields(lines)
    if not fields:
        raise MalformedStatusBlock(f"empty status block {block_name}")
    return StatusRecord(fields=fields)


def parse_status_block(raw: str, block_name: str = REVIEW_STATUS) -> StatusRecord:
    """Parse a status block from agent output.

    Never raises for bad input: a missing or empty block yields an error record
    whose exit_signal is False.
    """
    try:
        return parse_status_block_strict(raw or "", block_name)
    except MalformedStatusBlock as e:
        reason = "no status block" if str(e).startswith("no status block") else "empty status block"
        return StatusRecord.missing(reason)


def parse_status_file(path: Path, block_name: str = REVIEW_STATUS) -> StatusRecord:
    """Parse the status block of an artifact file.

    Raises:
        FileNotFoundError: If the artifact does not exist
    """
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {path}")
    return parse_status_block(path.read_text(encoding="utf-8", errors="replace"), block_name)
