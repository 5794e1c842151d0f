#!/usr/bin/env python3
"""
Adversarial Review Data Models

Data classes for the review loop: error kinds, the orchestrator lock, agents,
status records, agent results and run status values.
"""
from __future__ import annotations

import dataclasses
import fcntl
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, IO, List, Optional, Union

logger = logging.getLogger("adversarial_review")

DEFAULT_TIMEOUT_MINUTES = 10

# A status block value is typed by content: digits, true/false, or free text
StatusValue = Union[int, bool, str]


# =============================================================================
# Error kinds
# =============================================================================

class ReviewError(Exception):
    """Base class for review loop errors."""


class AgentError(ReviewError):
    """An agent invocation did not produce usable output."""


class AgentTimeout(AgentError):
    """Agent invocation exceeded its deadline."""


class AgentFailure(AgentError):
    """Agent exited non-zero (or could not be started) without timing out."""


class MissingArtifact(ReviewError):
    """An artifact expected from an earlier phase does not exist."""

    def __init__(self, path: Path):
        super().__init__(f"Missing artifact: {path}")
        self.path = path


class MalformedStatusBlock(ReviewError):
    """Status block absent (without the no-issues sentinel) or unparsable."""


class PersistenceCorruption(ReviewError):
    """A persisted state file is not valid structured data."""


# =============================================================================
# Enumerations
# =============================================================================

class InvocationOutcome(Enum):
    """Classification of a single agent invocation."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FAILURE = "failure"


class RunStatus(Enum):
    """Overall run status recorded in tracking.json."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    CLEAN = "clean"
    CIRCUIT_OPEN = "circuit_open"
    MAX_ITERATIONS = "max_iterations"


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"        # Normal operation
    HALF_OPEN = "HALF_OPEN"  # Monitoring
    OPEN = "OPEN"            # Halted until manual reset


# =============================================================================
# Orchestrator lock
# =============================================================================

class OrchestratorLock:
    """File-based lock to prevent concurrent runs against one state directory."""

    def __init__(self, state_dir: Path):
        self.lock_path = state_dir / "orchestrator.lock"
        self.lock_file: Optional[IO[str]] = None

    def acquire(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_file = open(self.lock_path, "w")
        try:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            self.lock_file.write(f"{os.getpid()}\n")
            self.lock_file.flush()
            return True
        except (IOError, OSError):
            self.lock_file.close()
            self.lock_file = None
            return False

    def release(self) -> None:
        if self.lock_file:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
            self.lock_file.close()
            self.lock_file = None
            if self.lock_path.exists():
                self.lock_path.unlink()


# =============================================================================
# Agents and results
# =============================================================================

@dataclasses.dataclass
class Agent:
    """Configuration for an agent CLI."""
    name: str
    cmd: List[str]
    elevated_args: List[str] = dataclasses.field(default_factory=list)
    suppress_stderr: bool = False  # Don't stream stderr to live log

    @classmethod
    def from_dict(cls, name: str, d: Dict[str, Any]) -> "Agent":
        if d is None:
            d = {}
        if not isinstance(d, dict):
            raise ValueError(f"Agent '{name}' must be a mapping, got: {type(d).__name__}")
        cmd = d.get("cmd")
        if not cmd or not isinstance(cmd, list):
            raise ValueError(f"Agent '{name}' must define 'cmd' as a non-empty list")
        elevated_args = d.get("elevated_args") or []
        if not isinstance(elevated_args, list):
            raise ValueError(f"Agent '{name}' 'elevated_args' must be a list")
        return cls(
            name=name,
            cmd=[str(part) for part in cmd],
            elevated_args=[str(part) for part in elevated_args],
            suppress_stderr=bool(d.get("suppress_stderr", False)),
        )


@dataclasses.dataclass(frozen=True)
class StatusRecord:
    """Fields parsed from one status block.

    A record with ``error`` set means no usable block was found; it is never
    treated as an exit signal.
    """
    fields: Dict[str, StatusValue] = dataclasses.field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def missing(cls, reason: str = "no status block") -> "StatusRecord":
        return cls(fields={}, error=reason)

    @classmethod
    def no_issues(cls) -> "StatusRecord":
        return cls(fields={"exit_signal": True, "issues_found": 0})

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_signal(self) -> bool:
        return self.get_bool("exit_signal")

    def get(self, key: str, default: Optional[StatusValue] = None) -> Optional[StatusValue]:
        return self.fields.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.fields.get(key)
        if isinstance(value, bool):
            return value
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.fields.get(key)
        if isinstance(value, bool) or value is None:
            return default
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            return default

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return dict(self.fields)


@dataclasses.dataclass
class AgentResult:
    """Raw outcome of one agent invocation."""
    agent: str
    outcome: InvocationOutcome
    output: str = ""
    exit_code: Optional[int] = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome is InvocationOutcome.SUCCESS


@dataclasses.dataclass
class PhaseResult:
    """Per agent, per phase, per iteration result."""
    iteration: int
    phase: str
    agent: str
    artifact_path: Path
    invocation: AgentResult
    status: StatusRecord

    @property
    def output(self) -> str:
        return self.invocation.output if self.invocation.succeeded else ""

    def summary(self) -> Dict[str, Any]:
        """Condensed form stored in tracking history."""
        result = self.status.to_dict()
        result["invocation"] = self.invocation.outcome.value
        if self.invocation.exit_code is not None:
            result["exit_code"] = self.invocation.exit_code
        if self.invocation.detail:
            result["detail"] = self.invocation.detail[:500]
        result["artifact"] = self.artifact_path.name
        return result
