#!/usr/bin/env python3
"""
Adversarial Review Tracking Store

Persists the iteration number, overall run status and the chronological
history of phase results in tracking.json.
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from adversarial_review.models import PersistenceCorruption, RunStatus
from adversarial_review.utils import load_json_object, save_json_atomic, utc_now_iso

logger = logging.getLogger("adversarial_review")

TRACKING_FILENAME = "tracking.json"


@dataclasses.dataclass
class TrackingState:
    """Persisted run record. History is append-only."""
    iteration: int = 0
    status: RunStatus = RunStatus.PENDING
    target_dir: Optional[str] = None
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    history: List[Dict[str, Any]] = dataclasses.field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "status": self.status.value,
            "target_dir": self.target_dir,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "history": self.history,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TrackingState":
        try:
            status = RunStatus(d.get("status", RunStatus.PENDING.value))
        except ValueError as e:
            raise PersistenceCorruption(f"Unknown run status: {d.get('status')!r}") from e
        iteration = d.get("iteration", 0)
        if isinstance(iteration, bool) or not isinstance(iteration, int):
            raise PersistenceCorruption(f"Invalid iteration: {iteration!r}")
        history = d.get("history", [])
        if not isinstance(history, list):
            raise PersistenceCorruption("Tracking history is not a list")
        return cls(
            iteration=iteration,
            status=status,
            target_dir=d.get("target_dir"),
            started_at=d.get("started_at"),
            updated_at=d.get("updated_at"),
            history=history,
        )


class TrackingStore:
    """Owner of tracking.json. Every mutation is saved atomically."""

    def __init__(self, state_dir: Path):
        self.path = state_dir / TRACKING_FILENAME
        self.state = TrackingState()

    def load(self) -> TrackingState:
        """Load tracking state, reinitializing if missing or corrupt."""
        try:
            data = load_json_object(self.path)
            self.state = TrackingState.from_dict(data) if data is not None else TrackingState()
        except PersistenceCorruption as e:
            logger.warning(f"{e} - reinitializing tracking")
            self.state = TrackingState()
            self.save()
        return self.state

    def save(self) -> None:
        save_json_atomic(self.path, self.state.to_dict())

    def update(self, **fields: Any) -> None:
        """Overwrite scalar fields and stamp updated_at."""
        for key, value in fields.items():
            if key == "history" or not hasattr(self.state, key):
                raise KeyError(f"Not a scalar tracking field: {key}")
            setattr(self.state, key, value)
        self.state.updated_at = utc_now_iso()
        self.save()

    def start_run(self, target_dir: Path) -> None:
        now = utc_now_iso()
        self.update(
            target_dir=str(target_dir),
            status=RunStatus.IN_PROGRESS,
            started_at=now,
            iteration=0,
        )

    def set_status(self, status: RunStatus) -> None:
        self.update(status=status)

    def add_history(self, iteration: int, phase: str, agent: str, result: Any) -> None:
        self.state.history.append({
            "iteration": iteration,
            "phase": phase,
            "agent": agent,
            "result": result,
            "timestamp": utc_now_iso(),
        })
        self.state.updated_at = utc_now_iso()
        self.save()

    def reset(self) -> None:
        self.state = TrackingState()
        self.save()

    def recent_history(self, n: int = 10) -> List[Dict[str, Any]]:
        return self.state.history[-n:]
