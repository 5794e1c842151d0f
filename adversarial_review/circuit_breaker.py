#!/usr/bin/env python3
"""
Adversarial Review Circuit Breaker

Halts the review loop when iterations stop being productive. Three states:

    CLOSED     normal operation
    HALF_OPEN  monitoring after two stagnant or contested iterations
    OPEN       halted; only an explicit reset closes it again

The state is loaded once by the orchestrator process, advanced once per
completed iteration and written back atomically after every mutation.
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from adversarial_review.config import CircuitBreakerConfig
from adversarial_review.models import CircuitState, PersistenceCorruption
from adversarial_review.utils import (
    load_json, load_json_object, save_json_atomic, utc_now_iso, write_live,
)

logger = logging.getLogger("adversarial_review")

STATE_FILENAME = "circuit_breaker.json"
HISTORY_FILENAME = "circuit_breaker_history.json"

# Counter level that moves a CLOSED circuit into monitoring
HALF_OPEN_THRESHOLD = 2

OPEN_REASON = "Circuit open - manual reset required"


@dataclasses.dataclass
class CircuitBreakerState:
    """Persisted circuit breaker record."""
    state: CircuitState = CircuitState.CLOSED
    consecutive_no_progress: int = 0
    consecutive_disagreement: int = 0
    consecutive_same_issues: int = 0
    last_progress_iteration: int = 0
    total_opens: int = 0
    last_issues_hash: str = ""
    reason: str = ""
    current_iteration: int = 0
    last_change: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        d["state"] = self.state.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CircuitBreakerState":
        try:
            state = CircuitState(d.get("state", CircuitState.CLOSED.value))
        except ValueError as e:
            raise PersistenceCorruption(f"Unknown circuit state: {d.get('state')!r}") from e

        def as_count(key: str) -> int:
            value = d.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise PersistenceCorruption(f"Invalid circuit counter {key}: {value!r}")
            return value

        return cls(
            state=state,
            consecutive_no_progress=as_count("consecutive_no_progress"),
            consecutive_disagreement=as_count("consecutive_disagreement"),
            consecutive_same_issues=as_count("consecutive_same_issues"),
            last_progress_iteration=as_count("last_progress_iteration"),
            total_opens=as_count("total_opens"),
            last_issues_hash=str(d.get("last_issues_hash") or ""),
            reason=str(d.get("reason") or ""),
            current_iteration=as_count("current_iteration"),
            last_change=str(d.get("last_change") or ""),
        )


@dataclasses.dataclass(frozen=True)
class CircuitTransition:
    """Audit record for an actual state change."""
    timestamp: str
    iteration: int
    from_state: CircuitState
    to_state: CircuitState
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "iteration": self.iteration,
            "from": self.from_state.value,
            "to": self.to_state.value,
            "reason": self.reason,
        }


def step(
    current: CircuitBreakerState,
    thresholds: CircuitBreakerConfig,
    iteration: int,
    fixes_made: int,
    agents_agree: bool,
    issues_hash: str = "",
) -> Tuple[CircuitBreakerState, Optional[CircuitTransition]]:
    """Advance the breaker by one iteration result.

    Pure function: returns the new state and the transition record, if the
    state changed.
    """
    no_progress = current.consecutive_no_progress
    disagreement = current.consecutive_disagreement
    last_progress = current.last_progress_iteration

    if fixes_made > 0:
        no_progress = 0
        last_progress = iteration
    else:
        no_progress += 1

    disagreement = 0 if agents_agree else disagreement + 1

    if issues_hash and issues_hash == current.last_issues_hash:
        same_issues = current.consecutive_same_issues + 1
    else:
        same_issues = 0

    new_state = current.state
    reason = ""

    if current.state is CircuitState.CLOSED:
        if no_progress >= thresholds.no_progress_threshold:
            new_state = CircuitState.OPEN
            reason = f"No progress in {no_progress} iterations - agents may be stuck"
        elif disagreement >= thresholds.disagreement_threshold:
            new_state = CircuitState.OPEN
            reason = f"Persistent disagreement for {disagreement} iterations"
        elif same_issues >= thresholds.same_issues_threshold:
            new_state = CircuitState.OPEN
            reason = f"Same issues found {same_issues} times - unfixable or false positives"
        elif no_progress >= HALF_OPEN_THRESHOLD or disagreement >= HALF_OPEN_THRESHOLD:
            new_state = CircuitState.HALF_OPEN
            reason = "Monitoring: possible stagnation"

    elif current.state is CircuitState.HALF_OPEN:
        if fixes_made > 0 and agents_agree:
            new_state = CircuitState.CLOSED
            reason = "Progress detected, recovered"
        elif no_progress >= thresholds.no_progress_threshold:
            new_state = CircuitState.OPEN
            reason = "No recovery after monitoring"

    else:
        reason = OPEN_REASON

    total_opens = current.total_opens
    if new_state is CircuitState.OPEN and current.state is not CircuitState.OPEN:
        total_opens += 1

    now = utc_now_iso()
    updated = CircuitBreakerState(
        state=new_state,
        consecutive_no_progress=no_progress,
        consecutive_disagreement=disagreement,
        consecutive_same_issues=same_issues,
        last_progress_iteration=last_progress,
        total_opens=total_opens,
        last_issues_hash=issues_hash,
        reason=reason,
        current_iteration=iteration,
        last_change=now,
    )

    transition = None
    if new_state is not current.state:
        transition = CircuitTransition(
            timestamp=now,
            iteration=iteration,
            from_state=current.state,
            to_state=new_state,
            reason=reason,
        )
    return updated, transition


class CircuitBreaker:
    """Persisted circuit breaker owned by the orchestrator process."""

    def __init__(self, state_dir: Path, config: Optional[CircuitBreakerConfig] = None):
        self.state_path = state_dir / STATE_FILENAME
        self.history_path = state_dir / HISTORY_FILENAME
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitBreakerState()

    def load(self) -> CircuitBreakerState:
        """Load state from disk, reinitializing if missing or corrupt."""
        try:
            data = load_json_object(self.state_path)
            self.state = CircuitBreakerState.from_dict(data) if data is not None else CircuitBreakerState()
        except PersistenceCorruption as e:
            logger.warning(f"{e} - reinitializing circuit breaker")
            self.state = CircuitBreakerState(last_change=utc_now_iso())
            self.save()
        return self.state

    def save(self) -> None:
        save_json_atomic(self.state_path, self.state.to_dict())

    def can_execute(self) -> bool:
        return self.state.state is not CircuitState.OPEN

    def record_iteration_result(
        self,
        iteration: int,
        fixes_made: int,
        agents_agree: bool,
        issues_hash: str = "",
    ) -> bool:
        """Feed one completed iteration into the breaker.

        Returns True if another iteration may run.
        """
        self.state, transition = step(
            self.state, self.config, iteration, fixes_made, agents_agree, issues_hash
        )
        self.save()
        logger.debug(
            f"Circuit breaker: state={self.state.state.value} "
            f"no_progress={self.state.consecutive_no_progress} "
            f"disagreement={self.state.consecutive_disagreement} "
            f"same_issues={self.state.consecutive_same_issues}"
        )
        if transition:
            self._log_transition(transition)
        return self.can_execute()

    def reset(self, reason: str = "Manual reset", clear_history: bool = False) -> None:
        """Return to CLOSED with all counters zeroed.

        With clear_history the transition log is emptied as well; otherwise
        the reset itself is appended to it.
        """
        previous = self.state.state
        self.state = CircuitBreakerState(reason=reason, last_change=utc_now_iso())
        self.save()
        if clear_history:
            save_json_atomic(self.history_path, [])
        elif previous is not CircuitState.CLOSED:
            self._append_history(CircuitTransition(
                timestamp=self.state.last_change,
                iteration=0,
                from_state=previous,
                to_state=CircuitState.CLOSED,
                reason=reason,
            ))
        logger.info(f"Circuit breaker reset to CLOSED ({reason})")

    def history(self) -> List[Dict[str, Any]]:
        history = load_json(self.history_path, [])
        return history if isinstance(history, list) else []

    def status_lines(self) -> List[str]:
        s = self.state
        cfg = self.config
        return [
            "=== Circuit Breaker Status ===",
            f"State:              {s.state.value}",
            f"Reason:             {s.reason}",
            f"No progress:        {s.consecutive_no_progress} / {cfg.no_progress_threshold}",
            f"Disagreement:       {s.consecutive_disagreement} / {cfg.disagreement_threshold}",
            f"Same issues:        {s.consecutive_same_issues} / {cfg.same_issues_threshold}",
            f"Current iteration:  {s.current_iteration}",
            f"Total opens:        {s.total_opens}",
        ]

    def _append_history(self, transition: CircuitTransition) -> None:
        history = self.history()
        history.append(transition.to_dict())
        save_json_atomic(self.history_path, history)

    def _log_transition(self, transition: CircuitTransition) -> None:
        self._append_history(transition)
        msg = (
            f"[CIRCUIT BREAKER] {transition.from_state.value} -> {transition.to_state.value}: "
            f"{transition.reason}"
        )
        if transition.to_state is CircuitState.OPEN:
            logger.error(msg)
        elif transition.to_state is CircuitState.HALF_OPEN:
            logger.warning(msg)
        else:
            logger.info(msg)
        write_live(msg)
