#!/usr/bin/env python3
"""
Adversarial Review Configuration Loading

Load review configuration from an optional YAML file, then apply environment
overrides. Command-line flags are applied on top by the CLI.
"""
from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from adversarial_review.models import DEFAULT_TIMEOUT_MINUTES, Agent

logger = logging.getLogger("adversarial_review")

# Default values
DEFAULT_CONFIG_FILENAME = "review.config.yaml"
DEFAULT_STATE_DIR = ".adversarial_review"
DEFAULT_MAX_ITERATIONS = 3
DEFAULT_REVIEWERS = ["claude", "codex"]
DEFAULT_SYNTHESIZER = "claude"

DEFAULT_AGENTS: Dict[str, Dict[str, Any]] = {
    "claude": {
        "cmd": ["claude", "--print"],
        "elevated_args": ["--dangerously-skip-permissions"],
    },
    "codex": {
        "cmd": ["codex", "-q", "--full-auto", "--prompt", "{prompt}"],
    },
}


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got: {value!r}")
    if number < 1:
        raise ValueError(f"{name} must be >= 1, got: {number}")
    return number


def _section(value: Any, name: str) -> Dict[str, Any]:
    """Return a config section, treating null as empty."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping, got: {type(value).__name__}")
    return value


@dataclasses.dataclass
class CircuitBreakerConfig:
    """Thresholds that open the circuit."""
    no_progress_threshold: int = 3
    disagreement_threshold: int = 5
    same_issues_threshold: int = 3

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CircuitBreakerConfig":
        return cls(
            no_progress_threshold=_positive_int(
                d.get("no_progress_threshold", 3), "no_progress_threshold"),
            disagreement_threshold=_positive_int(
                d.get("disagreement_threshold", 5), "disagreement_threshold"),
            same_issues_threshold=_positive_int(
                d.get("same_issues_threshold", 3), "same_issues_threshold"),
        )


@dataclasses.dataclass
class SourcesConfig:
    """Limits for collecting reviewable source code."""
    max_files: int = 30
    max_lines: int = 500
    max_shell_files: int = 10
    max_shell_lines: int = 300

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SourcesConfig":
        return cls(
            max_files=_positive_int(d.get("max_files", 30), "sources.max_files"),
            max_lines=_positive_int(d.get("max_lines", 500), "sources.max_lines"),
            max_shell_files=_positive_int(d.get("max_shell_files", 10), "sources.max_shell_files"),
            max_shell_lines=_positive_int(d.get("max_shell_lines", 300), "sources.max_shell_lines"),
        )


@dataclasses.dataclass
class ReviewConfig:
    """Complete review configuration."""
    state_dir: Path = Path(DEFAULT_STATE_DIR)
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    reviewers: List[str] = dataclasses.field(default_factory=lambda: DEFAULT_REVIEWERS.copy())
    synthesizer: str = DEFAULT_SYNTHESIZER
    prompts_dir: Optional[Path] = None
    agents: Dict[str, Agent] = dataclasses.field(
        default_factory=lambda: {
            name: Agent.from_dict(name, spec) for name, spec in DEFAULT_AGENTS.items()
        }
    )
    circuit_breaker: CircuitBreakerConfig = dataclasses.field(default_factory=CircuitBreakerConfig)
    sources: SourcesConfig = dataclasses.field(default_factory=SourcesConfig)
    source_path: Optional[Path] = None  # Path to the config file

    @property
    def timeout_seconds(self) -> int:
        return self.timeout_minutes * 60

    @property
    def artifacts_dir(self) -> Path:
        return self.state_dir / "artifacts"

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / "logs"

    @classmethod
    def from_dict(cls, d: Dict[str, Any], source_path: Optional[Path] = None) -> "ReviewConfig":
        agent_specs = dict(DEFAULT_AGENTS)
        agent_specs.update(_section(d.get("agents"), "agents"))
        agents = {name: Agent.from_dict(name, spec) for name, spec in agent_specs.items()}
        reviewers = d.get("reviewers", DEFAULT_REVIEWERS)
        if not isinstance(reviewers, list):
            raise ValueError(f"reviewers must be a list, got: {type(reviewers).__name__}")

        prompts_dir = d.get("prompts_dir")
        config = cls(
            state_dir=Path(str(d.get("state_dir", DEFAULT_STATE_DIR))).expanduser(),
            max_iterations=_positive_int(d.get("max_iterations", DEFAULT_MAX_ITERATIONS), "max_iterations"),
            timeout_minutes=_positive_int(d.get("timeout_minutes", DEFAULT_TIMEOUT_MINUTES), "timeout_minutes"),
            reviewers=[str(name) for name in reviewers],
            synthesizer=str(d.get("synthesizer", DEFAULT_SYNTHESIZER)),
            prompts_dir=Path(str(prompts_dir)).expanduser() if prompts_dir else None,
            agents=agents,
            circuit_breaker=CircuitBreakerConfig.from_dict(_section(d.get("circuit_breaker"), "circuit_breaker")),
            sources=SourcesConfig.from_dict(_section(d.get("sources"), "sources")),
            source_path=source_path,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check agent references.

        Raises:
            ValueError: If the reviewer pair or synthesizer is not usable
        """
        if len(self.reviewers) != 2 or self.reviewers[0] == self.reviewers[1]:
            raise ValueError(f"Exactly two distinct reviewers are required, got: {self.reviewers}")
        for name in [*self.reviewers, self.synthesizer]:
            if name not in self.agents:
                raise ValueError(f"Unknown agent '{name}' (defined: {sorted(self.agents)})")

    def apply_env(self, env: Mapping[str, str]) -> None:
        """Apply the environment overrides understood by the review loop."""
        if env.get("AR_DIR"):
            self.state_dir = Path(env["AR_DIR"]).expanduser()
        if env.get("MAX_ITERATIONS"):
            self.max_iterations = _positive_int(env["MAX_ITERATIONS"], "MAX_ITERATIONS")
        if env.get("TIMEOUT_MINUTES"):
            self.timeout_minutes = _positive_int(env["TIMEOUT_MINUTES"], "TIMEOUT_MINUTES")
        cb = self.circuit_breaker
        if env.get("CB_NO_PROGRESS_THRESHOLD"):
            cb.no_progress_threshold = _positive_int(
                env["CB_NO_PROGRESS_THRESHOLD"], "CB_NO_PROGRESS_THRESHOLD")
        if env.get("CB_DISAGREEMENT_THRESHOLD"):
            cb.disagreement_threshold = _positive_int(
                env["CB_DISAGREEMENT_THRESHOLD"], "CB_DISAGREEMENT_THRESHOLD")
        if env.get("CB_SAME_ISSUES_THRESHOLD"):
            cb.same_issues_threshold = _positive_int(
                env["CB_SAME_ISSUES_THRESHOLD"], "CB_SAME_ISSUES_THRESHOLD")


def load_review_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ReviewConfig:
    """Load review configuration from YAML and the environment.

    Args:
        config_path: Explicit config file. When None, review.config.yaml in
            the current directory is used if present.
        env: Environment mapping (defaults to os.environ)

    Returns:
        ReviewConfig instance

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        yaml.YAMLError: If the config file has invalid YAML
        ValueError: If the config file has invalid structure or values
    """
    env = os.environ if env is None else env

    raw: Dict[str, Any] = {}
    source_path: Optional[Path] = None
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Review config not found: {config_path}")
    candidate = config_path or Path(DEFAULT_CONFIG_FILENAME)
    if candidate.exists():
        try:
            loaded = yaml.safe_load(candidate.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in review config: {e}")
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Review config must be a YAML dict, got: {type(loaded).__name__}")
        raw = loaded
        source_path = candidate
        logger.info(f"Loaded review config from {candidate}")

    config = ReviewConfig.from_dict(raw, source_path=source_path)
    config.apply_env(env)

    logger.debug(f"  state_dir: {config.state_dir}")
    logger.debug(f"  max_iterations: {config.max_iterations}")
    logger.debug(f"  timeout_minutes: {config.timeout_minutes}")
    logger.debug(f"  reviewers: {config.reviewers} synthesizer: {config.synthesizer}")
    return config
