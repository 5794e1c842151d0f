"""Shared fixtures: a scripted agent backend and an isolated review config."""

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from adversarial_review.agents import AgentBackend
from adversarial_review.circuit_breaker import CircuitBreaker
from adversarial_review.config import ReviewConfig
from adversarial_review.models import Agent, AgentResult, InvocationOutcome
from adversarial_review.orchestrator import PhaseOrchestrator
from adversarial_review.prompts import PromptTemplateStore
from adversarial_review.sources import SourceCollector
from adversarial_review.tracking import TrackingStore

# ── canned agent outputs ────────────────────────────────────────────────────

ISSUES_REVIEW = (
    "1. parse() has a bug: it should handle empty input.\n"
    "2. Missing error handling when the file is absent.\n"
    "---REVIEW_STATUS---\n"
    "Issues_Found: 2\n"
    "Exit_Signal: NO\n"
    "Confidence: HIGH\n"
    "---END_REVIEW_STATUS---\n"
)

CLEAN_REVIEW = (
    "I read every file carefully.\n"
    "---REVIEW_STATUS---\n"
    "Issues_Found: 0\n"
    "Exit_Signal: YES\n"
    "---END_REVIEW_STATUS---\n"
)

CROSS_REVIEW = (
    "I agree with finding 1. Finding 2 is a valid point.\n"
    "---CROSS_REVIEW_STATUS---\n"
    "Agreed: 2\n"
    "Disagreed: 0\n"
    "Agreement_Level: FULL\n"
    "---END_CROSS_REVIEW_STATUS---\n"
)

META_NO_CONSENSUS = (
    "I maintain my position on the parser.\n"
    "---META_REVIEW_STATUS---\n"
    "Conceded: 0\n"
    "Maintained: 2\n"
    "Consensus_Reached: NO\n"
    "---END_META_REVIEW_STATUS---\n"
)

META_CONSENSUS = (
    "I concede the second point.\n"
    "---META_REVIEW_STATUS---\n"
    "Conceded: 1\n"
    "Final_Issues: 1\n"
    "Consensus_Reached: YES\n"
    "---END_META_REVIEW_STATUS---\n"
)

SYNTHESIS_NO_FIXES = (
    "Nothing could be applied this round.\n"
    "---SYNTHESIS_STATUS---\n"
    "Issues_Addressed: 0\n"
    "Files_Modified: 0\n"
    "Exit_Signal: NO\n"
    "---END_SYNTHESIS_STATUS---\n"
)

SYNTHESIS_FIXED = (
    "Fixed the parser and added error handling.\n"
    "---SYNTHESIS_STATUS---\n"
    "Issues_Addressed: 2\n"
    "Files_Modified: 2\n"
    "Exit_Signal: NO\n"
    "---END_SYNTHESIS_STATUS---\n"
)

SYNTHESIS_DONE = (
    "All surviving issues are fixed.\n"
    "---SYNTHESIS_STATUS---\n"
    "Issues_Addressed: 2\n"
    "Files_Modified: 1\n"
    "Exit_Signal: YES\n"
    "---END_SYNTHESIS_STATUS---\n"
)

PHASE_MARKERS = [
    ("phase_4", "# ADVERSARIAL REVIEW CHAIN"),
    ("phase_3", "# FEEDBACK ON YOUR ORIGINAL REVIEW"),
    ("phase_2", "# THE OTHER AGENT'S REVIEW TO ANALYZE"),
    ("phase_1", "# SOURCE CODE TO REVIEW"),
]

DEFAULT_RESPONSES = {
    "phase_1": ISSUES_REVIEW,
    "phase_2": CROSS_REVIEW,
    "phase_3": META_NO_CONSENSUS,
    "phase_4": SYNTHESIS_NO_FIXES,
}


def phase_of(prompt: str) -> str:
    for phase, marker in PHASE_MARKERS:
        if marker in prompt:
            return phase
    raise AssertionError("prompt does not belong to any phase")


class ScriptedBackend(AgentBackend):
    """Fake backend answering by (agent, phase).

    A response may be a string (successful output), an AgentResult, an
    exception instance (raised) or a callable taking the prompt.
    """

    def __init__(self, responses: Optional[Dict[Tuple[str, str], Any]] = None, delay: float = 0.0):
        self.responses = responses or {}
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def invoke(self, agent: Agent, prompt: str, working_dir: Path, timeout, elevated=False):
        phase = phase_of(prompt)
        self.calls.append({
            "agent": agent.name,
            "phase": phase,
            "prompt": prompt,
            "working_dir": working_dir,
            "timeout": timeout,
            "elevated": elevated,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            response = self.responses.get((agent.name, phase), DEFAULT_RESPONSES[phase])
            if callable(response) and not isinstance(response, AgentResult):
                response = response(prompt)
            if isinstance(response, BaseException):
                raise response
            if isinstance(response, AgentResult):
                return response
            return AgentResult(agent.name, InvocationOutcome.SUCCESS, output=response, exit_code=0)
        finally:
            self.in_flight -= 1

    def phases_called(self) -> List[str]:
        return [c["phase"] for c in self.calls]

    def calls_for(self, agent: str, phase: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["agent"] == agent and c["phase"] == phase]


@pytest.fixture
def target_dir(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    (project / "app.py").write_text("def parse(text):\n    return text.split()\n", encoding="utf-8")
    return project


@pytest.fixture
def config(tmp_path: Path) -> ReviewConfig:
    return ReviewConfig(state_dir=tmp_path / "state", max_iterations=3)


@pytest.fixture
def make_orchestrator(config: ReviewConfig) -> Callable[[AgentBackend], PhaseOrchestrator]:
    def factory(backend: AgentBackend) -> PhaseOrchestrator:
        tracking = TrackingStore(config.state_dir)
        tracking.load()
        breaker = CircuitBreaker(config.state_dir, config.circuit_breaker)
        breaker.load()
        return PhaseOrchestrator(
            config=config,
            backend=backend,
            prompts=PromptTemplateStore(),
            sources=SourceCollector(config.sources),
            tracking=tracking,
            breaker=breaker,
        )
    return factory
