#!/usr/bin/env python3
"""
Adversarial Review Phase Orchestrator

Drives the review loop. Each iteration runs four phases in strict order:

    1. Independent review   both reviewers, concurrently, read-only
    2. Cross-review         each reviewer critiques the other's review
    3. Meta-review          each reviewer answers the critique of its own review
    4. Synthesis            one agent applies fixes with elevated permissions

Iterations and phases never overlap; only the two agent calls inside phases
1-3 run concurrently. Agent failures and timeouts are absorbed into default
status records so that the loop can always reach a final status.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from adversarial_review import analyzer
from adversarial_review.agents import AgentBackend
from adversarial_review.circuit_breaker import CircuitBreaker
from adversarial_review.config import ReviewConfig
from adversarial_review.models import (
    AgentFailure, AgentResult, AgentTimeout, InvocationOutcome,
    MissingArtifact, PhaseResult, RunStatus,
)
from adversarial_review.parsers import (
    CROSS_REVIEW_STATUS, META_REVIEW_STATUS, REVIEW_STATUS, SYNTHESIS_STATUS,
    parse_status_block,
)
from adversarial_review.prompts import (
    CROSS_REVIEW, INITIAL_REVIEW, META_REVIEW, SYNTHESIS, PromptTemplateStore,
)
from adversarial_review.sources import SourceCollector
from adversarial_review.tracking import TrackingStore
from adversarial_review.utils import read_text, write_live, write_text_atomic

logger = logging.getLogger("adversarial_review")

PHASE_1 = "phase_1"
PHASE_2 = "phase_2"
PHASE_3 = "phase_3"
PHASE_4 = "phase_4"

PHASE_TITLES = {
    PHASE_1: "Independent Reviews",
    PHASE_2: "Cross-Review",
    PHASE_3: "Meta-Review",
    PHASE_4: "Synthesis & Implementation",
}

ORCHESTRATOR_AGENT = "orchestrator"

ARTIFACT_TEMPLATE = "iter{iteration}_{phase}_{agent}_{role}.md"


def artifact_name(iteration: int, phase: int, agent: str, role: str) -> str:
    return ARTIFACT_TEMPLATE.format(iteration=iteration, phase=phase, agent=agent, role=role)


def read_artifact(path: Path) -> str:
    """Read a prior-phase artifact.

    Raises:
        MissingArtifact: If the artifact does not exist
    """
    if not path.exists():
        raise MissingArtifact(path)
    return read_text(path)


class PhaseOrchestrator:
    """Runs review iterations until clean, circuit open, or max iterations."""

    def __init__(
        self,
        config: ReviewConfig,
        backend: AgentBackend,
        prompts: PromptTemplateStore,
        sources: SourceCollector,
        tracking: TrackingStore,
        breaker: CircuitBreaker,
    ):
        self.config = config
        self.backend = backend
        self.prompts = prompts
        self.sources = sources
        self.tracking = tracking
        self.breaker = breaker
        self.artifacts_dir = config.artifacts_dir
        self.logs_dir = config.logs_dir
        self.agent_a, self.agent_b = config.reviewers
        self.synthesizer = config.synthesizer

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def run(self, target_dir: Path) -> RunStatus:
        """Run the review loop against target_dir and return the final status."""
        target_dir = target_dir.resolve()
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Starting Adversarial Review Loop")
        logger.info(f"Target: {target_dir}")
        logger.info(f"Max iterations: {self.config.max_iterations}")
        logger.info(f"Timeout: {self.config.timeout_minutes}m per agent")

        self.tracking.start_run(target_dir)

        for iteration in range(1, self.config.max_iterations + 1):
            self.tracking.update(iteration=iteration)

            if not self.breaker.can_execute():
                logger.error("Circuit breaker is OPEN - halting")
                for line in self.breaker.status_lines():
                    logger.error(line)
                return self._finish(RunStatus.CIRCUIT_OPEN)

            write_live("=" * 60)
            write_live(f"ITERATION {iteration} / {self.config.max_iterations}")
            write_live("=" * 60)
            logger.info(f"=== Iteration {iteration} / {self.config.max_iterations} ===")

            try:
                status = await self.run_iteration(iteration, target_dir)
            except MissingArtifact as e:
                logger.error(f"Iteration {iteration} aborted: {e}")
                self.tracking.add_history(
                    iteration, "iteration", ORCHESTRATOR_AGENT, {"error": str(e)}
                )
                self.breaker.record_iteration_result(iteration, 0, False, "")
                continue

            if status is not None:
                return self._finish(status)

            logger.info(f"Iteration {iteration} complete, will verify fixes...")

        logger.warning(f"Reached max iterations ({self.config.max_iterations})")
        return self._finish(RunStatus.MAX_ITERATIONS)

    async def run_iteration(self, iteration: int, target_dir: Path) -> Optional[RunStatus]:
        """Run the four phases once. Returns CLEAN to stop, None to continue."""
        review_a, review_b = await self.run_phase_1(iteration, target_dir)
        if review_a.status.exit_signal and review_b.status.exit_signal:
            logger.info("Review complete - both agents report clean code")
            return RunStatus.CLEAN

        await self.run_phase_2(iteration, target_dir)
        meta_a, _meta_b = await self.run_phase_3(iteration, target_dir)
        synthesis = await self.run_phase_4(iteration, target_dir)

        files_modified = synthesis.status.get_int("files_modified", 0)
        agents_agree = meta_a.status.get_bool("consensus_reached")
        fingerprint = analyzer.issues_fingerprint(
            "\n".join([review_a.output, review_b.output])
        )

        can_continue = self.breaker.record_iteration_result(
            iteration, files_modified, agents_agree, fingerprint
        )
        self.tracking.add_history(iteration, "circuit_breaker", ORCHESTRATOR_AGENT, {
            "files_modified": files_modified,
            "agents_agree": agents_agree,
            "issues_hash": fingerprint,
            "state": self.breaker.state.state.value,
            "can_execute": can_continue,
        })

        if synthesis.status.exit_signal:
            logger.info("Synthesis complete - no more issues")
            return RunStatus.CLEAN
        return None

    def _finish(self, status: RunStatus) -> RunStatus:
        self.tracking.set_status(status)
        write_live(f"FINAL STATUS: {status.value}")
        return status

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def run_phase_1(self, iteration: int, target_dir: Path) -> Tuple[PhaseResult, PhaseResult]:
        """Independent reviews of the collected source."""
        self._begin_phase(iteration, PHASE_1)

        source_code = self.sources.collect(target_dir)
        prompt = (
            f"{self.prompts.get_template(INITIAL_REVIEW)}\n\n"
            f"---\n# SOURCE CODE TO REVIEW\n\n{source_code}\n"
        )

        review_a, review_b = await asyncio.gather(
            self._run_agent(iteration, PHASE_1, 1, self.agent_a, "review", prompt, target_dir, REVIEW_STATUS),
            self._run_agent(iteration, PHASE_1, 1, self.agent_b, "review", prompt, target_dir, REVIEW_STATUS),
        )

        analysis_a = analyzer.analyze(review_a.output)
        analysis_b = analyzer.analyze(review_b.output)
        agreement = analyzer.compare(analysis_a, analysis_b)

        for result in (review_a, review_b):
            logger.info(f"{result.agent} found: {result.status.get_int('issues_found', 0)} issues")
        logger.info(f"Independent reviews: {agreement}")
        self.tracking.add_history(iteration, PHASE_1, ORCHESTRATOR_AGENT, {
            "agreement": agreement,
            self.agent_a: analysis_a.to_dict(),
            self.agent_b: analysis_b.to_dict(),
        })
        return review_a, review_b

    async def run_phase_2(self, iteration: int, target_dir: Path) -> Tuple[PhaseResult, PhaseResult]:
        """Each reviewer critiques the other's independent review."""
        self._begin_phase(iteration, PHASE_2)

        template = self.prompts.get_template(CROSS_REVIEW)
        review_a = read_artifact(self._artifact(iteration, 1, self.agent_a, "review"))
        review_b = read_artifact(self._artifact(iteration, 1, self.agent_b, "review"))

        def cross_prompt(other_review: str) -> str:
            return f"{template}\n\n---\n# THE OTHER AGENT'S REVIEW TO ANALYZE\n\n{other_review}\n"

        cross_a, cross_b = await asyncio.gather(
            self._run_agent(
                iteration, PHASE_2, 2, self.agent_a, f"on_{self.agent_b}",
                cross_prompt(review_b), target_dir, CROSS_REVIEW_STATUS,
            ),
            self._run_agent(
                iteration, PHASE_2, 2, self.agent_b, f"on_{self.agent_a}",
                cross_prompt(review_a), target_dir, CROSS_REVIEW_STATUS,
            ),
        )

        for result in (cross_a, cross_b):
            analysis = analyzer.analyze(result.output)
            conviction = analyzer.classify_conviction(analysis.agreement_count, analysis.disagreement_count)
            logger.info(f"{result.agent} cross-review: {conviction}")
        logger.info("Cross-review complete")
        return cross_a, cross_b

    async def run_phase_3(self, iteration: int, target_dir: Path) -> Tuple[PhaseResult, PhaseResult]:
        """Each reviewer answers the other's critique of its own review."""
        self._begin_phase(iteration, PHASE_3)

        template = self.prompts.get_template(META_REVIEW)
        b_on_a = read_artifact(self._artifact(iteration, 2, self.agent_b, f"on_{self.agent_a}"))
        a_on_b = read_artifact(self._artifact(iteration, 2, self.agent_a, f"on_{self.agent_b}"))

        def meta_prompt(feedback: str) -> str:
            return f"{template}\n\n---\n# FEEDBACK ON YOUR ORIGINAL REVIEW\n\n{feedback}\n"

        meta_a, meta_b = await asyncio.gather(
            self._run_agent(
                iteration, PHASE_3, 3, self.agent_a, "meta",
                meta_prompt(b_on_a), target_dir, META_REVIEW_STATUS,
            ),
            self._run_agent(
                iteration, PHASE_3, 3, self.agent_b, "meta",
                meta_prompt(a_on_b), target_dir, META_REVIEW_STATUS,
            ),
        )
        logger.info("Meta-review complete")
        return meta_a, meta_b

    async def run_phase_4(self, iteration: int, target_dir: Path) -> PhaseResult:
        """Synthesizer reads the whole chain and applies fixes."""
        self._begin_phase(iteration, PHASE_4)

        a, b = self.agent_a, self.agent_b
        chain: List[Tuple[str, Path]] = [
            (f"## Phase 1: Independent Reviews\n\n### {a}'s Review", self._artifact(iteration, 1, a, "review")),
            (f"### {b}'s Review", self._artifact(iteration, 1, b, "review")),
            (f"## Phase 2: Cross-Reviews\n\n### {a}'s Analysis of {b}", self._artifact(iteration, 2, a, f"on_{b}")),
            (f"### {b}'s Analysis of {a}", self._artifact(iteration, 2, b, f"on_{a}")),
            (f"## Phase 3: Meta-Reviews\n\n### {a}'s Response", self._artifact(iteration, 3, a, "meta")),
            (f"### {b}'s Response", self._artifact(iteration, 3, b, "meta")),
        ]
        sections = [f"{heading}\n{read_artifact(path)}" for heading, path in chain]

        prompt = (
            f"{self.prompts.get_template(SYNTHESIS)}\n\n"
            f"---\n# ADVERSARIAL REVIEW CHAIN\n\n"
            + "\n\n".join(sections)
            + f"\n\n---\nWorking directory: {target_dir}\n"
        )

        synthesis = await self._run_agent(
            iteration, PHASE_4, 4, self.synthesizer, "synthesis",
            prompt, target_dir, SYNTHESIS_STATUS, elevated=True,
        )
        logger.info(
            f"Synthesis: files_modified={synthesis.status.get_int('files_modified', 0)} "
            f"exit_signal={synthesis.status.exit_signal}"
        )
        return synthesis

    # -------------------------------------------------------------------------
    # Agent calls
    # -------------------------------------------------------------------------

    def _artifact(self, iteration: int, phase: int, agent: str, role: str) -> Path:
        return self.artifacts_dir / artifact_name(iteration, phase, agent, role)

    def _begin_phase(self, iteration: int, phase: str) -> None:
        title = PHASE_TITLES[phase]
        logger.info(f"=== {phase.replace('_', ' ').title()}: {title} ===")
        write_live("")
        write_live(f"▶ PHASE: {title} (iteration {iteration})")
        self.tracking.add_history(iteration, phase, ORCHESTRATOR_AGENT, {"event": "started"})

    async def _invoke(self, agent_name: str, prompt: str, working_dir: Path, elevated: bool) -> AgentResult:
        """Call the backend; never raises for agent-level errors."""
        agent = self.config.agents[agent_name]
        try:
            return await self.backend.invoke(
                agent, prompt, working_dir, self.config.timeout_seconds, elevated
            )
        except (AgentTimeout, asyncio.TimeoutError) as e:
            return AgentResult(agent_name, InvocationOutcome.TIMEOUT, detail=str(e) or "timed out")
        except AgentFailure as e:
            return AgentResult(agent_name, InvocationOutcome.FAILURE, detail=str(e))
        except Exception as e:
            logger.warning(f"[{agent_name}] Backend error: {e!r}")
            return AgentResult(agent_name, InvocationOutcome.FAILURE, detail=repr(e))

    async def _run_agent(
        self,
        iteration: int,
        phase: str,
        phase_number: int,
        agent_name: str,
        role: str,
        prompt: str,
        working_dir: Path,
        block_name: str,
        elevated: bool = False,
    ) -> PhaseResult:
        name = artifact_name(iteration, phase_number, agent_name, role)
        artifact_path = self.artifacts_dir / name
        write_text_atomic(self.logs_dir / f"{name}.prompt.txt", prompt)

        invocation = await self._invoke(agent_name, prompt, working_dir, elevated)

        if invocation.succeeded:
            write_text_atomic(artifact_path, invocation.output)
            status = parse_status_block(invocation.output, block_name)
            if not status.ok:
                logger.warning(f"[{agent_name}] {phase}: {status.error}, defaulting exit_signal to false")
        else:
            # Output of a failed agent is treated as absent
            write_text_atomic(artifact_path, "")
            write_text_atomic(
                self.logs_dir / f"{name}.{invocation.outcome.value}.log",
                f"{invocation.detail}\n\n{invocation.output}",
            )
            status = parse_status_block("", block_name)
            logger.warning(
                f"[{agent_name}] {phase}: {invocation.outcome.value}, output treated as absent"
            )

        result = PhaseResult(
            iteration=iteration,
            phase=phase,
            agent=agent_name,
            artifact_path=artifact_path,
            invocation=invocation,
            status=status,
        )
        self.tracking.add_history(iteration, phase, agent_name, result.summary())
        return result
