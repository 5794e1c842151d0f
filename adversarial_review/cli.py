#!/usr/bin/env python3
"""
Adversarial Review

Multi-agent code review: two agents independently review a directory,
cross-review each other's findings, answer the critiques of their own
reviews, and a synthesizer applies the surviving fixes. The loop repeats
until the code is clean, a circuit breaker detects stagnation, or the
iteration limit is reached.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from adversarial_review.agents import DryRunBackend, SubprocessBackend, check_dependencies
from adversarial_review.circuit_breaker import CircuitBreaker
from adversarial_review.config import ReviewConfig, load_review_config
from adversarial_review.models import OrchestratorLock, RunStatus
from adversarial_review.orchestrator import PhaseOrchestrator
from adversarial_review.prompts import PromptTemplateStore
from adversarial_review.sources import SourceCollector
from adversarial_review.tracking import TrackingStore
from adversarial_review.utils import ensure_secure_dir, set_live_log, write_live

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("adversarial_review")

EXIT_OK = 0
EXIT_ERROR = 1

EXIT_CODES = {
    RunStatus.CLEAN: EXIT_OK,
    RunStatus.MAX_ITERATIONS: EXIT_ERROR,
    RunStatus.CIRCUIT_OPEN: EXIT_ERROR,
}


def exit_code_for(status: RunStatus) -> int:
    return EXIT_CODES.get(status, EXIT_ERROR)


# =============================================================================
# Status & management commands
# =============================================================================

def show_status(config: ReviewConfig) -> List[str]:
    """Render tracking state, recent history and artifacts."""
    tracking_path = config.state_dir / "tracking.json"
    if not tracking_path.exists():
        return ["No tracking file found. Run a review first."]

    tracking = TrackingStore(config.state_dir)
    state = tracking.load()
    lines = [
        "=== Adversarial Review Status ===",
        f"Target:     {state.target_dir or 'none'}",
        f"Status:     {state.status.value}",
        f"Iteration:  {state.iteration}",
        f"Started:    {state.started_at or 'never'}",
        f"Updated:    {state.updated_at or 'never'}",
        "",
        "Recent History:",
    ]
    recent = tracking.recent_history(10)
    if not recent:
        lines.append("  (none)")
    for entry in recent:
        result = entry.get("result")
        if isinstance(result, dict):
            summary = result.get("error") or result.get("event") or result.get("invocation") or "ok"
        else:
            summary = result
        lines.append(
            f"  - Iter {entry.get('iteration')} {entry.get('phase')} [{entry.get('agent')}]: {summary}"
        )

    lines.append("")
    lines.append("Artifacts:")
    artifacts = sorted(p.name for p in config.artifacts_dir.glob("*")) if config.artifacts_dir.exists() else []
    if artifacts:
        lines.extend(f"  {name}" for name in artifacts[:20])
    else:
        lines.append("  (none)")
    return lines


def reset_all(config: ReviewConfig) -> None:
    """Remove artifacts, logs, tracking and circuit breaker state."""
    logger.info("Resetting all state...")
    for directory in (config.artifacts_dir, config.logs_dir):
        if directory.exists():
            shutil.rmtree(directory)
        directory.mkdir(parents=True, exist_ok=True)

    TrackingStore(config.state_dir).reset()
    breaker = CircuitBreaker(config.state_dir, config.circuit_breaker)
    breaker.reset("Full reset", clear_history=True)
    logger.info("Reset complete")


def reset_circuit(config: ReviewConfig) -> None:
    breaker = CircuitBreaker(config.state_dir, config.circuit_breaker)
    breaker.load()
    breaker.reset("Manual reset")


def circuit_status(config: ReviewConfig) -> List[str]:
    breaker = CircuitBreaker(config.state_dir, config.circuit_breaker)
    breaker.load()
    return breaker.status_lines()


# =============================================================================
# Review run
# =============================================================================

def build_orchestrator(
    config: ReviewConfig,
    dry_run: bool = False,
    custom_prompt: Optional[Path] = None,
    stream: bool = True,
) -> PhaseOrchestrator:
    tracking = TrackingStore(config.state_dir)
    tracking.load()
    breaker = CircuitBreaker(config.state_dir, config.circuit_breaker)
    breaker.load()
    backend = DryRunBackend() if dry_run else SubprocessBackend(stream=stream)
    return PhaseOrchestrator(
        config=config,
        backend=backend,
        prompts=PromptTemplateStore(config.prompts_dir, custom_prompt),
        sources=SourceCollector(config.sources),
        tracking=tracking,
        breaker=breaker,
    )


async def run_review(
    config: ReviewConfig,
    target_dir: Path,
    dry_run: bool = False,
    custom_prompt: Optional[Path] = None,
) -> int:
    """Run the review loop holding the orchestrator lock."""
    ensure_secure_dir(config.state_dir)

    lock = OrchestratorLock(config.state_dir)
    if not lock.acquire():
        logger.error("Another review is running against this state directory. Exiting.")
        return EXIT_ERROR

    live_log_path = config.state_dir / "live.log"
    live_log_file = open(live_log_path, "a", encoding="utf-8")
    set_live_log(live_log_file)
    write_live("=" * 60)
    write_live(f"ADVERSARIAL REVIEW - {target_dir}")
    write_live(f"Watch: tail -f {live_log_path}")
    write_live("=" * 60)

    try:
        orchestrator = build_orchestrator(config, dry_run=dry_run, custom_prompt=custom_prompt)
        status = await orchestrator.run(target_dir)
        logger.info(f"Review finished with status: {status.value}")
        return exit_code_for(status)
    finally:
        write_live("REVIEW FINISHED")
        live_log_file.close()
        set_live_log(None)
        lock.release()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="adversarial-review",
        description="Multi-agent adversarial code review loop",
    )
    ap.add_argument("target_dir", nargs="?", help="Directory to review")
    ap.add_argument("--config", help="Config file path (default: review.config.yaml if present)")
    ap.add_argument("--max-iters", "-m", type=int, default=None, help="Maximum iterations (default: 3)")
    ap.add_argument("--prompt", "-p", help="Custom initial review prompt file")
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    ap.add_argument(
        "--timeout", "-t", type=int, default=None,
        help="Timeout per agent call in minutes (default: 10)",
    )
    ap.add_argument("--status", action="store_true", help="Show current status")
    ap.add_argument("--reset", action="store_true", help="Reset artifacts and tracking")
    ap.add_argument("--reset-circuit", action="store_true", help="Reset circuit breaker")
    ap.add_argument("--circuit-status", action="store_true", help="Show circuit breaker status")
    ap.add_argument(
        "--dry-run", action="store_true",
        help="Show what would be done without running any agent",
    )
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.verbose:
        logger.setLevel(logging.DEBUG)

    try:
        config = load_review_config(Path(args.config) if args.config else None)
        if args.max_iters is not None:
            if args.max_iters < 1:
                raise ValueError("--max-iters must be >= 1")
            config.max_iterations = args.max_iters
        if args.timeout is not None:
            if args.timeout < 1:
                raise ValueError("--timeout must be >= 1")
            config.timeout_minutes = args.timeout
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ERROR

    if args.status:
        print("\n".join(show_status(config)))
        return EXIT_OK
    if args.reset:
        reset_all(config)
        return EXIT_OK
    if args.reset_circuit:
        reset_circuit(config)
        return EXIT_OK
    if args.circuit_status:
        print("\n".join(circuit_status(config)))
        return EXIT_OK

    if not args.target_dir:
        logger.error("No target directory specified")
        ap.print_help()
        return EXIT_ERROR

    target_dir = Path(args.target_dir)
    if not target_dir.is_dir():
        logger.error(f"Directory does not exist: {target_dir}")
        return EXIT_ERROR

    custom_prompt = None
    if args.prompt:
        custom_prompt = Path(args.prompt)
        if not custom_prompt.is_file():
            logger.error(f"Prompt file not found: {custom_prompt}")
            return EXIT_ERROR
        logger.info(f"Using custom prompt: {custom_prompt}")

    if not args.dry_run:
        names = dict.fromkeys([*config.reviewers, config.synthesizer])
        missing = check_dependencies(config.agents[name] for name in names)
        if missing:
            logger.error("Missing dependencies:")
            for dep in missing:
                logger.error(f"  - {dep}")
            return EXIT_ERROR

    return asyncio.run(run_review(config, target_dir, dry_run=args.dry_run, custom_prompt=custom_prompt))


if __name__ == "__main__":
    sys.exit(main())
