#!/usr/bin/env python3
"""
Adversarial Review Agent Backends

Agents are CLI processes: the prompt goes in on stdin (or in place of a
{prompt} argument) and free-form text comes back on stdout.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from adversarial_review.models import Agent, AgentResult, InvocationOutcome
from adversarial_review.utils import write_live

logger = logging.getLogger("adversarial_review")

PROMPT_PLACEHOLDER = "{prompt}"
TERMINATE_GRACE_SECONDS = 5


class AgentBackend:
    """Interface for invoking an agent."""

    async def invoke(
        self,
        agent: Agent,
        prompt: str,
        working_dir: Path,
        timeout: Optional[int],
        elevated: bool = False,
    ) -> AgentResult:
        raise NotImplementedError


def build_command(agent: Agent, prompt: str, elevated: bool) -> Tuple[List[str], Optional[str]]:
    """Return (argv, stdin_text) for an agent invocation."""
    uses_placeholder = any(PROMPT_PLACEHOLDER in part for part in agent.cmd)
    cmd = [part.replace(PROMPT_PLACEHOLDER, prompt) for part in agent.cmd]
    if elevated:
        cmd.extend(agent.elevated_args)
    return cmd, (None if uses_placeholder else prompt)


async def run_process(
    cmd: List[str],
    stdin_text: Optional[str],
    timeout: Optional[int],
    cwd: Optional[Path] = None,
    stream_prefix: Optional[str] = None,
    suppress_stderr: bool = False,
) -> Tuple[Optional[int], str, str, bool]:
    """Run subprocess with optional timeout and streaming output.

    Args:
        cmd: Command to run
        stdin_text: Text to send to stdin (None = no stdin)
        timeout: Timeout in seconds (None = no timeout)
        cwd: Working directory for the process
        stream_prefix: If set, stream output lines to the live log with this prefix
        suppress_stderr: If True, don't stream stderr (still capture it)

    Returns:
        (returncode, stdout, stderr, timed_out); on timeout the process is
        stopped and returncode is whatever it exited with after the signal
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(cwd) if cwd else None,
        stdin=asyncio.subprocess.PIPE if stdin_text is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []

    async def feed_stdin() -> None:
        if proc.stdin is None or stdin_text is None:
            return
        try:
            proc.stdin.write(stdin_text.encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()
            await proc.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug(f"{cmd[0]} closed stdin before reading the whole prompt")

    async def read_stream(
        stream: Optional[asyncio.StreamReader], lines: List[str], is_stderr: bool = False
    ) -> None:
        """Read stream line by line, optionally echoing to the live log."""
        if stream is None:
            return
        while True:
            line_bytes = await stream.readline()
            if not line_bytes:
                break
            line = line_bytes.decode("utf-8", errors="replace").rstrip("\n\r")
            lines.append(line)
            if is_stderr and suppress_stderr:
                continue
            if stream_prefix:
                prefix = f"{stream_prefix} [stderr]" if is_stderr else stream_prefix
                write_live(line, prefix=f"{prefix}: ")

    async def run_with_streaming() -> int:
        await asyncio.gather(
            feed_stdin(),
            read_stream(proc.stdout, stdout_lines, is_stderr=False),
            read_stream(proc.stderr, stderr_lines, is_stderr=True),
        )
        await proc.wait()
        return proc.returncode or 0

    try:
        if timeout:
            rc = await asyncio.wait_for(run_with_streaming(), timeout=timeout)
        else:
            rc = await run_with_streaming()
        return rc, "\n".join(stdout_lines), "\n".join(stderr_lines), False
    except asyncio.TimeoutError:
        await _stop_process(proc)
        return proc.returncode, "\n".join(stdout_lines), f"Process timed out after {timeout}s", True
    except asyncio.CancelledError:
        await _stop_process(proc)
        raise


async def _stop_process(proc: asyncio.subprocess.Process) -> None:
    """Terminate, then kill if the process ignores SIGTERM."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
        await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
    except ProcessLookupError:
        pass


class SubprocessBackend(AgentBackend):
    """Runs agent CLIs as subprocesses."""

    def __init__(self, stream: bool = True):
        self.stream = stream

    async def invoke(
        self,
        agent: Agent,
        prompt: str,
        working_dir: Path,
        timeout: Optional[int],
        elevated: bool = False,
    ) -> AgentResult:
        cmd, stdin_text = build_command(agent, prompt, elevated)
        logger.info(f"[{agent.name}] Running{' (elevated)' if elevated else ''}...")
        try:
            rc, stdout, stderr, timed_out = await run_process(
                cmd,
                stdin_text,
                timeout,
                cwd=working_dir,
                stream_prefix=agent.name if self.stream else None,
                suppress_stderr=agent.suppress_stderr,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"[{agent.name}] Could not start {cmd[0]}: {e}")
            return AgentResult(agent.name, InvocationOutcome.FAILURE, detail=str(e))

        if timed_out:
            logger.warning(f"[{agent.name}] Timed out after {timeout}s")
            return AgentResult(
                agent.name, InvocationOutcome.TIMEOUT, output=stdout, exit_code=rc, detail=stderr
            )
        if rc != 0:
            logger.warning(f"[{agent.name}] Exited with code {rc}")
            return AgentResult(
                agent.name, InvocationOutcome.FAILURE, output=stdout, exit_code=rc,
                detail=stderr[:500],
            )

        logger.info(f"[{agent.name}] Complete ({len(stdout.splitlines())} lines)")
        return AgentResult(agent.name, InvocationOutcome.SUCCESS, output=stdout, exit_code=0)


class DryRunBackend(AgentBackend):
    """Reports what would run without starting any agent."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, object]] = []

    async def invoke(
        self,
        agent: Agent,
        prompt: str,
        working_dir: Path,
        timeout: Optional[int],
        elevated: bool = False,
    ) -> AgentResult:
        self.calls.append({"agent": agent.name, "chars": len(prompt), "elevated": elevated})
        logger.info(f"[{agent.name}] [DRY RUN] Would run {agent.cmd[0]} ({len(prompt)} chars)")
        return AgentResult(
            agent.name, InvocationOutcome.SUCCESS, output=f"DRY RUN: {agent.name} output", exit_code=0
        )


def check_dependencies(agents: Iterable[Agent]) -> List[str]:
    """Return the agent executables that are not on PATH."""
    missing = []
    for agent in agents:
        if shutil.which(agent.cmd[0]) is None:
            missing.append(f"{agent.cmd[0]} (agent '{agent.name}')")
    return missing
