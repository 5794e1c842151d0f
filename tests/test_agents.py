"""Tests for agent command construction and subprocess invocation."""

import asyncio
import sys
from pathlib import Path

from adversarial_review.agents import (
    DryRunBackend,
    SubprocessBackend,
    build_command,
    check_dependencies,
    run_process,
)
from adversarial_review.models import Agent, InvocationOutcome


def python_agent(name, code, **kwargs):
    return Agent(name=name, cmd=[sys.executable, "-c", code], **kwargs)


class TestBuildCommand:
    def test_prompt_on_stdin(self):
        agent = Agent("claude", ["claude", "--print"], elevated_args=["--dangerously-skip-permissions"])
        cmd, stdin_text = build_command(agent, "review this", elevated=False)
        assert cmd == ["claude", "--print"]
        assert stdin_text == "review this"

    def test_elevated_args_appended(self):
        agent = Agent("claude", ["claude", "--print"], elevated_args=["--dangerously-skip-permissions"])
        cmd, _ = build_command(agent, "fix it", elevated=True)
        assert cmd == ["claude", "--print", "--dangerously-skip-permissions"]

    def test_prompt_placeholder(self):
        agent = Agent("codex", ["codex", "--prompt", "{prompt}"])
        cmd, stdin_text = build_command(agent, "review this", elevated=False)
        assert cmd == ["codex", "--prompt", "review this"]
        assert stdin_text is None

    def test_agent_command_not_mutated(self):
        agent = Agent("codex", ["codex", "{prompt}"], elevated_args=["--yolo"])
        build_command(agent, "x", elevated=True)
        assert agent.cmd == ["codex", "{prompt}"]


class TestRunProcess:
    def test_captures_output(self, tmp_path):
        cmd = [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"]
        rc, out, _err, timed_out = asyncio.run(run_process(cmd, "hello", timeout=30, cwd=tmp_path))
        assert rc == 0
        assert timed_out is False
        assert out == "HELLO"

    def test_timeout_is_flagged(self, tmp_path):
        cmd = [sys.executable, "-c", "import time; time.sleep(30)"]
        _rc, _out, err, timed_out = asyncio.run(run_process(cmd, None, timeout=1, cwd=tmp_path))
        assert timed_out is True
        assert "timed out" in err


class TestSubprocessBackend:
    def test_success(self, tmp_path):
        agent = python_agent("echo", "import sys; sys.stdout.write(sys.stdin.read())")
        result = asyncio.run(SubprocessBackend(stream=False).invoke(agent, "NO_ISSUES", tmp_path, 30))
        assert result.outcome is InvocationOutcome.SUCCESS
        assert result.output == "NO_ISSUES"
        assert result.exit_code == 0

    def test_runs_in_working_dir(self, tmp_path):
        agent = python_agent("pwd", "import os; print(os.getcwd())")
        result = asyncio.run(SubprocessBackend(stream=False).invoke(agent, "", tmp_path, 30))
        assert Path(result.output.strip()).resolve() == tmp_path.resolve()

    def test_nonzero_exit_is_failure(self, tmp_path):
        agent = python_agent("broken", "import sys; print('partial'); sys.exit(3)")
        result = asyncio.run(SubprocessBackend(stream=False).invoke(agent, "", tmp_path, 30))
        assert result.outcome is InvocationOutcome.FAILURE
        assert result.exit_code == 3
        assert result.output == "partial"

    def test_timeout(self, tmp_path):
        agent = python_agent("slow", "import time; time.sleep(30)")
        result = asyncio.run(SubprocessBackend(stream=False).invoke(agent, "", tmp_path, 1))
        assert result.outcome is InvocationOutcome.TIMEOUT

    def test_killed_by_signal_is_failure_not_timeout(self, tmp_path):
        agent = python_agent("hungup", "import os, signal; os.kill(os.getpid(), signal.SIGHUP)")
        result = asyncio.run(SubprocessBackend(stream=False).invoke(agent, "", tmp_path, 30))
        assert result.outcome is InvocationOutcome.FAILURE
        assert result.exit_code == -1

    def test_missing_executable_is_failure(self, tmp_path):
        agent = Agent("ghost", ["definitely-not-an-agent-binary-xyz"])
        result = asyncio.run(SubprocessBackend(stream=False).invoke(agent, "hi", tmp_path, 30))
        assert result.outcome is InvocationOutcome.FAILURE
        assert "definitely-not-an-agent-binary-xyz" in result.detail


class TestDryRunBackend:
    def test_records_calls(self, tmp_path):
        backend = DryRunBackend()
        agent = Agent("claude", ["claude"])
        result = asyncio.run(backend.invoke(agent, "prompt", tmp_path, 60, elevated=True))
        assert result.outcome is InvocationOutcome.SUCCESS
        assert result.output == "DRY RUN: claude output"
        assert backend.calls == [{"agent": "claude", "chars": 6, "elevated": True}]


class TestCheckDependencies:
    def test_reports_missing(self):
        agents = [
            Agent("py", [sys.executable]),
            Agent("ghost", ["definitely-not-an-agent-binary-xyz"]),
        ]
        missing = check_dependencies(agents)
        assert missing == ["definitely-not-an-agent-binary-xyz (agent 'ghost')"]
