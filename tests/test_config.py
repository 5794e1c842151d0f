"""Tests for review configuration loading."""

from pathlib import Path

import pytest
import yaml

from adversarial_review.config import (
    DEFAULT_CONFIG_FILENAME,
    CircuitBreakerConfig,
    ReviewConfig,
    load_review_config,
)


class TestLoadReviewConfig:
    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = load_review_config(env={})
        assert config.max_iterations == 3
        assert config.timeout_minutes == 10
        assert config.timeout_seconds == 600
        assert config.reviewers == ["claude", "codex"]
        assert config.synthesizer == "claude"
        assert config.circuit_breaker == CircuitBreakerConfig(3, 5, 3)
        assert config.source_path is None

    def test_default_file_in_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / DEFAULT_CONFIG_FILENAME).write_text("max_iterations: 7\n")
        config = load_review_config(env={})
        assert config.max_iterations == 7
        assert config.source_path == Path(DEFAULT_CONFIG_FILENAME)

    def test_explicit_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(
            "state_dir: /tmp/review-state\n"
            "timeout_minutes: 2\n"
            "reviewers: [gemini, codex]\n"
            "synthesizer: gemini\n"
            "agents:\n"
            "  gemini:\n"
            "    cmd: [gemini, --yolo]\n"
            "    suppress_stderr: true\n"
            "circuit_breaker:\n"
            "  no_progress_threshold: 4\n"
            "sources:\n"
            "  max_files: 5\n"
        )
        config = load_review_config(path, env={})
        assert config.state_dir == Path("/tmp/review-state")
        assert config.timeout_minutes == 2
        assert config.reviewers == ["gemini", "codex"]
        assert config.agents["gemini"].cmd == ["gemini", "--yolo"]
        assert config.agents["gemini"].suppress_stderr is True
        assert "claude" in config.agents
        assert config.circuit_breaker.no_progress_threshold == 4
        assert config.circuit_breaker.disagreement_threshold == 5
        assert config.sources.max_files == 5
        assert config.sources.max_lines == 500

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_review_config(tmp_path / "nope.yaml", env={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("max_iterations: [1,\n")
        with pytest.raises(yaml.YAMLError):
            load_review_config(path, env={})

    def test_non_dict_yaml(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_review_config(path, env={})

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_review_config(path, env={}).max_iterations == 3

    @pytest.mark.parametrize("body", [
        "max_iterations: 0\n",
        "timeout_minutes: soon\n",
        "circuit_breaker:\n  same_issues_threshold: -2\n",
        "reviewers: [claude]\n",
        "reviewers: [claude, claude]\n",
        "synthesizer: nobody\n",
        "agents:\n  claude:\n    cmd: claude\n",
    ])
    def test_invalid_values(self, tmp_path, body):
        path = tmp_path / "invalid.yaml"
        path.write_text(body)
        with pytest.raises(ValueError):
            load_review_config(path, env={})


class TestEnvironmentOverrides:
    def test_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        env = {
            "AR_DIR": str(tmp_path / "ar"),
            "MAX_ITERATIONS": "5",
            "TIMEOUT_MINUTES": "1",
            "CB_NO_PROGRESS_THRESHOLD": "2",
            "CB_DISAGREEMENT_THRESHOLD": "4",
            "CB_SAME_ISSUES_THRESHOLD": "6",
        }
        config = load_review_config(env=env)
        assert config.state_dir == tmp_path / "ar"
        assert config.artifacts_dir == tmp_path / "ar" / "artifacts"
        assert config.logs_dir == tmp_path / "ar" / "logs"
        assert config.max_iterations == 5
        assert config.timeout_minutes == 1
        assert config.circuit_breaker == CircuitBreakerConfig(2, 4, 6)

    def test_env_beats_file(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("max_iterations: 9\n")
        assert load_review_config(path, env={"MAX_ITERATIONS": "4"}).max_iterations == 4

    def test_invalid_env_value(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ValueError):
            load_review_config(env={"CB_NO_PROGRESS_THRESHOLD": "zero"})


class TestValidate:
    def test_default_config_is_valid(self):
        ReviewConfig().validate()

    def test_unknown_reviewer(self):
        config = ReviewConfig(reviewers=["claude", "gemini"])
        with pytest.raises(ValueError, match="gemini"):
            config.validate()


class TestSectionShapes:
    @pytest.mark.parametrize("body,section", [
        ("circuit_breaker: 5\n", "circuit_breaker"),
        ("sources: [1, 2]\n", "sources"),
        ("agents: many\n", "agents"),
        ("agents:\n  claude: 5\n", "claude"),
        ("agents:\n  claude:\n    cmd: [claude]\n    elevated_args: 3\n", "elevated_args"),
        ("reviewers: claude\n", "reviewers"),
    ])
    def test_non_mapping_section(self, tmp_path, body, section):
        path = tmp_path / "shape.yaml"
        path.write_text(body)
        with pytest.raises(ValueError, match=section):
            load_review_config(path, env={})

    def test_null_sections_use_defaults(self, tmp_path):
        path = tmp_path / "nulls.yaml"
        path.write_text("circuit_breaker:\nsources:\nagents:\n")
        config = load_review_config(path, env={})
        assert config.circuit_breaker == CircuitBreakerConfig()
        assert config.sources.max_files == 30
        assert set(config.agents) == {"claude", "codex"}
