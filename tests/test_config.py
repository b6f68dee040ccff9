"""
Tests for configuration loading and the error hierarchy.
"""

from pathlib import Path

import pytest

from namdrunner.core.config import CONFIG_ENV_VAR, Settings, load_settings, resolve_config_path
from namdrunner.core.exceptions import (
    AutomationError,
    ConfigurationError,
    FileOperationError,
    JobNotFoundError,
    NetworkError,
    SessionError,
    SlurmError,
    ValidationError,
)


class TestLoadSettings:
    """Test YAML settings loading."""

    def test_defaults_when_default_file_missing(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        settings = load_settings()

        assert settings == Settings()
        assert settings.timeouts.file_transfer == 300
        assert settings.paths.scratch_base == "/scratch/alpine"

    def test_explicit_missing_file_is_an_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(tmp_path / "absent.yaml")

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "cluster:\n"
            "  host: login.example.edu\n"
            "  username: testuser\n"
            "paths:\n"
            "  project_base: /data/projects\n"
            "timeouts:\n"
            "  command: 60\n"
            "database_path: ~/jobs.db\n"
        )

        settings = load_settings(path)

        assert settings.cluster.host == "login.example.edu"
        assert settings.cluster.port == 22
        assert settings.paths.project_base == "/data/projects"
        assert settings.paths.scratch_base == "/scratch/alpine"
        assert settings.timeouts.command == 60
        assert settings.timeouts.connect == 30
        assert settings.db_path == Path("~/jobs.db").expanduser()

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("slurm:\n  partition: atesting\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert resolve_config_path() == path
        assert load_settings().slurm.partition == "atesting"

    def test_unknown_key_names_the_setting(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("timeouts:\n  comand: 5\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(path)
        assert exc_info.value.config_key == "timeouts.comand"

    @pytest.mark.parametrize("key", ["quick_operation", "status_check"])
    def test_only_known_timeouts_accepted(self, tmp_path, key):
        path = tmp_path / "config.yaml"
        path.write_text(f"timeouts:\n  {key}: 5\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(path)
        assert exc_info.value.config_key == f"timeouts.{key}"

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("cluster: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)


class TestErrors:
    """Test error codes, flags and user-facing messages."""

    def test_remote_error_message_includes_code_and_suggestion(self):
        error = NetworkError("Cannot reach host")
        assert error.code == "NET_001"
        assert error.retryable
        assert error.user_message().startswith("[NET_001] Cannot reach host\nSuggestion: ")

    def test_session_not_connected(self):
        error = SessionError.not_connected()
        assert error.code == "AUTH_002"
        assert not error.retryable

    def test_recovery_suggestions_by_operation(self):
        assert "SLURM account" in SlurmError("x", operation="submit").recovery_suggestion
        assert "already finished" in SlurmError("x", operation="cancel").recovery_suggestion
        assert "quota" in FileOperationError("x", operation="copy").recovery_suggestion
        assert (
            ValidationError("x", operation="walltime").recovery_suggestion
            == "Check the value of 'walltime' and try again"
        )
        assert SlurmError("x", operation="other").recovery_suggestion == (
            "Check SLURM availability on the cluster"
        )

    def test_job_not_found(self):
        error = JobNotFoundError("abc")
        assert isinstance(error, ValidationError)
        assert isinstance(error, AutomationError)
        assert error.job_id == "abc"
        assert "abc" in error.message
