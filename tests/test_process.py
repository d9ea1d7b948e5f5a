"""
Tests for the process builder and runner.
"""

from unittest.mock import MagicMock, patch

import pytest

from cargo_matrix.domain.errors import ExternalCommandFailure
from cargo_matrix.infra.process import CommandResult, ProcessBuilder, ProcessRunner


def completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestProcessBuilder:
    """Tests for composing command lines."""

    def test_argv_stringifies(self, tmp_path):
        cmd = ProcessBuilder("cargo").arg("check").args(["--manifest-path", tmp_path / "Cargo.toml"])
        assert cmd.argv == ["cargo", "check", "--manifest-path", str(tmp_path / "Cargo.toml")]

    def test_display_hides_manifest_path(self):
        cmd = ProcessBuilder("/usr/bin/cargo", ["check", "--manifest-path", "/ws/Cargo.toml", "--locked"])
        assert cmd.display() == "cargo check --locked"
        assert cmd.display(verbose=True) == "/usr/bin/cargo check --manifest-path /ws/Cargo.toml --locked"

    def test_display_hides_joined_manifest_path(self):
        cmd = ProcessBuilder("cargo", ["check", "--manifest-path=/ws/Cargo.toml"])
        assert str(cmd) == "cargo check"

    def test_display_quotes(self):
        cmd = ProcessBuilder("cargo", ["test", "--", "a b"])
        assert cmd.display() == "cargo test -- 'a b'"

    def test_clone_is_independent(self):
        base = ProcessBuilder("cargo", ["+1.60"])
        run = base.clone().arg("check")
        assert base.argv == ["cargo", "+1.60"]
        assert run.argv == ["cargo", "+1.60", "check"]


class TestProcessRunner:
    """Tests for executing commands."""

    @patch("cargo_matrix.infra.process.subprocess.run")
    def test_streaming_run(self, mock_run, tmp_path):
        mock_run.return_value = completed(101)
        result = ProcessRunner(cwd=tmp_path).run(ProcessBuilder("cargo", ["check"]))

        assert result == CommandResult(101)
        assert not result.ok
        mock_run.assert_called_once_with(["cargo", "check"], cwd=tmp_path, capture_output=False, text=True)

    @patch("cargo_matrix.infra.process.subprocess.run")
    def test_output_captures(self, mock_run):
        mock_run.return_value = completed(stdout="release: 1.72.0\n")
        assert ProcessRunner().output(["cargo", "--version"]) == "release: 1.72.0\n"
        assert mock_run.call_args[1]["capture_output"] is True

    @patch("cargo_matrix.infra.process.subprocess.run")
    def test_check_raises_with_detail(self, mock_run):
        mock_run.return_value = completed(1, stderr="error: no such command\n")
        with pytest.raises(ExternalCommandFailure) as exc_info:
            ProcessRunner().run(ProcessBuilder("cargo", ["nope"]), capture=True, check=True)

        assert exc_info.value.returncode == 1
        assert "(exit status: 1)" in str(exc_info.value)
        assert "no such command" in str(exc_info.value)

    @patch("cargo_matrix.infra.process.subprocess.run")
    def test_missing_program(self, mock_run):
        mock_run.side_effect = FileNotFoundError("cargo")
        with pytest.raises(ExternalCommandFailure) as exc_info:
            ProcessRunner().run(ProcessBuilder("cargo", ["check"]))
        assert exc_info.value.returncode == 127
        assert "could not execute `cargo check`" in str(exc_info.value)
