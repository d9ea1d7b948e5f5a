"""
Tests for the command line entry point.
"""

from unittest.mock import MagicMock, patch

import pytest

from cargo_matrix.domain.errors import FailedRunsError
from cargo_matrix.main import build_parser, main, parse_args, split_list


class TestSplitList:
    def test_commas_and_spaces(self):
        assert split_list(["a,b", "c d", " e ,, f "]) == ["a", "b", "c", "d", "e", "f"]


class TestParseArgs:
    """Tests for turning argv into config overrides."""

    def test_only_given_options(self):
        overrides, config_path = parse_args(["check"])
        assert overrides == {"subcommand": "check"}
        assert config_path is None

    def test_cargo_subcommand_name_dropped(self):
        overrides, _ = parse_args(["matrix", "test", "--each-feature"])
        assert overrides == {"subcommand": "test", "each_feature": True}

    def test_unknown_flags_and_trailing_args(self):
        overrides, _ = parse_args(["check", "--release", "--keep-going", "--", "--nocapture", "-D"])
        assert overrides["cargo_args"] == ["--release"]
        assert overrides["trailing_args"] == ["--nocapture", "-D"]
        assert overrides["keep_going"] is True

    def test_feature_lists(self):
        overrides, _ = parse_args(
            ["check", "--features", "a,b", "-F", "c", "--skip", "x y", "--exclude-features", "z"]
        )
        assert overrides["features"] == ["a", "b", "c"]
        assert overrides["exclude_features"] == ["x", "y", "z"]

    def test_groups(self):
        overrides, _ = parse_args(
            ["check", "--feature-powerset", "--group-features", "a,b", "--group-features", "c,d"]
        )
        assert overrides["group_features"] == [["a", "b"], ["c", "d"]]

    def test_optional_deps_without_value(self):
        overrides, _ = parse_args(["check", "--each-feature", "--optional-deps"])
        assert overrides["optional_deps"] == []

    def test_optional_deps_with_value(self):
        overrides, _ = parse_args(["check", "--each-feature", "--optional-deps", "serde,tokio"])
        assert overrides["optional_deps"] == ["serde", "tokio"]

    def test_aliases(self):
        overrides, _ = parse_args(["check", "--all", "-v"])
        assert overrides["workspace"] is True
        assert overrides["verbose"] is True

    def test_config_path(self):
        overrides, config_path = parse_args(["--config", "ci.yaml", "check"])
        assert config_path == "ci.yaml"
        assert "config" not in overrides

    def test_version_options(self):
        overrides, _ = parse_args(["build", "--version-range", "1.60..", "--version-step", "2"])
        assert overrides["version_range"] == "1.60.."
        assert overrides["version_step"] == 2

    def test_invalid_log_group(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["check", "--log-group", "gitlab"])


class TestMain:
    """Tests for main() wiring and exit codes."""

    @pytest.fixture(autouse=True)
    def isolated(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

    def test_conflicting_flags_exit_1(self, capsys):
        assert main(["check", "--each-feature", "--feature-powerset"]) == 1
        assert "--each-feature may not be used together with --feature-powerset" in capsys.readouterr().err

    @patch("cargo_matrix.main.ExecutionOrchestrator")
    @patch("cargo_matrix.main.MetadataLoader")
    def test_runs_orchestrator(self, mock_loader, mock_orchestrator):
        assert main(["check", "--each-feature"]) == 0
        config = mock_orchestrator.call_args[0][0]
        assert config.subcommand == "check"
        assert config.each_feature
        mock_orchestrator.return_value.run.assert_called_once()

    @patch("cargo_matrix.main.ExecutionOrchestrator")
    @patch("cargo_matrix.main.MetadataLoader")
    def test_remove_dev_deps_without_subcommand(self, mock_loader, mock_orchestrator):
        assert main(["--remove-dev-deps"]) == 0
        mock_orchestrator.return_value.strip_dev_dependencies_only.assert_called_once()
        mock_orchestrator.return_value.run.assert_not_called()

    @patch("cargo_matrix.main.ExecutionOrchestrator")
    @patch("cargo_matrix.main.MetadataLoader")
    def test_failed_runs_exit_1(self, mock_loader, mock_orchestrator, capsys):
        mock_orchestrator.return_value.run.side_effect = FailedRunsError({"a": ["cargo check"]})
        assert main(["check", "--keep-going"]) == 1
        assert "failed commands:" in capsys.readouterr().err

    @patch("cargo_matrix.main.ExecutionOrchestrator")
    @patch("cargo_matrix.main.MetadataLoader")
    def test_config_file_defaults(self, mock_loader, mock_orchestrator, tmp_path):
        (tmp_path / "cargo-matrix.yaml").write_text("keep-going: true\nexclude-all-features: true\n")
        assert main(["check", "--each-feature"]) == 0
        config = mock_orchestrator.call_args[0][0]
        assert config.keep_going
        assert config.exclude_all_features

    @patch("cargo_matrix.main.ExecutionOrchestrator")
    @patch("cargo_matrix.main.MetadataLoader")
    def test_metadata_options(self, mock_loader, mock_orchestrator):
        main(["check", "--manifest-path", "/ws/Cargo.toml", "--each-feature", "--include-deps-features"])
        args, kwargs = mock_loader.return_value.load.call_args
        assert str(args[0]) == "/ws/Cargo.toml"
        assert kwargs == {"include_deps": True}

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "cargo-matrix" in capsys.readouterr().out

    @patch("cargo_matrix.main.ExecutionOrchestrator")
    @patch("cargo_matrix.main.MetadataLoader")
    def test_loader_and_orchestrator_share_runner(self, mock_loader, mock_orchestrator):
        mock_loader.return_value.load.return_value = MagicMock()
        assert main(["check"]) == 0
        runner = mock_loader.call_args[0][0]
        assert mock_orchestrator.call_args[0][3] is runner
