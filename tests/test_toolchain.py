"""
Tests for toolchain version detection, installation and range resolution.
"""

import pytest

from conftest import make_package, output_of
from cargo_matrix.core.toolchain import ToolchainResolver, parse_release, parse_rustup_version
from cargo_matrix.domain.errors import (
    ConfigurationError,
    ExternalCommandFailure,
    RangeSpecError,
    ToolchainInstallFailure,
    VersionDetectionFailure,
)
from cargo_matrix.domain.models import Version, VersionRange
from cargo_matrix.infra.process import CommandResult

VERBOSE_VERSION = """cargo 1.72.0 (103a7ff2e 2023-08-15)
release: 1.72.0
commit-hash: 103a7ff2ee7678d34f34d778614c5eb2525ae9de
host: x86_64-unknown-linux-gnu
"""


class TestParsing:
    def test_release_line(self):
        assert parse_release(VERBOSE_VERSION) == Version(1, 72, 0)

    def test_release_with_channel(self):
        assert parse_release("release: 1.74.0-nightly\n") == Version(1, 74, 0)

    @pytest.mark.parametrize("output", ["cargo 1.72.0", "release: 2.0.0\n", ""])
    def test_unexpected_output(self, output):
        with pytest.raises(VersionDetectionFailure):
            parse_release(output)

    def test_release_without_patch(self):
        assert parse_release("release: 1.72\n") == Version(1, 72)
        assert parse_release("release: 1.72-beta\n") == Version(1, 72)

    def test_rustup_version(self):
        assert parse_rustup_version("rustup 1.26.0 (5af9b9484 2023-04-05)").minor == 26
        with pytest.raises(VersionDetectionFailure):
            parse_rustup_version("rustup-init 1.26.0")

    def test_rustup_version_without_patch(self):
        assert parse_rustup_version("rustup 1.26 (5af9b9484 2023-04-05)").minor == 26


class TestDetection:
    """Tests for degradation to the unknown sentinel."""

    def test_host_cargo_minor(self, mock_runner, term):
        mock_runner.output.return_value = VERBOSE_VERSION
        resolver = ToolchainResolver(mock_runner, term)
        assert resolver.host_cargo_minor() == 72
        argv = mock_runner.output.call_args[0][0].argv
        assert argv == ["cargo", "--version", "--verbose"]

    def test_unknown_cargo_version_degrades(self, mock_runner, term):
        mock_runner.output.return_value = "garbage"
        assert ToolchainResolver(mock_runner, term).host_cargo_minor() == 0
        assert "unable to determine cargo version" in output_of(term.console)

    def test_failing_rustup_degrades(self, mock_runner, term):
        mock_runner.output.side_effect = ExternalCommandFailure("not found", command="rustup", exit_code=127)
        resolver = ToolchainResolver(mock_runner, term)
        assert resolver.rustup_minor() == 0
        resolver.check_rustup()  # unknown version does not block

    def test_old_rustup_rejected(self, mock_runner, term):
        mock_runner.output.return_value = "rustup 1.21.1 (7832b2ebe 2019-12-20)"
        with pytest.raises(RangeSpecError):
            ToolchainResolver(mock_runner, term).check_rustup()

    def test_old_cargo_rejects_flag(self, mock_runner, term):
        mock_runner.output.return_value = "release: 1.40.0\n"
        with pytest.raises(ConfigurationError, match="requires Cargo 1.41"):
            ToolchainResolver(mock_runner, term).require_cargo(41, "--include-deps-features")

    @pytest.mark.parametrize("output", ["release: 1.41.0\n", "garbage"])
    def test_new_or_unknown_cargo_allows_flag(self, mock_runner, term, output):
        mock_runner.output.return_value = output
        ToolchainResolver(mock_runner, term).require_cargo(41, "--include-deps-features")


class TestEnsureInstalled:
    """Tests for installing toolchains on demand."""

    def test_installed_toolchain_skips_install(self, mock_runner, term):
        resolver = ToolchainResolver(mock_runner, term)
        resolver.ensure_installed(Version(1, 60))
        resolver.ensure_installed(Version(1, 60))
        assert mock_runner.run.call_count == 1
        assert mock_runner.run.call_args[0][0].argv == ["cargo", "+1.60", "--version"]

    def test_installs_when_toolchain_missing(self, mock_runner, term):
        mock_runner.run.side_effect = [CommandResult(1), CommandResult(0)]
        ToolchainResolver(mock_runner, term).ensure_installed(Version(1, 60))
        install = mock_runner.run.call_args_list[1][0][0].argv
        assert install == [
            "rustup", "toolchain", "add", "1.60", "--no-self-update", "--profile", "minimal",
        ]

    def test_install_with_target(self, mock_runner, term):
        ToolchainResolver(mock_runner, term).ensure_installed(Version(1, 60), targets=["wasm32-wasi"])
        argv = mock_runner.run.call_args[0][0].argv
        assert argv[-2:] == ["--target", "wasm32-wasi"]

    def test_install_failure(self, mock_runner, term):
        mock_runner.run.side_effect = [CommandResult(1), CommandResult(2, stderr="no network")]
        with pytest.raises(ToolchainInstallFailure) as exc_info:
            ToolchainResolver(mock_runner, term).ensure_installed(Version(1, 60))
        assert exc_info.value.toolchain == "1.60"
        assert exc_info.value.exit_code_value == 2
        assert "no network" in str(exc_info.value)


class TestResolve:
    """Tests for enumerating a version range."""

    def test_explicit_range_with_step(self, mock_runner, term):
        resolver = ToolchainResolver(mock_runner, term)
        versions = resolver.resolve(VersionRange.parse("1.60..1.66"), step=2)
        assert [v.toolchain for v in versions] == ["+1.60", "+1.62", "+1.64", "+1.66"]

    def test_zero_step(self, mock_runner, term):
        with pytest.raises(RangeSpecError):
            ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("1.60..1.66"), step=0)

    def test_empty_range(self, mock_runner, term):
        with pytest.raises(RangeSpecError):
            ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("1.66..1.60"))

    def test_major_must_be_one(self, mock_runner, term):
        with pytest.raises(RangeSpecError):
            ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("2.0..2.1"))

    def test_patch_ignored_with_warning(self, mock_runner, term):
        versions = ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("1.60.1..1.61"))
        assert versions == [Version(1, 60), Version(1, 61)]
        assert "patch release" in output_of(term.console)

    def test_msrv_start(self, mock_runner, term):
        packages = [make_package("a", rust_version="1.65"), make_package("b", rust_version="1.63")]
        versions = ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("..1.64"), packages=packages)
        assert versions == [Version(1, 63), Version(1, 64)]

    def test_msrv_start_without_rust_version(self, mock_runner, term):
        with pytest.raises(RangeSpecError):
            ToolchainResolver(mock_runner, term).resolve(
                VersionRange.parse("..1.64"), packages=[make_package("a")]
            )

    def test_stable_end(self, mock_runner, term):
        mock_runner.output.side_effect = [
            "stable-x86_64-unknown-linux-gnu (default)\n1.60-x86_64-unknown-linux-gnu\n",
            "release: 1.62.1\n",
        ]
        versions = ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("1.60.."))
        assert versions == [Version(1, 60), Version(1, 61), Version(1, 62)]
        mock_runner.run.assert_not_called()

    def test_stable_installed_when_missing(self, mock_runner, term):
        mock_runner.output.side_effect = ["1.60-x86_64-unknown-linux-gnu\n", "release: 1.61.0\n"]
        mock_runner.run.side_effect = [CommandResult(1), CommandResult(0)]
        versions = ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("1.60.."))
        assert versions[-1] == Version(1, 61)
        assert mock_runner.run.call_args_list[1][0][0].argv[:4] == ["rustup", "toolchain", "add", "stable"]

    def test_rust_version_mode(self, mock_runner, term):
        packages = [
            make_package("a", rust_version="1.65"),
            make_package("b", rust_version="1.63.0"),
            make_package("c", rust_version="1.65"),
            make_package("d"),
        ]
        versions = ToolchainResolver(mock_runner, term).resolve(VersionRange.msrv(), packages=packages)
        assert versions == [Version(1, 63), Version(1, 65)]

    def test_undetectable_stable_is_a_range_error(self, mock_runner, term):
        mock_runner.output.side_effect = ["stable-x86_64-unknown-linux-gnu (default)\n", "garbage"]
        with pytest.raises(RangeSpecError, match="stable version"):
            ToolchainResolver(mock_runner, term).resolve(VersionRange.parse("1.60.."))
