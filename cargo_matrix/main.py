# -----------------------------------------------------------------------------
# CARGO MATRIX - COMMAND LINE INTERFACE
# -----------------------------------------------------------------------------
# Responsibility: Parse flags, merge them with the config file, load the
# workspace and hand everything to the orchestrator.
#
# Usage:
#   cargo matrix check --each-feature
#   cargo matrix test --feature-powerset --depth 2 --keep-going
#   cargo matrix build --version-range 1.60.. --version-step 2
#
# Flags this tool does not know are passed through to cargo; everything
# after `--` is appended after the cargo arguments.
# -----------------------------------------------------------------------------

import argparse
import re
import sys

from dotenv import load_dotenv

from cargo_matrix import __version__
from cargo_matrix.core.config import build_config, find_config_file, load_config_file
from cargo_matrix.core.orchestrator import ExecutionOrchestrator
from cargo_matrix.domain.errors import MatrixError
from cargo_matrix.domain.models import LogGroup
from cargo_matrix.infra.metadata import MetadataLoader
from cargo_matrix.infra.process import ProcessRunner
from cargo_matrix.infra.term import COLOR_CHOICES, Term

# Options whose values are feature or package lists: "a,b", "a b" or repeated.
LIST_OPTIONS = (
    "package",
    "exclude",
    "include_features",
    "exclude_features",
    "features",
    "target",
)
# Options where every occurrence is one group.
GROUP_OPTIONS = ("group_features", "mutually_exclusive_features", "at_least_one_of")


def split_list(values) -> list[str]:
    """Flatten comma- and/or space-separated values, dropping empties."""
    items = []
    for value in values:
        items.extend(part for part in re.split(r"[,\s]+", value) if part)
    return items


def split_trailing(argv: list[str]) -> tuple[list[str], list[str]]:
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1:]
    return argv, []


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cargo matrix",
        description="Run a cargo subcommand across feature combinations, toolchains and targets.",
        argument_default=argparse.SUPPRESS,
        allow_abbrev=False,
    )
    parser.add_argument("subcommand", nargs="?", help="cargo subcommand to run (check, test, ...)")
    parser.add_argument("--version", action="version", version=f"cargo-matrix {__version__}")
    parser.add_argument("--config", help="YAML file with option defaults")

    selection = parser.add_argument_group("package selection")
    selection.add_argument("--manifest-path", help="path to Cargo.toml")
    selection.add_argument("-p", "--package", action="append", help="package(s) to check")
    selection.add_argument("--exclude", action="append", help="exclude packages from the check")
    selection.add_argument("--workspace", "--all", dest="workspace", action="store_true",
                           help="perform command for all packages in the workspace")
    selection.add_argument("--ignore-private", action="store_true", help="skip to perform on private packages")

    matrix = parser.add_argument_group("feature matrix")
    matrix.add_argument("--each-feature", action="store_true",
                        help="perform for each feature of the package")
    matrix.add_argument("--feature-powerset", action="store_true",
                        help="perform for the feature powerset of the package")
    matrix.add_argument("--depth", type=int, help="max number of features to combine (powerset only)")
    matrix.add_argument("--optional-deps", nargs="?", const="",
                        help="use optional dependencies as features, optionally only the listed ones")
    matrix.add_argument("--include-features", action="append", help="include only the specified features")
    matrix.add_argument("--include-deps-features", action="store_true",
                        help="include features of dependencies in the feature combinations")
    matrix.add_argument("--exclude-features", "--skip", dest="exclude_features", action="append",
                        help="space or comma separated list of features to exclude")
    matrix.add_argument("--exclude-no-default-features", action="store_true",
                        help="exclude run of just --no-default-features flag")
    matrix.add_argument("--exclude-all-features", action="store_true",
                        help="exclude run of just --all-features flag")
    matrix.add_argument("--group-features", action="append",
                        help="comma separated list of features to treat as one")
    matrix.add_argument("--mutually-exclusive-features", action="append",
                        help="comma separated list of features not to enable together")
    matrix.add_argument("--at-least-one-of", action="append",
                        help="comma separated list of features of which at least one must be enabled")
    matrix.add_argument("--must-have-and-exclude-feature",
                        help="require this feature in every run and exclude it from the combinations")

    forwarded = parser.add_argument_group("cargo flags")
    forwarded.add_argument("-F", "--features", action="append", help="features to activate on every run")
    forwarded.add_argument("--no-default-features", action="store_true",
                           help="do not activate the `default` feature")
    forwarded.add_argument("--all-features", action="store_true", help="activate all available features")
    forwarded.add_argument("--target", action="append", help="build for the target triple(s)")
    forwarded.add_argument("--locked", action="store_true", help="require Cargo.lock is up to date")

    execution = parser.add_argument_group("execution")
    execution.add_argument("--no-dev-deps", action="store_true",
                           help="remove dev-dependencies while running, restore them afterwards")
    execution.add_argument("--remove-dev-deps", action="store_true",
                           help="remove dev-dependencies without restoring them")
    execution.add_argument("--clean-per-run", action="store_true", help="run `cargo clean` before each run")
    execution.add_argument("--clean-per-version", action="store_true",
                           help="run `cargo clean` after the runs of each toolchain version")
    execution.add_argument("--keep-going", action="store_true", help="keep going on failure")
    execution.add_argument("--partition", help="partition runs and execute only the M-th of N (M/N)")
    execution.add_argument("--print-command-list", action="store_true",
                           help="print commands without running them")
    execution.add_argument("--version-range", help="perform for the toolchains in START..[=]END")
    execution.add_argument("--rust-version", action="store_true",
                           help="perform on each package's own rust-version")
    execution.add_argument("--version-step", type=int, help="step between versions of --version-range")

    output = parser.add_argument_group("output")
    output.add_argument("--log-group", choices=[g.value for g in LogGroup],
                        help="log grouping (default: github-actions on GitHub Actions)")
    output.add_argument("-v", "--verbose", action="store_true", help="use verbose output")
    output.add_argument("--color", choices=COLOR_CHOICES, help="coloring: auto, always, never")
    return parser


def parse_args(argv: list[str]) -> tuple[dict, str | None]:
    """
    Turn raw arguments into config overrides.

    Returns:
        (overrides for MatrixConfig, explicit --config path or None)
    """
    if argv and argv[0] == "matrix":
        argv = argv[1:]
    argv, trailing = split_trailing(argv)
    namespace, unknown = build_parser().parse_known_args(argv)
    overrides = vars(namespace)

    config_path = overrides.pop("config", None)
    for key in LIST_OPTIONS:
        if key in overrides:
            overrides[key] = split_list(overrides[key])
    for key in GROUP_OPTIONS:
        if key in overrides:
            overrides[key] = [split_list([group]) for group in overrides[key]]
    if "optional_deps" in overrides:
        overrides["optional_deps"] = split_list([overrides["optional_deps"]])
    if unknown:
        overrides["cargo_args"] = unknown
    if trailing:
        overrides["trailing_args"] = trailing
    return overrides, config_path


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    argv = list(sys.argv[1:] if argv is None else argv)
    overrides, config_path = parse_args(argv)
    term = Term(verbose=bool(overrides.get("verbose")), color=overrides.get("color", "auto"))

    try:
        config_file = find_config_file(config_path)
        file_data = load_config_file(config_file) if config_file else {}
        config = build_config(file_data, overrides).normalized()
        term = Term(verbose=config.verbose, color=config.color, log_group=config.effective_log_group)

        runner = ProcessRunner()
        workspace = MetadataLoader(runner, term).load(
            config.manifest_path, include_deps=config.include_deps_features
        )
        orchestrator = ExecutionOrchestrator(config, workspace, term, runner)
        if config.subcommand is None:
            orchestrator.strip_dev_dependencies_only()
        else:
            orchestrator.run()
    except MatrixError as e:
        term.error(str(e))
        return e.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())
