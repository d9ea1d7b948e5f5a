# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# EXECUTION ORCHESTRATOR - The Run Matrix
# -----------------------------------------------------------------------------
# Responsibility: Build the full run plan (versions x targets x packages x
# feature variants) up front, then execute it one command at a time.
#
# Flow:
# 1. Select packages
# 2. Decide each package's runs (default, all-features, no-default, combos)
# 3. Expand across toolchain versions and targets into an immutable plan
# 4. Execute the plan, honouring --partition and --keep-going, editing and
#    restoring manifests around each package when dev-deps are removed
# -----------------------------------------------------------------------------

import itertools
import threading
from dataclasses import dataclass, field

from cargo_matrix.core.config import MatrixConfig
from cargo_matrix.core.features import (
    FeatureGraph,
    cyclic_features,
    effective_activation,
    feature_deps,
    feature_powerset,
)
from cargo_matrix.core.manifest import ManifestEditor, write_text
from cargo_matrix.core.restore import RestoreManager
from cargo_matrix.core.toolchain import MIN_DEPS_FEATURES_MINOR, ToolchainResolver
from cargo_matrix.domain.errors import ConfigurationError, ExternalCommandFailure, FailedRunsError
from cargo_matrix.domain.models import (
    Feature,
    Package,
    RunPlanEntry,
    RunRecord,
    RunState,
    RunVariant,
    Version,
    Workspace,
)
from cargo_matrix.infra.process import ProcessBuilder, ProcessRunner
from cargo_matrix.infra.term import Term

# Lockfile format v2 is unreadable by older cargo.
LOCKFILE_V2_MINOR = 51


@dataclass
class Progress:
    """count/total of executed-or-skipped runs. Reporting only."""

    total: int = 0
    count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def advance(self) -> int:
        with self._lock:
            self.count += 1
            return self.count

    def __str__(self) -> str:
        return f"{self.count}/{self.total}"


@dataclass
class KeepGoing:
    """Failures recorded under --keep-going, grouped by package."""

    failed_commands: dict[str, list[str]] = field(default_factory=dict)

    def record(self, package: str, command: str) -> None:
        self.failed_commands.setdefault(package, []).append(command)

    @property
    def count(self) -> int:
        return sum(len(v) for v in self.failed_commands.values())

    def raise_if_failed(self) -> None:
        if self.failed_commands:
            raise FailedRunsError(self.failed_commands)


Run = tuple[RunVariant, tuple[Feature, ...]]


class ExecutionOrchestrator:
    """
    Plans and executes a cargo subcommand across the run matrix.

    The plan is computed once from the config and the workspace metadata;
    executing it never changes it.
    """

    def __init__(
        self,
        config: MatrixConfig,
        workspace: Workspace,
        term: Term,
        runner: ProcessRunner,
        toolchains: ToolchainResolver | None = None,
        restore: RestoreManager | None = None,
        cargo: str = "cargo",
    ) -> None:
        self.config = config
        self.workspace = workspace
        self.term = term
        self.runner = runner
        self.toolchains = toolchains or ToolchainResolver(runner, term, cargo=cargo)
        self.restore = restore or RestoreManager(term, needs_restore=not config.remove_dev_deps)
        self.cargo = cargo
        self.records: list[RunRecord] = []
        self.progress = Progress()
        self._versions: list[Version | None] | None = None
        self._packages: list[Package] | None = None

    # -------------------------------------------------------------------------
    # Package selection
    # -------------------------------------------------------------------------

    def select_packages(self) -> list[Package]:
        """
        Packages the subcommand runs on, in workspace member order.

        Raises:
            ConfigurationError: If -p names a package that is not a member
        """
        members = self.workspace.members
        if self.config.workspace:
            names = {p.name for p in members}
            for name in self.config.exclude:
                if name not in names:
                    self.term.warn(
                        f"excluded package(s) `{name}` not found in workspace `{self.workspace.root}`"
                    )
            return [p for p in members if p.name not in self.config.exclude]

        if self.config.package:
            names = {p.name for p in members}
            for name in self.config.package:
                if name not in names:
                    raise ConfigurationError(f"package ID specification `{name}` did not match any packages")
            return [p for p in members if p.name in self.config.package]

        if self.workspace.current_package is None:
            return list(members)
        current = self.workspace.member(self.workspace.current_package)
        return [current] if current else []

    # -------------------------------------------------------------------------
    # Per-package runs
    # -------------------------------------------------------------------------

    def _candidates(self, package: Package, graph: FeatureGraph) -> list[Feature]:
        config = self.config
        excluded = set(config.exclude_features)

        for name in config.exclude_features:
            if name != "default" and name not in config.features and not graph.contains(name):
                self.term.warn(f"specified feature `{name}` not found in package `{package.name}`")

        if config.include_features:
            return [Feature.normal(n) for n in config.include_features if n not in excluded]

        candidates = list(graph.normal)
        if config.optional_deps is not None:
            known = {f.name for f in graph.optional_deps}
            for name in config.optional_deps:
                if name not in known:
                    self.term.warn(
                        f"specified optional dependency `{name}` not found in package `{package.name}`"
                    )
            candidates.extend(
                f for f in graph.optional_deps
                if not config.optional_deps or f.name in config.optional_deps
            )
        if config.include_deps_features:
            candidates.extend(graph.deps_features)

        groups = config.feature_groups
        candidates = [
            f for f in candidates
            if f.name not in excluded and not any(g.matches(f.name) for g in groups)
        ]
        for group in groups:
            if all(graph.contains(name) for name in group.atoms) and not any(
                name in excluded for name in group.atoms
            ):
                candidates.append(group)
            else:
                self.term.debug(f"group {group!r} does not apply to package `{package.name}`")
        return candidates

    def package_runs(self, package: Package) -> list[Run]:
        """
        The ordered runs of one package, before versions and targets.

        Plain mode is a single default run. With --each-feature or
        --feature-powerset: default, then all-features (or the largest
        combination), then no-default-features, then every combination.
        """
        config = self.config
        if not (config.each_feature or config.feature_powerset):
            return [(RunVariant.DEFAULT, ())]

        graph = FeatureGraph.from_package(package, self.workspace, config.include_deps_features)
        candidates = self._candidates(package, graph)
        if (not package.features or config.include_features) and not candidates:
            return [(RunVariant.DEFAULT, ())]

        closures = feature_deps(package.features)
        for a, b in cyclic_features(closures):
            self.term.warn(
                f"features `{a}` and `{b}` of package `{package.name}` enable each other; "
                "treating them as equivalent"
            )

        if config.each_feature:
            combos = [[f] for f in candidates]
        else:
            combos = [
                combo for combo in feature_powerset(
                    candidates,
                    config.depth,
                    package.features,
                    at_least_one_of=[Feature.group(g) for g in config.at_least_one_of],
                    mutually_exclusive=[Feature.group(g) for g in config.mutually_exclusive_features],
                )
                if combo
            ]

        excluded = set(config.exclude_features)
        runs: list[Run] = []
        if "default" not in excluded:
            runs.append((RunVariant.DEFAULT, ()))

        every_flag = {f.name for f in graph.normal} | {f.name for f in graph.optional_deps}
        covered = any(every_flag <= effective_activation(c, closures) for c in combos)
        wants_all = bool(graph.optional_deps) or len(graph.normal) + len(graph.optional_deps) > 1
        if not config.exclude_all_features and wants_all and not covered:
            runs.append((RunVariant.ALL_FEATURES, ()))
        elif config.feature_powerset and (config.depth is None or config.depth > 1):
            multi = [c for c in combos if len(c) > 1]
            if len(multi) > 1:
                largest = max(multi, key=len)
                combos = [c for c in combos if c is not largest]
                runs.append((RunVariant.FEATURES, tuple(largest)))

        if not config.exclude_no_default_features:
            runs.append((RunVariant.NO_DEFAULT, ()))

        runs.extend((RunVariant.FEATURES, tuple(c)) for c in combos)
        return runs

    # -------------------------------------------------------------------------
    # Plan
    # -------------------------------------------------------------------------

    def resolve_versions(self) -> list[Version | None]:
        """Toolchains to run on; [None] means the default toolchain only."""
        if self._versions is not None:
            return self._versions
        version_range = self.config.parsed_version_range
        if version_range is None:
            self._versions = [None]
        else:
            self.toolchains.check_rustup()
            self._versions = list(
                self.toolchains.resolve(version_range, self.config.version_step, self.planned_packages())
            )
        return self._versions

    def planned_packages(self) -> list[Package]:
        """Selected packages minus those skipped as private or lacking a rust-version."""
        if self._packages is not None:
            return self._packages
        packages = []
        for package in self.select_packages():
            if self.config.ignore_private and package.is_private:
                self.term.info(f"skipped running on private package `{package.name}`")
                continue
            if self.config.rust_version and not package.rust_version:
                self.term.warn(f"skipped `{package.name}`: no rust-version field in its manifest")
                continue
            packages.append(package)
        self._packages = packages
        return packages

    def _runs_on(self, package: Package, version: Version | None) -> bool:
        if version is None:
            return True
        declared = None
        if package.rust_version:
            try:
                parsed = Version.parse(package.rust_version)
                declared = Version(parsed.major, parsed.minor)
            except ValueError:
                declared = None
        if self.config.rust_version:
            return declared == version
        return declared is None or version >= declared

    def build_plan(self) -> list[RunPlanEntry]:
        """
        The full, ordered run plan.

        Nesting order: versions, then targets, then packages, then each
        package's runs. Ordinals are 0-based positions in this order.
        """
        if self.config.include_deps_features:
            self.toolchains.require_cargo(MIN_DEPS_FEATURES_MINOR, "--include-deps-features")

        packages = self.planned_packages()
        runs = {package.name: self.package_runs(package) for package in packages}
        targets: list[str | None] = list(self.config.target) or [None]

        plan: list[RunPlanEntry] = []
        for version in self.resolve_versions():
            for target in targets:
                for package in packages:
                    if not self._runs_on(package, version):
                        continue
                    for variant, features in runs[package.name]:
                        plan.append(
                            RunPlanEntry(
                                ordinal=len(plan),
                                package=package,
                                variant=variant,
                                features=features,
                                toolchain=version,
                                target=target,
                            )
                        )
        return plan

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def _base(self, toolchain: Version | None) -> ProcessBuilder:
        cmd = ProcessBuilder(self.cargo)
        if toolchain is not None:
            cmd.arg(toolchain.toolchain)
        return cmd

    def compose(self, entry: RunPlanEntry) -> ProcessBuilder:
        """The cargo invocation of one plan entry."""
        config = self.config
        cmd = self._base(entry.toolchain)
        cmd.arg(config.subcommand)
        cmd.args(config.cargo_args)
        cmd.args(["--manifest-path", entry.package.manifest_path])
        if config.locked:
            cmd.arg("--locked")
        if entry.target:
            cmd.args(["--target", entry.target])

        features = list(config.features)
        if entry.variant is RunVariant.DEFAULT:
            if config.no_default_features:
                cmd.arg("--no-default-features")
            if config.all_features:
                cmd.arg("--all-features")
        elif entry.variant is RunVariant.NO_DEFAULT:
            cmd.arg("--no-default-features")
        elif entry.variant is RunVariant.ALL_FEATURES:
            cmd.arg("--all-features")
            features = []
        else:
            cmd.arg("--no-default-features")
            features.extend(entry.feature_names)
        if features:
            cmd.args(["--features", ",".join(features)])

        if config.trailing_args:
            cmd.arg("--")
            cmd.args(config.trailing_args)
        return cmd

    def command_list(self) -> list[tuple[str, list[str]]]:
        """(package name, argv) for every plan entry, in plan order."""
        return [(entry.package.name, self.compose(entry).argv) for entry in self.build_plan()]

    def _workspace_manifest(self) -> str:
        if self.config.manifest_path:
            return str(self.config.manifest_path)
        return str(self.workspace.root / "Cargo.toml")

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _execute(self, entry: RunPlanEntry, keep_going: KeepGoing) -> RunRecord:
        cmd = self.compose(entry)
        display = cmd.display(verbose=self.term.verbose)
        record = RunRecord(entry=entry, command=display)
        self.records.append(record)
        count = self.progress.advance()

        if self.config.clean_per_run:
            clean = self._base(entry.toolchain).args(
                ["clean", "--manifest-path", self._workspace_manifest(), "--package", entry.package.name]
            )
            self.term.debug(f"running {clean.display(verbose=True)}")
            self.runner.run(clean, check=True)

        if self.term.verbose:
            title = f"running {display} ({count}/{self.progress.total})"
        else:
            title = f"running {display} on {entry.package.name} ({count}/{self.progress.total})"

        with self.term.group(title):
            record.state = RunState.RUNNING
            result = self.runner.run(cmd)
        record.exit_code = result.returncode
        if result.ok:
            record.state = RunState.SUCCEEDED
            return record

        record.state = RunState.FAILED
        failure = ExternalCommandFailure(
            f"process didn't exit successfully: `{display}` (exit status: {result.returncode})",
            command=display,
            exit_code=result.returncode,
            package=entry.package.name,
        )
        if not self.config.keep_going:
            raise failure
        keep_going.record(entry.package.name, display)
        self.term.error(str(failure))
        return record

    def _skip(self, entry: RunPlanEntry) -> None:
        record = RunRecord(entry=entry, command=self.compose(entry).display(verbose=self.term.verbose))
        record.state = RunState.SKIPPED
        self.records.append(record)
        count = self.progress.advance()
        self.term.debug(
            f"skipped {record.command} on {entry.package.name} ({count}/{self.progress.total})",
            tag="PARTITION",
        )

    def _prepare_version(self, version: Version, previous: Version | None) -> None:
        target = [t for t in self.config.target]
        self.toolchains.ensure_installed(version, targets=target, stream=True)
        if self.config.locked:
            return
        regenerate = previous is None or (
            previous.minor < LOCKFILE_V2_MINOR <= version.minor
        )
        if regenerate:
            cmd = self._base(version).args(
                ["generate-lockfile", "--manifest-path", self._workspace_manifest()]
            )
            self.term.info(f"running {cmd.display()}", tag="LOCKFILE")
            self.runner.run(cmd, check=True)

    def run(self) -> list[RunRecord]:
        """
        Execute the plan.

        Returns:
            One RunRecord per plan entry reached, in plan order

        Raises:
            ExternalCommandFailure: The first failed run, without --keep-going
            FailedRunsError: Summary of every failed run, with --keep-going
            ToolchainInstallFailure: If a toolchain cannot be installed
            ManifestIOError: If a manifest cannot be edited
        """
        plan = self.build_plan()
        partition = self.config.parsed_partition
        self.progress = Progress(total=len(plan))
        self.records = []

        if self.config.print_command_list:
            for entry in plan:
                if partition is None or partition.selects(entry.ordinal, len(plan)):
                    self.term.command(self.compose(entry).display(verbose=True))
            return self.records

        keep_going = KeepGoing()
        if self.config.no_dev_deps:
            self.term.info(
                "--no-dev-deps modifies real `Cargo.toml` while cargo-matrix is running "
                "and restores it when finished"
            )
            self.restore.install_signal_handlers()
        active_versions = {
            entry.toolchain
            for entry in plan
            if partition is None or partition.selects(entry.ordinal, len(plan))
        }
        try:
            previous: Version | None = None
            for (version, _target), group in itertools.groupby(
                plan, key=lambda e: (e.toolchain, e.target)
            ):
                group = list(group)
                active = version is not None and version in active_versions
                if active and version != previous:
                    self._prepare_version(version, previous)
                    previous = version

                for _name, entries in itertools.groupby(group, key=lambda e: e.package.name):
                    self._run_package(list(entries), partition, len(plan), keep_going)

                if active and self.config.clean_per_version:
                    next_version = self._next_version(plan, group[-1].ordinal)
                    if next_version != version:
                        clean = self._base(version).args(
                            ["clean", "--manifest-path", self._workspace_manifest()]
                        )
                        self.term.debug(f"running {clean.display(verbose=True)}")
                        self.runner.run(clean, check=True)
        finally:
            self.restore.uninstall_signal_handlers()

        keep_going.raise_if_failed()
        return self.records

    @staticmethod
    def _next_version(plan: list[RunPlanEntry], ordinal: int) -> Version | None:
        return plan[ordinal + 1].toolchain if ordinal + 1 < len(plan) else None

    def _run_package(self, entries, partition, total: int, keep_going: KeepGoing) -> None:
        selected = [partition is None or partition.selects(e.ordinal, total) for e in entries]
        if self.config.needs_dev_deps_edit and any(selected):
            editor = ManifestEditor(entries[0].package.manifest_path)
            with editor.apply(self.restore):
                self._run_entries(entries, selected, keep_going)
        else:
            self._run_entries(entries, selected, keep_going)

    def _run_entries(self, entries, selected, keep_going: KeepGoing) -> None:
        for entry, run_it in zip(entries, selected):
            if run_it:
                self._execute(entry, keep_going)
            else:
                self._skip(entry)

    def strip_dev_dependencies_only(self) -> list[Package]:
        """--remove-dev-deps without a subcommand: edit manifests and stop."""
        edited = []
        for package in self.select_packages():
            if self.config.ignore_private and package.is_private:
                self.term.info(f"skipped private package `{package.name}`")
                continue
            editor = ManifestEditor(package.manifest_path)
            stripped = editor.strip_dev_dependencies()
            if stripped != editor.read():
                write_text(package.manifest_path, stripped)
                self.term.info(f"removed dev-dependencies from {package.manifest_path}", tag="MANIFEST")
            edited.append(package)
        return edited
