# -----------------------------------------------------------------------------
# CONFIGURATION
# -----------------------------------------------------------------------------
# Responsibility: One validated object holding every option of a run.
#
# Sources, lowest to highest precedence:
#   1. model defaults
#   2. a YAML file (cargo-matrix.yaml, $CARGO_MATRIX_CONFIG or --config)
#   3. command-line flags
#
# normalized() applies the implications between flags and rejects
# combinations that make no sense, before anything is executed.
# -----------------------------------------------------------------------------

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cargo_matrix.domain.errors import ConfigurationError
from cargo_matrix.domain.models import Feature, LogGroup, Partition, VersionRange

CONFIG_FILENAME = "cargo-matrix.yaml"
CONFIG_ENV = "CARGO_MATRIX_CONFIG"


class MatrixConfig(BaseModel):
    """Every option understood by cargo-matrix. Field names follow the flags."""

    model_config = ConfigDict(extra="forbid")

    subcommand: str | None = None
    manifest_path: Path | None = None
    locked: bool = False

    # Package selection
    package: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    workspace: bool = False
    ignore_private: bool = False

    # Feature matrix
    each_feature: bool = False
    feature_powerset: bool = False
    depth: int | None = Field(None, ge=1)
    optional_deps: list[str] | None = None
    include_features: list[str] = Field(default_factory=list)
    include_deps_features: bool = False
    exclude_features: list[str] = Field(default_factory=list)
    exclude_no_default_features: bool = False
    exclude_all_features: bool = False
    group_features: list[list[str]] = Field(default_factory=list)
    mutually_exclusive_features: list[list[str]] = Field(default_factory=list)
    at_least_one_of: list[list[str]] = Field(default_factory=list)
    must_have_and_exclude_feature: str | None = None

    # Flags forwarded to cargo
    features: list[str] = Field(default_factory=list)
    no_default_features: bool = False
    all_features: bool = False
    target: list[str] = Field(default_factory=list)
    cargo_args: list[str] = Field(default_factory=list)
    trailing_args: list[str] = Field(default_factory=list)

    # Manifest editing
    no_dev_deps: bool = False
    remove_dev_deps: bool = False

    # Execution
    clean_per_run: bool = False
    clean_per_version: bool = False
    keep_going: bool = False
    partition: str | None = None
    print_command_list: bool = False
    version_range: str | None = None
    rust_version: bool = False
    version_step: int | None = None

    # Output
    log_group: LogGroup | None = None
    verbose: bool = False
    color: str = "auto"

    # -------------------------------------------------------------------------
    # Parsed views
    # -------------------------------------------------------------------------

    @property
    def parsed_partition(self) -> Partition | None:
        return Partition.parse(self.partition) if self.partition else None

    @property
    def parsed_version_range(self) -> VersionRange | None:
        if self.rust_version:
            return VersionRange.msrv()
        if self.version_range:
            return VersionRange.parse(self.version_range)
        return None

    @property
    def effective_log_group(self) -> LogGroup:
        return self.log_group if self.log_group is not None else LogGroup.auto()

    @property
    def feature_groups(self) -> list[Feature]:
        return [Feature.group(g) for g in self.group_features]

    @property
    def needs_dev_deps_edit(self) -> bool:
        return self.no_dev_deps or self.remove_dev_deps

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def normalized(self) -> "MatrixConfig":
        """
        Check flag combinations and apply implied flags.

        Returns:
            A new config; self is left untouched

        Raises:
            ConfigurationError: If the flags conflict
        """
        powerset_only = {
            "--depth": self.depth is not None,
            "--group-features": bool(self.group_features),
            "--mutually-exclusive-features": bool(self.mutually_exclusive_features),
            "--at-least-one-of": bool(self.at_least_one_of),
        }
        matrix_only = {
            "--optional-deps": self.optional_deps is not None,
            "--include-features": bool(self.include_features),
            "--include-deps-features": self.include_deps_features,
            "--exclude-features": bool(self.exclude_features),
            "--exclude-no-default-features": self.exclude_no_default_features,
            "--exclude-all-features": self.exclude_all_features,
            "--must-have-and-exclude-feature": self.must_have_and_exclude_feature is not None,
        }

        if self.each_feature and self.feature_powerset:
            raise ConfigurationError("--each-feature may not be used together with --feature-powerset")
        if not self.feature_powerset:
            for flag, used in powerset_only.items():
                if used:
                    raise ConfigurationError(f"{flag} can only be used together with --feature-powerset")
        if not (self.each_feature or self.feature_powerset):
            for flag, used in matrix_only.items():
                if used:
                    raise ConfigurationError(
                        f"{flag} can only be used together with --each-feature or --feature-powerset"
                    )
        else:
            if self.all_features:
                raise ConfigurationError(
                    "--all-features may not be used together with --each-feature or --feature-powerset"
                )
            if self.no_default_features:
                raise ConfigurationError(
                    "--no-default-features may not be used together with --each-feature or --feature-powerset"
                )

        if self.no_dev_deps and self.remove_dev_deps:
            raise ConfigurationError("--no-dev-deps may not be used together with --remove-dev-deps")
        if self.include_features and self.optional_deps is not None:
            raise ConfigurationError("--include-features may not be used together with --optional-deps")
        if self.include_features and self.include_deps_features:
            raise ConfigurationError(
                "--include-features may not be used together with --include-deps-features"
            )
        if self.version_range and self.rust_version:
            raise ConfigurationError("--version-range may not be used together with --rust-version")
        if self.workspace and self.package:
            raise ConfigurationError("--package may not be used together with --workspace")
        if self.exclude and not self.workspace:
            raise ConfigurationError("--exclude can only be used together with --workspace")

        if self.subcommand in ("test", "bench") and self.needs_dev_deps_edit:
            flag = "--no-dev-deps" if self.no_dev_deps else "--remove-dev-deps"
            raise ConfigurationError(
                f"{flag} may not be used together with {self.subcommand} subcommand"
            )
        if self.subcommand is None and not self.remove_dev_deps:
            raise ConfigurationError("no subcommand or valid flag specified")

        for flag, groups in (
            ("--group-features", self.group_features),
            ("--mutually-exclusive-features", self.mutually_exclusive_features),
        ):
            for group in groups:
                if len(group) < 2:
                    raise ConfigurationError(f"{flag} requires a list of two or more features")

        both = sorted(set(self.exclude_features) & set(self.include_features))
        if both:
            raise ConfigurationError(
                f"feature `{both[0]}` specified by both --exclude-features and --include-features"
            )

        if self.version_step is not None and not (self.version_range or self.rust_version):
            raise ConfigurationError("--version-step can only be used together with --version-range")
        if self.clean_per_version and not (self.version_range or self.rust_version):
            raise ConfigurationError("--clean-per-version can only be used together with --version-range")
        if self.color not in ("auto", "always", "never"):
            raise ConfigurationError(f"argument for --color must be auto, always, or never, got `{self.color}`")

        # Implications
        update: dict = {}
        features = list(self.features)
        if self.must_have_and_exclude_feature and self.must_have_and_exclude_feature not in features:
            features.append(self.must_have_and_exclude_feature)
        update["features"] = features

        exclude_features = list(self.exclude_features)
        for name in features:
            if name not in exclude_features:
                exclude_features.append(name)
        update["exclude_features"] = exclude_features

        exclude_no_default = self.exclude_no_default_features
        exclude_all = self.exclude_all_features
        if self.at_least_one_of:
            exclude_no_default = True
        if self.include_features:
            exclude_no_default = True
            exclude_all = True
        if self.exclude_features or self.mutually_exclusive_features or self.must_have_and_exclude_feature:
            exclude_all = True
        update["exclude_no_default_features"] = exclude_no_default
        update["exclude_all_features"] = exclude_all

        # Parse early so malformed values fail before anything runs.
        _ = self.parsed_partition
        _ = self.parsed_version_range

        return self.model_copy(update=update)


def find_config_file(explicit: Path | str | None = None, cwd: Path | None = None) -> Path | None:
    """--config, then $CARGO_MATRIX_CONFIG, then ./cargo-matrix.yaml."""
    if explicit:
        return Path(explicit)
    env = os.getenv(CONFIG_ENV)
    if env:
        return Path(env)
    candidate = (cwd or Path.cwd()) / CONFIG_FILENAME
    return candidate if candidate.exists() else None


def load_config_file(path: Path | str) -> dict:
    """
    Load option defaults from YAML.

    Keys may be written with dashes, like the flags (`keep-going: true`).

    Raises:
        ConfigurationError: If the file is missing or not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"config file not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def build_config(file_data: dict | None = None, overrides: dict | None = None) -> MatrixConfig:
    """
    Merge config-file values and command-line values into a MatrixConfig.

    Raises:
        ConfigurationError: If a value has the wrong type or shape
    """
    merged = dict(file_data or {})
    merged.update(overrides or {})
    try:
        return MatrixConfig(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e
