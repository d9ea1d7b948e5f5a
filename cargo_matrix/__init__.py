"""cargo-matrix: run a cargo subcommand across feature combinations, toolchains and targets."""

__version__ = "0.1.0"
