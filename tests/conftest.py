"""
Pytest configuration and fixtures for cargo-matrix tests.
"""

import io
import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep log grouping deterministic on CI
os.environ.pop("GITHUB_ACTIONS", None)
os.environ.pop("CARGO_MATRIX_CONFIG", None)

from cargo_matrix.domain.models import Dependency, Package, Workspace  # noqa: E402
from cargo_matrix.infra.process import CommandResult  # noqa: E402
from cargo_matrix.infra.term import Term  # noqa: E402


def make_console() -> Console:
    return Console(file=io.StringIO(), force_terminal=False, no_color=True, width=300)


def output_of(console: Console) -> str:
    return console.file.getvalue()


@pytest.fixture
def term():
    """Term writing to in-memory consoles."""
    return Term(console=make_console(), out=make_console())


@pytest.fixture
def verbose_term():
    return Term(verbose=True, console=make_console(), out=make_console())


@pytest.fixture
def mock_runner():
    """ProcessRunner double: every command succeeds with empty output."""
    runner = MagicMock()
    runner.run.return_value = CommandResult(0)
    runner.output.return_value = ""
    return runner


def make_package(name: str, tmp_path: Path | None = None, **kwargs) -> Package:
    """Package with a manifest path under tmp_path (or a fake path)."""
    base = tmp_path if tmp_path is not None else Path("/ws")
    manifest = kwargs.pop("manifest_path", base / name / "Cargo.toml")
    return Package(id=f"{name} 0.1.0", name=name, manifest_path=manifest, **kwargs)


def make_workspace(*packages: Package, current: str | None = None, root: Path = Path("/ws")) -> Workspace:
    return Workspace(root=root, members=list(packages), packages=list(packages), current_package=current)


@pytest.fixture
def sample_package():
    """a, b -> a, c -> b, d -> a + b, plus an optional dependency."""
    return make_package(
        "sample",
        features={"default": ["a"], "a": [], "b": ["a"], "c": ["b"], "d": ["a", "b"], "serde": ["dep:serde"]},
        dependencies=[Dependency(name="serde", optional=True)],
    )
