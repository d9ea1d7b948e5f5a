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
# DOMAIN MODELS - THE RUN MATRIX
# -----------------------------------------------------------------------------
# Pydantic models describe what the metadata source hands us (packages,
# dependencies, the workspace) and the validated user inputs (partition).
# Plain dataclasses describe what the runner builds itself: feature flags,
# toolchain versions and the immutable run plan.
# -----------------------------------------------------------------------------

import functools
import math
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator

from cargo_matrix.domain.errors import RangeSpecError


class Dependency(BaseModel):
    """A dependency entry of a package, as reported by `cargo metadata`."""

    name: str
    rename: str | None = None
    optional: bool = False
    kind: str | None = Field(None, description="None for normal, 'dev' or 'build'")
    target: str | None = Field(None, description="Platform condition, if any")

    @property
    def feature_name(self) -> str:
        """The name under which this dependency is addressable as a feature."""
        return self.rename or self.name

    @property
    def is_normal(self) -> bool:
        return self.kind is None and self.target is None


class Package(BaseModel):
    """
    One member of the workspace. Read-only to the runner.

    publish follows cargo metadata: None means unrestricted, an empty list
    means the package may not be published (private).
    """

    id: str = ""
    name: str = Field(..., min_length=1)
    manifest_path: Path
    features: dict[str, list[str]] = Field(default_factory=dict)
    dependencies: list[Dependency] = Field(default_factory=list)
    publish: list[str] | None = None
    rust_version: str | None = None

    @property
    def optional_deps(self) -> list[str]:
        return [d.feature_name for d in self.dependencies if d.optional]

    @property
    def is_private(self) -> bool:
        return self.publish is not None and len(self.publish) == 0

    @property
    def manifest_dir(self) -> Path:
        return self.manifest_path.parent


class Workspace(BaseModel):
    """
    Pre-populated workspace metadata.

    members: workspace members, in metadata order.
    packages: every package known to the metadata source (members included),
              used to look up the features of dependencies.
    current_package: name of the package the manifest path points at, or
                     None for a virtual manifest.
    """

    root: Path
    members: list[Package]
    packages: list[Package] = Field(default_factory=list)
    current_package: str | None = None

    def member(self, name: str) -> Package | None:
        return next((p for p in self.members if p.name == name), None)

    def find_package(self, name: str) -> Package | None:
        for package in self.packages or self.members:
            if package.name == name:
                return package
        return None


# -----------------------------------------------------------------------------
# Feature flags
# -----------------------------------------------------------------------------


class FeatureKind(str, Enum):
    NORMAL = "normal"
    GROUP = "group"
    PATH = "path"


@dataclass(frozen=True, eq=False)
class Feature:
    """
    A feature flag as the runner sees it.

    NORMAL: a single declared flag.
    GROUP:  several flags joined with ',' and treated as one unit.
    PATH:   "dependency/flag", a flag of a dependency.

    Identity is the canonical name: two features are equal when their names
    are equal, whatever their kind.
    """

    name: str
    kind: FeatureKind = FeatureKind.NORMAL
    members: tuple[str, ...] = ()

    @classmethod
    def normal(cls, name: str) -> "Feature":
        return cls(name=name)

    @classmethod
    def group(cls, names) -> "Feature":
        members = tuple(names)
        return cls(name=",".join(members), kind=FeatureKind.GROUP, members=members)

    @classmethod
    def path(cls, parent: str, name: str) -> "Feature":
        return cls(name=f"{parent}/{name}", kind=FeatureKind.PATH)

    @property
    def atoms(self) -> tuple[str, ...]:
        """Atomic flag names: the member list of a group, else the name itself."""
        if self.kind is FeatureKind.GROUP:
            return self.members
        return (self.name,)

    def matches(self, name: str) -> bool:
        return name in self.atoms

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Feature):
            return self.name == other.name
        if isinstance(other, str):
            return self.name == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.name)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        if self.kind is FeatureKind.GROUP:
            return f"[{self.name}]"
        return self.name


# -----------------------------------------------------------------------------
# Toolchain versions
# -----------------------------------------------------------------------------


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    """major.minor[.patch]; ordered on (major, minor, patch-if-present)."""

    major: int
    minor: int
    patch: int | None = None

    @classmethod
    def parse(cls, text: str) -> "Version":
        """Parse "1.60" or "1.60.1". Raises ValueError on anything else."""
        digits = text.strip().split(".", 2)
        if len(digits) < 2:
            raise ValueError(f"missing minor version in `{text}`")
        try:
            major = int(digits[0])
            minor = int(digits[1])
            patch = int(digits[2]) if len(digits) == 3 else None
        except ValueError:
            raise ValueError(f"invalid version `{text}`") from None
        if major < 0 or minor < 0 or (patch is not None and patch < 0):
            raise ValueError(f"invalid version `{text}`")
        return cls(major, minor, patch)

    def _key(self) -> tuple[int, ...]:
        if self.patch is None:
            return (self.major, self.minor)
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    @property
    def toolchain(self) -> str:
        """rustup toolchain selector, minor granularity (e.g. "+1.60")."""
        return f"+{self.major}.{self.minor}"

    def __str__(self) -> str:
        return ".".join(str(d) for d in self._key())


class VersionBound(str, Enum):
    """Sentinels resolved before a range is enumerated."""

    MSRV = "msrv"
    STABLE = "stable"


@dataclass(frozen=True)
class VersionRange:
    start: Version | VersionBound
    end: Version | VersionBound

    @classmethod
    def parse(cls, text: str) -> "VersionRange":
        """
        Parse `START..END`, `START..=END`, `START..`, `..END` or `..`.

        An omitted start means the packages' minimum supported version, an
        omitted end the latest stable release.
        """
        if ".." not in text:
            raise RangeSpecError(f"invalid version range `{text}`: expected `START..END`")
        start_text, end_text = text.split("..", 1)
        if end_text.startswith("="):
            end_text = end_text[1:]
        try:
            start = Version.parse(start_text) if start_text.strip() else VersionBound.MSRV
            end = Version.parse(end_text) if end_text.strip() else VersionBound.STABLE
        except ValueError as e:
            raise RangeSpecError(f"invalid version range `{text}`: {e}") from None
        return cls(start, end)

    @classmethod
    def msrv(cls) -> "VersionRange":
        """Each package on exactly its own declared rust-version."""
        return cls(VersionBound.MSRV, VersionBound.MSRV)

    @property
    def rust_version_mode(self) -> bool:
        return self.start is VersionBound.MSRV and self.end is VersionBound.MSRV


# -----------------------------------------------------------------------------
# Partitioning and log grouping
# -----------------------------------------------------------------------------


class Partition(BaseModel):
    """A contiguous shard `index/count` (1-based index) of the run plan."""

    index: int
    count: int

    @model_validator(mode="after")
    def _check_bounds(self) -> "Partition":
        if self.count <= 0 or not 0 < self.index <= self.count:
            raise ValueError(f"partition must satisfy 0 < M <= N, got {self.index}/{self.count}")
        return self

    @classmethod
    def parse(cls, text: str) -> "Partition":
        index, sep, count = text.partition("/")
        if not sep:
            raise RangeSpecError(f"invalid partition `{text}`: expected `M/N`")
        try:
            return cls(index=int(index), count=int(count))
        except (ValueError, ValidationError) as e:
            raise RangeSpecError(f"invalid partition `{text}`: {e}") from None

    def chunk_size(self, total: int) -> int:
        return max(1, math.ceil(total / self.count))

    def shard_of(self, ordinal: int, total: int) -> int:
        """0-based shard of the run at 0-based position `ordinal`."""
        return ordinal // self.chunk_size(total)

    def selects(self, ordinal: int, total: int) -> bool:
        return self.shard_of(ordinal, total) == self.index - 1

    def __str__(self) -> str:
        return f"{self.index}/{self.count}"


class LogGroup(str, Enum):
    NONE = "none"
    GITHUB_ACTIONS = "github-actions"

    @classmethod
    def auto(cls) -> "LogGroup":
        if os.getenv("GITHUB_ACTIONS", "").lower() == "true":
            return cls.GITHUB_ACTIONS
        return cls.NONE


# -----------------------------------------------------------------------------
# Run plan
# -----------------------------------------------------------------------------


class RunVariant(str, Enum):
    """How the feature flags of one run are activated."""

    DEFAULT = "default"
    NO_DEFAULT = "no-default-features"
    ALL_FEATURES = "all-features"
    FEATURES = "features"


class RunState(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RunPlanEntry:
    """One planned external invocation. Immutable once the plan is built."""

    ordinal: int
    package: Package
    variant: RunVariant
    features: tuple[Feature, ...] = ()
    toolchain: Version | None = None
    target: str | None = None

    @property
    def feature_names(self) -> list[str]:
        return [f.name for f in self.features]


@dataclass
class RunRecord:
    """What happened to one plan entry."""

    entry: RunPlanEntry
    command: str
    state: RunState = RunState.PENDING
    exit_code: int | None = None
