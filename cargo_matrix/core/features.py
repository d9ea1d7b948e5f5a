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
# FEATURE COMBINATIONS
# -----------------------------------------------------------------------------
# Responsibility: Decide which feature flags a package exposes and which
# combinations of them are worth running.
#
# A combination that lists a flag already enabled by another member of the
# same combination activates exactly the same code as the combination
# without it, so it is filtered out before anything runs.
# -----------------------------------------------------------------------------

from dataclasses import dataclass, field
from typing import Iterable, Sequence, TypeVar

from cargo_matrix.domain.models import Feature, Package, Workspace

T = TypeVar("T")

DEP_PREFIX = "dep:"


@dataclass
class FeatureGraph:
    """
    The flags of one package, classified.

    normal:        declared flags (minus `default` and implicit optional-dep flags)
    optional_deps: optional dependencies usable as flags
    deps_features: "dep/flag" features of normal workspace dependencies
    """

    normal: list[Feature] = field(default_factory=list)
    optional_deps: list[Feature] = field(default_factory=list)
    deps_features: list[Feature] = field(default_factory=list)

    @classmethod
    def from_package(
        cls, package: Package, workspace: Workspace | None = None, include_deps_features: bool = False
    ) -> "FeatureGraph":
        # Optional deps referenced as `dep:name` are hidden, not flags. cargo
        # metadata reports the implicit `name = ["dep:name"]` entry of a
        # visible optional dep, which must not hide it.
        namespaced = {
            value[len(DEP_PREFIX):]
            for key, values in package.features.items()
            if list(values) != [f"{DEP_PREFIX}{key}"]
            for value in values
            if value.startswith(DEP_PREFIX)
        }
        optional = [name for name in package.optional_deps if name not in namespaced]

        normal = [
            Feature.normal(name)
            for name in package.features
            if name != "default" and name not in optional
        ]

        deps_features: list[Feature] = []
        if include_deps_features and workspace is not None:
            for dep in package.dependencies:
                if not dep.is_normal:
                    continue
                dep_package = workspace.find_package(dep.name)
                if dep_package is None or dep_package.name == package.name:
                    continue
                deps_features.extend(
                    Feature.path(dep.feature_name, name) for name in dep_package.features
                )

        return cls(
            normal=normal,
            optional_deps=[Feature.normal(name) for name in optional],
            deps_features=deps_features,
        )

    @property
    def all(self) -> list[Feature]:
        return [*self.normal, *self.optional_deps, *self.deps_features]

    def contains(self, name: str) -> bool:
        return any(f == name for f in self.all)

    def __len__(self) -> int:
        return len(self.normal) + len(self.optional_deps) + len(self.deps_features)


def powerset(items: Iterable[T], depth: int | None = None) -> list[list[T]]:
    """
    All subsets of `items`, in a fixed order.

    Each new item is appended to a snapshot of every subset built so far,
    so [a, b, c] yields [], [a], [b], [a, b], [c], [a, c], [b, c], [a, b, c].
    Subsets larger than `depth` are dropped while generating.
    """
    result: list[list[T]] = [[]]
    for item in items:
        extensions = [[*combo, item] for combo in result]
        if depth is not None:
            extensions = [combo for combo in extensions if len(combo) <= depth]
        result.extend(extensions)
    return result


def feature_deps(feature_map: dict[str, Sequence[str]]) -> dict[str, set[str]]:
    """
    Transitive closure of every declared flag.

    `dep:` entries enable dependencies, not flags, and are skipped. A flag is
    never part of its own closure, even on a cycle.
    """
    closures: dict[str, set[str]] = {}
    for root in feature_map:
        seen: set[str] = set()
        stack = [root]
        while stack:
            current = stack.pop()
            for name in feature_map.get(current, ()):
                if name.startswith(DEP_PREFIX) or name == root or name in seen:
                    continue
                seen.add(name)
                stack.append(name)
        closures[root] = seen
    return closures


def cyclic_features(closures: dict[str, set[str]]) -> list[tuple[str, str]]:
    """Pairs of flags that enable each other."""
    pairs = []
    for a, enabled in closures.items():
        for b in enabled:
            if a < b and a in closures.get(b, ()):
                pairs.append((a, b))
    return sorted(pairs)


def at_least_one_of_for_package(
    groups: Iterable[Feature], closures: dict[str, set[str]]
) -> list[set[str]]:
    """
    For every requested group, the flags that would enable one of its members.

    Groups none of whose members this package knows about are dropped.
    """
    groups = list(groups)
    if not groups:
        return []

    enabled_by: dict[str, set[str]] = {}
    for flag, enables in closures.items():
        enabled_by.setdefault(flag, set()).add(flag)
        for name in enables:
            enabled_by.setdefault(name, set()).add(flag)

    required = []
    for group in groups:
        names = set()
        for atom in group.atoms:
            names |= enabled_by.get(atom, set())
        if names:
            required.append(names)
    return required


def effective_activation(combo: Iterable[Feature], closures: dict[str, set[str]]) -> set[str]:
    """Every flag a combination turns on, directly or transitively."""
    active: set[str] = set()
    for feature in combo:
        for atom in feature.atoms:
            active.add(atom)
            active |= closures.get(atom, set())
    return active


def _is_redundant(combo: Sequence[Feature], closures: dict[str, set[str]]) -> bool:
    for i, a in enumerate(combo):
        implied: set[str] = set()
        for atom in a.atoms:
            implied |= closures.get(atom, set())
        if not implied:
            continue
        for j, b in enumerate(combo):
            if i != j and all(atom in implied for atom in b.atoms):
                return True
    return False


def feature_powerset(
    features: Iterable[Feature],
    depth: int | None,
    feature_map: dict[str, Sequence[str]],
    at_least_one_of: Iterable[Feature] = (),
    mutually_exclusive: Iterable[Feature] = (),
) -> list[list[Feature]]:
    """
    Powerset of `features` without redundant combinations.

    Args:
        features: Candidate flags, in run order
        depth: Maximum combination size, None for unbounded
        feature_map: The package's declared flag -> enabled flags map
        at_least_one_of: Groups of which every combination must enable one
        mutually_exclusive: Groups of which no combination may enable two

    Returns:
        Surviving combinations in powerset order. The empty combination
        is included whenever the at-least-one-of filter allows it.
    """
    closures = feature_deps(feature_map)
    required = at_least_one_of_for_package(at_least_one_of, closures)
    exclusive = [set(group.atoms) for group in mutually_exclusive]

    result = []
    for combo in powerset(features, depth):
        if _is_redundant(combo, closures):
            continue
        if required:
            atoms = {atom for f in combo for atom in f.atoms}
            if not all(atoms & names for names in required):
                continue
        if exclusive:
            active = effective_activation(combo, closures)
            if any(len(active & names) > 1 for names in exclusive):
                continue
        result.append(combo)
    return result
