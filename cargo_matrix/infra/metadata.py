# -----------------------------------------------------------------------------
# WORKSPACE METADATA
# -----------------------------------------------------------------------------
# Responsibility: Ask cargo what the workspace looks like and turn its JSON
# into domain models. Everything else in the runner works on the resulting
# Workspace and never shells out for metadata again.
# -----------------------------------------------------------------------------

import json
from pathlib import Path

from pydantic import ValidationError

from cargo_matrix.core.manifest import read_manifest_metadata
from cargo_matrix.domain.errors import ExternalCommandFailure, ManifestIOError
from cargo_matrix.domain.models import Dependency, Package, Workspace
from cargo_matrix.infra.process import ProcessBuilder, ProcessRunner
from cargo_matrix.infra.term import Term


class MetadataLoader:
    """Loads a Workspace via `cargo metadata` and `cargo locate-project`."""

    def __init__(self, runner: ProcessRunner, term: Term, cargo: str = "cargo") -> None:
        self._runner = runner
        self._term = term
        self._cargo = cargo

    def load(self, manifest_path: Path | str | None = None, include_deps: bool = False) -> Workspace:
        """
        Load workspace metadata.

        Args:
            manifest_path: Manifest to start from (defaults to cargo's lookup)
            include_deps: Also load non-member packages, needed to list the
                features of dependencies

        Returns:
            The populated Workspace

        Raises:
            ExternalCommandFailure: If cargo fails
            ManifestIOError: If the JSON is malformed
        """
        cmd = ProcessBuilder(self._cargo, ["metadata", "--format-version=1"])
        if not include_deps:
            cmd.arg("--no-deps")
        if manifest_path:
            cmd.args(["--manifest-path", manifest_path])
        self._term.debug(f"loading metadata: {cmd.display(verbose=True)}")
        raw = self._runner.output(cmd)
        current = self.locate_project(manifest_path)
        return parse_metadata(raw, current_manifest=current)

    def locate_project(self, manifest_path: Path | str | None = None) -> Path | None:
        cmd = ProcessBuilder(self._cargo, ["locate-project", "--message-format", "json"])
        if manifest_path:
            cmd.args(["--manifest-path", manifest_path])
        try:
            raw = self._runner.output(cmd)
        except ExternalCommandFailure as e:
            self._term.warn(f"could not locate the current package: {e}")
            return None
        try:
            return Path(json.loads(raw)["root"])
        except (json.JSONDecodeError, KeyError, TypeError):
            self._term.warn("unexpected `cargo locate-project` output")
            return None


def _dependency(raw: dict) -> Dependency:
    return Dependency(
        name=raw["name"],
        rename=raw.get("rename"),
        optional=bool(raw.get("optional", False)),
        kind=raw.get("kind"),
        target=raw.get("target"),
    )


def _package(raw: dict) -> Package:
    manifest_path = Path(raw["manifest_path"])
    rust_version = raw.get("rust_version")
    publish = raw.get("publish")
    # Old cargo versions omit rust_version and publish.
    missing = [key for key in ("rust_version", "publish") if key not in raw]
    if missing and manifest_path.is_file():
        extra = read_manifest_metadata(manifest_path)
        if "rust_version" in missing:
            rust_version = extra.get("rust_version")
        if "publish" in missing:
            publish = extra.get("publish")
    return Package(
        id=raw.get("id", ""),
        name=raw["name"],
        manifest_path=manifest_path,
        features={k: list(v) for k, v in (raw.get("features") or {}).items()},
        dependencies=[_dependency(d) for d in raw.get("dependencies") or []],
        publish=publish,
        rust_version=rust_version,
    )


def parse_metadata(raw: str, current_manifest: Path | None = None) -> Workspace:
    """Build a Workspace from `cargo metadata --format-version=1` output."""
    try:
        data = json.loads(raw)
        packages = [_package(p) for p in data["packages"]]
        member_ids = data.get("workspace_members") or [p.id for p in packages]
        root = Path(data.get("workspace_root", "."))
    except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
        raise ManifestIOError(f"malformed cargo metadata: {e}", path="cargo metadata") from e

    by_id = {p.id: p for p in packages}
    members = [by_id[i] for i in member_ids if i in by_id]

    current = None
    if current_manifest is not None:
        for package in members:
            if package.manifest_path == current_manifest:
                current = package.name
                break

    return Workspace(root=root, members=members, packages=packages, current_package=current)
