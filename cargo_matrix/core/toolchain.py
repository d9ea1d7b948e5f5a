# -----------------------------------------------------------------------------
# TOOLCHAIN RESOLVER
# -----------------------------------------------------------------------------
# Responsibility: Turn a requested version range into the list of rustup
# toolchains to run on, install them on demand, and detect the versions of
# cargo and rustup themselves.
#
# Version detection never aborts a run: an unreadable version degrades to
# the unknown sentinel (0), which disables every version-gated behaviour.
# -----------------------------------------------------------------------------

from typing import Iterable

from cargo_matrix.domain.errors import (
    ConfigurationError,
    ExternalCommandFailure,
    RangeSpecError,
    ToolchainInstallFailure,
    VersionDetectionFailure,
)
from cargo_matrix.domain.models import Package, Version, VersionBound, VersionRange
from cargo_matrix.infra.process import ProcessBuilder, ProcessRunner
from cargo_matrix.infra.term import Term

UNKNOWN_MINOR = 0
# `--version-range` relies on `rustup toolchain add --profile`.
MIN_RUSTUP_MINOR = 23
# `cargo metadata` reports dependency features from 1.41 on.
MIN_DEPS_FEATURES_MINOR = 41


def parse_release(output: str, command: str = "cargo --version --verbose") -> Version:
    """
    Parse the `release: 1.70[.0][-channel]` line of verbose version output.

    Raises:
        VersionDetectionFailure: If there is no such line or it is malformed
    """
    release = None
    for line in output.splitlines():
        if line.startswith("release: "):
            release = line[len("release: "):].strip()
            break
    if release is None:
        raise VersionDetectionFailure(
            f"unexpected output from {command}: {output}", command=command, output=output
        )
    number = release.split("-", 1)[0]
    try:
        version = Version.parse(number)
    except ValueError as e:
        raise VersionDetectionFailure(
            f"unexpected output from {command}: {e}", command=command, output=output
        ) from None
    if version.major != 1:
        raise VersionDetectionFailure(
            f"unexpected output from {command}: {output}", command=command, output=output
        )
    return version


def parse_rustup_version(output: str) -> Version:
    """Parse `rustup 1.26.0 (5af9b9484 2023-04-05)`."""
    words = output.split()
    if len(words) < 2 or words[0] != "rustup":
        raise VersionDetectionFailure(
            f"unexpected output from rustup --version: {output}",
            command="rustup --version",
            output=output,
        )
    try:
        version = Version.parse(words[1])
    except ValueError as e:
        raise VersionDetectionFailure(
            f"unexpected output from rustup --version: {e}",
            command="rustup --version",
            output=output,
        ) from None
    if version.major != 1:
        raise VersionDetectionFailure(
            f"unexpected output from rustup --version: {output}",
            command="rustup --version",
            output=output,
        )
    return version


class ToolchainResolver:
    """
    Resolves version ranges against rustup.

    Installed toolchains are remembered, so each one is checked at most once
    per invocation.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        term: Term,
        cargo: str = "cargo",
        rustup: str = "rustup",
    ) -> None:
        self._runner = runner
        self._term = term
        self._cargo = cargo
        self._rustup = rustup
        self._installed: set[str] = set()

    # -------------------------------------------------------------------------
    # Version detection
    # -------------------------------------------------------------------------

    def detect_version(self, toolchain: str | Version | None = None) -> Version:
        """
        Version of cargo, optionally of a specific toolchain.

        Raises:
            VersionDetectionFailure: If cargo fails or its output is unexpected
        """
        cmd = ProcessBuilder(self._cargo)
        if toolchain is not None:
            cmd.arg(toolchain.toolchain if isinstance(toolchain, Version) else f"+{toolchain}")
        cmd.args(["--version", "--verbose"])
        try:
            output = self._runner.output(cmd)
        except ExternalCommandFailure as e:
            raise VersionDetectionFailure(str(e), command=str(cmd)) from e
        return parse_release(output, command=str(cmd))

    def host_cargo_minor(self) -> int:
        try:
            return self.detect_version().minor
        except VersionDetectionFailure as e:
            self._term.warn(f"unable to determine cargo version: {e}")
            return UNKNOWN_MINOR

    def rustup_minor(self) -> int:
        try:
            output = self._runner.output(ProcessBuilder(self._rustup, ["--version"]))
            return parse_rustup_version(output).minor
        except (ExternalCommandFailure, VersionDetectionFailure) as e:
            self._term.warn(f"unable to determine rustup version: {e}")
            return UNKNOWN_MINOR

    def check_rustup(self) -> None:
        """--version-range needs rustup 1.23 or later, when that is knowable."""
        minor = self.rustup_minor()
        if minor != UNKNOWN_MINOR and minor < MIN_RUSTUP_MINOR:
            raise RangeSpecError(
                f"--version-range requires rustup 1.{MIN_RUSTUP_MINOR} or later (found 1.{minor})"
            )

    def require_cargo(self, minor: int, flag: str) -> None:
        """
        Reject `flag` when the host cargo is older than 1.`minor`.

        An unknown cargo version never blocks.

        Raises:
            ConfigurationError: If the host cargo is known to be too old
        """
        host = self.host_cargo_minor()
        if host != UNKNOWN_MINOR and host < minor:
            raise ConfigurationError(f"{flag} requires Cargo 1.{minor} or later (found 1.{host})")

    # -------------------------------------------------------------------------
    # Installation
    # -------------------------------------------------------------------------

    def has_stable(self) -> bool:
        try:
            output = self._runner.output(ProcessBuilder(self._rustup, ["toolchain", "list"]))
        except ExternalCommandFailure as e:
            self._term.warn(f"unable to list installed toolchains: {e}")
            return False
        return any(line.split(" ", 1)[0].startswith("stable") for line in output.splitlines())

    def ensure_installed(
        self, toolchain: str | Version, targets: Iterable[str] = (), stream: bool = False
    ) -> None:
        """
        Install `toolchain` unless it already answers `cargo +T --version`.

        Args:
            toolchain: A Version or a rustup channel name ("stable")
            targets: Extra compilation targets to add
            stream: Show rustup's output live instead of capturing it

        Raises:
            ToolchainInstallFailure: If rustup exits non-zero
        """
        name = f"{toolchain.major}.{toolchain.minor}" if isinstance(toolchain, Version) else toolchain
        targets = list(targets)
        key = ",".join([name, *targets])
        if key in self._installed:
            return

        version_check = ProcessBuilder(self._cargo, [f"+{name}", "--version"])
        if not targets and self._runner.run(version_check, capture=True).ok:
            self._installed.add(key)
            return

        cmd = ProcessBuilder(
            self._rustup, ["toolchain", "add", name, "--no-self-update", "--profile", "minimal"]
        )
        for target in targets:
            cmd.args(["--target", target])
        self._term.info(f"installing toolchain {name}", tag="RUSTUP")
        result = self._runner.run(cmd, capture=not stream)
        if not result.ok:
            detail = (result.stderr or result.stdout).strip()
            raise ToolchainInstallFailure(
                f"failed to install toolchain {name}" + (f":\n{detail}" if detail else ""),
                toolchain=name,
                exit_code=result.returncode,
            )
        self._installed.add(key)

    def stable_version(self) -> Version:
        if not self.has_stable():
            self.ensure_installed("stable", stream=True)
        return self.detect_version("stable")

    # -------------------------------------------------------------------------
    # Range resolution
    # -------------------------------------------------------------------------

    def _check(self, version: Version, warn_patch: bool = True) -> Version:
        if version.major != 1:
            raise RangeSpecError(f"major version must be 1, got {version}")
        if warn_patch and version.patch is not None:
            self._term.warn(
                "--version-range always selects the latest patch release per minor release, "
                f"not the specified patch release `{version.patch}`"
            )
        return Version(version.major, version.minor)

    def _declared_versions(self, packages: Iterable[Package]) -> list[Version]:
        versions = []
        for package in packages:
            if not package.rust_version:
                continue
            try:
                versions.append(Version.parse(package.rust_version))
            except ValueError as e:
                self._term.warn(f"ignoring rust-version of {package.name}: {e}")
        return versions

    def resolve(
        self,
        version_range: VersionRange,
        step: int | None = None,
        packages: Iterable[Package] = (),
    ) -> list[Version]:
        """
        Every minor version in the range, stepped.

        Args:
            version_range: Parsed range; sentinels are resolved here
            step: Minor-version step (default 1)
            packages: Packages whose rust-version bounds an omitted start

        Returns:
            Minor-granularity versions in ascending order

        Raises:
            RangeSpecError: For a zero step, a non-1 major, a missing
                rust-version, an undetectable stable version, or an empty
                result
        """
        packages = list(packages)
        if step is None:
            step = 1
        if step <= 0:
            raise RangeSpecError("--version-step cannot be zero")

        if version_range.rust_version_mode:
            declared = sorted({self._check(v, warn_patch=False) for v in self._declared_versions(packages)})
            if not declared:
                raise RangeSpecError("no package declares a rust-version")
            return declared

        if version_range.start is VersionBound.MSRV:
            declared = self._declared_versions(packages)
            if not declared:
                raise RangeSpecError(
                    "no rust-version field in the selected packages; specify the start of the range"
                )
            start = self._check(min(declared), warn_patch=False)
        else:
            start = self._check(version_range.start)

        if version_range.end is VersionBound.STABLE:
            try:
                stable = self.stable_version()
            except VersionDetectionFailure as e:
                raise RangeSpecError(
                    f"cannot resolve the end of the version range: unable to determine the stable version: {e}"
                ) from e
            end = Version(stable.major, stable.minor)
        elif isinstance(version_range.end, VersionBound):
            raise RangeSpecError("the end of a version range cannot be the minimum supported version")
        else:
            end = self._check(version_range.end)

        versions = [Version(1, minor) for minor in range(start.minor, end.minor + 1, step)]
        if not versions:
            raise RangeSpecError(f"specified version range `{start}..={end}` is empty")
        return versions
