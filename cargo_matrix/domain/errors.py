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
# ERROR TAXONOMY
# -----------------------------------------------------------------------------
# Every failure the matrix runner reports is one of these kinds. Callers
# branch on the class (e.g. keep-going only absorbs ExternalCommandFailure),
# never on message text.
# -----------------------------------------------------------------------------

from pathlib import Path


class MatrixError(Exception):
    """Base class for every error surfaced to the user."""

    exit_code = 1


class ConfigurationError(MatrixError):
    """Raised when command-line options or the config file are inconsistent."""

    pass


class ManifestIOError(MatrixError):
    """Raised when a manifest cannot be read or written. Always fatal."""

    def __init__(self, message: str, path: Path | str) -> None:
        super().__init__(message)
        self.path = Path(path)


class ManifestFormatError(MatrixError):
    """
    Raised when a header line cannot be classified.

    The manifest editor catches this itself and treats the header as
    "not a match"; it never escapes strip_sections.
    """

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class VersionDetectionFailure(MatrixError):
    """Raised when a `--version` style output cannot be parsed."""

    def __init__(self, message: str, command: str = "", output: str = "") -> None:
        super().__init__(message)
        self.command = command
        self.output = output


class ToolchainInstallFailure(MatrixError):
    """Raised when installing a toolchain exits non-zero."""

    def __init__(self, message: str, toolchain: str, exit_code: int) -> None:
        super().__init__(message)
        self.toolchain = toolchain
        self.exit_code_value = exit_code


class RangeSpecError(MatrixError):
    """Raised for malformed/empty version ranges, zero steps and bad partitions."""

    pass


class ExternalCommandFailure(MatrixError):
    """Raised when a composed command exits non-zero."""

    def __init__(
        self, message: str, command: str, exit_code: int, package: str | None = None
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = exit_code
        self.package = package


class FailedRunsError(ExternalCommandFailure):
    """
    Keep-going summary: one or more runs failed but the plan was finished.

    failed_commands maps package name -> composed command descriptions,
    in the order the failures happened.
    """

    def __init__(self, failed_commands: dict[str, list[str]]) -> None:
        self.failed_commands = failed_commands
        count = sum(len(v) for v in failed_commands.values())
        super().__init__(self._render(failed_commands), command="", exit_code=1)
        self.count = count

    @staticmethod
    def _render(failed_commands: dict[str, list[str]]) -> str:
        lines = ["failed commands:"]
        for package, commands in failed_commands.items():
            lines.append(f"    {package}:")
            lines.extend(f"        {cmd}" for cmd in commands)
        return "\n".join(lines)


class RestoreFailure(MatrixError):
    """Raised when the original manifest text cannot be written back."""

    def __init__(self, message: str, path: Path | str) -> None:
        super().__init__(message)
        self.path = Path(path)
