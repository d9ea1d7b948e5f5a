# -----------------------------------------------------------------------------
# PROCESS INFRASTRUCTURE - External Commands
# -----------------------------------------------------------------------------
# Responsibility: Compose and execute cargo / rustup invocations.
# Uses subprocess directly; the runner never needs a shell.
#
# A ProcessBuilder is an ordered argv under construction. The orchestrator
# clones a base builder per run and appends the run's flags.
# -----------------------------------------------------------------------------

import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from cargo_matrix.domain.errors import ExternalCommandFailure


@dataclass
class ProcessBuilder:
    program: str
    arguments: list[str] = field(default_factory=list)

    def arg(self, value) -> "ProcessBuilder":
        self.arguments.append(str(value))
        return self

    def args(self, values) -> "ProcessBuilder":
        self.arguments.extend(str(v) for v in values)
        return self

    def clone(self) -> "ProcessBuilder":
        return ProcessBuilder(self.program, list(self.arguments))

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.arguments]

    def display(self, verbose: bool = False) -> str:
        """
        Human-readable command line.

        The --manifest-path pair is noise in normal output and only shown
        with verbose.
        """
        parts = []
        skip_next = False
        for arg in self.arguments:
            if skip_next:
                skip_next = False
                continue
            if not verbose:
                if arg == "--manifest-path":
                    skip_next = True
                    continue
                if arg.startswith("--manifest-path="):
                    continue
            parts.append(arg)
        return shlex.join([Path(self.program).name if not verbose else self.program, *parts])

    def __str__(self) -> str:
        return self.display()


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """
    Runs composed commands.

    Streaming runs inherit stdio so the build tool's own output reaches
    the terminal unchanged; captured runs return the text.
    """

    def __init__(self, cwd: Path | str | None = None) -> None:
        self._cwd = Path(cwd) if cwd else None

    def run(
        self,
        cmd: ProcessBuilder | list[str],
        capture: bool = False,
        check: bool = False,
        cwd: Path | str | None = None,
    ) -> CommandResult:
        """
        Run a command and wait for it.

        Args:
            cmd: A builder or an argv list
            capture: Capture stdout/stderr instead of streaming them
            check: Raise on non-zero exit
            cwd: Working directory override

        Returns:
            CommandResult with the exit code (and text, when captured)

        Raises:
            ExternalCommandFailure: If the program cannot be started, or
                exits non-zero and check=True
        """
        argv = cmd.argv if isinstance(cmd, ProcessBuilder) else list(cmd)
        display = cmd.display() if isinstance(cmd, ProcessBuilder) else shlex.join(argv)
        try:
            result = subprocess.run(
                argv,
                cwd=cwd or self._cwd,
                capture_output=capture,
                text=True,
            )
        except OSError as e:
            raise ExternalCommandFailure(
                f"could not execute `{display}`: {e}", command=display, exit_code=127
            ) from e

        outcome = CommandResult(result.returncode, result.stdout or "", result.stderr or "")
        if check and not outcome.ok:
            detail = (outcome.stderr or outcome.stdout).strip()
            message = f"process didn't exit successfully: `{display}` (exit status: {outcome.returncode})"
            if detail:
                message = f"{message}\n{detail}"
            raise ExternalCommandFailure(message, command=display, exit_code=outcome.returncode)
        return outcome

    def output(self, cmd: ProcessBuilder | list[str], cwd: Path | str | None = None) -> str:
        """Run with capture and check; return stdout."""
        return self.run(cmd, capture=True, check=True, cwd=cwd).stdout
