# -----------------------------------------------------------------------------
# TERMINAL OUTPUT
# -----------------------------------------------------------------------------
# Responsibility: every line the runner prints goes through a Term. The
# verbosity, color choice and log grouping mode live on the instance and are
# handed to each component explicitly; nothing here is process-global.
#
# Messages follow the tagged style: "[TAG] message", colored by severity.
# -----------------------------------------------------------------------------

from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.markup import escape

from cargo_matrix.domain.models import LogGroup

COLOR_CHOICES = ("auto", "always", "never")


def _make_console(color: str, stderr: bool) -> Console:
    if color == "always":
        return Console(stderr=stderr, force_terminal=True, highlight=False)
    if color == "never":
        return Console(stderr=stderr, no_color=True, highlight=False)
    return Console(stderr=stderr, highlight=False)


class Term:
    """
    Colored, tagged status output.

    Status messages go to stderr; command listings (--print-command-list)
    go to stdout so they can be piped.
    """

    def __init__(
        self,
        verbose: bool = False,
        color: str = "auto",
        log_group: LogGroup = LogGroup.NONE,
        console: Console | None = None,
        out: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self.color = color
        self.log_group = log_group
        self.console = console or _make_console(color, stderr=True)
        self.out = out or _make_console(color, stderr=False)

    def info(self, message: str, tag: str = "INFO") -> None:
        self.console.print(f"[cyan][{tag}] {escape(message)}[/cyan]")

    def success(self, message: str, tag: str = "INFO") -> None:
        self.console.print(f"[green][{tag}] {escape(message)}[/green]")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow][WARN] {escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[bold red][ERROR] {escape(message)}[/bold red]")

    def debug(self, message: str, tag: str = "INFO") -> None:
        """Only printed with --verbose."""
        if self.verbose:
            self.console.print(f"[dim][{tag}] {escape(message)}[/dim]")

    def command(self, line: str) -> None:
        """Print one composed command verbatim on stdout."""
        self.out.print(line, markup=False, highlight=False, soft_wrap=True)

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        """
        Wrap the output of one run.

        GitHub Actions folds everything between the two workflow commands
        into a collapsible section titled `title`.
        """
        if self.log_group is LogGroup.GITHUB_ACTIONS:
            self.out.print(f"::group::{title}", markup=False, highlight=False, soft_wrap=True)
            try:
                yield
            finally:
                self.out.print("::endgroup::", markup=False, highlight=False)
        else:
            self.info(title, tag="MATRIX")
            yield
