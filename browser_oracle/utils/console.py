"""
Rich console utilities for dual-mode CLI output.

Provides readable terminal output for humans and structured JSON for scripts
and agents. Every output function adapts to the global output_mode.

Human Mode (--format text):
    - Rich spinner while the browser works
    - Answer rendered in a panel, run details in a table
    - ANSI colors and Unicode symbols

Agent Mode (--format json):
    - One JSON object on stdout at the end of the command
    - No ANSI codes or spinners

Examples:
    >>> from browser_oracle.utils.console import output_mode, spinner, success
    >>> output_mode.format = "text"
    >>> with spinner("Waiting for the assistant..."):
    ...     result = run()
    >>> success("Answer captured")

    >>> output_mode.format = "json"
    >>> success("Answer captured")  # Buffers to JSON
    >>> output_mode.flush_json()     # Writes JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

FORMATS = ("text", "json")


class OutputMode:
    """
    Output mode configuration for the CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        quiet: Suppress info lines and decorations
        _json_buffer: Accumulated JSON payload in agent mode

    Examples:
        >>> mode = OutputMode()
        >>> mode.is_human()
        True
        >>> mode.format = "json"
        >>> mode.is_agent()
        True
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        """
        Raises:
            ValueError: If format_type is not "text" or "json"
        """
        if format_type not in FORMATS:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add a key to the JSON payload written by flush_json()."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Write buffered JSON to stdout and clear the buffer.

        A no-op in human mode or when nothing was buffered.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Show a spinner while the body runs (human mode only).

    Yields:
        Rich status in human mode, None otherwise
    """
    if output_mode.is_human() and not output_mode.quiet:
        with console_err.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    """
    Print a success message.

    Human mode: green checkmark. Agent mode: buffered as status/message.
    """
    if output_mode.is_human() and not output_mode.quiet:
        console_err.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human mode: red X on stderr. Agent mode: buffered as status/error.
    """
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console_err.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console_err.print(f"[blue]ℹ[/blue] {message}")


def print_answer(result: dict[str, Any]) -> None:
    """
    Print a captured answer.

    Human mode: the markdown answer in a panel followed by a run table.
    Quiet mode: the bare answer text, suitable for piping.
    Agent mode: the full result dict under "result".

    Expected keys are those of BrowserRunResult.to_dict().
    """
    if output_mode.is_agent():
        output_mode.add_json("result", result)
        return

    answer = result.get("answer_markdown") or result.get("answer_text") or ""
    if output_mode.quiet:
        console.print(answer, markup=False, highlight=False)
        return

    console.print(Panel(Markdown(answer), title="Answer", box=box.ROUNDED, border_style="cyan"))

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Took", f"{result.get('took_ms', 0) / 1000:.1f}s")
    table.add_row("Tokens (est.)", str(result.get("answer_tokens", 0)))
    if result.get("tab_url"):
        table.add_row("Conversation", result["tab_url"])
    if result.get("chrome_port"):
        table.add_row("DevTools", f"{result.get('chrome_host')}:{result['chrome_port']}")
    console.print(table)


def print_detection(rows: list[dict[str, Any]]) -> None:
    """
    Print detection results as a table.

    Each row: {"item": str, "value": str | None}. A missing value prints as
    "not found" in red.
    """
    if output_mode.is_agent():
        output_mode.add_json("detected", {row["item"]: row["value"] for row in rows})
        return

    table = Table(title="Browser Detection", box=box.ROUNDED)
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Value")
    for row in rows:
        value = row["value"]
        table.add_row(row["item"], str(value) if value else "[red]not found[/red]")
    console.print(table)
