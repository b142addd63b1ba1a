"""
CLI entrypoint for Browser Oracle.

Drives a logged-in chat web UI (ChatGPT, Grok) through Chrome DevTools and
prints the assistant's answer. Output follows the dual-mode console:
- Human-friendly output: spinner, answer panel, run table
- Agent-friendly output: one JSON object on stdout

Commands:
    ask: Send one prompt (with optional files) and print the answer
    sync-profile: Copy a Chrome profile into an automation directory
    detect: Show the detected Chrome binary and cookie store

Exit codes:
    0: Success
    1: Configuration error (bad YAML, no Chrome, missing profile or file)
    2: Blocked page or login required
    3: Automation failure (prompt not sent, timeout, DevTools lost)
    130: Interrupted

Examples:
    # Ask with the default ChatGPT target
    browser-oracle ask "Review this diff" --file changes.patch

    # Reuse a manual-login profile and print JSON
    browser-oracle ask "Hello" --manual-login --format json

    # Copy the Default profile for cookie-free runs
    browser-oracle sync-profile ./automation-profile --profile Default
"""

import asyncio
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from browser_oracle.browser import assemble_browser_prompt, run_browser_automation
from browser_oracle.browser.detect import detect_browser_binary, detect_cookie_store
from browser_oracle.browser.profile_sync import sync_profile
from browser_oracle.config.loader import resolve_config
from browser_oracle.exceptions import (
    BlockedError,
    BrowserOracleError,
    ConfigurationError,
    LoginRequiredError,
)
from browser_oracle.utils.console import (
    error,
    info,
    output_mode,
    print_answer,
    print_detection,
    spinner,
    success,
    warning,
)
from browser_oracle.utils.logging import get_logger, setup_logging

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0  # Answer captured
EXIT_CONFIG_ERROR = 1  # Config, binary, profile or input file problem
EXIT_PAGE_STATE_ERROR = 2  # Challenge page or logged out
EXIT_AUTOMATION_ERROR = 3  # Anything else the engine raised
EXIT_INTERRUPTED = 130  # Ctrl-C

# Create Typer app
app = typer.Typer(
    name="browser-oracle",
    help="Ask a chat web UI a question through Chrome DevTools",
    add_completion=False,
)


def exit_code_for_error(exc: BrowserOracleError) -> int:
    """
    Pick the CLI exit code for an engine failure.

    Returns:
        EXIT_CONFIG_ERROR for bad configuration, EXIT_PAGE_STATE_ERROR when
        the page is blocked or logged out, EXIT_AUTOMATION_ERROR otherwise
    """
    if isinstance(exc, ConfigurationError):
        return EXIT_CONFIG_ERROR
    if isinstance(exc, (BlockedError, LoginRequiredError)):
        return EXIT_PAGE_STATE_ERROR
    return EXIT_AUTOMATION_ERROR


def _report_failure(exc: BrowserOracleError) -> int:
    code = exit_code_for_error(exc)
    stage = f" [{exc.stage}]" if exc.stage else ""
    error(f"{exc}{stage}")
    if output_mode.is_agent():
        output_mode.add_json("error_type", type(exc).__name__)
        output_mode.add_json("stage", exc.stage)
        output_mode.add_json("details", exc.details)
        output_mode.flush_json()
    return code


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Prompt text to send"),
    file: list[Path] = typer.Option(
        None,
        "--file",
        "-F",
        help="File to include (repeatable); inlined, uploaded or bundled",
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    url: str = typer.Option(None, "--url", help="Chat URL (ChatGPT or Grok)"),
    model: str = typer.Option(None, "--model", "-m", help="Model label to select"),
    model_strategy: str = typer.Option(
        None, "--model-strategy", help="select, current or ignore"
    ),
    thinking_time: str = typer.Option(
        None, "--thinking-time", help="light, standard, extended or heavy"
    ),
    system: str = typer.Option(None, "--system", help="System prompt text"),
    inline_files: bool = typer.Option(
        False, "--inline-files", help="Paste file contents into the composer"
    ),
    bundle: bool = typer.Option(
        False, "--bundle", help="Upload all files as one combined text file"
    ),
    headless: bool = typer.Option(None, "--headless", help="Run Chrome headless"),
    keep_browser: bool = typer.Option(
        None, "--keep-browser", help="Leave Chrome running after the run"
    ),
    manual_login: bool = typer.Option(
        None, "--manual-login", help="Use the persistent manual-login profile"
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Print only the answer text"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging and DOM diagnostics"
    ),
):
    """
    Send one prompt through the browser and print the answer.

    Settings merge in this order (later wins): YAML config, environment,
    command-line options.

    Exit codes:
      0: Answer captured
      1: Configuration error
      2: Blocked page or login required
      3: Automation failure
      130: Interrupted

    Examples:
      browser-oracle ask "Explain this error" --file trace.log
      browser-oracle ask "Hi" --url https://grok.com/ --format json
    """
    output_mode.format = format
    output_mode.quiet = quiet
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())

    overrides = {
        "url": url,
        "desired_model": model,
        "model_strategy": model_strategy,
        "thinking_time": thinking_time,
        "headless": headless,
        "keep_browser": keep_browser,
        "manual_login": manual_login,
        "debug": verbose or None,
    }

    try:
        run_config = resolve_config(config, overrides)
        artifacts = assemble_browser_prompt(
            prompt,
            file or [],
            system=system,
            cwd=Path.cwd(),
            inline_files=inline_files,
            bundle_requested=bundle,
        )
    except ConfigurationError as e:
        raise typer.Exit(_report_failure(e))

    if artifacts.attachments:
        info(f"Uploading {len(artifacts.attachments)} attachment(s)")
    if artifacts.bundle_path:
        info(f"Bundled files into {artifacts.bundle_path}")
    info(f"Estimated input tokens: {artifacts.estimated_input_tokens}")

    try:
        with spinner("Waiting for the assistant..."):
            result = asyncio.run(
                run_browser_automation(
                    artifacts.composer_text,
                    artifacts.attachments,
                    run_config,
                    fallback=artifacts.fallback,
                    logger=get_logger("browser_oracle.run"),
                )
            )
    except BrowserOracleError as e:
        raise typer.Exit(_report_failure(e))
    except KeyboardInterrupt:
        warning("Interrupted")
        output_mode.flush_json()
        raise typer.Exit(EXIT_INTERRUPTED)

    print_answer(result.to_dict())
    success(f"Answer captured in {result.took_ms / 1000:.1f}s")
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command("sync-profile")
def sync_profile_command(
    target: Path = typer.Argument(..., help="Directory to copy the profile into"),
    profile: str = typer.Option(
        None, "--profile", "-p", help="Profile name (e.g. 'Default') or path"
    ),
    source: Path = typer.Option(
        None, "--source", help="Chrome user-data root to resolve the profile in"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Copy a Chrome profile into an automation directory.

    The target is emptied first. rsync (robocopy on Windows) is tried, with
    an in-process copy as fallback; lock files are removed from the copy.

    Examples:
      browser-oracle sync-profile ./automation-profile
      browser-oracle sync-profile ./work --profile "Profile 1"
    """
    output_mode.format = format
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())

    try:
        with spinner(f"Copying profile into {target}..."):
            outcome = sync_profile(target, profile, source_root=source)
    except BrowserOracleError as e:
        raise typer.Exit(_report_failure(e))
    except OSError as e:
        error(f"Profile copy failed: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)

    success(f"Copied {outcome['profile_name']} from {outcome['source']} via {outcome['method']}")
    if output_mode.is_agent():
        output_mode.add_json("result", dict(outcome))
        output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def detect(
    profile: str = typer.Option(None, "--profile", "-p", help="Profile name or path"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """
    Show the Chrome binary and cookie store the engine would use.

    Exit codes:
      0: A browser binary was found
      1: No browser binary found
    """
    output_mode.format = format

    binary = detect_browser_binary()
    cookie_store = detect_cookie_store(profile)
    print_detection(
        [
            {"item": "Chrome binary", "value": binary},
            {"item": "Cookie store", "value": str(cookie_store) if cookie_store else None},
        ]
    )

    if binary is None:
        error("No Chrome or Chromium executable found. Install Chrome or set CHROME_PATH.")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    Browser Oracle - ask chat web UIs through Chrome DevTools.

    Use 'browser-oracle COMMAND --help' for detailed command documentation.
    """
    if version:
        from rich.console import Console

        console = Console()
        console.print(f"[bold cyan]browser-oracle[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Commands:")
        console.print("  ask           Send a prompt and print the answer")
        console.print("  sync-profile  Copy a Chrome profile for automation")
        console.print("  detect        Show detected Chrome binary and cookie store")


def _read_version() -> str:
    """Version from installed package metadata."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("browser-oracle")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
