"""CLI interface for the Gemini Research Agent."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from gemini_research_agent.config import ConfigurationError
from gemini_research_agent.display import (
    console,
    display_error,
    display_info,
    display_result,
    display_success,
    display_table,
    display_warning,
    format_timestamp,
    status_spinner,
)
from gemini_research_agent.file_manager import FileFilters, FileManager, format_bytes
from gemini_research_agent.models import (
    OutputFormat,
    ResearchDepth,
    ResearchEvent,
    ResearchEventType,
    ResearchStatus,
    SourceType,
)
from gemini_research_agent.research import DeepResearchAgent, create_deep_research_agent

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="gemini-research",
    help="CLI client for the Gemini Deep Research API",
    add_completion=False,
)

# Global state for options
_verbose: bool = False

SKIPPED_PREVIEW = 5
HISTORY_PREVIEW = 3


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Global options for gemini-research commands."""
    global _verbose
    _verbose = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _make_agent() -> DeepResearchAgent:
    """Create an agent from the environment, exiting on missing config."""
    try:
        return create_deep_research_agent()
    except ConfigurationError as e:
        display_error(str(e))
        raise typer.Exit(1)


@app.command("research")
def research_command(
    query: str = typer.Argument(..., help="Research query or question"),
    upload: Optional[list[Path]] = typer.Option(
        None,
        "--upload",
        "-u",
        help="File or folder to attach (repeatable)",
    ),
    depth: Optional[ResearchDepth] = typer.Option(
        None,
        "--depth",
        "-d",
        case_sensitive=False,
        help="Research depth",
    ),
    output_format: Optional[OutputFormat] = typer.Option(
        None,
        "--format",
        "-f",
        case_sensitive=False,
        help="Report format",
    ),
    source: Optional[list[SourceType]] = typer.Option(
        None,
        "--source",
        "-s",
        case_sensitive=False,
        help="Source types to consult (repeatable)",
    ),
    recursive: bool = typer.Option(
        True, "--recursive/--no-recursive", help="Recurse into uploaded folders"
    ),
    types: Optional[str] = typer.Option(
        None, "--types", "-t", help="Comma-separated extensions, e.g. pdf,md"
    ),
    max_size: float = typer.Option(50, "--max-size", help="Max file size in MB"),
    session: Optional[str] = typer.Option(
        None, "--session", help="Reuse an existing session ID"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Max seconds to wait for completion"
    ),
    interval: Optional[float] = typer.Option(
        None, "--interval", help="Seconds between status polls"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the report to this file"
    ),
    quick: bool = typer.Option(
        False, "--quick", "-q", help="Quick research in a fresh session, no documents"
    ),
) -> None:
    """
    Run a research query, optionally with attached documents.

    Example:
        gemini-research research "Latest advances in quantum computing"
        gemini-research research "Summarize the key findings" -u ./papers -t pdf
    """
    documents = []
    if upload and not quick:
        manager = FileManager(
            FileFilters.from_cli(recursive=recursive, types=types, max_size_mb=max_size)
        )
        documents, errors = manager.load_paths(upload)
        for err in errors:
            display_warning(err)
        display_info(
            f"Attached {len(documents)} document(s) "
            f"({format_bytes(sum(d.size for d in documents))})"
        )
    elif upload:
        display_warning("--quick ignores uploaded files")

    with _make_agent() as agent:
        overrides: dict = {"session_id": session, "poll_interval": interval, "timeout": timeout}
        if depth:
            overrides["depth"] = depth
        elif quick:
            overrides["depth"] = ResearchDepth.QUICK
        if output_format:
            overrides["output_format"] = output_format
        if source:
            overrides["source_types"] = list(source)
        options = agent.default_options(**overrides)

        try:
            with status_spinner("Starting research...") as spinner:

                def on_event(event: ResearchEvent) -> None:
                    logger.debug("%s: %s", event.type.value, event.message)
                    if event.type == ResearchEventType.POLLING:
                        spinner.update(f"[cyan]Researching... {event.message}[/cyan]")
                    elif not event.type.is_terminal:
                        spinner.update(f"[cyan]{event.message}[/cyan]")

                if quick:
                    result = agent.quick_research(query, options, on_event=on_event)
                else:
                    result = agent.deep_research(
                        query, documents, options, on_event=on_event
                    )
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user.[/yellow]")
            console.print("The research may still be running on Google's servers.")
            raise typer.Exit(1)

    display_result(result, options.output_format)

    if output and result.content:
        output.write_text(result.content, encoding="utf-8")
        display_success(f"Report saved to: {output}")

    if result.status == ResearchStatus.ERROR:
        if result.error_category:
            display_info(f"Error category: {result.error_category.value}")
        raise typer.Exit(1)


@app.command("status")
def status_command(
    session_id: Optional[str] = typer.Argument(None, help="Session ID to inspect"),
    list_all: bool = typer.Option(False, "--list", "-l", help="List sessions"),
    page_size: int = typer.Option(20, "--page-size", help="Sessions per page"),
) -> None:
    """
    Check research session status.

    Example:
        gemini-research status abc123
        gemini-research status --list
    """
    if not list_all and not session_id:
        display_info("Usage:")
        display_info("  gemini-research status <sessionId>  - Get specific session status")
        display_info("  gemini-research status --list       - List all sessions")
        display_info("")
        display_info("Example:")
        display_info("  gemini-research status abc123")
        display_info("  gemini-research status sessions/abc123")
        return

    with _make_agent() as agent:
        client = agent.client

        if list_all:
            display_info("Fetching sessions...")
            response = client.list_sessions(page_size)
            if not response.success or response.data is None:
                message = response.error.message if response.error else "Unknown error"
                display_error(f"Failed to fetch sessions: {message}")
                raise typer.Exit(1)

            sessions = response.data.sessions
            if not sessions:
                display_info("No active sessions found.")
                return

            display_success(f"Found {len(sessions)} session(s)")
            display_table(
                ["Session ID", "Display Name", "Model", "Created"],
                [
                    [
                        s.id,
                        s.display_name or "-",
                        (s.model or "-").rsplit("/", 1)[-1],
                        format_timestamp(s.create_time),
                    ]
                    for s in sessions
                ],
            )
            if response.data.next_page_token:
                display_info("More sessions available; increase --page-size to see them.")
            return

        display_info(f"Fetching session: {session_id}")
        response = client.get_session(session_id)
        if not response.success or response.data is None:
            message = response.error.message if response.error else "Unknown error"
            display_error(f"Failed to fetch session: {message}")
            raise typer.Exit(1)

    session = response.data
    display_success("Session Details:")
    display_info(f"  ID: {session.name}")
    display_info(f"  Display Name: {session.display_name or '-'}")
    display_info(f"  Model: {session.model or '-'}")
    display_info(f"  Created: {format_timestamp(session.create_time)}")
    display_info(f"  Updated: {format_timestamp(session.update_time)}")

    if session.history:
        display_info(f"\n  History: {len(session.history)} interaction(s)")
        for i, content in enumerate(session.history[-HISTORY_PREVIEW:], 1):
            text = content.text or "-"
            preview = text[:100] + ("..." if len(text) > 100 else "")
            display_info(f"    {i}. [{content.role.value}] {preview}")


@app.command("upload")
def upload_command(
    paths: list[Path] = typer.Argument(..., help="Files or folders to load"),
    recursive: bool = typer.Option(
        False, "--recursive", "-r", help="Recurse into subfolders"
    ),
    types: Optional[str] = typer.Option(
        None, "--types", "-t", help="Comma-separated extensions, e.g. pdf,md"
    ),
    max_size: float = typer.Option(50, "--max-size", help="Max file size in MB"),
) -> None:
    """
    Scan and load files for analysis (no API call).

    Example:
        gemini-research upload ./papers --recursive --types pdf,md
    """
    manager = FileManager(
        FileFilters.from_cli(recursive=recursive, types=types, max_size_mb=max_size)
    )

    display_info("Scanning files and folders...\n")

    loaded = []
    errors: list[str] = []

    for path in paths:
        if not path.exists():
            errors.append(f"File not found: {path}")
            continue

        if path.is_dir():
            scan = manager.scan_folder(path)
            display_info(f"Folder: {path}")
            display_info(f"  Found: {len(scan.files)} files")
            display_info(f"  Skipped: {len(scan.skipped)} files")
            display_info(f"  Total size: {format_bytes(scan.total_size)}")

            if scan.skipped:
                display_info("  Skipped files:")
                for skip in scan.skipped[:SKIPPED_PREVIEW]:
                    display_info(f"    - {skip.path}: {skip.reason.value}")
                if len(scan.skipped) > SKIPPED_PREVIEW:
                    display_info(
                        f"    ... and {len(scan.skipped) - SKIPPED_PREVIEW} more"
                    )
            display_info("")
            loaded.extend(manager.load_scanned(scan))
            continue

        doc = manager.load_file(path)
        if doc is None:
            errors.append(f"Could not load file: {path}")
        else:
            loaded.append(doc)

    display_info("========== Summary ==========\n")

    if loaded:
        display_success(f"Total files loaded: {len(loaded)}")
        display_info(f"Total size: {format_bytes(sum(d.size for d in loaded))}")
        display_table(
            ["Name", "Size", "Type"],
            [[d.name, format_bytes(d.size), d.mime_type] for d in loaded],
        )
    else:
        display_error("No files were loaded.")

    for err in errors:
        display_error(err)

    if loaded:
        display_info("\nTo use these files in research:")
        file_args = " ".join(f'--upload "{p}"' for p in paths)
        display_info(f'  gemini-research research "Your query" {file_args}')
    else:
        raise typer.Exit(1)


@app.command("serve")
def serve_command(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default: PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the web server (JSON API and browser UI)."""
    from gemini_research_agent.web import serve

    serve(host=host, port=port, reload=reload)


def run() -> None:
    """Console-script entry point; reports unexpected errors once."""
    try:
        app()
    except Exception as e:
        if _verbose:
            console.print_exception()
        else:
            display_error(f"Unexpected error: {e}")
            display_info("Run with --verbose for details.")
        sys.exit(1)


if __name__ == "__main__":
    run()
