"""Terminal output formatting for the CLI."""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, Sequence

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table

from gemini_research_agent.models import ResearchResult, ResearchStatus, OutputFormat

console = Console()

STATUS_STYLES = {
    ResearchStatus.COMPLETED: "green",
    ResearchStatus.PENDING: "yellow",
    ResearchStatus.ERROR: "red",
}


def display_info(message: str) -> None:
    console.print(f"[cyan]{escape(message)}[/cyan]", highlight=False)


def display_error(message: str) -> None:
    console.print(f"[red]✗ {escape(message)}[/red]", highlight=False)


def display_success(message: str) -> None:
    console.print(f"[green]✓ {escape(message)}[/green]", highlight=False)


def display_warning(message: str) -> None:
    console.print(f"[yellow]⚠ {escape(message)}[/yellow]", highlight=False)


def format_duration(seconds: float) -> str:
    """Format a duration: 850ms, 12.3s, 4m 5s."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def format_timestamp(value: Optional[str]) -> str:
    """Render an RFC 3339 timestamp in local time, or '-'."""
    if not value:
        return "-"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    return parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def display_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    table = Table(show_header=True, header_style="bold", show_lines=False)
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*[cell or "-" for cell in row])
    console.print(table)


def display_result(result: ResearchResult, output_format: Optional[OutputFormat] = None) -> None:
    """Print a research result with metadata, content and sources."""
    style = STATUS_STYLES.get(result.status, "white")
    lines = [
        f"[bold]Status:[/bold] [{style}]{result.status.value.upper()}[/{style}]",
        f"[bold]Query:[/bold] {escape(result.query)}",
    ]
    if result.metadata:
        meta = result.metadata
        lines.extend(
            [
                f"[bold]Depth:[/bold] {meta.depth.value}",
                f"[bold]Processing Time:[/bold] {format_duration(meta.processing_time)}",
                f"[bold]Documents Used:[/bold] {meta.documents_used}",
                f"[bold]Sources Found:[/bold] {meta.sources_found}",
            ]
        )
        if meta.interaction_name:
            lines.append(f"[bold]Interaction:[/bold] {meta.interaction_name}")
        if meta.token_count:
            tc = meta.token_count
            lines.append(
                f"[bold]Tokens:[/bold] {tc.input_tokens:,} in / "
                f"{tc.output_tokens:,} out / {tc.total_tokens:,} total"
            )
    console.print(
        Panel("\n".join(lines), title="Research Results", border_style="magenta")
    )

    if result.content:
        if output_format in (None, OutputFormat.MARKDOWN):
            console.print(Markdown(result.content))
        else:
            console.print(result.content, markup=False, highlight=False)
    elif result.error:
        display_error(result.error)
    else:
        display_warning(result.note or "No content returned")

    if result.sources:
        console.print(Rule(f"Sources ({len(result.sources)})", style="blue"))
        for i, source in enumerate(result.sources, 1):
            console.print(f"[cyan]{i}. {escape(source.title)}[/cyan]", highlight=False)
            console.print(f"   [dim]{escape(source.url)}[/dim]", highlight=False)
            if source.snippet:
                snippet = source.snippet[:150] + ("..." if len(source.snippet) > 150 else "")
                console.print(f"   [dim]{escape(snippet)}[/dim]", highlight=False)


@contextmanager
def status_spinner(message: str) -> Iterator[Status]:
    """Show a spinner while the block runs; update it via .update(text)."""
    with console.status(f"[cyan]{escape(message)}[/cyan]", spinner="dots") as status:
        yield status
