"""CLI for cc-sessions."""

import asyncio
import dataclasses
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cc_sessions import __version__
from cc_sessions.config import Config

app = typer.Typer(
    name="cc-sessions",
    help="Inspect, measure and search AI coding-agent session logs.",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cc-sessions {__version__}")
        raise typer.Exit()


def _config(ctx: typer.Context) -> Config:
    return ctx.obj if isinstance(ctx.obj, Config) else Config()


def _provider():
    from cc_sessions.providers import LocalFileSystemProvider

    return LocalFileSystemProvider()


def _to_data(value: Any) -> Any:
    return dataclasses.asdict(value) if dataclasses.is_dataclass(value) else value


def _print_json(data: Any) -> None:
    console.print_json(data=data, default=str)


def _format_age(mtime_ms: float) -> str:
    age = datetime.now(tz=timezone.utc) - datetime.fromtimestamp(mtime_ms / 1000, tz=timezone.utc)
    if age.days > 0:
        return f"{age.days} days ago"
    elif age.seconds > 3600:
        return f"{age.seconds // 3600} hours ago"
    return f"{age.seconds // 60} minutes ago"


def _require_file(path: Path) -> str:
    if not path.is_file():
        console.print(f"[red]Session file not found: {path}[/red]")
        raise typer.Exit(1)
    return str(path)


def highlight_match(context: str, matched: str) -> Text:
    """Context snippet with every occurrence of the match highlighted."""
    text = Text(context)
    if matched:
        text.highlight_regex(re.compile(re.escape(matched), re.IGNORECASE), style="bold yellow")
    return text


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    ] = None,
    projects_dir: Annotated[
        Path | None, typer.Option("--projects-dir", "-d", help="Directory holding project session folders")
    ] = None,
) -> None:
    """Inspect AI coding-agent session logs."""
    from cc_sessions.log_config import configure_logging

    config = Config()
    if log_level:
        config.log_level = log_level.upper()
    if projects_dir is not None:
        config.projects_dir = projects_dir.expanduser()
    configure_logging(config.log_level)
    ctx.obj = config


@app.command()
def projects(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List projects with their session counts."""
    from cc_sessions.projects import list_projects
    from cc_sessions.providers import ProviderError

    config = _config(ctx)
    try:
        project_list = asyncio.run(list_projects(str(config.projects_dir), _provider()))
    except ProviderError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise typer.Exit(1)

    if json_output:
        _print_json({"projects": [_to_data(p) for p in project_list]})
        return

    if not project_list:
        console.print(f"[yellow]No projects found in {config.projects_dir}[/yellow]")
        return

    for proj in project_list:
        console.print(f"[cyan]{proj.id}[/cyan] ({proj.session_count} sessions) [dim]{proj.path}[/dim]")


@app.command()
def sessions(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Number of sessions")] = None,
) -> None:
    """List a project's sessions, newest first."""
    from cc_sessions.projects import list_project_sessions
    from cc_sessions.providers import ProviderError

    config = _config(ctx)
    try:
        summaries = asyncio.run(
            list_project_sessions(str(config.projects_dir), project, _provider(), limit=limit)
        )
    except ProviderError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise typer.Exit(1)

    if json_output:
        _print_json({"project": project, "sessions": [_to_data(s) for s in summaries]})
        return

    if not summaries:
        console.print(f"[yellow]No sessions found for project '{project}'[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Session", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Msgs", justify="right")
    table.add_column("Branch", style="green")
    table.add_column("Context", justify="right")
    table.add_column("Updated", style="dim")

    for summary in summaries:
        meta = summary.metadata
        title = escape(meta.first_user_message.text[:80]) if meta.first_user_message else ""
        if meta.is_ongoing:
            title = f"[bold green]●[/bold green] {title}"
        table.add_row(
            summary.id[:8],
            title,
            str(meta.message_count),
            meta.git_branch or "",
            f"{meta.context_consumption:,}" if meta.context_consumption else "",
            _format_age(summary.mtime_ms),
        )
    console.print(table)


@app.command()
def show(
    session_file: Annotated[Path, typer.Argument(help="Session file (.jsonl or .json)")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Parse a session file and print its normalized messages."""
    from cc_sessions.parser import extract_text_content, parse_session_file

    path = _require_file(session_file)
    messages = asyncio.run(parse_session_file(path, _provider()))

    if json_output:
        _print_json({"path": path, "messages": [_to_data(m) for m in messages]})
        return

    if not messages:
        console.print("[yellow]No messages found.[/yellow]")
        return

    styles = {"user": "cyan", "assistant": "green", "system": "magenta"}
    for message in messages:
        header = Text()
        header.append(message.type, style=f"bold {styles.get(message.type, 'dim')}")
        if message.timestamp is not None:
            header.append(f" | {message.timestamp.isoformat()}", style="dim")
        if message.is_sidechain:
            header.append(" | sidechain", style="dim")

        body = escape(extract_text_content(message))
        if message.tool_calls:
            names = ", ".join(call.name for call in message.tool_calls)
            body = f"{body}\n[dim]tools: {names}[/dim]".strip()
        console.print(Panel(body or "[dim](no text)[/dim]", title=header, title_align="left"))


@app.command()
def metrics(
    session_file: Annotated[Path, typer.Argument(help="Session file (.jsonl or .json)")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Print token, duration and context metrics for a session file."""
    from cc_sessions.analyzer import analyze_session_file
    from cc_sessions.metrics import compute_metrics
    from cc_sessions.parser import parse_session_file

    path = _require_file(session_file)

    async def run():
        provider = _provider()
        messages = await parse_session_file(path, provider)
        return compute_metrics(messages), await analyze_session_file(path, provider)

    session_metrics, metadata = asyncio.run(run())

    if json_output:
        _print_json({"path": path, "metrics": _to_data(session_metrics), "metadata": _to_data(metadata)})
        return

    console.print(f"[bold]{escape(path)}[/bold]")
    if metadata.first_user_message:
        console.print(f"Title: {escape(metadata.first_user_message.text[:120])}")
    console.print(f"Messages: {session_metrics.message_count} ({metadata.message_count} turns)")
    console.print(f"Duration: {session_metrics.duration_ms / 1000:.1f}s")
    console.print(
        f"Tokens: {session_metrics.total_tokens:,} "
        f"(input {session_metrics.input_tokens:,}, output {session_metrics.output_tokens:,}, "
        f"cache read {session_metrics.cache_read_tokens:,}, "
        f"cache write {session_metrics.cache_creation_tokens:,})"
    )
    console.print(f"Ongoing: {'yes' if metadata.is_ongoing else 'no'}")
    if metadata.git_branch:
        console.print(f"Branch: [green]{metadata.git_branch}[/green]")
    if metadata.context_consumption is not None:
        console.print(f"Context consumed: {metadata.context_consumption:,}")
    if metadata.phase_breakdown and metadata.compaction_count:
        console.print(f"Compactions: {metadata.compaction_count}")
        for phase in metadata.phase_breakdown:
            console.print(
                f"  [cyan]phase {phase.phase_number}[/cyan]: +{phase.contribution:,} "
                f"(peak {phase.peak_tokens:,})"
            )


@app.command()
def search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Search query")],
    project: Annotated[str, typer.Option("--project", "-p", help="Project directory name")],
    session: Annotated[
        list[str] | None,
        typer.Option("--session", "-s", help="Restrict to a session id (can repeat)"),
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Number of results")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Search a project's sessions for a query."""
    if not query.strip():
        console.print("[red]Error: Query required[/red]")
        raise typer.Exit(1)

    from cc_sessions.searcher import SessionSearcher

    config = _config(ctx)
    searcher = SessionSearcher(
        str(config.projects_dir),
        _provider(),
        context_chars=config.context_chars,
        remote_time_budget_ms=config.remote_time_budget_ms,
    )
    outcome = asyncio.run(
        searcher.search_sessions(
            project, query, max_results=limit or config.max_results, session_ids=session or None
        )
    )

    if json_output:
        _print_json(_to_data(outcome))
        return

    if not outcome.results:
        console.print("[yellow]No results found. Try a different query.[/yellow]")
        return

    for i, result in enumerate(outcome.results, 1):
        header = Text()
        header.append(f"[{i}] ", style="bold cyan")
        header.append(result.session_title[:60], style="green")
        header.append(f" | {result.item_type}", style="dim")
        console.print(
            Panel(
                highlight_match(result.context, result.matched_text),
                title=header,
                subtitle=f"session {result.session_id[:8]}",
                subtitle_align="left",
            )
        )

    console.print("─" * 50)
    suffix = " (partial)" if outcome.is_partial else ""
    console.print(
        f"Found {outcome.total_matches} matches in {outcome.sessions_searched} sessions{suffix}"
    )


if __name__ == "__main__":
    app()
