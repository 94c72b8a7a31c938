"""
Feedback Engine CLI Application.

Provides a command-line interface for generating AI feedback on a
submission file and for inspecting templates and provider health.
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from feedback_engine.config import get_settings
from feedback_engine.grading import ConfigurationError, FeedbackEngine, ProviderError
from feedback_engine.logging_config import configure_logging
from feedback_engine.models import AIFeedbackResponse, FeedbackRequest, SubmissionKind
from feedback_engine.templates import TemplateRegistry
from feedback_engine.templates.registry import format_rubric_items

# Create Typer app
app = typer.Typer(
    name="feedback-engine",
    help="AI feedback generation for student submissions",
    add_completion=False,
)

console = Console()


async def _generate_and_close(engine: FeedbackEngine, request: FeedbackRequest) -> AIFeedbackResponse:
    try:
        return await engine.generate_feedback(request)
    finally:
        await engine.aclose()


async def _check_and_close(engine: FeedbackEngine) -> bool:
    try:
        return await engine.health_check()
    finally:
        await engine.aclose()


@app.command()
def feedback(
    submission_file: Annotated[Path, typer.Argument(help="Path to the submission text file")],
    assignment_id: Annotated[
        str,
        typer.Option("--assignment-id", "-a", help="Assignment identifier"),
    ],
    title: Annotated[
        str,
        typer.Option("--title", "-t", help="Assignment title"),
    ],
    domain: Annotated[
        str,
        typer.Option("--domain", "-d", help="Grading domain (frontend, backend, writing, ...)"),
    ] = "programming",
    technology: Annotated[
        Optional[str],
        typer.Option("--technology", help="Technology tag (e.g. frontend_react)"),
    ] = None,
    kind: Annotated[
        SubmissionKind,
        typer.Option("--kind", "-k", help="Submission kind"),
    ] = SubmissionKind.CODE,
    requirement: Annotated[
        Optional[list[str]],
        typer.Option("--requirement", "-r", help="Assignment requirement (repeatable)"),
    ] = None,
    rubric: Annotated[
        Optional[Path],
        typer.Option("--rubric", help="JSON file with rubric items or lines"),
    ] = None,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Skip reading a cached response"),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the raw response as JSON"),
    ] = False,
) -> None:
    """
    Generate feedback for a submission file.

    The submission is sent to the configured LLM provider with the
    template selected by domain and technology. Results are shown as a
    score table or printed as JSON.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    if not submission_file.exists():
        console.print(f"[red]Error:[/red] Submission file not found: {submission_file}")
        raise typer.Exit(1)

    try:
        rubric_data = None
        if rubric is not None:
            if not rubric.exists():
                console.print(f"[red]Error:[/red] Rubric file not found: {rubric}")
                raise typer.Exit(1)
            rubric_data = json.loads(rubric.read_text(encoding="utf-8"))

        request = FeedbackRequest(
            assignment_id=assignment_id,
            title=title,
            requirements=tuple(requirement or ()),
            domain=domain,
            technology=technology,
            rubric=rubric_data,
            submission_kind=kind,
            submission_text=submission_file.read_text(encoding="utf-8"),
            submission_title=submission_file.name,
            hints={"use_cache": not no_cache},
        )
    except json.JSONDecodeError as e:
        console.print(f"[red]Rubric Parse Error:[/red] {e}")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid Request:[/red] {e}")
        raise typer.Exit(1)

    engine = FeedbackEngine(settings)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("Generating feedback... (this may take a moment)", total=None)
            response = asyncio.run(_generate_and_close(engine, request))
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1)
    except ProviderError as e:
        console.print(f"[red]Provider Error:[/red] {e}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(response.model_dump_json())
    else:
        _display_response(response)


@app.command()
def templates() -> None:
    """
    List the registered prompt templates and their default rubrics.
    """
    registry = TemplateRegistry()

    table = Table(title="Prompt Templates")
    table.add_column("Key", style="cyan")
    table.add_column("Default Rubric")
    table.add_column("Resources", justify="right")

    for key in registry.keys():
        template = registry.get(key)
        table.add_row(
            key.value,
            format_rubric_items(template.default_rubric),
            str(len(template.learning_resources)),
        )

    console.print(table)


@app.command()
def health() -> None:
    """
    Check if the feedback engine is operational.

    Verifies provider configuration and connectivity.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    console.print("[bold]Feedback Engine Health Check[/bold]\n")

    engine = FeedbackEngine(settings)
    info = engine.model_info()

    console.print("[dim]Checking configuration...[/dim]")
    console.print(f"  Preferred Provider: {settings.ai_model_preference.value}")
    console.print(f"  Active Provider: {info.provider}")
    console.print(f"  Model: {info.model}")
    console.print(f"  Cache TTL: {settings.cache_ttl_seconds}s")
    console.print(f"  Cache Backend: {'redis' if settings.redis_url else 'memory'}")

    console.print("\n[dim]Checking API connectivity...[/dim]")
    if not asyncio.run(_check_and_close(engine)):
        console.print("[red]✗ Provider is not reachable[/red]")
        raise typer.Exit(1)

    console.print("[green]✓ Provider is reachable[/green]")
    console.print("\n[green]All systems operational[/green]")


def _display_response(response: AIFeedbackResponse) -> None:
    """Display a feedback response as panels and a score table."""

    score_color = "green" if response.score >= 70 else "yellow" if response.score >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{response.score} / 100[/bold][/{score_color}]",
            title="Overall Score",
        )
    )

    if response.degraded:
        console.print("[yellow]⚠ The model output could not be parsed; showing fallback scores[/yellow]")

    table = Table(title="Criteria Breakdown")
    table.add_column("Criterion", style="cyan")
    table.add_column("Score", justify="right")

    for name, value in response.criteria_scores.model_dump().items():
        table.add_row(name.replace("_", " ").title(), str(value))

    console.print(table)
    console.print(Panel(response.content, title="Feedback"))

    console.print("[bold]Improvement Suggestions[/bold]")
    for suggestion in response.improvement_suggestions:
        console.print(f"  • {suggestion}")

    cache_note = "cache hit" if response.cache.hit else "generated"
    console.print(
        f"\n[dim]{response.model_info.provider}/{response.model_info.model} · "
        f"{cache_note} · {response.cache.latency_ms:.0f}ms[/dim]"
    )


if __name__ == "__main__":
    app()
