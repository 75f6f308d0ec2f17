"""Categorize command: research area of each included paper."""

import asyncio
from collections import Counter
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from litrev.cli.commands.filter import FALLBACK_CHOICES
from litrev.cli.shared import ProgressDisplay, load_papers, print_usage_summary, write_json
from litrev.config import get_settings
from litrev.exceptions import ConfigurationError
from litrev.models import CategorizeRequest
from litrev.services.filtering import FilterResult, SemanticFilterEngine
from litrev.utils.logging import get_console, get_logger, setup_task_logging

console = get_console()
log = get_logger(__name__)


def categorize(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="JSON file with filtered papers (output of 'litrev filter').",
            exists=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write categorized papers to this JSON file."),
    ] = None,
    model: Annotated[
        str,
        typer.Option("--model", "-m", help="Model name, or 'auto' to walk the model chain."),
    ] = "auto",
    api_key: Annotated[
        list[str] | None,
        typer.Option("--api-key", "-k", help="Gemini API key (repeatable)."),
    ] = None,
    batch_size: Annotated[
        int | None,
        typer.Option("--batch-size", help="Papers per LLM request."),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-c", help="Batches processed concurrently."),
    ] = None,
    fallback: Annotated[
        str | None,
        typer.Option("--fallback", help="When all keys are exhausted: rule_based, fail."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs on the console."),
    ] = False,
) -> None:
    """Identify the primary research category of every included paper."""
    settings = get_settings()
    task_id, log_path = setup_task_logging(settings.log_dir, "categorize", verbose)

    if fallback is not None and fallback not in FALLBACK_CHOICES:
        console.print(f"[red]Error:[/red] Unknown fallback strategy: {fallback}")
        raise typer.Exit(1)
    if (fallback or settings.filtering.fallback_strategy) == "prompt_user":
        console.print(
            "[red]Error:[/red] prompt_user needs an interactive host; use rule_based or fail."
        )
        raise typer.Exit(1)

    papers = load_papers(input_file)
    overrides = {
        key: value
        for key, value in {
            "batch_size": batch_size,
            "max_concurrent_batches": concurrency,
            "fallback_strategy": fallback,
        }.items()
        if value is not None
    }
    request = CategorizeRequest.from_config(
        papers,
        settings.filtering,
        model=model,
        credentials=api_key or [],
        **overrides,
    )

    log.info("Starting categorize", task_id=task_id, input=str(input_file), papers=len(papers))
    engine = SemanticFilterEngine(settings)

    try:
        with ProgressDisplay(console, "[cyan]Categorizing papers...") as display:
            result = asyncio.run(engine.categorize(request, sink=display))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        engine.stop()
        console.print("\n[yellow]Categorization interrupted.[/yellow]")
        raise typer.Exit(130) from None

    _print_result(result)
    print_usage_summary(console, engine.get_daily_summary())

    if output:
        write_json(output, result.to_dict())
        console.print(f"[green]Results written to[/green] {output}")
    console.print(f"[dim]Log: {log_path}[/dim]")

    if result.status == "error":
        if result.snapshot.error:
            console.print(f"[red]Categorization failed:[/red] {result.snapshot.error}")
        raise typer.Exit(2)


def _print_result(result: FilterResult) -> None:
    counts = Counter(p.category for p in result.papers if p.category)
    uncategorized = sum(1 for p in result.papers if p.included is not False and not p.category)

    table = Table(title=f"Categories ({result.status})")
    table.add_column("Category", style="bold")
    table.add_column("Papers", justify="right")
    for category, count in counts.most_common():
        table.add_row(category, str(count))
    if uncategorized:
        table.add_row("[yellow]Uncategorized[/yellow]", f"[yellow]{uncategorized}[/yellow]")
    console.print(table)

    for error in result.errors:
        console.print(f"  [red]x[/red] batch {error.index + 1}: {error.error}")
