"""Filter command: semantic screening of a paper list."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from litrev.cli.shared import ProgressDisplay, load_papers, print_usage_summary, write_json
from litrev.config import get_settings
from litrev.exceptions import ConfigurationError
from litrev.models import FilterRequest, Paper
from litrev.services.filtering import FilterResult, SemanticFilterEngine
from litrev.utils.logging import get_console, get_logger, setup_task_logging

console = get_console()
log = get_logger(__name__)

FALLBACK_CHOICES = ("rule_based", "prompt_user", "fail")


def filter_papers(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="JSON file with a list of papers.",
            exists=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    inclusion: Annotated[
        str,
        typer.Option("--inclusion", "-i", help="Inclusion criteria."),
    ] = "",
    exclusion: Annotated[
        str | None,
        typer.Option("--exclusion", "-e", help="Exclusion criteria."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write annotated papers to this JSON file."),
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
    """Screen papers against inclusion and exclusion criteria."""
    settings = get_settings()
    task_id, log_path = setup_task_logging(settings.log_dir, "filter", verbose)

    if not inclusion.strip() and not (exclusion or "").strip():
        console.print("[red]Error:[/red] Provide --inclusion and/or --exclusion criteria.")
        raise typer.Exit(1)
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
    request = FilterRequest.from_config(
        papers,
        settings.filtering,
        inclusion_prompt=inclusion,
        exclusion_prompt=exclusion,
        model=model,
        credentials=api_key or [],
        **overrides,
    )

    log.info("Starting filter", task_id=task_id, input=str(input_file), papers=len(papers))
    engine = SemanticFilterEngine(settings)

    try:
        with ProgressDisplay(console, "[cyan]Filtering papers...") as display:
            result = asyncio.run(engine.filter(request, sink=display))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        engine.stop()
        console.print("\n[yellow]Filtering interrupted.[/yellow]")
        raise typer.Exit(130) from None

    _print_result(result, papers)
    print_usage_summary(console, engine.get_daily_summary())

    if output:
        write_json(output, result.to_dict())
        console.print(f"[green]Results written to[/green] {output}")
    console.print(f"[dim]Log: {log_path}[/dim]")

    if result.status == "error":
        raise typer.Exit(2)


def _print_result(result: FilterResult, papers: list[Paper]) -> None:
    included = sum(1 for p in result.papers if p.included)
    excluded = sum(1 for p in result.papers if p.included is False)
    pending = sum(1 for p in result.papers if p.included is None)

    table = Table(title="Filter Summary", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Status", result.status)
    table.add_row("Papers", str(len(papers)))
    table.add_row("Included", f"[green]{included}[/green]")
    table.add_row("Excluded", f"[red]{excluded}[/red]")
    if pending:
        table.add_row("Not evaluated", f"[yellow]{pending}[/yellow]")
    snapshot = result.snapshot
    table.add_row("Retries", str(snapshot.retry_count))
    table.add_row("Key rotations", str(snapshot.key_rotations))
    table.add_row("Model fallbacks", str(snapshot.model_fallbacks))
    if snapshot.fallback_batches:
        table.add_row("Rule-based batches", f"[yellow]{snapshot.fallback_batches}[/yellow]")
    table.add_row("Duration", f"{snapshot.time_elapsed_ms / 1000:.1f}s")
    console.print(table)

    for error in result.errors:
        console.print(f"  [red]x[/red] {error.phase} batch {error.index + 1}: {error.error}")
