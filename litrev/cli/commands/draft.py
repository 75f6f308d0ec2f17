"""Draft command: iterative literature review drafting."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from litrev.cli.shared import ProgressDisplay, load_papers, print_usage_summary, write_json
from litrev.config import get_settings
from litrev.exceptions import ConfigurationError
from litrev.services.generation import DraftGenerator
from litrev.utils.logging import get_console, get_logger, setup_task_logging

console = get_console()
log = get_logger(__name__)


def draft(
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
    topic: Annotated[
        str,
        typer.Option("--topic", "-t", help="Topic of the review."),
    ],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Write the draft sections to this JSON file."),
    ] = Path("draft.json"),
    criteria: Annotated[
        str,
        typer.Option("--criteria", help="Inclusion criteria quoted in the prompt."),
    ] = "",
    api_key: Annotated[
        list[str] | None,
        typer.Option("--api-key", "-k", help="Gemini API key (repeatable)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs on the console."),
    ] = False,
) -> None:
    """Draft a literature review from the included papers."""
    settings = get_settings()
    task_id, log_path = setup_task_logging(settings.log_dir, "draft", verbose)

    if settings.filtering.fallback_strategy == "prompt_user":
        console.print(
            "[red]Error:[/red] prompt_user needs an interactive host; use rule_based or fail."
        )
        raise typer.Exit(1)

    papers = load_papers(input_file)
    included = sum(1 for p in papers if p.included)
    if not included:
        console.print("[yellow]No included papers in input; nothing to draft.[/yellow]")
        raise typer.Exit(1)

    log.info("Starting draft", task_id=task_id, input=str(input_file), included=included)
    generator = DraftGenerator(settings)

    try:
        with ProgressDisplay(console, "[cyan]Drafting review...") as display:
            result = asyncio.run(
                generator.generate(papers, topic, criteria, sink=display, credentials=api_key or [])
            )
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        generator.stop()
        console.print("\n[yellow]Drafting interrupted.[/yellow]")
        raise typer.Exit(130) from None

    print_usage_summary(console, generator.ledger.get_daily_summary())

    if result.sections is not None:
        write_json(output, result.to_dict())
        console.print(
            f"[green]Draft from {result.papers_used} papers written to[/green] {output}"
        )
    console.print(f"[dim]Log: {log_path}[/dim]")

    if result.status != "completed":
        console.print(f"[red]Drafting {result.status}:[/red] {result.snapshot.error or ''}")
        raise typer.Exit(2)
