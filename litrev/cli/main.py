"""Main CLI application using Typer."""

from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console

from litrev import __version__
from litrev.cli.commands.categorize import categorize
from litrev.cli.commands.draft import draft
from litrev.cli.commands.filter import filter_papers
from litrev.cli.commands.models import models

# Load environment variables (GEMINI_API_KEYS, LITREV_*) from .env
load_dotenv()

app = typer.Typer(
    name="litrev",
    help="LLM-driven semantic filtering and drafting for literature reviews.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()

app.command(name="filter", help="Screen papers against inclusion/exclusion criteria.")(
    filter_papers
)
app.command(name="categorize", help="Identify the research category of included papers.")(
    categorize
)
app.command(name="draft", help="Draft a literature review from included papers.")(draft)
app.command(name="models", help="List models, quotas and priority chains.")(models)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]LitRev[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """LitRev - semantic filtering of academic papers with rate-limited LLMs."""
    pass


if __name__ == "__main__":
    app()
