"""Rich console rendering for progress and usage."""

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.table import Table

from litrev.core.progress import ProgressSnapshot
from litrev.llm.ledger import DailySummary


class ProgressDisplay:
    """Progress sink that drives a Rich progress bar.

    Use as a context manager around the run.
    """

    def __init__(self, console: Console, description: str) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("{task.fields[detail]}"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self.description = description
        self._task_id: TaskID | None = None

    def __enter__(self) -> "ProgressDisplay":
        self.progress.start()
        self._task_id = self.progress.add_task(self.description, total=100, detail="")
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.progress.stop()

    def emit(self, snapshot: ProgressSnapshot) -> None:
        if self._task_id is None:
            return
        detail = snapshot.current_task
        if snapshot.current_model:
            keys = snapshot.healthy_keys_count
            detail = f"{detail} [dim]({snapshot.current_model}, {keys} keys)[/dim]"
        self.progress.update(self._task_id, completed=snapshot.progress, detail=detail)


def print_usage_summary(console: Console, summary: DailySummary) -> None:
    """Print today's LLM usage by model and by key."""
    if not summary.total_requests:
        console.print("[dim]No LLM requests recorded today.[/dim]")
        return

    table = Table(title=f"LLM Usage ({summary.date})")
    table.add_column("Key", style="cyan")
    table.add_column("Model")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")

    for key, key_totals in summary.by_key.items():
        for model, totals in sorted(key_totals.models.items()):
            table.add_row(key, model, str(totals.requests), f"{totals.tokens:,}")

    table.add_section()
    table.add_row(
        "[bold]Total[/bold]",
        "",
        f"[bold]{summary.total_requests}[/bold]",
        f"[bold]{summary.total_tokens:,}[/bold]",
    )
    console.print(table)
