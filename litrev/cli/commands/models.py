"""Models command: show the model catalogue and priority chains."""

from rich.table import Table

from litrev.config import get_settings
from litrev.utils.logging import get_console

console = get_console()


def models() -> None:
    """List configured models with their quota limits."""
    llm = get_settings().llm

    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Tier", justify="right")
    table.add_column("RPM", justify="right")
    table.add_column("TPM", justify="right")
    table.add_column("RPD", justify="right")
    table.add_column("Default")

    for name, quota in sorted(llm.models.items(), key=lambda item: (item[1].tier, item[0])):
        table.add_row(
            name,
            str(quota.tier),
            str(quota.rpm),
            f"{quota.tpm:,}",
            str(quota.rpd),
            "[green]yes[/green]" if name == llm.default_model else "",
        )
    console.print(table)

    console.print(f"[bold]Filtering chain:[/bold] {' -> '.join(llm.semantic_filtering_chain)}")
    console.print(f"[bold]Drafting chain:[/bold] {' -> '.join(llm.draft_generation_chain)}")
