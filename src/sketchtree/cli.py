from __future__ import annotations

import platform

import typer
from rich.console import Console
from rich.panel import Panel

from sketchtree import __version__
from sketchtree.commands import matrix, tree
from sketchtree.manifest import library_versions

console = Console(stderr=True)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Neighbor-joining trees from genome sketches, without multiple sequence alignment.",
)

app.command(name="tree", help="Compute a (rapid) neighbor-joining tree from FASTA genomes.")(tree.tree_command)
app.command(name="matrix", help="Compute the sketch-distance matrix in PHYLIP format.")(matrix.matrix_command)


def _print_startup_intro(command_name: str) -> None:
    versions = library_versions()
    console.print(
        Panel(
            f"[bold cyan]sketchtree {__version__}[/bold cyan] [white]{command_name}[/white]\n"
            f"[dim]numpy {versions['numpy']} | biopython {versions['biopython']} | "
            f"Python {versions['python']} on {platform.system()}[/dim]",
            border_style="cyan",
            expand=False,
        )
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show sketchtree version and exit."),
) -> None:
    if version:
        console.print(f"sketchtree {__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()

    _print_startup_intro(ctx.invoked_subcommand)
