"""
Command-line interface for the local object cache.

Shows and clears local cache usage, and fetches objects into the cache.
"""

import logging

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from shared import config
from .cache import PersistentObjectCache

console = Console()


def format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


@click.group()
@click.option('--gateway-url', default=config.GATEWAY_URL, show_default=True,
              help='Base URL of the object gateway')
@click.option('--cache-dir', type=click.Path(file_okay=False), default=str(config.OBJECT_CACHE_DIR),
              show_default=True, help='Local cache directory')
@click.option('--backend', type=click.Choice(['auto', 'tree', 'responses']),
              default=config.OBJECT_CACHE_BACKEND, show_default=True, help='Cache backend')
@click.option('-v', '--verbose', is_flag=True, help='Debug logging')
@click.pass_context
def cli(ctx, gateway_url, cache_dir, backend, verbose):
    """Local object cache"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ctx.obj = PersistentObjectCache(gateway_url, cache_dir, backend_mode=backend)


@cli.command()
@click.pass_obj
def usage(cache):
    """Show cached entries and total size."""
    entries = cache.entries()
    if not entries:
        console.print("[yellow]Cache is empty.[/yellow]")
    else:
        table = Table(title=f"Local cache ({len(entries)} entries)")
        table.add_column("Backend", style="cyan", no_wrap=True)
        table.add_column("Entry", style="bold white")
        table.add_column("Size", style="green", justify="right")
        for backend, name, size in sorted(entries):
            table.add_row(backend, name, format_size(size))
        console.print(table)

    console.print(f"Total: [bold]{format_size(cache.total_bytes())}[/bold]")


@cli.command()
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_obj
def clear(cache, yes):
    """Remove every cached entry."""
    if not yes and not click.confirm("Clear the local cache?"):
        return
    removed = cache.clear_all()
    console.print(f"[green]✓ Removed {removed} entries[/green]")


@cli.command()
@click.argument('bucket')
@click.argument('key')
@click.option('--size', type=int, default=None, help='Expected size in bytes')
@click.pass_obj
def fetch(cache, bucket, key, size):
    """Download BUCKET/KEY into the cache."""
    if cache.exists(bucket, key):
        console.print(f"[cyan]Already cached:[/cyan] {cache.get_cached_url(bucket, key)}")
        return

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(key, total=100)
        try:
            url = cache.download_with_progress(
                bucket, key,
                expected_size=size,
                on_progress=lambda pct: progress.update(task, completed=pct),
            )
        except Exception as e:
            console.print(f"[red]Download failed: {e}[/red]")
            raise SystemExit(1)
        progress.update(task, completed=100)

    console.print(f"[green]✓ Cached[/green] {url}")


@cli.command()
@click.argument('bucket')
@click.argument('key')
@click.pass_obj
def delete(cache, bucket, key):
    """Remove BUCKET/KEY from the cache."""
    cache.delete(bucket, key)
    console.print(f"[green]✓ Removed {bucket}/{key}[/green]")


if __name__ == '__main__':
    cli()
