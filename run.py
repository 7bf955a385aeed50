#!/usr/bin/env python3
"""
objectcast launcher.
Starts the object gateway (object streaming, HLS playlists, uploads).
"""
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import click
from rich.console import Console
from rich.panel import Panel

from shared import config
from shared.constants import OBJECT_ROUTE, PLAYLIST_ROUTE

console = Console()


@click.command()
@click.option('--host', default=config.GATEWAY_HOST, show_default=True)
@click.option('--port', type=int, default=config.GATEWAY_PORT, show_default=True)
@click.option('--provider', type=click.Choice(['s3', 'local']), default=None,
              help='Override STORAGE_PROVIDER')
@click.option('--debug', is_flag=True, help='Flask debug mode and debug logging')
def main(host, port, provider, debug):
    """Run the object gateway."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if provider:
        config.STORAGE_PROVIDER = provider

    from shared.api import start_server
    from shared.models import StorageProvider
    from storage.provider_factory import StorageProviderFactory

    store_name = StorageProviderFactory.get_provider_name(StorageProvider(config.STORAGE_PROVIDER))

    console.print(Panel.fit(
        f"[bold cyan]{config.APP_NAME} gateway[/bold cyan] v{config.VERSION}\n\n"
        f"Store:    {store_name}\n"
        f"Objects:  http://localhost:{port}{OBJECT_ROUTE}?b=<bucket>&k=<key>\n"
        f"Playlist: http://localhost:{port}{PLAYLIST_ROUTE}?b=<bucket>&k=<key>",
        border_style="cyan",
    ))
    start_server(host=host, port=port, debug=debug)


if __name__ == "__main__":
    main()
