"""CLI application entry point."""

import asyncio
import json
import sys
from typing import Optional

import click
import yaml

from roomrelay import __version__
from roomrelay.utils import load_config, settings, setup_logging
from roomrelay.utils.logger import get_logger

# Setup logging
setup_logging(
    log_level=settings.log_level,
    log_file=settings.log_file,
)

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli():
    """Room signaling relay for WebRTC mesh calls."""
    pass


@cli.command()
@click.option("--host", default=settings.host, show_default=True, help="Server host")
@click.option("--port", default=settings.port, show_default=True, type=int, help="Server port")
@click.option("--config", "config_path", type=click.Path(), help="Path to relay config YAML")
def serve(host: str, port: int, config_path: Optional[str]):
    """Start the relay server."""
    from roomrelay.signaling import RelayServer

    config = load_config(config_path)
    logger.info(f"Starting relay on {host}:{port}")

    click.echo("=" * 60)
    click.echo("Room Signaling Relay")
    click.echo(f"Listening on: ws://{host}:{port}{config.http.websocket_path}")
    click.echo(f"Static files: {config.http.static_dir}")
    click.echo("=" * 60)

    relay = RelayServer(host=host, port=port, config=config)

    try:
        asyncio.run(relay.run())
    except KeyboardInterrupt:
        click.echo("\nShutting down relay...")
    finally:
        click.echo("Relay stopped.")


@cli.command("show-config")
@click.option("--config", "config_path", type=click.Path(), help="Path to relay config YAML")
def show_config(config_path: Optional[str]):
    """Print the effective relay configuration."""
    config = load_config(config_path)
    click.echo(yaml.dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


@cli.command()
@click.option("--url", default=f"ws://localhost:{settings.port}/ws", show_default=True, help="Relay WebSocket URL")
@click.option("--room", required=True, help="Room to join")
@click.option("--name", default="watcher", show_default=True, help="Display name")
def watch(url: str, room: str, name: str):
    """Join a room and print every event the relay sends."""
    from roomrelay.signaling.client import EventRecorder, RelayClient

    async def run():
        client = RelayClient(url)
        recorder = EventRecorder(client)
        connection_id = await client.connect()
        click.echo(f"Connected as {connection_id}")
        await client.join_room(room, name)

        try:
            while client.is_connected:
                try:
                    event, args = await recorder.next(timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                click.echo(f"{event} {json.dumps(args)}")
        finally:
            await client.disconnect()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopped watching.")


def main():
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
