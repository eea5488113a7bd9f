"""
Command-line interface for the Niimbot bridge.

This module provides the CLI using Click, supporting configuration via:
1. Environment variables (highest precedence)
2. CLI arguments
3. Config file
4. Default values (lowest precedence)
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import click

from niimbot_bridge.core.config import (
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_FILE,
    ENV_DEVICE_BAUD_RATE,
    ENV_DEVICE_PATH,
    ENV_PACKET_LOG_FILE,
    Config,
)
from niimbot_bridge.core.logging import get_logger, setup_logging
from niimbot_bridge.core.utils import SessionError
from niimbot_bridge.device.enumerator import scan as scan_serial_ports
from niimbot_bridge.printer.client import NiimbotProtocol, create_printer_session

logger = get_logger()


@click.group()
@click.option(
    "-c", "--config",
    "config_file",
    type=click.Path(exists=False, path_type=Path),
    envvar=ENV_CONFIG_FILE,
    default=None,
    help=f"Path to configuration file. [default: {DEFAULT_CONFIG_PATH}] [env: {ENV_CONFIG_FILE}]",
)
@click.option(
    "--packet-log-file",
    type=str,
    default=None,
    help=f"Log every raw packet to this file. [env: {ENV_PACKET_LOG_FILE}]",
)
@click.option(
    "-v", "--verbose",
    count=True,
    help="Increase logging verbosity (-v debug, -vv verbose).",
)
@click.option(
    "-q", "--quiet",
    is_flag=True,
    default=False,
    help="Suppress all output except errors.",
)
@click.version_option(package_name="niimbot-bridge")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: Path | None,
    packet_log_file: str | None,
    verbose: int,
    quiet: bool,
) -> None:
    """
    Niimbot Bridge - Talk to Niimbot label printers over a serial port.

    \b
    Example usage:
        niimbot-bridge scan
        niimbot-bridge info --address /dev/ttyACM0
        niimbot-bridge -vv info -a COM7
    """
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["cli_args"] = {"packet_log_file": packet_log_file}
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


def _load_config(ctx: click.Context, **cli_args: Any) -> Config:
    """Load configuration for a subcommand and set up logging with it."""
    args: dict[str, Any] = dict(ctx.obj["cli_args"])
    args.update({k: v for k, v in cli_args.items() if v is not None})

    try:
        config = Config.load(config_file=ctx.obj["config_file"], cli_args=args)
    except ValueError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(
        verbosity_level=ctx.obj["verbose"],
        quiet=ctx.obj["quiet"],
        packet_log_file=config.packet_log_file,
    )
    return config


@main.command()
@click.pass_context
def scan(ctx: click.Context) -> None:
    """List serial ports that may have a printer attached."""
    _load_config(ctx)

    devices = scan_serial_ports()
    if not devices:
        click.echo("No serial ports found")
        return

    for dev in devices:
        click.echo(f"{dev.address}: {dev.display_name}")


@main.command()
@click.option(
    "-a", "--address",
    "path",
    type=str,
    default=None,
    help=f"Serial port of the printer. [env: {ENV_DEVICE_PATH}]",
)
@click.option(
    "-b", "--baud-rate",
    type=int,
    default=None,
    help=f"Serial baud rate. [env: {ENV_DEVICE_BAUD_RATE}]",
)
@click.pass_context
def info(ctx: click.Context, path: str | None, baud_rate: int | None) -> None:
    """Connect to the printer and print what it reports about itself."""
    config = _load_config(ctx, path=path, baud_rate=baud_rate)

    try:
        result = asyncio.run(fetch_printer_info(config))
    except SessionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    click.echo(f"Connected: {result['device_name']} (result {result['result']})")
    click.echo("Printer info:")
    for key, value in result["printer_info"].items():
        click.echo(f"  {key}: {value}")


@main.command("generate-config")
@click.pass_context
def generate_config(ctx: click.Context) -> None:
    """Write the effective configuration to the config file and exit."""
    config = _load_config(ctx)
    target_path = ctx.obj["config_file"] or DEFAULT_CONFIG_PATH

    try:
        config.save(target_path)
    except OSError as e:
        click.echo(f"Error generating config file: {e}", err=True)
        sys.exit(1)

    click.echo(f"Configuration file generated: {target_path}")


async def fetch_printer_info(config: Config) -> dict[str, Any]:
    """
    Connect, collect the printer info and disconnect.

    Args:
        config: Loaded configuration; config.device.path selects the port.

    Returns:
        Dict with device_name, result and printer_info.
    """
    session = create_printer_session(config.device)

    logger.debug(f"Connecting to {session.endpoint}")
    connection = await session.connect()

    try:
        protocol = session.protocol
        printer_info = protocol.info.to_dict() if isinstance(protocol, NiimbotProtocol) else {}
        return {
            "device_name": connection.device_name,
            "result": connection.result,
            "printer_info": printer_info,
        }
    finally:
        await session.disconnect()


if __name__ == "__main__":
    main()
