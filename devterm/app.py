"""Command line entry point: open a shell on a device from the local tty."""

import argparse
import asyncio
import signal
import sys
from typing import Optional

from loguru import logger

from .config import Config, config
from .console import LocalConsole
from .terminal import SessionState, TerminalSession, TerminalSessionPool, WebSocketTransport


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="devterm",
        description="Open a remote terminal on a device through the gateway.",
    )
    parser.add_argument("device_id", help="ID of the device to connect to")
    parser.add_argument("--gateway", help="Gateway URL (overrides GATEWAY_URL)")
    parser.add_argument("--token", help="API token (overrides API_TOKEN)")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Config:
    """Apply command line overrides on top of the environment configuration."""
    overrides = {}
    if args.gateway:
        overrides["GATEWAY_URL"] = args.gateway
    if args.token:
        overrides["API_TOKEN"] = args.token
    if args.insecure:
        overrides["SSL_VERIFY"] = False
    return Config(**overrides) if overrides else config


async def main(argv: Optional[list[str]] = None) -> int:
    """Main application entry point."""
    args = parse_args(argv)
    settings = build_settings(args)

    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)

    # Validate configuration
    errors = settings.validate_required()
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    console = LocalConsole()
    transport = WebSocketTransport(
        settings.connect_url(args.device_id),
        headers=settings.auth_headers(),
        ssl_verify=settings.SSL_VERIFY,
        open_timeout=settings.timeouts.connect,
        close_timeout=settings.timeouts.close_grace,
    )
    session = TerminalSession(
        args.device_id,
        transport,
        write=console.write,
        notify=console.notify,
        measure=console.measure,
        settings=settings,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, session.cancel)

    console.attach(session)
    try:
        await TerminalSessionPool.open(args.device_id, session)
        await session.wait_closed()
    finally:
        console.detach()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await TerminalSessionPool.close_all()

    if session.state is SessionState.FAILED:
        logger.error(f"Session failed: {session.error}")
        return 1
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
