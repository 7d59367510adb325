"""Command-line entry point for the Fluid DEX price monitor.

Usage:
    python -m fluid_dex_monitor [run]
    python -m fluid_dex_monitor config
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys

from pydantic import ValidationError

from fluid_dex_monitor import __version__
from fluid_dex_monitor.config import Settings, get_settings
from fluid_dex_monitor.pipeline import Monitor, MonitorError

logger = logging.getLogger("fluid_dex_monitor")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="fluid-dex-monitor",
        description="Monitor tracked-asset prices across Fluid DEX pools.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the monitor until interrupted (default).")
    sub.add_parser("config", help="Print the effective configuration with secrets redacted.")
    return p


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)


async def run_monitor(settings: Settings) -> int:
    """Run the monitor until SIGINT/SIGTERM. Returns the process exit code."""
    monitor = Monitor(settings)
    loop = asyncio.get_running_loop()

    def on_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down gracefully...", sig.name)
        monitor.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            logger.debug("Signal handlers are not supported on this platform")

    try:
        await monitor.run()
    except MonitorError as e:
        logger.error("Failed to start monitor: %s", e)
        return 1
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT)
        logger.error("Invalid configuration (is MAINNET_RPC_URL set?):\n%s", e)
        return 1

    if args.command == "config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0

    configure_logging(settings)
    return asyncio.run(run_monitor(settings))


if __name__ == "__main__":
    sys.exit(main())
