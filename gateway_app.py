#!/usr/bin/env python3
"""Telemetry gateway."""

import argparse
import asyncio
import logging
import signal

from config import load_config
from constants import DEFAULT_CONFIG_FILE
from device_data_manager import DeviceDataManager

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Gateway bridging device telemetry to actuator commands.")
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_FILE,
        help=f"path to the configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    return parser.parse_args(argv)


async def run(config_path: str):
    """Run the gateway until SIGINT/SIGTERM."""
    config = load_config(config_path)
    manager = DeviceDataManager(config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _shutdown():
        if not stop_event.is_set():
            logger.info("Shutting down...")
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown)
        except NotImplementedError:
            pass

    try:
        await manager.start()
        await stop_event.wait()
    finally:
        await manager.stop()


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        asyncio.run(run(args.config))
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
