"""Command-line interface for vallox-bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import BridgeApp
from .config import BridgeConfig, load_config
from .errors import BridgeError, ConfigurationError, StorageUnavailable
from .logging import configure_logging
from .processor import decode_batch
from .protocol.frames import FrameBatch, decode_metadata, validate_data_frame
from .storage import SampleSink

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vallox-bridge",
        description="Poll a Vallox controller's sensor log and store it in PostgreSQL",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start polling the device")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    subparsers.add_parser(
        "check-storage", help="Run the storage pre-flight check and exit"
    )

    decode_parser = subparsers.add_parser(
        "decode", help="Decode a captured metadata/data frame pair and print samples"
    )
    decode_parser.add_argument("--metadata", type=Path, required=True)
    decode_parser.add_argument("--data", type=Path, required=True)
    decode_parser.add_argument(
        "--max-pages",
        type=int,
        default=constants.DEFAULT_MAX_PAGES,
        help=f"Largest page count to accept (default: {constants.DEFAULT_MAX_PAGES})",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "decode":
        configure_logging("WARNING", log_path=None)
        return _decode(args.metadata, args.data, max_pages=args.max_pages)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    if args.command == "start":
        return BridgeApp.start(config)

    if args.command == "check-storage":
        configure_logging(config.logging.level, log_path=None)
        try:
            version = asyncio.run(_check_storage(config))
        except StorageUnavailable as exc:
            LOGGER.critical("Database is not accessible: %s", exc)
            return 1
        print(f"Database - OK ({version})")
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


async def _check_storage(config: BridgeConfig) -> str:
    sink = SampleSink(config.storage)
    try:
        await sink.connect()
        return await sink.check_health()
    finally:
        await sink.close()


def _decode(metadata_path: Path, data_path: Path, *, max_pages: int) -> int:
    try:
        metadata = decode_metadata(metadata_path.read_bytes())
        data = data_path.read_bytes()
        validate_data_frame(metadata, data, max_pages=max_pages)
        samples = decode_batch(FrameBatch(metadata=metadata, data=data))
    except OSError as exc:
        LOGGER.error("Cannot read capture: %s", exc)
        return 1
    except BridgeError as exc:
        LOGGER.error("Cannot decode capture: %s", exc)
        return 1

    print(
        "datetime,extractairtemp,exaustairtemp,outdoorairtemp,supplyairtemp,co2,humidity"
    )
    for sample in samples:
        print(
            f"{sample.timestamp.isoformat(sep=' ')},{sample.extract_air_temp},"
            f"{sample.exhaust_air_temp},{sample.outdoor_air_temp},"
            f"{sample.supply_air_temp},{sample.co2},{sample.humidity}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
