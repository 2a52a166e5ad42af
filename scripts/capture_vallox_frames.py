"""Send one poll request to a Vallox controller and save the two response frames.

The files can be replayed offline with ``vallox-bridge decode``.
"""

from __future__ import annotations

import argparse
import asyncio
import pathlib
import sys
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from vallox_bridge.protocol import PAGE_SIZE, POLL_REQUEST, decode_metadata


async def _capture_frames(args: argparse.Namespace) -> None:
    prefix = _resolve_prefix(args.output)
    metadata_path = prefix.with_name(prefix.name + "-metadata.bin")
    data_path = prefix.with_name(prefix.name + "-data.bin")

    print(f"Connecting to {args.uri}")

    session_timeout = aiohttp.ClientTimeout(total=None, sock_connect=args.timeout)

    async with aiohttp.ClientSession(timeout=session_timeout) as session:
        async with session.ws_connect(
            args.uri,
            max_msg_size=args.max_pages * PAGE_SIZE + PAGE_SIZE,
        ) as websocket:
            await websocket.send_bytes(POLL_REQUEST)
            frames: list[bytes] = []
            while len(frames) < 2:
                message = await websocket.receive(timeout=args.response_timeout)
                if message.type == aiohttp.WSMsgType.BINARY:
                    frames.append(message.data)
                elif message.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.ERROR,
                ):
                    raise RuntimeError(f"Websocket closed after {len(frames)} frames")

    metadata_path.write_bytes(frames[0])
    data_path.write_bytes(frames[1])
    metadata = decode_metadata(frames[0])
    print(
        f"Wrote {metadata_path} ({len(frames[0])} bytes, {metadata.page_count} pages) "
        f"and {data_path} ({len(frames[1])} bytes)"
    )


def _resolve_prefix(output: Optional[str]) -> pathlib.Path:
    if output:
        path = pathlib.Path(output)
    else:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = pathlib.Path(f"vallox-capture-{timestamp}")
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--uri", required=True, help="Device websocket URI (e.g. ws://192.168.0.55)")
    parser.add_argument(
        "--output",
        default=None,
        help="File prefix for the capture (defaults to ./vallox-capture-<timestamp>)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Socket connect timeout in seconds (default: 10)",
    )
    parser.add_argument(
        "--response-timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for each response frame (default: 60)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=128,
        help="Largest data frame to accept, in 64 KiB pages (default: 128)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv or sys.argv[1:])

    try:
        asyncio.run(_capture_frames(args))
    except KeyboardInterrupt:
        return 0
    except Exception as exc:  # pragma: no cover - defensive
        print(f"Capture failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
