# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""CastLadder capture push CLI.

Streams a recorded capture file into the ingest endpoint in fixed-size
chunks on a fixed interval, printing the status messages the server sends.

Usage:
    castladder-push capture.webm
    castladder-push capture.webm --url ws://host:3000/ingest --interval-ms 25 --chunk-size 16384
    castladder-push capture.webm --session-id cam-1 --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from castladder.client.capture import CaptureProducer, iter_file_chunks


def print_status(message: Dict[str, Any]) -> None:
    """Print one server message."""
    if message.get("type") == "error":
        print(f"[error] {message.get('detail', '')}", file=sys.stderr)
        return
    detail = message.get("detail") or ""
    print(f"[{message.get('state', '?')}] {message.get('session_id', '')} {detail}".rstrip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="castladder-push",
        description="Push a recorded capture into a CastLadder ingest endpoint",
    )
    parser.add_argument("file", help="Media file to push (e.g. a MediaRecorder .webm)")
    parser.add_argument(
        "--url",
        default=os.environ.get("CASTLADDER_INGEST_URL", "ws://localhost:3000/ingest"),
        help="Ingest WebSocket URL (default: ws://localhost:3000/ingest)",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=25,
        help="Delay between chunks in milliseconds (default: 25)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=16384,
        help="Chunk size in bytes (default: 16384)",
    )
    parser.add_argument("--session-id", default=None, help="Session id to request")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the push command."""
    args = build_parser().parse_args(argv)

    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1
    if args.chunk_size < 1 or args.interval_ms < 0:
        print("Error: --chunk-size must be positive and --interval-ms not negative", file=sys.stderr)
        return 1

    producer = CaptureProducer(
        args.url,
        interval_ms=args.interval_ms,
        session_id=args.session_id,
        on_status=None if args.json else print_status,
    )

    try:
        result = asyncio.run(producer.run(iter_file_chunks(path, args.chunk_size)))
    except aiohttp.ClientError as e:
        print(f"Error: could not push to {args.url}: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(f"Sent {result.chunks_sent} chunks ({result.bytes_sent} bytes)")

    rejected = any(m.get("type") == "error" for m in result.statuses)
    return 1 if rejected or result.final_state == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
