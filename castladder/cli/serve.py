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

"""CastLadder Server CLI.

Command-line interface for starting the CastLadder ingest service.

Usage:
    castladder-serve [--host HOST] [--port PORT] [--reload]
    castladder-serve --publish-url rtmp://media:1935/live/stream --media-root ./media

    Or with Python:
    python -m castladder.cli.serve

Environment Variables:
    CASTLADDER_HOST, CASTLADDER_PORT, CASTLADDER_LOG_LEVEL
    CASTLADDER_PUBLISH_URL, CASTLADDER_MEDIA_ROOT, CASTLADDER_PLAYBACK_BASE_URL
    CASTLADDER_SPAWN_SEGMENTERS=true
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

from castladder import __version__

APP_MODULE = "castladder.service.app:app"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="castladder-serve",
        description="Start the CastLadder ingest service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  castladder-serve                          # Start on port 3000
  castladder-serve --port 8080              # Custom port
  castladder-serve --reload                 # Development mode with auto-reload
  castladder-serve --spawn-segmenters       # Run the ladder segmenters locally
        """,
    )

    parser.add_argument(
        "--host",
        default=os.environ.get("CASTLADDER_HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("CASTLADDER_PORT", "3000")),
        help="Port to bind to (default: 3000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("CASTLADDER_LOG_LEVEL", "info").lower(),
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--publish-url",
        default=os.environ.get("CASTLADDER_PUBLISH_URL", "rtmp://localhost:1935/live/stream"),
        help="Address the transcoder publishes to",
    )
    parser.add_argument(
        "--media-root",
        default=os.environ.get("CASTLADDER_MEDIA_ROOT", "./media"),
        help="Directory holding rendition outputs (default: ./media)",
    )
    parser.add_argument(
        "--playback-base-url",
        default=os.environ.get("CASTLADDER_PLAYBACK_BASE_URL", "http://localhost:8000/live/stream"),
        help="Base URL of the rendition playlists",
    )
    parser.add_argument(
        "--spawn-segmenters",
        action="store_true",
        default=os.environ.get("CASTLADDER_SPAWN_SEGMENTERS", "").lower() == "true",
        help="Run one ffmpeg segmenter per rendition",
    )
    parser.add_argument(
        "--max-sessions",
        type=int,
        default=int(os.environ.get("CASTLADDER_MAX_SESSIONS", "10")),
        help="Maximum concurrent ingest sessions (default: 10)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the serve command."""
    args = build_parser().parse_args(argv)

    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is not installed. Install it with:")
        print("  pip install uvicorn[standard]")
        sys.exit(1)

    # The app reads its settings from the environment on startup
    os.environ["CASTLADDER_HOST"] = args.host
    os.environ["CASTLADDER_PORT"] = str(args.port)
    os.environ["CASTLADDER_LOG_LEVEL"] = args.log_level
    os.environ["CASTLADDER_PUBLISH_URL"] = args.publish_url
    os.environ["CASTLADDER_MEDIA_ROOT"] = args.media_root
    os.environ["CASTLADDER_PLAYBACK_BASE_URL"] = args.playback_base_url
    os.environ["CASTLADDER_SPAWN_SEGMENTERS"] = "true" if args.spawn_segmenters else "false"
    os.environ["CASTLADDER_MAX_SESSIONS"] = str(args.max_sessions)

    print()
    print(f"  CastLadder {__version__}")
    print()
    print("  Live capture ingest with an adaptive rendition ladder")
    print()
    print(f"  Host:      {args.host}")
    print(f"  Port:      {args.port}")
    print(f"  Publish:   {args.publish_url}")
    print(f"  Media:     {args.media_root}")
    print(f"  Segmenter: {'local ffmpeg' if args.spawn_segmenters else 'external'}")
    print(f"  Reload:    {args.reload}")
    print(f"  Log Level: {args.log_level}")
    print()
    print(f"  Player:    http://{args.host}:{args.port}/")
    print(f"  Manifest:  http://{args.host}:{args.port}/live/stream.m3u8")
    print(f"  Health:    http://{args.host}:{args.port}/health")
    print()

    # Sessions live in process memory, so a single worker
    uvicorn.run(
        APP_MODULE,
        host=args.host,
        port=args.port,
        workers=1,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
