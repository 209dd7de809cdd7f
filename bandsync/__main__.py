"""
Run the BandSync API with uvicorn.
"""

from __future__ import annotations

import argparse

import uvicorn

from bandsync.config import get_settings


def main() -> int:
    parser = argparse.ArgumentParser(description="BandSync API server")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--reload", action="store_true", help="Reload on code changes (development)"
    )
    args = parser.parse_args()

    uvicorn.run(
        "bandsync.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
