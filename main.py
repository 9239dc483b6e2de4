#!/usr/bin/env python3
"""
AuthKit -- password, JWT, and OAuth authentication service.

Usage:
  python main.py
  python main.py --port 8080
  python main.py --host 0.0.0.0 --port 3000
  python main.py --reload

Configuration comes from the environment or a .env file (see core/config.py).
At minimum set SECRET_KEY (32+ chars), or DEBUG=true for a throwaway key.
"""

import argparse

import uvicorn

from core.config import get_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the AuthKit authentication API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=3000, help="Port to listen on (default: 3000)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    # Fail fast on bad configuration before uvicorn starts importing the app.
    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
