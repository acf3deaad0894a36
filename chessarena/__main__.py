# Path: chessarena/__main__.py
from __future__ import annotations

import argparse
import os

import uvicorn

from .config import Settings, configure_logging


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the chess arena service")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--engine", default=None, help="UCI engine command (overrides UCI_ENGINE_CMD)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING...")
    args = parser.parse_args(argv)

    if args.engine:
        os.environ["UCI_ENGINE_CMD"] = args.engine
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    from .app import create_app
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
