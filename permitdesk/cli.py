"""Command-line entry point that starts the permit server."""

from __future__ import annotations

import argparse
import logging
import os
import sqlite3
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version

from .licensing import default_limits
from .server import Server, serve
from .store import Database

logger = logging.getLogger(__name__)

DEFAULT_PORT = "9811"
DEFAULT_DATA_DIR = "./permit-data"


@dataclass(frozen=True)
class Settings:
    """Where to listen and where to keep data."""

    port: str
    data_dir: str


def _version() -> str:
    try:
        return version("permitdesk")
    except PackageNotFoundError:
        return "dev"


def parse_settings(argv: list[str] | None = None) -> Settings:
    """Read settings from flags, then the environment, then the defaults."""
    parser = argparse.ArgumentParser(
        prog="permit", description="Self-hosted permit and license tracking"
    )
    parser.add_argument("-port", "--port", default="", help="HTTP port")
    parser.add_argument(
        "-data", "--data", default="", help="Data directory for SQLite files"
    )
    args = parser.parse_args(argv)
    port = args.port or os.environ.get("PORT", "") or DEFAULT_PORT
    data_dir = args.data or os.environ.get("DATA_DIR", "") or DEFAULT_DATA_DIR
    return Settings(port=port, data_dir=data_dir)


def main(argv: list[str] | None = None) -> int:
    """Start the server; return the process exit status."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    settings = parse_settings(argv)
    try:
        db = Database(settings.data_dir)
    except (OSError, sqlite3.Error) as exc:
        logger.error("permit: %s", exc)
        return 1
    with db:
        server = Server(db, default_limits(settings.data_dir), settings.data_dir)
        port = settings.port
        print(
            f"\n  Permit v{_version()} — Self-hosted permit and license tracking\n"
            f"  Dashboard:  http://localhost:{port}/ui\n"
            f"  API:        http://localhost:{port}/api\n"
            f"  Data:       {settings.data_dir}\n",
            flush=True,
        )
        logger.info("permit: listening on :%s", port)
        try:
            serve(server, port)
        except KeyboardInterrupt:
            return 0
        except (OSError, ValueError) as exc:
            logger.error("permit: %s", exc)
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())