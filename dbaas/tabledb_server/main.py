"""
TableDB Server - Main entry point.

This module starts the TableDB HTTP gateway:
- Loads ServerConfig from the environment and configures logging
- Builds the FastAPI app (which owns the blob store connection)
- Serves it with uvicorn

Usage:
    python -m dbaas.tabledb_server.main

Configuration is entirely via environment variables.
See config.py (storage, integrity, logging) and api/settings.py (bind
address, CORS) for all available settings.

Invariants:
    - Configuration errors exit with status 1 before anything is served
    - The blob store is connected before the first request is accepted
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api.http_server import create_app
from .api.settings import Settings
from .config import ServerConfig
from .service import TableDB

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    settings = Settings()
    app = create_app(db=TableDB.from_config(config), settings=settings)

    logger.info(f"Starting TableDB gateway on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
