"""
Image resizer server entry point.

Usage:
    python -m image_resizer --config /etc/image-resizer/config.json --data /var/cache/images
    python -m image_resizer --config https://config.example.com/resizer.json

Environment:
    IMAGE_RESIZER_CONFIG   default for --config
    IMAGE_RESIZER_DATA     default for --data (overrides "storage" in the config)
    LOG_LEVEL              DEBUG / INFO / WARNING / ERROR (default INFO)
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

import uvicorn

from .app import create_app
from .config import DEFAULT_CONFIG_PATH, load_settings
from .errors import ConfigurationError

logger = logging.getLogger("image_resizer")


def setup_logging(level: Optional[str] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve width-resized copies of origin images")
    parser.add_argument(
        "--config",
        default=os.getenv("IMAGE_RESIZER_CONFIG", DEFAULT_CONFIG_PATH),
        help="Config file path or http(s) URL",
    )
    parser.add_argument(
        "--data",
        default=os.getenv("IMAGE_RESIZER_DATA"),
        help="Cache storage directory (overrides the config's storage)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger.info("[Startup] Starting up...")
    try:
        settings = load_settings(args.config, storage=args.data)
        host, port = settings.listen_address()
    except ConfigurationError as e:
        logger.critical(f"[Startup] {e}. Exiting.")
        return 1

    ssl_kwargs = {}
    if settings.ssl:
        ssl_kwargs = {"ssl_certfile": settings.cert, "ssl_keyfile": settings.key}

    logger.info(f"[Startup] Listening on: {host}:{port}{' (TLS)' if settings.ssl else ''}")
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None, **ssl_kwargs)
    return 0


if __name__ == "__main__":
    sys.exit(main())
