#!/usr/bin/env python3
"""Startup script for the Endless story server.

Usage:
    python run_server.py

Environment Variables:
    ENDLESS_CONFIG: Path to a YAML config file (default: built-in defaults)
    ENDLESS_DB_PATH: SQLite model store path (default: ./data/endless.db)
    HOST: Server host (default: 127.0.0.1)
    PORT: Server port (default: 8080)
"""

import os
import sys
import logging
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import uvicorn

from endless.config import load_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    """Start the Endless server."""
    config = load_config(os.environ.get("ENDLESS_CONFIG"))
    host = config["server"]["host"]
    port = config["server"]["port"]

    logger.info("=" * 60)
    logger.info("Starting Endless")
    logger.info("=" * 60)
    logger.info(f"Host: {host}")
    logger.info(f"Port: {port}")
    logger.info(f"Model store: {config['store']['db_path']}")
    logger.info(f"Max concurrent streams: {config['server']['max_concurrent_streams']}")
    logger.info("=" * 60)
    logger.info(f"Open http://localhost:{port} in your browser")
    logger.info("=" * 60)

    uvicorn.run(
        "endless.server:app",
        host=host,
        port=port,
        reload=False,
        log_level="info",
        access_log=False,  # RequestLoggingMiddleware logs every request
    )


if __name__ == "__main__":
    main()
