#!/usr/bin/env python3
"""
============================================================================
Veritas Protocol v1.0.0
Service Launcher
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)

Starts the FastAPI validation service under uvicorn.

ENVIRONMENT:
    VERITAS_HOST      Bind address (default 0.0.0.0)
    VERITAS_PORT      Port (default 8080)
    VERITAS_LOG_LEVEL Root log level (default INFO)

USAGE:
    python main.py

============================================================================
"""

import logging
import os
from datetime import datetime, timezone

import uvicorn
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("VERITAS_LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("VERITAS")

HOST = os.getenv("VERITAS_HOST", "0.0.0.0")
PORT = int(os.getenv("VERITAS_PORT", "8080"))


def main() -> None:
    logger.info("=" * 60)
    logger.info("VERITAS PROTOCOL v1.0.0 - LAUNCHER")
    logger.info("=" * 60)
    logger.info(f"Startup Time: {datetime.now(timezone.utc).isoformat()}")
    logger.info(f"Bind: {HOST}:{PORT}")
    logger.info(f"Validation enabled: {os.getenv('ENABLE_VERITAS_PROTOCOL', 'true')}")
    logger.info(f"Database: {'configured' if os.getenv('DATABASE_URL') else 'in-memory'}")
    logger.info("=" * 60)

    uvicorn.run("app.main:app", host=HOST, port=PORT, log_level="info")


if __name__ == "__main__":
    main()
