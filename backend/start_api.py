#!/usr/bin/env python3
"""
launchlens API Startup Script

Starts the launchlens FastAPI server (the launch status scheduler runs
inside the API process unless LAUNCH_STATUS_SCHEDULER_ENABLED=false).
"""

import logging
import sys
from pathlib import Path

import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Start the launchlens API server."""
    logger.info("Starting launchlens API server")
    logger.info("Swagger UI: http://localhost:8000/docs")

    if not Path(".env").exists():
        logger.warning("No .env file found. Set at least DATABASE_URL and JWT_SECRET.")

    try:
        uvicorn.run(
            "launchlens.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["launchlens"],
            log_level="info",
        )
    except KeyboardInterrupt:
        logger.info("Shutting down launchlens API server")
    except Exception as e:
        logger.error("Error starting server: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
