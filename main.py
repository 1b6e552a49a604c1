import sys
import uvicorn
from loguru import logger

from core.logging_config import setup_logging
from settings import settings


def main():
    """Main entry point for the HTTP API."""
    setup_logging()

    try:
        logger.info(f"Starting Pander poll agent API on port {settings.PORT}")

        from http_api import app
        uvicorn.run(app, host="0.0.0.0", port=settings.PORT)

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
