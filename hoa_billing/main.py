"""Main application entry point."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

from hoa_billing.services.logging import setup_server_logging

# Load environment variables
load_dotenv()

# Configure logging (with file logging)
setup_server_logging(os.getenv("LOG_FILE", "logs/server.log"))
logger = logging.getLogger(__name__)


def main() -> None:
    """Run the API server."""
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting billing API on %s:%d", host, port)
    uvicorn.run("hoa_billing.api.app:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
