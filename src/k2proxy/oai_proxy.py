"""
Server entry point: builds the application from the process configuration
and runs it under uvicorn.
"""

import logging

import uvicorn

from .api import create_app
from .config import load_config

logger = logging.getLogger(__name__)

config = load_config()
app = create_app(config)


def main() -> None:
    logger.info(f"Server running on port {config.port}")
    logger.info(f"Health check: http://localhost:{config.port}/health")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
