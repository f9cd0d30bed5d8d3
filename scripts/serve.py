"""Run the reservation API with uvicorn.

Usage:
    python -m scripts.serve
"""

import logging

import uvicorn

from src.config.settings import get_settings


def main() -> None:
    """Serve the FastAPI app on the configured host and port."""
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
    )


if __name__ == "__main__":
    main()
