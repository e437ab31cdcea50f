"""
Hearth Kiosk — Entry Point.

Single entry point: `python main.py` starts the API server.
"""

import logging

from hearth.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

import uvicorn

from hearth.api.app import create_app


def main() -> None:
    app = create_app()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
