"""
Main entrypoint: run the presence API server.

Settings come from the environment (.env at project root is loaded). On SIGINT/SIGTERM
uvicorn shuts down and the process exits; live sessions are in-memory and are lost.

Env: API_HOST, API_PORT, SIMILARITY_THRESHOLD, DATABASE_URL / PRESENCE_DB_PATH, LOG_LEVEL, etc.

Equivalent: uvicorn backend_presence.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from backend_presence.presence_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Build the app from environment settings and serve it in the main thread."""
    api_host = os.getenv("API_HOST", "0.0.0.0").strip()
    api_port = int(os.getenv("API_PORT", "8000").strip() or "8000")

    from backend_presence.config import get_settings

    settings = get_settings()
    logger.info(
        "main_settings_loaded",
        similarity_threshold=settings.similarity_threshold,
        physics_enabled=settings.physics_enabled,
        schedule_enforced=settings.schedule_enforced,
    )

    from backend_presence.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=api_host, port=api_port)
    uvicorn.run(app, host=api_host, port=api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
