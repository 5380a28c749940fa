"""
Console Service Launcher

Starts the flow management console API.

This service provides:
- JSON API over the flow control plane (process groups, controller services)
- User to process group mappings
- Per-user resource sessions

Architecture:
-------------
- Flask web server (port 5000)
- Flow API client (session gate, root id cache, revisioned writes)
- SQLite database (console.db) for user mappings

Usage:
------
python scripts/run_console_service.py

Environment Variables:
----------------------
FLOW_API_BASE_URL: Flow API base URL (default: http://127.0.0.1:8080)
FLOW_CONSOLE_PORT: Flask server port (default: 5000)
FLOW_CONSOLE_BIND_HOST: Flask bind address (default: 0.0.0.0)
FLOW_CONSOLE_DEBUG: Enable Flask debug mode (default: false)
FLOW_LOG_LEVEL: Log level name (default: INFO)
"""

import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from controlplane import config
from mgmt.database import init_db as init_console_database
from mgmt.service import create_app
from shared.logging_config import setup_logging

logger = logging.getLogger("console")


def main():
    """Main entrypoint for the console service."""
    setup_logging("console")

    logger.info(f"Flow API: {config.FLOW_API_BASE_URL}{config.FLOW_API_PREFIX}")
    logger.info(f"Bind Address: {config.CONSOLE_BIND_HOST}:{config.CONSOLE_PORT}")
    logger.info(f"Debug Mode: {config.CONSOLE_DEBUG}")

    try:
        init_console_database()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        return 1

    app = create_app()
    try:
        app.run(
            host=config.CONSOLE_BIND_HOST,
            port=config.CONSOLE_PORT,
            debug=config.CONSOLE_DEBUG,
            use_reloader=False,  # One auto-refresh thread per process
        )
    except KeyboardInterrupt:
        logger.info("Shutting down console service...")
    finally:
        app.extensions["user_sessions"].stop_auto_refresh()
        app.extensions["flow_api"].transport.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
