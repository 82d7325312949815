#!/usr/bin/env python3
"""
PlanPocket Entry Point

Starts the FastAPI server with the configured host and port.
"""

import sys

from planpocket.api import run_server
from planpocket.config import get_config
from planpocket.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)

    print("Starting PlanPocket...")
    print(f"API available at: http://localhost:{config.api_port}/api")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down PlanPocket...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
