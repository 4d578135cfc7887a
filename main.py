#!/usr/bin/env python3
"""
Trading Bot Engine - Main Entry Point
Serves the bot API with uvicorn.
"""
import sys

import uvicorn

from src.app import app
from src.config import settings

if __name__ == "__main__":
    print("Starting Trading Bot Engine...")
    print(f"API: http://localhost:{settings.APP_PORT}")
    print(f"API Docs: http://localhost:{settings.APP_PORT}/docs")
    print("Press Ctrl+C to stop.")
    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=settings.APP_PORT,
            reload=False
        )
    except Exception as e:
        print(f"Failed to start: {e}")
        sys.exit(1)
