"""
Funnel Recovery Engine -- Application Entry Point.

Starts the FastAPI server via uvicorn.

Usage:
    python main.py              # Development (reload with RECOVERY_DEV_MODE=1)
    uvicorn main:app --host 0.0.0.0 --port 3001  # Production
"""

from __future__ import annotations

import os

import uvicorn

from src.api import create_app

app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("RECOVERY_PORT", "3001"))
    host = os.getenv("RECOVERY_HOST", "0.0.0.0")
    reload = os.getenv("RECOVERY_DEV_MODE", "0") == "1"

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )
