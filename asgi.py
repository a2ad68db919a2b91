"""
asgi.py -- ASGI entry point for Marquee.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 4000 --workers 4

Graceful shutdown: uvicorn stops accepting connections on SIGINT/SIGTERM,
waits for in-flight requests, then runs the lifespan shutdown, which drains
the BackgroundRunner before the database engine is disposed.
"""

from api.main import app

__all__ = ["app"]
