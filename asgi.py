"""
asgi.py -- ASGI entry point for Gatehouse.

Keeps the server command independent of the package layout: deployment
tooling points at asgi:app and never needs to know that the application
object lives in api/main.py.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
