"""
asgi.py -- Application assembly for FitClub.

The server imports the app from here rather than from api/main.py so the
deployment entry point stays stable if the app is ever split into more
than one module.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
