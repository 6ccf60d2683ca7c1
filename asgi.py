"""
asgi.py -- ASGI entry point for Natours.

Run with:  uvicorn asgi:app --reload

The admin CLI (main.py) and the HTTP app (api/main.py) share auth/ and
catalog/ but never import each other; this module is what servers load.
"""

from api.main import app

__all__ = ["app"]
