"""
asgi.py -- ASGI entry point for Campus RBAC.

Kept separate from api/main.py so process managers point at a stable module
path regardless of how the api/ package is organized.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
