"""FastAPI application exposing project checkpoint endpoints."""

from .app import create_app

__all__ = ["create_app"]
