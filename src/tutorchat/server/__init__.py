"""HTTP API exposing the tutor generation service."""

from .app import create_app

__all__ = ["create_app"]
