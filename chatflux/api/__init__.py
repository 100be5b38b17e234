"""HTTP read API."""

from chatflux.api.app import create_app

__all__ = ["create_app"]
