"""HTTP interface for Roulette."""

from .api import create_app

__all__ = ["create_app"]
