"""Catalog bundled with the package."""
