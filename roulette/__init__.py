"""Random redirects over a hot-reloadable image catalog."""

__version__ = "0.1.0"
