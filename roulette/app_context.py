"""Shared runtime context for the CLI and the web layer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .catalog import load_initial_catalog
from .config import Settings, load_settings
from .engine import SelectionEngine
from .reloader import CatalogWatcher, Reloader, build_reloader, build_watcher
from .sampling import build_samplers
from .store import CatalogStore


@dataclass
class AppContext:
    """Container for everything a running service needs."""

    settings: Settings
    store: CatalogStore
    engine: SelectionEngine
    reloader: Optional[Reloader] = None
    watcher: Optional[CatalogWatcher] = None

    def start_background(self, *, immediate: bool = False) -> None:
        if self.reloader is not None:
            self.reloader.start(immediate=immediate)
        if self.watcher is not None:
            self.watcher.start()

    def shutdown(self) -> None:
        if self.reloader is not None:
            self.reloader.shutdown()
        if self.watcher is not None:
            self.watcher.stop()


def build_context(settings: Settings) -> AppContext:
    """Load the initial catalog and wire the store, engine and reloaders.

    Raises :class:`~roulette.catalog.CatalogError` when the initial catalog
    is unusable; the service must not start without one.
    """

    catalog = load_initial_catalog(settings.catalog.path)
    store = CatalogStore(catalog)
    engine = SelectionEngine(store, build_samplers(settings.selection.decay_rate))
    return AppContext(
        settings=settings,
        store=store,
        engine=engine,
        reloader=build_reloader(store, settings),
        watcher=build_watcher(store, settings),
    )


def load_context(config_path: Optional[Path] = None) -> AppContext:
    """Load settings from disk/environment and build the runtime."""

    return build_context(load_settings(config_path))
