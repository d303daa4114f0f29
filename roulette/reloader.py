"""Background catalog reloads: scheduled remote syncs and local file watching."""

from __future__ import annotations

import enum
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol

import requests
import structlog
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from watchfiles import watch

from .catalog import Catalog, CatalogError, hash_content
from .config import DEFAULT_USER_AGENT, Settings
from .logging import get_logger
from .store import CatalogStore

RELOAD_JOB_ID = "catalog-reload"


class ReloadError(RuntimeError):
    """Raised internally when a reload attempt cannot produce a catalog."""


class ReloadState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    VALIDATING = "validating"
    SWAPPING = "swapping"
    FAILED = "failed"


class ReloadOutcome(str, enum.Enum):
    SWAPPED = "swapped"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


class CatalogSource(Protocol):
    """Something that can produce raw catalog bytes."""

    def fetch(self) -> bytes:
        ...

    def describe(self) -> str:
        ...


class HttpCatalogSource:
    """Fetch the catalog over HTTP(S).

    ``timeout_seconds`` bounds the whole download, not just each socket
    read: the request runs on a daemon thread and an attempt that misses
    the deadline fails even if the server is still trickling bytes. While
    such a download lingers, later fetches fail fast instead of stacking up.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent
        self._inflight: Optional[threading.Thread] = None

    def fetch(self) -> bytes:
        if self._inflight is not None and self._inflight.is_alive():
            raise ReloadError(f"Previous fetch of {self.url} is still running")

        result: Future = Future()

        def _download() -> None:
            try:
                response = self._session.get(self.url, timeout=self.timeout_seconds)
                response.raise_for_status()
                result.set_result(response.content)
            except Exception as exc:  # handed to the waiting caller
                result.set_exception(exc)

        self._inflight = threading.Thread(target=_download, name="roulette-catalog-fetch", daemon=True)
        self._inflight.start()
        try:
            return result.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            raise ReloadError(f"Fetch of {self.url} exceeded {self.timeout_seconds}s") from exc
        except requests.RequestException as exc:
            raise ReloadError(f"Fetch failed for {self.url}: {exc}") from exc

    def describe(self) -> str:
        return self.url

    def close(self) -> None:
        self._session.close()


class FileCatalogSource:
    """Read the catalog from a local file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def fetch(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as exc:
            raise ReloadError(f"Unable to read {self.path}: {exc}") from exc

    def describe(self) -> str:
        return str(self.path)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ReloadStats:
    """Counters describing reload activity since startup."""

    attempts: int = 0
    swaps: int = 0
    unchanged: int = 0
    failures: int = 0
    skipped: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[str] = None
    last_failure_at: Optional[str] = None


@dataclass
class Reloader:
    """Fetch, validate and swap catalogs without ever taking the service down.

    At most one attempt runs at a time: the scheduler job uses
    ``max_instances=1`` and :meth:`reload_once` also refuses to start while
    another attempt holds the guard, returning ``SKIPPED`` instead.
    """

    store: CatalogStore
    source: CatalogSource
    interval_seconds: Optional[int] = None
    logger: structlog.stdlib.BoundLogger = field(default_factory=lambda: get_logger("roulette.reloader"))
    state: ReloadState = field(default=ReloadState.IDLE, init=False)
    stats: ReloadStats = field(default_factory=ReloadStats, init=False)
    _guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _scheduler: Optional[BackgroundScheduler] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = self.logger.bind(source=self.source.describe())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def reload_once(self) -> ReloadOutcome:
        """Run one fetch -> validate -> swap cycle."""

        if not self._guard.acquire(blocking=False):
            self.stats.skipped += 1
            self.logger.info("reloader.skipped", reason="reload_in_progress")
            return ReloadOutcome.SKIPPED

        try:
            self.stats.attempts += 1
            return self._attempt()
        finally:
            self.state = ReloadState.IDLE
            self._guard.release()

    def start(self, *, immediate: bool = False) -> None:
        """Schedule periodic reloads on a background thread."""

        if self.interval_seconds is None:
            raise ValueError("Reloader has no interval configured.")
        if self._scheduler is not None and self._scheduler.running:
            return

        # next_run_time=None would add the job paused.
        schedule_kwargs = {"next_run_time": datetime.now(timezone.utc)} if immediate else {}
        self._scheduler = BackgroundScheduler(
            timezone=timezone.utc,
            executors={"default": ThreadPoolExecutor(max_workers=1)},
        )
        self._scheduler.add_job(
            self.reload_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=RELOAD_JOB_ID,
            name="catalog reload",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            **schedule_kwargs,
        )
        self._scheduler.start()
        self.logger.info("reloader.started", interval_seconds=self.interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            self.logger.info("reloader.stopped")
        self._scheduler = None
        close = getattr(self.source, "close", None)
        if callable(close):
            close()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def snapshot(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "source": self.source.describe(),
            "interval_seconds": self.interval_seconds,
            "state": self.state.value,
            "running": self.running,
        }
        payload.update(asdict(self.stats))
        return payload

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _attempt(self) -> ReloadOutcome:
        try:
            self.state = ReloadState.FETCHING
            payload = self.source.fetch()

            current = self.store.current()
            if hash_content(payload) == current.content_hash:
                self.stats.unchanged += 1
                self.logger.debug("reloader.unchanged", entries=current.size())
                return ReloadOutcome.UNCHANGED

            self.state = ReloadState.VALIDATING
            new_catalog = Catalog.from_bytes(payload)

            self.state = ReloadState.SWAPPING
            previous = self.store.swap(new_catalog)
        except (ReloadError, CatalogError) as exc:
            self._record_failure(exc)
            return ReloadOutcome.FAILED
        except Exception as exc:  # pragma: no cover - unexpected source behaviour
            self._record_failure(exc, unexpected=True)
            return ReloadOutcome.FAILED

        self.stats.swaps += 1
        self.stats.last_success_at = _utcnow_iso()
        self.logger.info(
            "reloader.swapped",
            entries=new_catalog.size(),
            previous_entries=previous.size(),
            generation=self.store.generation,
        )
        return ReloadOutcome.SWAPPED

    def _record_failure(self, exc: Exception, *, unexpected: bool = False) -> None:
        self.state = ReloadState.FAILED
        self.stats.failures += 1
        self.stats.last_error = str(exc)
        self.stats.last_failure_at = _utcnow_iso()
        if unexpected:
            self.logger.exception("reloader.failed", error=str(exc), error_type=type(exc).__name__)
        else:
            self.logger.warning("reloader.failed", error=str(exc), error_type=type(exc).__name__)


@dataclass
class CatalogWatcher:
    """Reload the catalog whenever its local file changes."""

    reloader: Reloader
    path: Path
    logger: structlog.stdlib.BoundLogger = field(default_factory=lambda: get_logger("roulette.watcher"))
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser().resolve()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()

        def _watch() -> None:
            # Watch the directory so editors that replace the file are still seen.
            for changes in watch(
                str(self.path.parent),
                watch_filter=self._is_target,
                stop_event=self._stop_event,
                raise_interrupt=False,
            ):
                self.logger.info("watcher.change_detected", changes=len(changes), path=str(self.path))
                self.reloader.reload_once()

        self._thread = threading.Thread(target=_watch, name="roulette-catalog-watch", daemon=True)
        self._thread.start()
        self.logger.info("watcher.started", path=str(self.path))

    def _is_target(self, change, changed_path: str) -> bool:
        return Path(changed_path).resolve() == self.path

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
        self.logger.info("watcher.stopped", path=str(self.path))


def build_reloader(store: CatalogStore, settings: Settings) -> Optional[Reloader]:
    """Create the scheduled HTTP reloader when sync is configured."""

    sync = settings.sync
    if not sync.enabled:
        return None
    source = HttpCatalogSource(
        sync.url,
        timeout_seconds=sync.timeout_seconds,
        user_agent=sync.user_agent,
    )
    return Reloader(store=store, source=source, interval_seconds=sync.interval_seconds)


def build_watcher(store: CatalogStore, settings: Settings) -> Optional[CatalogWatcher]:
    """Create the local file watcher when enabled for a file-backed catalog."""

    catalog_settings = settings.catalog
    if not (catalog_settings.watch and catalog_settings.path):
        return None
    reloader = Reloader(store=store, source=FileCatalogSource(catalog_settings.path))
    return CatalogWatcher(reloader=reloader, path=catalog_settings.path)
