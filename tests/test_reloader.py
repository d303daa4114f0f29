import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import requests
import pytest
from structlog.testing import capture_logs

from roulette.catalog import Catalog, load_catalog_file
from roulette.config import Settings
from roulette.reloader import (
    CatalogWatcher,
    FileCatalogSource,
    HttpCatalogSource,
    RELOAD_JOB_ID,
    ReloadError,
    ReloadOutcome,
    ReloadState,
    Reloader,
    build_reloader,
    build_watcher,
)
from roulette.store import CatalogStore

INITIAL = json.dumps({"2023-05-01_x": "a", "2024-01-01_x": "c"}).encode("utf-8")
UPDATED = json.dumps({"2023-05-01_x": "a", "2024-01-01_x": "c", "2025-01-01_x": "d"}).encode("utf-8")


class _StaticSource:
    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.calls = 0

    def fetch(self):
        self.calls += 1
        payload = self.payloads.pop(0) if len(self.payloads) > 1 else self.payloads[0]
        if isinstance(payload, Exception):
            raise payload
        return payload

    def describe(self):
        return "static"


class _BlockingSource:
    def __init__(self, payload):
        self.payload = payload
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch(self):
        self.entered.set()
        self.release.wait(timeout=5)
        return self.payload

    def describe(self):
        return "blocking"


def _store():
    return CatalogStore(Catalog.from_bytes(INITIAL))


def _failure_events(logs):
    return [entry for entry in logs if entry["event"] == "reloader.failed"]


def test_valid_payload_is_swapped_in():
    store = _store()
    reloader = Reloader(store=store, source=_StaticSource(UPDATED))

    outcome = reloader.reload_once()

    assert outcome is ReloadOutcome.SWAPPED
    assert store.current().size() == 3
    assert store.generation == 1
    assert reloader.stats.swaps == 1
    assert reloader.state is ReloadState.IDLE


def test_unchanged_payload_is_not_reparsed():
    store = _store()
    original = store.current()
    reloader = Reloader(store=store, source=_StaticSource(INITIAL))

    outcome = reloader.reload_once()

    assert outcome is ReloadOutcome.UNCHANGED
    assert store.current() is original
    assert store.generation == 0
    assert reloader.stats.unchanged == 1


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"{}", b'["a"]', ReloadError("connection refused")],
)
def test_failed_reload_keeps_previous_catalog_and_reports_once(payload):
    store = _store()
    original = store.current()
    reloader = Reloader(store=store, source=_StaticSource(payload))

    with capture_logs() as logs:
        outcome = reloader.reload_once()

    assert outcome is ReloadOutcome.FAILED
    assert store.current() is original
    assert len(_failure_events(logs)) == 1
    assert reloader.stats.failures == 1
    assert reloader.stats.last_error
    assert reloader.state is ReloadState.IDLE


def test_each_failed_attempt_is_reported():
    store = _store()
    reloader = Reloader(store=store, source=_StaticSource(b"garbage", b"{}", UPDATED))

    with capture_logs() as logs:
        outcomes = [reloader.reload_once() for _ in range(3)]

    assert outcomes == [ReloadOutcome.FAILED, ReloadOutcome.FAILED, ReloadOutcome.SWAPPED]
    assert len(_failure_events(logs)) == 2
    assert reloader.stats.attempts == 3
    assert store.current().size() == 3


def test_overlapping_trigger_is_skipped():
    store = _store()
    source = _BlockingSource(UPDATED)
    reloader = Reloader(store=store, source=source)
    results = []

    worker = threading.Thread(target=lambda: results.append(reloader.reload_once()))
    worker.start()
    assert source.entered.wait(timeout=5)

    assert reloader.state is ReloadState.FETCHING
    assert reloader.reload_once() is ReloadOutcome.SKIPPED

    source.release.set()
    worker.join(timeout=5)

    assert results == [ReloadOutcome.SWAPPED]
    assert reloader.stats.skipped == 1
    assert reloader.stats.attempts == 1


def test_file_source_reload(tmp_path):
    path = tmp_path / "image-map.json"
    path.write_bytes(INITIAL)
    store = CatalogStore(Catalog.from_bytes(path.read_bytes()))
    reloader = Reloader(store=store, source=FileCatalogSource(path))

    assert reloader.reload_once() is ReloadOutcome.UNCHANGED

    path.write_bytes(UPDATED)
    assert reloader.reload_once() is ReloadOutcome.SWAPPED

    path.unlink()
    assert reloader.reload_once() is ReloadOutcome.FAILED
    assert store.current().size() == 3


class _TimeoutSession:
    def __init__(self):
        self.headers = {}
        self.requested = []

    def get(self, url, timeout):
        self.requested.append((url, timeout))
        raise requests.Timeout("read timed out")

    def close(self):
        pass


def test_http_source_wraps_timeouts():
    session = _TimeoutSession()
    source = HttpCatalogSource("https://example.invalid/map.json", timeout_seconds=2.5, session=session)

    with pytest.raises(ReloadError):
        source.fetch()

    assert session.requested == [("https://example.invalid/map.json", 2.5)]
    assert session.headers["User-Agent"] == "roulette/1.0"


def test_http_timeout_is_a_recoverable_failure():
    store = _store()
    source = HttpCatalogSource("https://example.invalid/map.json", session=_TimeoutSession())
    reloader = Reloader(store=store, source=source)

    assert reloader.reload_once() is ReloadOutcome.FAILED
    assert store.current().size() == 2


def test_start_and_shutdown_scheduler():
    reloader = Reloader(store=_store(), source=_StaticSource(INITIAL), interval_seconds=3600)

    reloader.start()
    try:
        assert reloader.running
        assert reloader.snapshot()["running"] is True
        assert reloader._scheduler.get_job(RELOAD_JOB_ID).next_run_time is not None
    finally:
        reloader.shutdown()

    assert not reloader.running


def test_start_requires_interval():
    reloader = Reloader(store=_store(), source=_StaticSource(INITIAL))

    with pytest.raises(ValueError):
        reloader.start()


def test_snapshot_reports_stats():
    reloader = Reloader(store=_store(), source=_StaticSource(b"oops"), interval_seconds=60)
    reloader.reload_once()

    snapshot = reloader.snapshot()

    assert snapshot["source"] == "static"
    assert snapshot["interval_seconds"] == 60
    assert snapshot["state"] == "idle"
    assert snapshot["failures"] == 1
    assert snapshot["running"] is False


def test_build_reloader_requires_url_and_interval():
    store = _store()
    without_sync = Settings.model_validate({"redirect": {"url_prefix": "https://cdn.example"}})
    with_sync = Settings.model_validate(
        {
            "redirect": {"url_prefix": "https://cdn.example"},
            "sync": {"url": "https://example.invalid/map.json", "interval": "5m"},
        }
    )

    assert build_reloader(store, without_sync) is None
    reloader = build_reloader(store, with_sync)
    assert reloader is not None
    assert reloader.interval_seconds == 300


def test_build_watcher_only_for_watched_files(tmp_path):
    path = tmp_path / "image-map.json"
    path.write_bytes(INITIAL)
    store = _store()
    unwatched = Settings.model_validate(
        {"redirect": {"url_prefix": "https://cdn.example"}, "catalog": {"path": str(path)}}
    )
    watched = Settings.model_validate(
        {"redirect": {"url_prefix": "https://cdn.example"}, "catalog": {"path": str(path), "watch": True}}
    )

    assert build_watcher(store, unwatched) is None
    watcher = build_watcher(store, watched)
    assert isinstance(watcher, CatalogWatcher)
    assert watcher._is_target(None, str(path))
    assert not watcher._is_target(None, str(tmp_path / "other.json"))


class _DrippingHandler(BaseHTTPRequestHandler):
    body = b" " * 40 + INITIAL

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        try:
            for index in range(len(self.body)):
                self.wfile.write(self.body[index : index + 1])
                self.wfile.flush()
                time.sleep(0.2)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def dripping_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _DrippingHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/image-map.json"
    finally:
        server.shutdown()
        server.server_close()


def test_http_deadline_covers_slow_downloads(dripping_url):
    source = HttpCatalogSource(dripping_url, timeout_seconds=1.0)

    started = time.monotonic()
    with pytest.raises(ReloadError, match="exceeded"):
        source.fetch()
    elapsed = time.monotonic() - started

    assert elapsed <= 1.5
    # The abandoned download is still trickling; a new attempt fails fast.
    started = time.monotonic()
    with pytest.raises(ReloadError, match="still running"):
        source.fetch()
    assert time.monotonic() - started < 0.5


def test_slow_download_fails_the_reload_attempt(dripping_url):
    store = _store()
    original = store.current()
    reloader = Reloader(store=store, source=HttpCatalogSource(dripping_url, timeout_seconds=0.5))

    assert reloader.reload_once() is ReloadOutcome.FAILED
    assert store.current() is original
    assert "exceeded" in reloader.stats.last_error


class _ClosableSource(_StaticSource):
    def __init__(self, *payloads):
        super().__init__(*payloads)
        self.closed = 0

    def close(self):
        self.closed += 1


def test_shutdown_closes_the_source():
    source = _ClosableSource(INITIAL)
    reloader = Reloader(store=_store(), source=source, interval_seconds=3600)

    reloader.start()
    reloader.shutdown()

    assert source.closed == 1


def test_watcher_reloads_on_file_change(tmp_path):
    path = tmp_path / "image-map.json"
    path.write_bytes(INITIAL)
    store = CatalogStore(load_catalog_file(path))
    settings = Settings.model_validate(
        {"redirect": {"url_prefix": "https://cdn.example"}, "catalog": {"path": str(path), "watch": True}}
    )
    watcher = build_watcher(store, settings)

    watcher.start()
    thread = watcher._thread
    try:
        deadline = time.monotonic() + 15
        while store.current().size() != 3 and time.monotonic() < deadline:
            path.write_bytes(UPDATED)
            time.sleep(0.5)
    finally:
        watcher.stop()

    assert store.current().size() == 3
    assert store.generation >= 1
    assert not thread.is_alive()
