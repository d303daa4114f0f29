"""FastAPI interface serving random redirects from the active catalog."""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from ..app_context import AppContext
from ..catalog import Entry
from ..config import parse_duration
from ..errors import EmptyCandidateSetError, InvalidBoundError, NoCandidatesError
from ..logging import bind_request_id, get_logger
from ..sampling import SelectionMode

ROBOTS_TXT = "User-agent: *\nDisallow: /\n"

logger = get_logger("roulette.web")


def cache_control_header(raw: Optional[str]) -> Optional[str]:
    """Translate a ``?cache=`` duration into a Cache-Control value.

    Unparsable durations are ignored rather than rejected.
    """

    if not raw:
        return None
    try:
        seconds = parse_duration(raw)
    except ValueError:
        return None
    return f"public, max-age={seconds}"


def redirect_url(url_prefix: str, entry: Entry) -> str:
    return f"{url_prefix.rstrip('/')}/{entry.value}"


def create_app(context: AppContext) -> FastAPI:
    """Build the HTTP application around an already-loaded context."""

    app = FastAPI(title="Roulette", version="0.1.0", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.context = context

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = bind_request_id()
        started = time.perf_counter()
        response = await call_next(request)
        logger.debug(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    def _redirect(mode: SelectionMode, bound: Optional[str], cache: Optional[str]) -> RedirectResponse:
        try:
            entry = context.engine.select(mode, bound)
        except InvalidBoundError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except EmptyCandidateSetError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except NoCandidatesError as exc:
            logger.error("selection.no_candidates", mode=mode, bound=bound, error=str(exc))
            raise HTTPException(status_code=500, detail="No candidates available") from exc

        headers: Dict[str, str] = {}
        cache_header = cache_control_header(cache)
        if cache_header:
            headers["Cache-Control"] = cache_header
        url = redirect_url(context.settings.redirect.url_prefix, entry)
        return RedirectResponse(url, status_code=302, headers=headers)

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        return str(context.engine.size())

    @app.get("/image")
    def random_image(cache: Optional[str] = Query(default=None)):
        return _redirect("uniform", None, cache)

    @app.get("/image/after/{bound}")
    def random_image_after(bound: str, cache: Optional[str] = Query(default=None)):
        return _redirect("uniform", bound, cache)

    @app.get("/image/latest")
    def latest_image(cache: Optional[str] = Query(default=None)):
        return _redirect("recency", None, cache)

    @app.get("/image/latest/after/{bound}")
    def latest_image_after(bound: str, cache: Optional[str] = Query(default=None)):
        return _redirect("recency", bound, cache)

    @app.get("/robots.txt", response_class=PlainTextResponse)
    def robots() -> str:
        return ROBOTS_TXT

    @app.get("/status")
    def status() -> Dict[str, Any]:
        catalog = context.store.current()
        swapped_at = context.store.swapped_at
        return {
            "entries": catalog.size(),
            "generation": context.store.generation,
            "content_hash": catalog.content_hash,
            "loaded_at": catalog.loaded_at.isoformat(),
            "swapped_at": swapped_at.isoformat() if swapped_at else None,
            "decay_rate": context.settings.selection.decay_rate,
            "reloader": context.reloader.snapshot() if context.reloader else None,
            "watcher": str(context.watcher.path) if context.watcher else None,
        }

    return app
