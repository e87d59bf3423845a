"""
LedgerSort - FastAPI Backend

Self-learning transaction categorization engine.

Run Instructions:
-----------------
1. Install dependencies:
   pip install -e .

2. Run the app locally with uvicorn:
   uvicorn main:app --host 0.0.0.0 --port 8000 --reload

3. Test /health endpoint:
   curl http://localhost:8000/health

4. Categorize a record:
   curl -X POST http://localhost:8000/v1/categorization/categorize \
     -H "Content-Type: application/json" \
     -d '{"merchant_name": "Starbucks #1234", "amount": 5.75}'

Configuration is read from ``LEDGERSORT_*`` environment variables
(see ``ledgersort/core/config.py``). Set ``LEDGERSORT_STORAGE=memory`` to
keep patterns in process memory instead of SQLite.
"""
import os
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ledgersort.api import categorization_router
from ledgersort.core.config import EngineConfig
from ledgersort.di.container import EngineContext
from ledgersort.services.errors import LedgerSortError, http_status_for
from ledgersort.services.logging import log_error, log_request, logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and count them on the engine collector."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_id = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            log_error("request_exception", str(e), {"path": request.url.path, "method": request.method})
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            client_id=client_id,
        )
        engine = getattr(request.app.state, "engine", None)
        if engine is not None:
            engine.collector.increment(f"http.{response.status_code}")
            engine.collector.timing("http.request", duration_ms)
        return response


def build_engine(config: Optional[EngineConfig] = None) -> EngineContext:
    """Engine backed by SQLite unless ``LEDGERSORT_STORAGE=memory``."""
    config = config or EngineConfig.from_env()
    if os.getenv("LEDGERSORT_STORAGE", "sqlite").lower() == "memory":
        return EngineContext(config=config)
    return EngineContext.sqlite(config)


def create_app(engine: Optional[EngineContext] = None) -> FastAPI:
    app = FastAPI(
        title="LedgerSort API",
        description="""
        LedgerSort API v1 - Transaction Categorization

        - Fuzzy matching of merchant names and descriptions against learned patterns
        - Multi-factor confidence scores with human-readable explanations
        - Learns from user corrections; unused patterns decay over time
        """,
        version="1.0.0",
    )
    app.state.engine = engine
    app.include_router(categorization_router)
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(LedgerSortError)
    async def ledgersort_exception_handler(request: Request, exc: LedgerSortError):
        """Handle all LedgerSortErrors with structured responses."""
        log_error(exc.code.value, str(exc), exc.context)
        return JSONResponse(status_code=http_status_for(exc), content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log_error(
            "unhandled_exception",
            str(exc),
            {"path": str(request.url.path), "method": request.method},
            exception=exc,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred.",
            },
        )

    @app.on_event("startup")
    async def startup_event():
        if app.state.engine is None:
            app.state.engine = build_engine()
        logger.info("LedgerSort engine ready (%s store)", type(app.state.engine.repository).__name__)

    @app.get("/health")
    async def health():
        engine = app.state.engine
        if engine is None:
            status = "starting"
        else:
            status = "ok" if engine.orchestrator().healthy() else "degraded"
        return {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
