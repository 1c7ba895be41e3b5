import time
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.concurrency import run_in_threadpool

from .config import settings
from .database import engine
from .errors import AppError, app_error_handler, validation_error_handler
from .middleware_request_id import RequestIDMiddleware
from .models import Base
from .otp_runtime import build_mailer, build_transports
from .routers import submissions as submissions_router
from .routers import verify as verify_router


REQUESTS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"])
REQ_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


def _ping_db() -> None:
    with engine.connect() as conn:
        conn.exec_driver_sql("SELECT 1")


def create_app(redis=None, transports=None, mailer=None) -> FastAPI:
    """Build the verification API.

    ``redis``, ``transports`` and ``mailer`` default to the configured
    backends; tests pass fakes.
    """
    owns_redis = redis is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_redis:
            await app.state.redis.aclose()

    app = FastAPI(title="Pediahelp Verify API", version="0.1.0", docs_url="/docs", lifespan=lifespan)

    app.state.redis = redis if redis is not None else aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    app.state.mailer = mailer if mailer is not None else build_mailer()
    app.state.transports = transports if transports is not None else build_transports(app.state.mailer)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=False,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )
    # Request ID + JSON request log
    app.add_middleware(RequestIDMiddleware)

    if settings.AUTO_CREATE_SCHEMA:
        Base.metadata.create_all(bind=engine)

    @app.get("/health")
    async def health():
        await app.state.redis.ping()
        await run_in_threadpool(_ping_db)
        return {"status": "ok", "env": settings.ENV}

    @app.middleware("http")
    async def _metrics_mw(request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start
        # Templated route path keeps label cardinality bounded
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        REQUESTS.labels(request.method, route, str(response.status_code)).inc()
        REQ_DURATION.labels(request.method, route).observe(duration)
        return response

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(verify_router.router)
    app.include_router(submissions_router.router)

    # Error handlers
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    return app


app = create_app()
