import logging
import os
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.v1 import auth, files, integrations, screenshots, workouts
from app.config import settings
from app.db.session import init_db
from app.services.http_client import close_http_client, init_http_client

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("app").setLevel(logging.DEBUG)
logger = logging.getLogger("app.main")

API_PREFIX = "/api/v1"
ROUTERS = (auth.router, workouts.router, files.router, screenshots.router, integrations.router)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_production_config()
    await init_db()
    os.makedirs(settings.upload_dir, exist_ok=True)
    init_http_client(timeout=settings.http_timeout_seconds)
    logger.info("FitTrack API started (env=%s, strava=%s)", settings.app_env, settings.strava_configured)
    yield
    await close_http_client()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class ImportTimingMiddleware(BaseHTTPMiddleware):
    """Logs how long upload and sync requests take; these are the slow paths."""

    SLOW_PATHS = (f"{API_PREFIX}/files", f"{API_PREFIX}/screenshots", f"{API_PREFIX}/integrations/strava/sync")

    async def dispatch(self, request: Request, call_next):
        if request.method != "POST" or not request.url.path.startswith(self.SLOW_PATHS):
            return await call_next(request)
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s in %.0f ms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response


limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])

app = FastAPI(
    title="FitTrack API",
    description="Workout tracking backend: manual entry, screenshot, GPX, FIT and Strava ingestion",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(ImportTimingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
for router in ROUTERS:
    app.include_router(router, prefix=API_PREFIX)

app.mount("/metrics", make_asgi_app())


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
