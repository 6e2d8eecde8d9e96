"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from fieldpost.core.config import get_settings
from fieldpost.core.database import init_db
from fieldpost.core.deps import build_components
from fieldpost.core.errors import FieldPostError, ValidationFailed, fieldpost_error_handler
from fieldpost.routers import auth, dashboard, health, submissions

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Application-wide flood guard; per-endpoint policies live in services.rate_limit
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_requests} per {settings.rate_limit_period} seconds"],
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "X-Robots-Tag": "noindex, nofollow, noarchive, nosnippet",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    await init_db()
    app.state.components = build_components(settings)
    logger.info("%s started (%s)", settings.app_name, settings.environment)
    yield


app = FastAPI(
    title=settings.app_name,
    description="Field notes to approved social media posts",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Client addresses behind a reverse proxy
if settings.forwarded_allow_ips:
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.forwarded_allow_ips)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


app.add_exception_handler(FieldPostError, fieldpost_error_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    error = ValidationFailed()
    return JSONResponse(status_code=error.status_code, content=error.body())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = FieldPostError()
    return JSONResponse(status_code=error.status_code, content=error.body())


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(health.router, prefix=settings.api_v1_prefix, tags=["health"])
app.include_router(auth.router, prefix=settings.api_v1_prefix, tags=["auth"])
app.include_router(submissions.router, prefix=settings.api_v1_prefix, tags=["submissions"])
app.include_router(dashboard.router, prefix=settings.api_v1_prefix, tags=["dashboard"])

app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
