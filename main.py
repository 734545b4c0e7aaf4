"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers and startup/shutdown events.

Every response, success or error, uses the {success, message, data} envelope.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.database import close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from services.payment.gateway import GatewayError
from shared.utils.responses import error_response, ok

# Service routers
from services.admin.router import router as admin_router
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.genre.router import router as genre_router
from services.instrument.router import router as instrument_router
from services.musician.router import router as musician_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router
from services.portfolio.router import router as portfolio_router
from services.review.router import router as review_router
from services.subscription.router import router as subscription_router
from services.user.router import router as user_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    handlers=[handler],
)
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    # Catalog seed, only in dev
    if settings.APP_ENV == "development":
        await seed_initial_data()

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## SteadyGig API

Marketplace connecting event clients with musicians:
- **Auth**: email/password + JWT (15min) + rotating refresh tokens
- **Musicians**: profiles, instruments, genres, search and nearby lookup
- **Bookings**: PENDING → ACCEPTED → COMPLETED, with reject and cancel
- **Payments**: Paystack initialize + verify, idempotent reconciliation
- **Subscriptions**: monthly musician subscriptions gating search visibility
- **Reviews**: one per completed booking, drives the musician's average rating
- **Notifications**: in-app records + real-time push over WebSocket

### Authentication
Protected endpoints require an `Authorization: Bearer <access_token>` header.

### Roles
- `CLIENT`: book musicians, pay, review
- `MUSICIAN`: manage profile and subscription, accept/reject bookings
- `ADMIN`: moderation, catalog, dashboard and revenue
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters, outermost last) ───────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Unauthenticated callers get RATE_LIMIT_UNAUTH_PER_MINUTE requests per IP.
        Fails open when Redis is unavailable.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths or request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        from config.redis_client import redis_client
        if redis_client is not None:
            client_ip = request.client.host if request.client else "unknown"
            try:
                allowed = await RedisCache(redis_client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE, 60
                )
            except Exception as e:
                logger.error(f"Rate limit check failed: {e}")
                allowed = True
            if not allowed:
                logger.warning(f"Rate limit exceeded for IP {client_ip}")
                return error_response(
                    status.HTTP_429_TOO_MANY_REQUESTS,
                    "Rate limit exceeded. Please slow down.",
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed.", {"errors": errors})

    @app.exception_handler(IntegrityError)
    async def integrity_exception_handler(request: Request, exc: IntegrityError):
        logger.warning(f"Integrity error: {exc.orig}")
        return error_response(status.HTTP_409_CONFLICT, "Resource already exists.")

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        logger.error(f"Payment gateway error: {exc.message}")
        return error_response(status.HTTP_502_BAD_GATEWAY, exc.message)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {exc}", exc_info=True)
        message = str(exc) if settings.DEBUG else "An internal server error occurred."
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message,
            {"request_id": request_id},
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from sqlalchemy import text

        from config.database import AsyncSessionLocal
        from config.redis_client import redis_client

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return ok(
            {"name": settings.APP_NAME, "version": settings.APP_VERSION, "docs": "/docs"},
            "SteadyGig API is running.",
        )

    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(musician_router)
    app.include_router(portfolio_router)
    app.include_router(instrument_router)
    app.include_router(genre_router)
    app.include_router(booking_router)
    app.include_router(payment_router)
    app.include_router(subscription_router)
    app.include_router(review_router)
    app.include_router(notification_router)
    app.include_router(admin_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

SEED_INSTRUMENTS = [
    ("Acoustic Guitar", "STRINGS"),
    ("Electric Guitar", "STRINGS"),
    ("Bass Guitar", "STRINGS"),
    ("Violin", "STRINGS"),
    ("Saxophone", "WOODWIND"),
    ("Flute", "WOODWIND"),
    ("Trumpet", "BRASS"),
    ("Drums", "PERCUSSION"),
    ("Talking Drum", "PERCUSSION"),
    ("Piano", "KEYBOARD"),
    ("Keyboard", "KEYBOARD"),
    ("Vocals", "VOCAL"),
    ("DJ Controller", "ELECTRONIC"),
]

SEED_GENRES = ["Afrobeats", "Highlife", "Juju", "Fuji", "Gospel", "Jazz", "Hip Hop", "R&B", "Classical"]


async def seed_initial_data():
    """Seed instruments and genres on first run (development only)."""
    from sqlalchemy import func, select

    from config.database import get_db_context
    from shared.models.models import Genre, Instrument, InstrumentCategory

    async with get_db_context() as db:
        if await db.scalar(select(func.count(Instrument.id))):
            return

        for name, category in SEED_INSTRUMENTS:
            db.add(Instrument(name=name, category=InstrumentCategory(category)))
        for name in SEED_GENRES:
            db.add(Genre(name=name))

    logger.info(f"Seeded {len(SEED_INSTRUMENTS)} instruments and {len(SEED_GENRES)} genres")


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
