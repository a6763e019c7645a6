"""
Investor Payments — FastAPI Application Entry Point

Aggregates all routers, configures middleware and error rendering,
and initializes the database on startup.
"""
import logging
import os
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from investor_payments.config import get_settings
from investor_payments.database import SessionLocal, init_db
from investor_payments.errors import PaymentServiceError
from investor_payments.routes import orders_router, sip_router, webhook_router, sync_router

settings = get_settings()
logger = logging.getLogger("investor_payments")


def configure_logging():
    """Console + LOG_DIR/server.log handlers on the package logger (idempotent)."""
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    logger.setLevel(settings.LOG_LEVEL.upper())
    if logger.handlers:
        return
    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, "server.log"), encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(console)
    logger.addHandler(file_handler)


# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Payment and SIP backend for the investor portal. "
        "Covers one-time orders, SIP mandates (setup, pause, resume, cancel), "
        "gateway webhooks and on-demand reconciliation against Cashfree."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Initialize database tables and log boot info."""
    configure_logging()
    init_db()

    logger.info(
        "\n%s\n  %s v%s\n  TIME: %s\n  CASHFREE: %s (%s)\n  DATABASE: %s\n  DEBUG: %s\n%s",
        "=" * 60,
        settings.APP_NAME,
        settings.APP_VERSION,
        datetime.now().isoformat(),
        "[OK] Credentials loaded" if settings.gateway_configured else "[!] Missing credentials",
        settings.CASHFREE_ENVIRONMENT,
        settings.DATABASE_URL,
        settings.DEBUG,
        "=" * 60,
    )


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

    return response


# ─── Error Rendering ─────────────────────────────────────────────────
def _error_response(status_code: int, message: str, error_code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "error_code": error_code,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


@app.exception_handler(PaymentServiceError)
async def payment_error_handler(request: Request, exc: PaymentServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.error_code, exc.message)
    return _error_response(exc.status_code, exc.message, exc.error_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    return _error_response(400, f"Invalid {field}: {first.get('msg', 'invalid value')}", "VALIDATION_FAILED")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error_code = "RATE_LIMITED" if exc.status_code == 429 else "HTTP_ERROR"
    return _error_response(exc.status_code, str(exc.detail), error_code)


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(orders_router)
app.include_router(sip_router)
app.include_router(webhook_router)
app.include_router(sync_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as exc:
        logger.warning("Health check database query failed: %s", exc)
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "gateway": "configured" if settings.gateway_configured else "unconfigured",
        "environment": settings.CASHFREE_ENVIRONMENT,
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
