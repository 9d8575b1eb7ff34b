import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models  # noqa: F401 - registers tables on Base
from .config import ALLOWED_ORIGINS
from .database import Base, engine
from .domain.appointments.router import router as appointments_router
from .domain.notifications.router import router as notifications_router
from .domain.payments.router import router as payments_router
from .errors import AppError, format_validation_issues

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
    503: "SERVICE_UNAVAILABLE",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    try:
        from .rate_limiter import get_redis_client

        get_redis_client()
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(f"Redis connection failed - payment creation will answer 503: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="HealthPal Booking API", version="1.0.0", lifespan=lifespan)


# ============================================================================
# ERROR ENVELOPE
# ============================================================================


def _error_response(status_code: int, code: str, message: str, issues=None, headers=None):
    body = {"code": code, "message": message}
    if issues:
        body["issues"] = issues
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Render request validation failures as VALIDATION_ERROR, except problems
    with the Authorization header which are authentication failures
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return _error_response(401, "UNAUTHORIZED", "Authentication required")

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return _error_response(
        400, "VALIDATION_ERROR", "Validation error", format_validation_issues(exc.errors())
    )


@app.exception_handler(ValidationError)
async def pydantic_validation_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return _error_response(
        400, "VALIDATION_ERROR", "Validation error", format_validation_issues(exc.errors())
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return _error_response(
        exc.status_code, code, str(exc.detail), headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} - Error: {str(exc)}", exc_info=exc)
    return _error_response(500, "INTERNAL_ERROR", "Internal server error")


# CORS Configuration
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(appointments_router)
app.include_router(payments_router)
app.include_router(notifications_router)


@app.get("/")
def root():
    return {"message": "HealthPal Booking API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
