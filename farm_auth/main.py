from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.middleware.cors import CORSMiddleware

from farm_auth.core.config import app_logger, settings
from farm_auth.core.dependencies.auth import CacheStoreDep
from farm_auth.core.enums import CacheMode
from farm_auth.core.exceptions.handlers import (
    authentication_exception_handler,
    exception_schema,
    forbidden_exception_handler,
    general_exception_handler,
    otp_delivery_exception_handler,
    otp_verification_exception_handler,
    rate_limit_exception_handler,
    request_validation_exception_handler,
    validation_exception_handler,
)
from farm_auth.core.exceptions.types import (
    AppException,
    AuthenticationException,
    ForbiddenException,
    OTPDeliveryException,
    OTPVerificationException,
    RateLimitExceededException,
    ValidationException,
)
from farm_auth.core.routers import auth_router, otp_router
from farm_auth.core.services.auth import AuthService
from farm_auth.core.services.cache import CacheStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting application...")

    # Initialize cache store
    app_logger.info("Initializing cache store...")
    cache = CacheStore.from_settings(settings)
    mode = await cache.connect()
    app.state.cache = cache
    app_logger.info(f"Cache store initialized in {mode.value} mode.")

    # Initialize Auth service (fails startup if token signing is misconfigured)
    app_logger.info("Initializing Auth service...")
    app.state.auth_service = AuthService.build(cache, settings)
    app_logger.info("Auth service initialized successfully.")

    # Yield control back to the application
    yield

    # Cleanup on shutdown
    app_logger.info("Shutting down application...")

    # Close cache store
    app_logger.info("Closing cache store...")
    await cache.aclose()
    app_logger.info("Cache store closed successfully.")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=settings.APP_DESCRIPTION,
    debug=settings.DEBUG,
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    responses=exception_schema,
)

# Register exception handlers (order matters - more specific first)
app.add_exception_handler(OTPVerificationException, otp_verification_exception_handler)
app.add_exception_handler(OTPDeliveryException, otp_delivery_exception_handler)
app.add_exception_handler(RateLimitExceededException, rate_limit_exception_handler)
app.add_exception_handler(ValidationException, validation_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(AuthenticationException, authentication_exception_handler)
app.add_exception_handler(ForbiddenException, forbidden_exception_handler)
# Generic fallback
app.add_exception_handler(AppException, general_exception_handler)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(otp_router, prefix="/otp", tags=["OTP"])
app.include_router(auth_router, prefix="/auth", tags=["Authentication"])


@app.get("/", include_in_schema=False)
async def root(request: Request):
    base_url = str(request.base_url).rstrip("/")
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "documentations": {
            "swagger": f"{base_url}/docs",
            "redoc": f"{base_url}/redoc",
        },
        "version": settings.APP_VERSION,
    }


@app.head("/health", include_in_schema=False)
@app.get("/health")
async def health_check(cache: CacheStoreDep):
    """
    Health check endpoint to verify if the API is running.

    Checks:
        - Cache store mode (primary Redis or in-memory fallback)

    A fallback-mode cache is reported as "degraded" but does not fail the
    check: OTP and token operations keep working from process memory.
    """
    health_status = {
        "status": "ok",
        "message": f"{settings.APP_NAME} is running.",
        "checks": {
            "cache": cache.status(),
        },
    }

    if cache.mode is CacheMode.FALLBACK:
        health_status["status"] = "degraded"

    return health_status
