"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aquabeacon.config import settings
from aquabeacon.database import init_db, close_db
from aquabeacon.logging_config import configure_logging
from aquabeacon.redis import RedisClient

from aquabeacon.api.payments import router as payments_router
from aquabeacon.api.webhooks.mpesa import router as mpesa_router
from aquabeacon.api.admin.payments import router as admin_payments_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    configure_logging()
    logging.info("Starting up AquaBeacon payments...")

    if settings.redis_url:
        try:
            RedisClient.get_client()
        except Exception as e:
            logging.warning(f"Failed to initialize Redis: {e}")

    if settings.is_development:
        await init_db()

    yield

    await RedisClient.close()
    await close_db()
    logging.info("Shutting down...")


app = FastAPI(
    title="AquaBeacon",
    description="Water quality compliance platform - payments API",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal Server Error"},
    )


origins = list(settings.cors_origins)
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
        "mpesa": settings.mpesa_environment,
    }


app.include_router(
    payments_router,
    prefix="/api/payments",
    tags=["payments"],
)
app.include_router(
    mpesa_router,
    prefix="/api/mpesa",
    tags=["webhooks"],
)
app.include_router(
    admin_payments_router,
    prefix="/admin",
    tags=["admin"],
)
