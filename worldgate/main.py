import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from worldgate.api import admin, health, usage
from worldgate.core.config import settings, validate_config
from worldgate.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from worldgate.core.logging import configure_logging
from worldgate.core.middleware.request_id import RequestIdMiddleware
from worldgate.features.entitlements.service import EntitlementGate, get_gate


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("worldgate")
    logger.info("Starting worldgate...")
    try:
        yield
    finally:
        logger.info("Stopping worldgate...")


def create_app(gate: Optional[EntitlementGate] = None) -> FastAPI:
    """Build the API; pass `gate` to bypass the settings-built default."""
    app = FastAPI(title="Worldgate - usage entitlements", lifespan=lifespan)

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(usage.router)
    app.include_router(admin.router)

    if gate is not None:
        app.dependency_overrides[get_gate] = lambda: gate

    return app


configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

app = create_app()
