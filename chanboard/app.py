"""
FastAPI application entry point for the forum backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chanboard.config import get_settings
from chanboard.dependencies import get_db_client, reset_clients
from chanboard.routes import health_router, router
from chanboard.seed import SEED_BOARDS

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_db_client()
    db.init_schema()
    inserted = db.seed_boards(SEED_BOARDS)
    logger.info("Database initialized, %d boards seeded", inserted)
    yield
    logger.info("Shutting down, closing database connections")
    reset_clients()


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": detail})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    app = FastAPI(title="chanboard", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(health_router)
    return app


app = create_app()
