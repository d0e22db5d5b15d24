"""FastAPI server for the Mailroom backend"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailroom.api.middleware.rate_limit import RateLimitMiddleware
from mailroom.api.middleware.security_headers import SecurityHeadersMiddleware
from mailroom.api.routes.action_history import router as action_history_router
from mailroom.api.routes.contacts import router as contacts_router
from mailroom.api.routes.health import router as health_router
from mailroom.api.routes.mail_items import router as mail_items_router
from mailroom.api.routes.notifications import router as notifications_router
from mailroom.api.routes.oauth import router as oauth_router
from mailroom.api.routes.scan import router as scan_router
from mailroom.api.routes.todos import router as todos_router
from mailroom.config import API_HOST, API_PORT, APP_VERSION, FRONTEND_URL, is_development
from mailroom.infrastructure.database import init_database, validate_schema
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, log_event

logger = get_logger(__name__)


def allowed_origins() -> list[str]:
    origins = [FRONTEND_URL]
    if is_development():
        origins.extend(
            [
                "http://localhost:5173",
                "http://localhost:3000",
                "http://127.0.0.1:5173",
                "http://127.0.0.1:3000",
            ]
        )
    return list(dict.fromkeys(origins))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create and check the schema before serving (idempotent)."""
    try:
        logger.info("Initializing database schema...")
        init_database()
        validate_schema()
        logger.info("Database initialization complete")
    except sqlite3.OperationalError as e:
        logger.critical("Database schema error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e
    except ValueError as e:
        logger.critical("Database schema invalid: %s", e)
        raise RuntimeError(f"Database schema validation failed: {e}") from e

    log_event("api.startup", service="mailroom", version=APP_VERSION)
    yield


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report which fields were invalid without echoing the validation rules."""
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


def create_app() -> FastAPI:
    load_dotenv()

    app = FastAPI(title="Mailroom API", version=APP_VERSION, lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(health_router)
    app.include_router(contacts_router)
    app.include_router(mail_items_router)
    app.include_router(action_history_router)
    app.include_router(todos_router)
    app.include_router(scan_router)
    app.include_router(oauth_router)
    app.include_router(notifications_router)

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "service": "Mailroom API",
            "version": APP_VERSION,
            "status": "running",
            "endpoints": {
                "health": "/api/health",
                "contacts": "/api/contacts",
                "mail_items": "/api/mail-items",
                "action_history": "/api/action-history",
                "todos": "/api/todos",
                "scan": "/api/scan",
                "gmail_oauth": "/api/oauth/gmail",
                "notifications": "/api/notifications",
            },
        }

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("mailroom.api.app:app", host=API_HOST, port=API_PORT, reload=is_development())
