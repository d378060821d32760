"""
FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from app.api.router import api_router
from app.core.config import settings
from app.core.errors import (
    AppError,
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.core.logging import RequestIDMiddleware, RequestLoggingMiddleware, setup_logging
from app.infra.db import close_db_connection


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()

    yield

    # Shutdown
    await close_db_connection()


tags_metadata = [
    {
        "name": "friends",
        "description": "Friend requests, blocks, and relationship consistency.",
    },
    {
        "name": "health",
        "description": "System health check.",
    },
]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Friendlink Backend",
        description="""
Friendlink API manages friendships between users.

## Features
* **Friend Requests**: Send, accept and reject requests by email or user id.
* **Blocking**: Block and unblock users; blocking ends any friendship.
* **Consistency**: Diagnose and repair per-user friend lists and chats.
""",
        version="0.1.0",
        openapi_tags=tags_metadata,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        swagger_ui_parameters={
            "persistAuthorization": True,
            "displayRequestDuration": True
        },
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_credentials,
        allow_methods=settings.cors_methods,
        allow_headers=settings.cors_headers,
    )

    @app.get("/", tags=["health"], include_in_schema=False)
    async def root():
        return {
            "message": "Welcome to Friendlink Backend API",
            "docs": "/docs",
            "status": "operational"
        }

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "env": settings.env}

    # Routes
    app.include_router(api_router, prefix=settings.api_prefix)

    # Exception Handlers
    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()
