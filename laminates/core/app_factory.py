"""
FastAPI application factory

Builds the quotation service app for a given environment so tests can create isolated instances.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from laminates.core.errors import QuotationServiceError
from laminates.core.logging import setup_logging

logger = logging.getLogger(__name__)


class AppConfig:
    """Configuration for FastAPI application."""

    def __init__(
        self,
        environment: str = None,
        title: str = "Laminates Quotation Backend",
        description: str = "Master data and quotation PDFs for a laminates trading company",
        version: str = "1.0.0",
        enable_docs: bool = None,
        cors_origins: List[str] = None,
        create_tables: bool = True,
    ):
        self.environment = environment or os.getenv("ENVIRONMENT", "development").lower()
        self.title = title
        self.description = description
        self.version = version
        self.enable_docs = enable_docs if enable_docs is not None else (self.environment != "production")
        self.docs_url = "/docs" if self.enable_docs else None
        self.redoc_url = "/redoc" if self.enable_docs else None
        self.cors_origins = cors_origins or self._get_default_cors_origins()
        self.create_tables = create_tables

    def _get_default_cors_origins(self) -> List[str]:
        cors_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS", "")
        if cors_env:
            return [origin.strip() for origin in cors_env.split(",") if origin.strip()]
        return ["*"] if self.environment == "development" else []


def setup_middleware(app: FastAPI, config: AppConfig) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With"],
    )


def setup_routers(app: FastAPI) -> List[str]:
    from laminates.api._registry import ROUTERS

    loaded = []
    for router in ROUTERS:
        app.include_router(router)
        loaded.append(router.prefix)
        logger.info(f"Router '{router.prefix}' loaded")
    return loaded


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(QuotationServiceError)
    async def service_error_handler(request: Request, exc: QuotationServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.error_code}): {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "message": first.get("msg", "Validation failed"),
                "error": "VALIDATION_FAILED",
                "details": {"field": field},
            },
        )


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create FastAPI application with factory pattern.

    Args:
        config: Optional configuration object

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = AppConfig()

    setup_logging(format_type="json" if config.environment == "production" else None)
    logger.info(f"Creating FastAPI application ({config.environment})")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.create_tables:
            from laminates.db.database import init_db
            init_db()
            logger.info("Database tables ensured")
        yield

    app = FastAPI(
        title=config.title,
        description=config.description,
        version=config.version,
        docs_url=config.docs_url,
        redoc_url=config.redoc_url,
        lifespan=lifespan,
    )

    setup_middleware(app, config)
    loaded = setup_routers(app)
    setup_exception_handlers(app)

    logger.info(f"Loaded {len(loaded)} routers, {len(app.routes)} routes")
    return app
