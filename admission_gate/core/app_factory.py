"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from admission_gate.api.routes import health_router, hello_router
from admission_gate.core.config import settings
from admission_gate.core.errors import StoreAppError
from admission_gate.core.exception_handlers import setup_exception_handlers
from admission_gate.core.logging import configure_logging
from admission_gate.core.middleware import request_id_middleware
from admission_gate.core.openapi import apply_openapi_customizations
from admission_gate.core.rate_limit import get_admission_gate, reset_admission_gate

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the gate at startup and close it on shutdown.

    Bad settings fail fast here. An unreachable store does not: the service
    starts and the gate admits requests fail-open until the store returns.
    """

    if settings.rate_limit.enabled:
        gate = await get_admission_gate()
        store = gate.evaluator.store
        create_schema = getattr(store, "create_schema", None)
        if create_schema is not None:
            try:
                await create_schema()
            except StoreAppError as exc:
                logger.error(
                    "rate_limit.schema_init_failed",
                    extra={"backend": store.backend, "error_code": exc.code, "error_message": exc.message},
                )
    try:
        yield
    finally:
        await reset_admission_gate()
        logger.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Gate",
        debug=settings.debug,
        description=(
            "Sliding-window request admission gate. Bounds how many requests "
            "each client may issue per window using a shared store, reports "
            "quota via X-RateLimit-* headers and answers HTTP 429 with "
            "Retry-After when the limit is reached. Fails open when the store "
            "is unavailable."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(hello_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (429 responses, rate limit headers, tags)
    apply_openapi_customizations(app)

    return app
