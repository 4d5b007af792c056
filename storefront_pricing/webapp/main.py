"""
FastAPI application for the pricing engine admin API.

Run with:
    uvicorn storefront_pricing.webapp.main:app

or through the CLI:
    python -m storefront_pricing.main serve
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront_pricing.exceptions import PricingEngineError
from storefront_pricing.services.pricing_service import PricingService
from storefront_pricing.utils.config_loader import load_config, load_env
from storefront_pricing.utils.logging_config import setup_logging_from_config
from storefront_pricing.webapp.routes import router

logger = logging.getLogger(__name__)


def create_app(service: Optional[PricingService] = None, start_jobs: bool = False) -> FastAPI:
    """
    Create the admin API application.

    Args:
        service: Pricing service to serve; built from config/config.yaml at
            startup when None.
        start_jobs: Start the periodic jobs for the app's lifetime.

    Returns:
        FastAPI: Configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "pricing_service", None) is None:
            load_env()
            config = load_config()
            setup_logging_from_config(config.logging)
            app.state.pricing_service = PricingService.from_config(config)

        logger.info("Pricing engine admin API starting...")
        if start_jobs:
            app.state.pricing_service.start()
        yield
        if start_jobs:
            app.state.pricing_service.stop()
        logger.info("Pricing engine admin API shutting down...")

    app = FastAPI(
        title="Storefront Pricing Engine",
        description="Markup, exchange-rate and price integrity administration",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.pricing_service = service

    @app.exception_handler(PricingEngineError)
    async def pricing_error_handler(request: Request, exc: PricingEngineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.error_code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.middleware("http")
    async def error_handling_middleware(request: Request, call_next):
        """Global error handling middleware."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(f"Unhandled error processing {request.url.path}: {e}")
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "details": {"path": str(request.url.path)},
                },
                headers={"X-Process-Time": str(time.time() - start_time)},
            )
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.get("/health/simple")
    async def simple_health_check() -> dict[str, Any]:
        """Simple health check for load balancers."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(router)
    return app


app = create_app(start_jobs=True)
