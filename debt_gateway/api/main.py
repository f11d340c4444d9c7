"""FastAPI application factory"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from debt_gateway.api.dependencies import http_error
from debt_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from debt_gateway.api.v1 import offers, orders
from debt_gateway.config import settings
from debt_gateway.domain.exceptions import DomainException
from debt_gateway.infrastructure.observability.logging import setup_logging

setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Debt Order Gateway",
        description="Signed debt orders and collateralized loan offers",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Last added runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        """Domain errors escaping a route get the same status mapping as handled ones"""
        error = http_error(exc)
        return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "service": settings.service_name,
            "decision_engine": settings.decision_engine_address,
        }

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(orders.router, prefix="/v1", tags=["orders"])
    app.include_router(offers.router, prefix="/v1", tags=["offers"])

    return app


app = create_app()
