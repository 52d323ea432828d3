"""
Base service class for policy decision services.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import get_config
from shared.errors import HealthCheckError, PolicyServiceError, ValidationError
from shared.logging import clear_context, configure_logging, get_logger, get_request_id, set_request_id
from shared.metrics import get_metrics_collector

REQUEST_ID_HEADER = "X-Request-ID"


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, **config_overrides):
        self.service_name = service_name
        self.port = port
        self.config = get_config(service_name, port, **config_overrides)

        configure_logging(
            service_name,
            self.config.log_level,
            self.config.env,
            console=self.config.enable_console_logging,
        )
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Tenant-scoped {self.service_name} service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def correlate_and_time(request: Request, call_next):
            start_time = time.time()
            clear_context()
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))

            response = await call_next(request)

            duration = time.time() - start_time
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )

            response.headers[REQUEST_ID_HEADER] = get_request_id() or request_id
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                report = await self._check_health()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                error = HealthCheckError(details={"error": str(e)})
                content = error.to_response(get_request_id()).model_dump()
                content["status"] = "unhealthy"
                return JSONResponse(status_code=error.status_code, content=content)

            healthy = report.get("status") == "healthy"
            self.metrics.record_health_check("ok" if healthy else "error")
            report.setdefault("uptime_seconds", self._get_uptime())
            report.setdefault("version", "1.0.0")
            report.setdefault("commit", os.getenv("GIT_COMMIT", "unknown"))
            report.setdefault("request_id", get_request_id())
            return JSONResponse(status_code=200 if healthy else 503, content=report)

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(PolicyServiceError)
        async def policy_service_exception_handler(request: Request, exc: PolicyServiceError):
            """Handle PolicyServiceError."""
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(get_request_id()).model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
            """Report malformed or incomplete request bodies with the service error body."""
            fields = [
                ".".join(str(part) for part in err.get("loc", ()) if part != "body")
                for err in exc.errors()
            ]
            error = ValidationError(
                "MISSING_REQUIRED_FIELDS",
                "Request is missing required fields or is malformed",
                {"fields": fields},
            )
            self.logger.warning("Request validation failed", code=error.code, fields=fields)
            self.metrics.record_error(error.code)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response(get_request_id()).model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "request_id": get_request_id(),
                    "details": {}
                }
            )

    async def _check_health(self) -> Dict[str, Any]:
        """Return a health payload with a ``status`` key. Override in subclasses."""
        return {"service": self.service_name, "status": "healthy"}

    async def start(self):
        """Start service components. Override in subclasses."""

    async def stop(self):
        """Stop service components. Override in subclasses."""

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
