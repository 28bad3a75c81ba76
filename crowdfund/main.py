from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import structlog
import time
import uvicorn

from crowdfund.core.config import get_settings
from crowdfund.core.errors import CrowdfundError
from crowdfund.core.logging import configure_logging
from crowdfund.database.database import check_db, close_db, init_db
from crowdfund.factory import Services, build_services
from crowdfund.api.admin import router as admin_router
from crowdfund.api.auth import router as auth_router
from crowdfund.api.campaign import router as campaigns_router
from crowdfund.api.donation import router as donations_router
from crowdfund.api.payment import router as payment_router
from crowdfund.api.upload import router as upload_router
from crowdfund.api.user import router as users_router
from crowdfund.middleware.tracing import init_tracing
from crowdfund.middleware.metrics import MetricsMiddleware, metrics_endpoint
from crowdfund.middleware.logging import logging_middleware

logger = structlog.get_logger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return "; ".join(parts) or "Invalid request"


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the API; tests pass prebuilt services with fake collaborators"""
    settings = services.settings if services else get_settings()
    configure_logging(settings.log_level, settings.debug)
    services = services or build_services(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Crowdfunding API for campaigns, donations and users",
        version="1.0.0",
        debug=settings.debug
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    init_tracing(app, settings, services.engine)

    app.add_middleware(MetricsMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Logging middleware with trace correlation"""
        return await logging_middleware(request, call_next)

    @app.exception_handler(CrowdfundError)
    async def crowdfund_error_handler(request: Request, exc: CrowdfundError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=exc.error, message=exc.message, path=request.url.path)
        else:
            logger.info("Request rejected", error=exc.error, message=exc.message, path=request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": exc.message}
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "message": _validation_message(exc)}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(
            "Unhandled exception",
            error=str(exc),
            method=request.method,
            url=str(request.url),
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalError",
                "message": "An unexpected error occurred"
            }
        )

    @app.on_event("startup")
    async def startup_event():
        """Initialize application on startup"""
        logger.info("Starting crowdfund API", service_name=settings.service_name)
        try:
            init_db(services.engine)
            if settings.scheduler_enabled:
                services.scheduler.start()
            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error("Failed to initialize application", error=str(e))
            raise

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on application shutdown"""
        logger.info("Shutting down crowdfund API")
        try:
            services.scheduler.shutdown()
            services.notifier.shutdown()
            close_db(services.engine)
            logger.info("Application shutdown completed successfully")
        except Exception as e:
            logger.error("Error during application shutdown", error=str(e))

    @app.get("/health")
    async def health_check():
        """Basic health check"""
        return {
            "status": "healthy",
            "service": settings.service_name,
            "timestamp": time.time()
        }

    @app.get("/health/ready")
    def readiness_check():
        """Readiness check with database and scheduler status"""
        health_status = {
            "status": "ready",
            "service": settings.service_name,
            "timestamp": time.time(),
            "database": "connected" if check_db(services.engine) else "disconnected",
            "scheduler": "running" if services.scheduler.running else "stopped",
        }
        if health_status["database"] != "connected":
            health_status["status"] = "not ready"
            return JSONResponse(status_code=503, content=health_status)
        return health_status

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint"""
        return await metrics_endpoint(request)

    app.include_router(campaigns_router)
    app.include_router(donations_router)
    app.include_router(payment_router)
    app.include_router(users_router)
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(upload_router)

    return app


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "crowdfund.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info" if not settings.debug else "debug"
    )
