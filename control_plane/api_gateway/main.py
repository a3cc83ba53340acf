"""
Main FastAPI Application

News CMS tenant control plane with:
- Explicit startup sequence and readiness
- Tenant lifecycle, status, bulk and analytics endpoints
- Uniform error payloads
- CORS configuration
- Health checks
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..exceptions import CollaboratorUnavailableError, ControlPlaneError, ErrorCode
from ..logging_config import configure_logging
from ..shared_services.database import PlatformDatabase, ReadinessState
from ..tenant_management.api_router import router as tenant_router
from .services import ControlPlaneServices

logger = get_logger()

VERSION = "0.1.0"


def create_app(
    config: Optional[PlatformConfig] = None,
    services: Optional[ControlPlaneServices] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Platform configuration
        services: Pre-built services; skips the platform database startup
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup: configure logging, connect the platform database, build
        services. Requests are refused with 503 until this completes.
        """
        configure_logging(config.log_level, config.log_json)
        logger.info("starting_tenant_control_plane", environment=config.environment.value)

        database: Optional[PlatformDatabase] = None
        if services is not None:
            app.state.services = services
        else:
            database = PlatformDatabase(config)
            app.state.database = database
            try:
                await database.connect()
            except CollaboratorUnavailableError:
                logger.error("platform_not_ready", state=database.state.value)
            else:
                app.state.services = ControlPlaneServices.from_database(database, config)
                logger.info("platform_initialized")

        yield

        # Shutdown
        logger.info("shutting_down_platform")
        if app.state.services is not None and services is None:
            await app.state.services.close()
        if database is not None:
            database.close()
        logger.info("platform_shutdown_complete")

    app = FastAPI(
        title="News CMS Tenant Control Plane",
        description="Provisioning, status and usage for multi-tenant news CMS deployments",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if not config.is_production else None,
        redoc_url="/redoc" if not config.is_production else None,
        openapi_url="/openapi.json" if not config.is_production else None,
    )
    app.state.config = config
    app.state.services = None
    app.state.database = None

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ControlPlaneError)
    async def control_plane_error_handler(request: Request, exc: ControlPlaneError):
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "request_failed",
            path=request.url.path,
            code=exc.code.value,
            error=exc.message,
            cause=str(exc.cause) if exc.cause else None,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(include_details=config.expose_error_details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": "Validation failed",
                "errors": jsonable_encoder(exc.errors(), exclude={"input", "ctx", "url"}),
            },
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        """Custom 500 handler."""
        logger.error("internal_server_error", path=request.url.path, error=str(exc))
        content = {
            "success": False,
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "Internal server error",
        }
        if config.expose_error_details:
            content["details"] = {"cause": f"{type(exc).__name__}: {exc}"}
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    # Health check endpoints
    @app.get("/health", tags=["Platform"], summary="Health check")
    async def health_check():
        """Liveness: the process is up."""
        return {
            "status": "healthy",
            "environment": config.environment.value,
            "version": VERSION,
        }

    @app.get("/ready", tags=["Platform"], summary="Readiness check")
    async def readiness_check(request: Request):
        """Ready once the platform database is verified and services are built."""
        database: Optional[PlatformDatabase] = request.app.state.database
        ready = request.app.state.services is not None
        if database is not None:
            state = database.state.value
        else:
            state = ReadinessState.READY.value if ready else ReadinessState.STARTING.value

        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": ready, "state": state},
        )

    @app.get("/ping", tags=["Platform"], summary="Ping endpoint")
    async def ping():
        """Simple ping endpoint."""
        return {"message": "pong"}

    app.include_router(tenant_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _config = get_config()
    uvicorn.run(
        "control_plane.api_gateway.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_config.is_local,
        log_level=_config.log_level.lower(),
    )
