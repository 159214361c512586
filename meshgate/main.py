# meshgate/main.py
"""
MeshGate Control Plane - Main Application
FastAPI application entry point
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from meshgate.api.v1 import nodes, services
from meshgate.bootstrap import Components, build_components
from meshgate.config import Settings, get_settings
from meshgate.core.errors import GatewayError
from meshgate.core.shell import CommandRunner, run_command
from meshgate.database.session import (
    check_connection, create_db_engine, create_session_factory, init_db,
)

logger = logging.getLogger(__name__)


async def expire_services(components: Components, interval: int) -> None:
    """Periodically disable services whose ttl ran out"""
    while True:
        await asyncio.sleep(interval)
        for registry in (components.http_services, components.tcp_services):
            try:
                await registry.disable_expired()
            except GatewayError as e:
                logger.warning(f"Expiry sweep for {registry.kind} services failed: {e.message}")


def create_app(settings: Optional[Settings] = None, runner: CommandRunner = run_command) -> FastAPI:
    """
    Build the application

    Args:
        settings: Application settings (environment when omitted)
        runner: Async command runner for wg / ip / nginx / ping
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan events
        - Startup: database, components, subsystem initialization, expiry sweep
        - Shutdown: stop the sweep, dispose the engine
        """
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Environment: {settings.ENV}")

        engine = create_db_engine(
            settings.DATABASE_URL,
            echo=settings.DEBUG,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
        init_db(engine)

        components = build_components(settings, create_session_factory(engine), runner=runner)
        app.state.engine = engine
        app.state.components = components
        app.state.startup_status = await components.initializer.run()
        app.state.startup_time = datetime.utcnow()

        sweeper = asyncio.create_task(
            expire_services(components, settings.SERVICE_EXPIRY_CHECK_INTERVAL)
        )

        logger.info("Application started successfully")

        yield

        logger.info("Shutting down application")
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        engine.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        MeshGate Control Plane API

        - WireGuard node lifecycle, keys and client configs
        - Gateway nodes and the subnets routed through them
        - HTTP and TCP services published through nginx

        Admin endpoints require the X-Admin-Token header.
        """,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Exception Handlers ===

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """Map controller errors to their HTTP status"""
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                **exc.to_dict(),
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": "Validation error",
                "error_code": "VALIDATION_ERROR",
                "details": {"errors": errors},
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.exception(f"Unexpected error: {exc}")

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
                "error_code": "INTERNAL_ERROR",
                "details": {"message": str(exc)} if settings.DEBUG else None,
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    # === Routers ===

    app.include_router(nodes.router, prefix=settings.API_PREFIX, tags=["Nodes"])
    app.include_router(services.router, prefix=settings.API_PREFIX, tags=["Services"])

    @app.get("/health", summary="Health check")
    async def health_check(request: Request):
        """Database status plus the outcome of each startup step"""
        engine = getattr(request.app.state, "engine", None)
        db_ok = engine is not None and check_connection(engine)
        startup_time = getattr(request.app.state, "startup_time", None)

        return {
            "status": "healthy" if db_ok else "unhealthy",
            "service": "meshgate",
            "version": settings.APP_VERSION,
            "database": "connected" if db_ok else "disconnected",
            "subsystems": getattr(request.app.state, "startup_status", {}),
            "uptime_seconds": (datetime.utcnow() - startup_time).total_seconds() if startup_time else None,
        }

    return app


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run("meshgate.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
