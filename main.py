"""
Assignment subscription backend
Trial / paid entitlement service exposed to the web frontend
"""

import logging
import traceback
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from config.settings import LOGS_DIR, Settings, settings
from routers.subscription_router import subscription_router
from services.container import ServiceContainer, build_services

logger = logging.getLogger(__name__)


def configure_logging():
    """Write all events to ./logs/app.log and the console."""
    LOGS_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOGS_DIR / "app.log"),
            logging.StreamHandler()
        ]
    )


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "data": {}, "error": "INTERNAL_ERROR", "message": "Internal Server Error"}
            )


def create_app(
    app_settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        app_settings: Settings to wire from (defaults to the environment)
        services: Pre-built services, e.g. with test fakes; built from settings if omitted
    """
    app_settings = app_settings or settings
    configure_logging()

    app = FastAPI(title="Assignment Subscription Service")
    app.state.services = services or build_services(app_settings)

    app.add_middleware(UncaughtExceptionMiddleware)

    # CORS MUST be near the bottom
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[app_settings.frontend_url] if app_settings.frontend_url else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def initialize_database():
        """Create tables when a database is configured."""
        container: ServiceContainer = app.state.services
        if not container.uses_database:
            logger.info("No database configured, using in-memory subscription store")
            return
        try:
            await container.startup()
            logger.info("✅ Database initialized successfully")
        except Exception as e:
            logger.error(f"❌ Database initialization failed: {e}")
            raise

    @app.on_event("shutdown")
    async def close_database():
        await app.state.services.shutdown()

    app.include_router(subscription_router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
