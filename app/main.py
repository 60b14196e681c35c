# app/main.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles

from app.api.router import api_router
from app.config.database import (
    build_expense_repository,
    build_file_storage,
    start_storage,
    stop_storage,
)
from app.config.settings import Settings, settings as default_settings
from app.core.exceptions import AVAILABLE_ENDPOINTS, register_exception_handlers
from app.core.middleware import setup_middleware
from app.modules.expenses.repository import CONNECTED, ExpenseRepository
from app.shared.services.file_storage import FileStorage, LocalFileStorage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[ExpenseRepository] = None,
    file_storage: Optional[FileStorage] = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"🚀 {settings.app_name} starting")
        logger.info(f"📍 Port: {settings.port}")
        logger.info(f"🌐 Environment: {settings.environment}")
        logger.info(f"🗄️  Storage: {app.state.expense_repository.backend_name}")

        connect_task = await start_storage(
            app.state.expense_repository,
            settings.db_retry_delay_seconds,
        )

        yield

        # Shutdown
        logger.info(f"🛑 {settings.app_name} shutting down")
        await stop_storage(app.state.expense_repository, connect_task)

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Cash expense submission and accounting review",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.expense_repository = repository or build_expense_repository(settings)
    app.state.file_storage = file_storage or build_file_storage(settings)

    setup_middleware(app, settings)
    register_exception_handlers(app, settings)

    app.include_router(api_router)

    if isinstance(app.state.file_storage, LocalFileStorage):
        app.mount(
            "/uploads",
            StaticFiles(directory=app.state.file_storage.upload_dir),
            name="uploads",
        )

    @app.get("/")
    async def root(request: Request):
        repository = request.app.state.expense_repository
        return {
            "message": f"{settings.app_name} is running!",
            "database": "connected" if repository.status == CONNECTED else "disconnected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": AVAILABLE_ENDPOINTS,
        }

    @app.get("/health")
    async def health_check(request: Request):
        return {
            "status": "OK",
            "database": request.app.state.expense_repository.status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
            "port": settings.port,
        }

    return app


if __name__ == "__main__":
    import uvicorn
    # built by uvicorn so importing this module has no side effects
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        reload=not default_settings.is_production,
    )
