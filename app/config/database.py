# app/config/database.py
import asyncio
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from app.config.settings import Settings
from app.core.exceptions import StorageUnavailable
from app.modules.expenses.repository import (
    ExpenseRepository,
    InMemoryExpenseRepository,
    MongoExpenseRepository,
    SqlExpenseRepository,
)
from app.shared.services.file_storage import (
    CloudinaryFileStorage,
    FileStorage,
    LocalFileStorage,
)

logger = logging.getLogger(__name__)


def create_sql_engine(database_url: str, echo: bool = False) -> Engine:
    """Engine with SSL for hosted Postgres and a shared connection for in-memory SQLite"""
    engine_kwargs = {
        "pool_pre_ping": True,
        "echo": echo,
    }

    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        # one shared connection, so the repository serializes its sessions
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_recycle"] = 300
        if "render" in database_url and "sslmode=" not in database_url:
            engine_kwargs["connect_args"] = {"sslmode": "require"}

    return create_engine(database_url, **engine_kwargs)


def build_expense_repository(settings: Settings) -> ExpenseRepository:
    backend = settings.storage_backend.lower()

    if backend == "memory":
        return InMemoryExpenseRepository()

    if backend == "mongodb":
        logger.info(f"MongoDB URI: {settings.masked_mongodb_uri}")
        return MongoExpenseRepository(
            uri=settings.mongodb_uri,
            database=settings.mongodb_database,
            collection=settings.mongodb_collection,
            server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
            socket_timeout_ms=settings.mongodb_socket_timeout_ms,
        )

    if backend == "sql":
        logger.info(f"Database URL: {settings.masked_database_url}")
        return SqlExpenseRepository(
            database_url=settings.database_url,
            engine_factory=lambda url: create_sql_engine(url, echo=settings.log_level.upper() == "DEBUG"),
        )

    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def build_file_storage(settings: Settings) -> FileStorage:
    backend = settings.file_storage.lower()

    if backend == "local":
        return LocalFileStorage(
            upload_dir=settings.upload_dir,
            allowed_formats=settings.allowed_receipt_formats,
            max_size=settings.max_receipt_size,
        )

    if backend == "cloudinary":
        return CloudinaryFileStorage(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
            allowed_formats=settings.allowed_receipt_formats,
            max_size=settings.max_receipt_size,
        )

    raise ValueError(f"Unknown file storage: {settings.file_storage}")


async def connect_with_retry(repository: ExpenseRepository, delay_seconds: float) -> None:
    """Keep trying to connect on a fixed delay until the backend answers"""
    while True:
        try:
            await repository.connect()
        except StorageUnavailable as e:
            logger.error(f"❌ {repository.backend_name} connection error: {e.message}")
            logger.info(f"🔄 Retrying connection in {delay_seconds:g} seconds...")
            await asyncio.sleep(delay_seconds)
        else:
            logger.info(f"✅ {repository.backend_name} storage connected")
            return


async def start_storage(repository: ExpenseRepository, delay_seconds: float) -> Optional[asyncio.Task]:
    """
    Connect once inline. If that fails, keep retrying in the background so the
    process still serves /health while the database comes up.
    """
    try:
        await repository.connect()
        logger.info(f"✅ {repository.backend_name} storage connected")
        return None
    except StorageUnavailable as e:
        logger.error(f"❌ {repository.backend_name} connection error: {e.message}")
        return asyncio.create_task(connect_with_retry(repository, delay_seconds))


async def stop_storage(repository: ExpenseRepository, connect_task: Optional[asyncio.Task]) -> None:
    if connect_task is not None:
        connect_task.cancel()
        try:
            await connect_task
        except asyncio.CancelledError:
            pass
    await repository.close()
    logger.info(f"{repository.backend_name} storage closed")

