# app/modules/expenses/repository.py
import copy
import itertools
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.exceptions import StorageUnavailable
from app.shared.database.models import Base, ExpenseRecord

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

CONNECTED = "connected"
CONNECTING = "connecting"
DISCONNECTED = "disconnected"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ExpenseRepository(ABC):
    """
    Persistence of expense documents keyed by an opaque id.

    Documents are plain dicts with camelCase keys. Every read returns a copy
    carrying the record id under "id"; every backend failure surfaces as
    StorageUnavailable. An id the backend cannot interpret is simply not found.
    """

    backend_name = "unknown"

    def __init__(self):
        self._status = DISCONNECTED

    @property
    def status(self) -> str:
        return self._status

    async def connect(self) -> None:
        self._status = CONNECTED

    async def close(self) -> None:
        self._status = DISCONNECTED

    @abstractmethod
    async def insert(self, document: Document) -> str:
        """Store a new record and return its freshly assigned id"""

    @abstractmethod
    async def list_all(self) -> List[Document]:
        """All records, newest submission first"""

    @abstractmethod
    async def get_by_id(self, expense_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def update_by_id(self, expense_id: str, fields: Document) -> Optional[Document]:
        """Shallow-merge fields into the record and return the updated record"""

    @abstractmethod
    async def delete_by_id(self, expense_id: str) -> Optional[Document]:
        """Remove the record and return it as it was"""

    @abstractmethod
    async def count(self) -> int:
        ...


# =====================================================
# MEMORY
# =====================================================

class InMemoryExpenseRepository(ExpenseRepository):
    """Process-local store indexed by id, for demos and tests"""

    backend_name = "memory"

    def __init__(self):
        super().__init__()
        self._records: Dict[str, Document] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def _sort_key(self, record: Document):
        return (record.get("submissionDate") or _EPOCH, self._sequence[record["id"]])

    async def insert(self, document: Document) -> str:
        expense_id = uuid.uuid4().hex
        with self._lock:
            self._records[expense_id] = {**copy.deepcopy(document), "id": expense_id}
            self._sequence[expense_id] = next(self._counter)
        return expense_id

    async def list_all(self) -> List[Document]:
        with self._lock:
            records = sorted(self._records.values(), key=self._sort_key, reverse=True)
            return [copy.deepcopy(r) for r in records]

    async def get_by_id(self, expense_id: str) -> Optional[Document]:
        with self._lock:
            record = self._records.get(expense_id)
            return copy.deepcopy(record) if record is not None else None

    async def update_by_id(self, expense_id: str, fields: Document) -> Optional[Document]:
        with self._lock:
            record = self._records.get(expense_id)
            if record is None:
                return None
            record.update(copy.deepcopy(fields))
            record["id"] = expense_id
            return copy.deepcopy(record)

    async def delete_by_id(self, expense_id: str) -> Optional[Document]:
        with self._lock:
            record = self._records.pop(expense_id, None)
            self._sequence.pop(expense_id, None)
            return record

    async def count(self) -> int:
        with self._lock:
            return len(self._records)


# =====================================================
# MONGODB (pymongo)
# =====================================================

class MongoExpenseRepository(ExpenseRepository):
    backend_name = "mongodb"

    def __init__(
        self,
        uri: Optional[str],
        database: str,
        collection: str,
        server_selection_timeout_ms: int = 10000,
        socket_timeout_ms: int = 45000,
        client_factory: Callable[..., MongoClient] = MongoClient,
    ):
        super().__init__()
        self.uri = uri
        self.database_name = database
        self.collection_name = collection
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.socket_timeout_ms = socket_timeout_ms
        self._client_factory = client_factory
        self._client = None
        self._collection = None

    async def connect(self) -> None:
        if not self.uri:
            raise StorageUnavailable("MONGODB_URI environment variable is not defined")

        self._status = CONNECTING
        try:
            await run_in_threadpool(self._connect_sync)
        except PyMongoError as e:
            self._status = DISCONNECTED
            raise StorageUnavailable(f"MongoDB connection error: {e}") from e

        self._status = CONNECTED

    def _connect_sync(self) -> None:
        client = self._client_factory(
            self.uri,
            serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            socketTimeoutMS=self.socket_timeout_ms,
            tz_aware=True,
        )
        try:
            client.admin.command("ping")
            collection = client[self.database_name][self.collection_name]
            collection.create_index([("submissionDate", DESCENDING)])
        except PyMongoError:
            client.close()
            raise

        self._client = client
        self._collection = collection
        logger.info(f"MongoDB connected: {self.database_name}.{self.collection_name}")

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._collection = None
        self._status = DISCONNECTED

    async def _run(self, operation: Callable[[Any], Any]) -> Any:
        if self._collection is None:
            raise StorageUnavailable("MongoDB is not connected")
        try:
            return await run_in_threadpool(operation, self._collection)
        except PyMongoError as e:
            raise StorageUnavailable(str(e)) from e

    @staticmethod
    def _object_id(expense_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(expense_id)
        except (InvalidId, TypeError):
            return None

    @staticmethod
    def _from_mongo(document: Optional[Document]) -> Optional[Document]:
        if document is None:
            return None
        document = dict(document)
        document["id"] = str(document.pop("_id"))
        return document

    async def insert(self, document: Document) -> str:
        result = await self._run(lambda c: c.insert_one(dict(document)))
        return str(result.inserted_id)

    async def list_all(self) -> List[Document]:
        documents = await self._run(
            lambda c: list(c.find().sort([("submissionDate", DESCENDING), ("_id", DESCENDING)]))
        )
        return [self._from_mongo(d) for d in documents]

    async def get_by_id(self, expense_id: str) -> Optional[Document]:
        oid = self._object_id(expense_id)
        if oid is None:
            return None
        return self._from_mongo(await self._run(lambda c: c.find_one({"_id": oid})))

    async def update_by_id(self, expense_id: str, fields: Document) -> Optional[Document]:
        oid = self._object_id(expense_id)
        if oid is None:
            return None
        document = await self._run(
            lambda c: c.find_one_and_update(
                {"_id": oid},
                {"$set": dict(fields)},
                return_document=ReturnDocument.AFTER,
            )
        )
        return self._from_mongo(document)

    async def delete_by_id(self, expense_id: str) -> Optional[Document]:
        oid = self._object_id(expense_id)
        if oid is None:
            return None
        return self._from_mongo(await self._run(lambda c: c.find_one_and_delete({"_id": oid})))

    async def count(self) -> int:
        return await self._run(lambda c: c.count_documents({}))


# =====================================================
# SQL (SQLAlchemy)
# =====================================================

class SqlExpenseRepository(ExpenseRepository):
    backend_name = "sql"

    def __init__(self, database_url: Optional[str], engine_factory: Callable[[str], Engine]):
        super().__init__()
        self.database_url = database_url
        self._engine_factory = engine_factory
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._session_lock: Optional[threading.Lock] = None

    async def connect(self) -> None:
        if not self.database_url:
            raise StorageUnavailable("DATABASE_URL environment variable is not defined")

        self._status = CONNECTING
        try:
            await run_in_threadpool(self._connect_sync)
        except SQLAlchemyError as e:
            self._status = DISCONNECTED
            raise StorageUnavailable(f"Database connection error: {e}") from e

        self._status = CONNECTED

    def _connect_sync(self) -> None:
        engine = self._engine_factory(self.database_url)
        try:
            Base.metadata.create_all(bind=engine)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            engine.dispose()
            raise

        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        if isinstance(engine.pool, StaticPool):
            self._session_lock = threading.Lock()
        logger.info(f"Database connected: {engine.url.render_as_string(hide_password=True)}")

    async def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None
        self._session_lock = None
        self._status = DISCONNECTED

    async def _run(self, operation: Callable[[Session], Any]) -> Any:
        if self._session_factory is None:
            raise StorageUnavailable("Database is not connected")

        session_factory = self._session_factory
        lock = self._session_lock or nullcontext()

        def _in_session():
            with lock, session_factory() as db:
                return operation(db)

        try:
            return await run_in_threadpool(_in_session)
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e

    @staticmethod
    def _find(db: Session, expense_id: str) -> Optional[ExpenseRecord]:
        return db.query(ExpenseRecord).filter(ExpenseRecord.id == expense_id).first()

    async def insert(self, document: Document) -> str:
        expense_id = uuid.uuid4().hex

        def _insert(db: Session) -> str:
            db.add(ExpenseRecord(
                id=expense_id,
                status=document.get("status", "submitted"),
                submission_date=document.get("submissionDate") or datetime.now(timezone.utc),
                document=jsonable_encoder(document),
            ))
            db.commit()
            return expense_id

        return await self._run(_insert)

    async def list_all(self) -> List[Document]:
        def _list(db: Session) -> List[Document]:
            records = (
                db.query(ExpenseRecord)
                .order_by(ExpenseRecord.submission_date.desc(), ExpenseRecord.pk.desc())
                .all()
            )
            return [r.to_document() for r in records]

        return await self._run(_list)

    async def get_by_id(self, expense_id: str) -> Optional[Document]:
        def _get(db: Session) -> Optional[Document]:
            record = self._find(db, expense_id)
            return record.to_document() if record else None

        return await self._run(_get)

    async def update_by_id(self, expense_id: str, fields: Document) -> Optional[Document]:
        def _update(db: Session) -> Optional[Document]:
            record = self._find(db, expense_id)
            if not record:
                return None
            # reassign so the JSON column is flagged dirty
            record.document = {**record.document, **jsonable_encoder(fields)}
            if "status" in fields:
                record.status = jsonable_encoder(fields["status"])
            db.commit()
            db.refresh(record)
            return record.to_document()

        return await self._run(_update)

    async def delete_by_id(self, expense_id: str) -> Optional[Document]:
        def _delete(db: Session) -> Optional[Document]:
            record = self._find(db, expense_id)
            if not record:
                return None
            document = record.to_document()
            db.delete(record)
            db.commit()
            return document

        return await self._run(_delete)

    async def count(self) -> int:
        return await self._run(lambda db: db.query(ExpenseRecord).count())
