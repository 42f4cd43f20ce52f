import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import inspect, text
from sqlalchemy.orm import sessionmaker

from aida.database import SessionLocal
from aida.logging_config import get_logger
from aida.models import Assistant, Conversation, Message

logger = get_logger("storage_service")

Row = Dict[str, Any]


class Storage(ABC):
    """Row-level persistence for assistants, conversations and messages.

    Callers always pass tenant filters (business_id, conversation_id);
    implementations are responsible for enforcing isolation.
    """

    @abstractmethod
    async def query(self, table: str, filters: Mapping[str, Any]) -> List[Row]:
        pass

    @abstractmethod
    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        pass

    @abstractmethod
    async def update(self, table: str, row_id: str, patch: Mapping[str, Any]) -> Row:
        pass

    async def health_check(self) -> bool:
        return True


class UnknownTableError(KeyError):
    pass


class RowNotFoundError(LookupError):
    pass


class SqlStorage(Storage):
    """SQLAlchemy-backed storage. Each call runs in a worker thread with its own session."""

    TABLES = {
        "assistants": Assistant,
        "conversations": Conversation,
        "messages": Message,
    }

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def _model(self, table: str):
        model = self.TABLES.get(table)
        if model is None:
            raise UnknownTableError(table)
        return model

    @staticmethod
    def _column_to_attr(model) -> Dict[str, str]:
        # "metadata" is reserved on declarative models, so some columns use a different attribute name.
        return {attr.columns[0].name: attr.key for attr in inspect(model).column_attrs}

    def _to_row(self, obj) -> Row:
        mapping = self._column_to_attr(type(obj))
        return {column: getattr(obj, attr) for column, attr in mapping.items()}

    def _to_attrs(self, model, values: Mapping[str, Any]) -> Dict[str, Any]:
        mapping = self._column_to_attr(model)
        attrs = {}
        for key, value in values.items():
            if key not in mapping:
                raise KeyError(f"Unknown column {key!r} for {model.__tablename__}")
            attrs[mapping[key]] = value
        return attrs

    def _query_sync(self, table: str, filters: Mapping[str, Any]) -> List[Row]:
        model = self._model(table)
        with self._session_factory() as db:
            rows = db.query(model).filter_by(**self._to_attrs(model, filters)).all()
            return [self._to_row(row) for row in rows]

    def _insert_sync(self, table: str, row: Mapping[str, Any]) -> Row:
        model = self._model(table)
        with self._session_factory() as db:
            obj = model(**self._to_attrs(model, row))
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return self._to_row(obj)

    def _update_sync(self, table: str, row_id: str, patch: Mapping[str, Any]) -> Row:
        model = self._model(table)
        with self._session_factory() as db:
            obj = db.get(model, row_id)
            if obj is None:
                raise RowNotFoundError(f"{table} row not found: {row_id}")
            for attr, value in self._to_attrs(model, patch).items():
                setattr(obj, attr, value)
            db.commit()
            db.refresh(obj)
            return self._to_row(obj)

    async def query(self, table: str, filters: Mapping[str, Any]) -> List[Row]:
        return await asyncio.to_thread(self._query_sync, table, filters)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        return await asyncio.to_thread(self._insert_sync, table, row)

    async def update(self, table: str, row_id: str, patch: Mapping[str, Any]) -> Row:
        return await asyncio.to_thread(self._update_sync, table, row_id, patch)

    def _ping_sync(self) -> bool:
        with self._session_factory() as db:
            db.execute(text("SELECT 1"))
        return True

    async def health_check(self) -> bool:
        try:
            return await asyncio.to_thread(self._ping_sync)
        except Exception as e:
            logger.error(f"Storage health check failed: {e}")
            return False
