"""
Document store abstraction for Firestore, SQL and an in-memory test implementation.

Documents are plain dicts keyed by collection and id, mirroring the Firestore
data model the mobile app reads directly.
"""

from __future__ import annotations

import copy
import operator
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from sqlalchemy import JSON, Column, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from donation_backend.errors import NotFound, Upstream

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: dict) -> bool:
        if self.field not in data:
            return False
        actual = data[self.field]
        try:
            return _OPERATORS[self.op](actual, self.value)
        except TypeError:
            # Firestore never matches range filters across value types.
            return False


@dataclass
class Document:
    id: str
    data: dict = field(default_factory=dict)

    def to_json(self) -> dict:
        return {"id": self.id, **self.data}


class DirectoryStore(Protocol):
    """Interface for the document datastore."""

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        ...

    def add(self, collection: str, data: dict) -> str:
        ...

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...


def _apply_query(
    docs: list[Document],
    filters: Sequence[Filter],
    order_by: Optional[str],
    descending: bool,
    limit: Optional[int],
) -> list[Document]:
    results = [doc for doc in docs if all(f.matches(doc.data) for f in filters)]
    if order_by:
        present = [doc for doc in results if doc.data.get(order_by) is not None]
        missing = [doc for doc in results if doc.data.get(order_by) is None]
        present.sort(key=lambda doc: doc.data[order_by], reverse=descending)
        results = present + missing
    if limit is not None:
        results = results[:limit]
    return results


class InMemoryDirectoryStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.Lock()

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            data = self.collections.get(collection, {}).get(doc_id)
            if data is None:
                return None
            return Document(id=doc_id, data=copy.deepcopy(data))

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        with self._lock:
            docs = [
                Document(id=doc_id, data=copy.deepcopy(data))
                for doc_id, data in self.collections.get(collection, {}).items()
            ]
        return _apply_query(docs, filters, order_by, descending, limit)

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        with self._lock:
            self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        with self._lock:
            existing = self.collections.get(collection, {}).get(doc_id)
            if existing is None:
                raise NotFound(f"{collection}/{doc_id} not found")
            existing.update(copy.deepcopy(updates))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self.collections.get(collection, {}).pop(doc_id, None)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.collections.clear()


_DATETIME_MARKER = "$datetime"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_MARKER: value.isoformat()}
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_DATETIME_MARKER}:
            return datetime.fromisoformat(value[_DATETIME_MARKER])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


class SqlDirectoryStore:
    """
    SQLAlchemy-backed implementation storing each document as a JSON row.
    Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Filtering and ordering run in Python over the collection's rows.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDirectoryStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            with self.Session() as session:
                row = session.get(DocumentRow, (collection, doc_id))
                if not row:
                    return None
                return Document(id=row.doc_id, data=_decode(row.data))
        except SQLAlchemyError as e:
            raise Upstream(f"Database read failed: {e}") from e

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        try:
            with self.Session() as session:
                rows = (
                    session.execute(
                        select(DocumentRow).where(DocumentRow.collection == collection)
                    )
                    .scalars()
                    .all()
                )
                docs = [Document(id=row.doc_id, data=_decode(row.data)) for row in rows]
        except SQLAlchemyError as e:
            raise Upstream(f"Database query failed: {e}") from e
        return _apply_query(docs, filters, order_by, descending, limit)

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        try:
            with self.Session() as session:
                row = session.get(DocumentRow, (collection, doc_id))
                if row:
                    row.data = _encode(data)
                else:
                    session.add(
                        DocumentRow(
                            collection=collection, doc_id=doc_id, data=_encode(data)
                        )
                    )
                session.commit()
        except SQLAlchemyError as e:
            raise Upstream(f"Database write failed: {e}") from e

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        try:
            with self.Session() as session:
                row = session.get(DocumentRow, (collection, doc_id))
                if not row:
                    raise NotFound(f"{collection}/{doc_id} not found")
                merged = dict(row.data)
                merged.update(_encode(updates))
                # Reassign so SQLAlchemy sees the JSON column as dirty.
                row.data = merged
                session.commit()
        except SQLAlchemyError as e:
            raise Upstream(f"Database write failed: {e}") from e

    def delete(self, collection: str, doc_id: str) -> None:
        try:
            with self.Session() as session:
                row = session.get(DocumentRow, (collection, doc_id))
                if row:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as e:
            raise Upstream(f"Database write failed: {e}") from e


class FirestoreDirectoryStore:
    """Firestore-backed implementation using the firebase-admin client."""

    def __init__(self, client):
        self._client = client

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            snapshot = self._client.collection(collection).document(doc_id).get()
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Firestore read failed: {e}") from e
        if not snapshot.exists:
            return None
        return Document(id=snapshot.id, data=snapshot.to_dict() or {})

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        query = self._client.collection(collection)
        for f in filters:
            query = query.where(filter=FieldFilter(f.field, f.op, f.value))
        if order_by:
            query = query.order_by(
                order_by, direction="DESCENDING" if descending else "ASCENDING"
            )
        if limit is not None:
            query = query.limit(limit)
        try:
            return [
                Document(id=snapshot.id, data=snapshot.to_dict() or {})
                for snapshot in query.stream()
            ]
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Firestore query failed: {e}") from e

    def add(self, collection: str, data: dict) -> str:
        try:
            _, doc_ref = self._client.collection(collection).add(data)
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Firestore write failed: {e}") from e
        return doc_ref.id

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        try:
            self._client.collection(collection).document(doc_id).set(data)
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Firestore write failed: {e}") from e

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        try:
            self._client.collection(collection).document(doc_id).update(updates)
        except google_exceptions.NotFound as e:
            raise NotFound(f"{collection}/{doc_id} not found") from e
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Firestore write failed: {e}") from e

    def delete(self, collection: str, doc_id: str) -> None:
        try:
            self._client.collection(collection).document(doc_id).delete()
        except google_exceptions.GoogleAPICallError as e:
            raise Upstream(f"Firestore write failed: {e}") from e


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    doc_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
