"""Key/value stores backing the persisted form snapshot.

The form keeps a string copy of every control value keyed by control id. In
the browser shell that copy lives in a database table, one namespace per
session token; the CLI and tests use the in-memory store. Any SQLAlchemy URL
works for the database store (SQLite by default, PostgreSQL/MySQL for shared
deployments).
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Protocol

from sqlalchemy import Column, DateTime, String, Text, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DEFAULT_DATABASE_URL
from .errors import PersistenceError

Base = declarative_base()


class Storage(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryStorage:
    """Dict-backed store; lives as long as the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()

    def as_dict(self) -> Dict[str, str]:
        return dict(self._data)


class FormSnapshotModel(Base):
    __tablename__ = "form_snapshots"

    user_token = Column(String(64), primary_key=True)
    control_id = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SnapshotDatabase:
    """Database-backed snapshot table shared by every session."""

    def __init__(self, url: str) -> None:
        try:
            self._engine = create_engine(url, future=True)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Snapshot store unavailable: {exc}") from exc
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    def storage_for(self, user_token: str) -> "SqlStorage":
        return SqlStorage(self, user_token)

    def get(self, user_token: str, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                row = session.get(FormSnapshotModel, (user_token, key))
                return row.value if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read {key}: {exc}", key=key) from exc

    def set(self, user_token: str, key: str, value: str) -> None:
        try:
            with self._session_factory() as session:
                row = session.get(FormSnapshotModel, (user_token, key))
                if row is None:
                    session.add(FormSnapshotModel(user_token=user_token, control_id=key, value=value))
                else:
                    row.value = value
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not write {key}: {exc}", key=key) from exc

    def clear(self, user_token: str) -> None:
        try:
            with self._session_factory() as session:
                session.execute(
                    delete(FormSnapshotModel).where(FormSnapshotModel.user_token == user_token)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not clear snapshot: {exc}") from exc

    def keys(self, user_token: str) -> list[str]:
        with self._session_factory() as session:
            rows = session.execute(
                select(FormSnapshotModel.control_id).where(FormSnapshotModel.user_token == user_token)
            ).scalars()
            return list(rows)


class SqlStorage:
    """One session token's view of :class:`SnapshotDatabase`."""

    def __init__(self, database: SnapshotDatabase, user_token: str) -> None:
        self._database = database
        self._user_token = user_token

    def get(self, key: str) -> Optional[str]:
        return self._database.get(self._user_token, key)

    def set(self, key: str, value: str) -> None:
        self._database.set(self._user_token, key, value)

    def clear(self) -> None:
        self._database.clear(self._user_token)


def create_database_from_env(url: str | None) -> SnapshotDatabase:
    return SnapshotDatabase(url or DEFAULT_DATABASE_URL)
