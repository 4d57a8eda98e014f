"""Key-value snapshot backends.

The score engine only needs ``get``/``set``/``delete`` of one opaque string per
key; anything honoring :class:`SnapshotBackend` can be plugged in.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from sqlalchemy.orm import sessionmaker

from app.database import GameSnapshot, init_db, make_engine
from app.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class SnapshotBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemorySnapshotBackend:
    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class SqlSnapshotBackend:
    def __init__(self, session_maker: sessionmaker):
        self.session_maker = session_maker

    @classmethod
    def from_url(cls, database_url: str) -> "SqlSnapshotBackend":
        return cls(init_db(make_engine(database_url)))

    def get(self, key: str) -> Optional[str]:
        with self.session_maker() as session:
            row = session.get(GameSnapshot, key)
            return row.payload if row else None

    def set(self, key: str, value: str) -> None:
        with self.session_maker.begin() as session:
            row = session.get(GameSnapshot, key)
            if row is None:
                session.add(GameSnapshot(key=key, payload=value))
            else:
                row.payload = value

    def delete(self, key: str) -> None:
        with self.session_maker.begin() as session:
            row = session.get(GameSnapshot, key)
            if row is not None:
                session.delete(row)


_backend: Optional[SnapshotBackend] = None


def build_backend(settings: Settings) -> SnapshotBackend:
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory snapshot storage; games are lost on restart")
        return MemorySnapshotBackend()
    return SqlSnapshotBackend.from_url(settings.database_url)


def get_backend() -> SnapshotBackend:
    global _backend
    if _backend is None:
        _backend = build_backend(get_settings())
    return _backend


def set_backend(backend: Optional[SnapshotBackend]) -> None:
    global _backend
    _backend = backend
