import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from coaching.config import LOCAL_CACHE_URL

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

logger = logging.getLogger()

CacheBase = declarative_base()


class CachedRow(CacheBase):
    __tablename__ = 'cached_rows'

    table_name = Column(String(64), primary_key=True)
    row_id = Column(String(36), primary_key=True)
    data = Column(JSON, nullable=False)
    is_dirty = Column(Integer, default=0)  # 0: synced, 1: pending
    is_deleted = Column(Boolean, default=False)
    last_synced_at = Column(DateTime)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


def _jsonable(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, (date, datetime)) else v for k, v in row.items()}


def row_matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    return all(row.get(k) == (v.isoformat() if isinstance(v, (date, datetime)) else v)
               for k, v in (filters or {}).items())


class LiveCollection:
    """Query result that refreshes itself whenever its table changes"""

    def __init__(self, cache: "LocalCache", table: str, filters: Optional[Dict[str, Any]] = None):
        self.cache = cache
        self.table = table
        self.filters = dict(filters or {})
        self.rows: List[Dict[str, Any]] = []
        self._subscribers: List[Callable[[List[Dict[str, Any]]], None]] = []
        self.refresh()

    def refresh(self):
        self.rows = [row for row in self.cache.rows(self.table) if row_matches(row, self.filters)]
        for callback in self._subscribers:
            callback(self.rows)

    def subscribe(self, callback: Callable[[List[Dict[str, Any]]], None]):
        self._subscribers.append(callback)
        callback(self.rows)

    def close(self):
        self._subscribers.clear()
        self.cache._unregister(self)

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)

    def __getitem__(self, index):
        return self.rows[index]


class LocalCache:
    def __init__(self, connection_string: str = None):
        url = connection_string or LOCAL_CACHE_URL
        engine_kwargs = {}
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        self.engine = create_engine(url, **engine_kwargs)
        CacheBase.metadata.create_all(bind=self.engine)
        self.session = sessionmaker(bind=self.engine)()
        self._collections: Dict[str, List[LiveCollection]] = {}

    def _notify(self, table: str):
        for collection in list(self._collections.get(table, [])):
            collection.refresh()

    def _unregister(self, collection: LiveCollection):
        live = self._collections.get(collection.table, [])
        if collection in live:
            live.remove(collection)

    def _entry(self, table: str, row_id: str) -> Optional[CachedRow]:
        return self.session.get(CachedRow, (table, row_id))

    def rows(self, table: str) -> List[Dict[str, Any]]:
        entries = (
            self.session.query(CachedRow)
            .filter(CachedRow.table_name == table)
            .filter(CachedRow.is_deleted == False)  # noqa: E712
            .all()
        )
        return [dict(entry.data) for entry in entries]

    def query(self, table: str, filters: Optional[Dict[str, Any]] = None) -> LiveCollection:
        collection = LiveCollection(self, table, filters)
        self._collections.setdefault(table, []).append(collection)
        return collection

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entry(table, row_id)
        if entry is None or entry.is_deleted:
            return None
        return dict(entry.data)

    def put(self, table: str, row: Dict[str, Any], dirty: bool = True):
        entry = self._entry(table, row['id'])
        if entry is None:
            entry = CachedRow(table_name=table, row_id=row['id'])
            self.session.add(entry)
        entry.data = _jsonable(row)
        entry.is_deleted = False
        entry.is_dirty = 1 if dirty else 0
        if not dirty:
            entry.last_synced_at = datetime.utcnow()
        self.session.commit()
        self._notify(table)

    def delete(self, table: str, row_id: str, dirty: bool = True):
        """Tombstone the row until the remote delete is acknowledged"""
        entry = self._entry(table, row_id)
        if entry is None:
            return
        if dirty:
            entry.is_deleted = True
            entry.is_dirty = 1
        else:
            self.session.delete(entry)
        self.session.commit()
        self._notify(table)

    def dirty(self, table: str) -> List[Dict[str, Any]]:
        """Pending local changes as {'row': ..., 'deleted': bool}"""
        entries = (
            self.session.query(CachedRow)
            .filter(CachedRow.table_name == table)
            .filter(CachedRow.is_dirty == 1)
            .all()
        )
        return [{'row': dict(entry.data), 'deleted': entry.is_deleted} for entry in entries]

    def is_dirty(self, table: str, row_id: str) -> bool:
        entry = self._entry(table, row_id)
        return bool(entry and entry.is_dirty)

    def mark_clean(self, table: str, row_id: str):
        entry = self._entry(table, row_id)
        if entry is None:
            return
        if entry.is_deleted:
            self.session.delete(entry)
        else:
            entry.is_dirty = 0
            entry.last_synced_at = datetime.utcnow()
        self.session.commit()

    def purge(self, table: str, row_id: str):
        entry = self._entry(table, row_id)
        if entry is not None:
            self.session.delete(entry)
            self.session.commit()
            self._notify(table)

    def close(self):
        self.session.close()
