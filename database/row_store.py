import logging
import os
from datetime import date, datetime
from typing import List, Optional, Dict, Any, Iterable

from coaching.config import MEDIA_ROOT, MEDIA_URL
from database.database import db
from database.models import TABLES, new_id

from sqlalchemy import Date, DateTime, inspect
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger()

_OPERATORS = {
    'gte': lambda col, v: col >= v,
    'gt': lambda col, v: col > v,
    'lte': lambda col, v: col <= v,
    'lt': lambda col, v: col < v,
    'ne': lambda col, v: col.is_not(None) if v is None else col != v,
    'in': lambda col, v: col.in_(list(v)),
}


class StoreError(Exception):
    """A remote read or write failed; message is the backend's own text"""


def row_to_dict(obj) -> Dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


class RowStore:
    def __init__(self, session=None, user_id: Optional[str] = None):
        self.session = session or db.get_session()
        self.user_id = user_id

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f'relation "{table}" does not exist')

    def _coerce(self, model, data: Dict[str, Any]) -> Dict[str, Any]:
        """Parse ISO strings for date columns; unknown keys are rejected"""
        columns = {attr.key: attr.columns[0] for attr in inspect(model).column_attrs}
        values = {}
        for key, value in data.items():
            if key not in columns:
                raise StoreError(f'column "{key}" of relation "{model.__tablename__}" does not exist')
            column_type = columns[key].type
            if isinstance(value, str) and isinstance(column_type, DateTime):
                value = datetime.fromisoformat(value)
            elif isinstance(value, str) and isinstance(column_type, Date):
                value = date.fromisoformat(value[:10])
            values[key] = value
        return values

    def _fail(self, action: str, table: str, error: Exception):
        self.session.rollback()
        message = str(getattr(error, 'orig', None) or error)
        logger.error(f"{action} on {table} failed: {message}")
        raise StoreError(message) from error

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
               order: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        model = self._model(table)
        query = self.session.query(model)
        for key, value in (filters or {}).items():
            name, _, op = key.partition('__')
            column = getattr(model, name, None)
            if column is None:
                raise StoreError(f'column "{name}" of relation "{table}" does not exist')
            if op:
                query = query.filter(_OPERATORS[op](column, value))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)
        for key in order or ():
            column = getattr(model, key.lstrip('-'))
            query = query.order_by(column.desc() if key.startswith('-') else column.asc())
        if limit:
            query = query.limit(limit)
        try:
            return [row_to_dict(obj) for obj in query.all()]
        except SQLAlchemyError as e:
            self._fail("select", table, e)

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        rows = self.select(table, {'id': row_id})
        return rows[0] if rows else None

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        values = self._coerce(model, row)
        values.setdefault('id', new_id())
        obj = model(**values)
        try:
            self.session.add(obj)
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("insert", table, e)
        return row_to_dict(obj)

    def update(self, table: str, row_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        values = self._coerce(model, patch)
        values.pop('id', None)
        try:
            obj = self.session.get(model, row_id)
            if obj is None:
                raise StoreError(f"{table} row {row_id} not found")
            for key, value in values.items():
                setattr(obj, key, value)
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("update", table, e)
        return row_to_dict(obj)

    def upsert(self, table: str, row: Dict[str, Any], conflict: Iterable[str] = ('id',)) -> Dict[str, Any]:
        """Insert, or update the row matching every `conflict` column"""
        keys = {key: row[key] for key in conflict if key in row}
        existing = self.select(table, keys) if len(keys) == len(tuple(conflict)) else []
        if existing:
            patch = {k: v for k, v in row.items() if k != 'id' and k not in keys}
            return self.update(table, existing[0]['id'], patch)
        return self.insert(table, row)

    def delete(self, table: str, row_id: str) -> bool:
        model = self._model(table)
        try:
            obj = self.session.get(model, row_id)
            if obj is None:
                return False
            self.session.delete(obj)
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("delete", table, e)
        return True

    def current_user(self) -> Optional[Dict[str, str]]:
        """Identity of the signed-in user, or None"""
        if not self.user_id:
            return None
        user = self.get('users', self.user_id)
        if not user:
            return None
        return {"id": user['id'], "email": user['email']}

    def as_user(self, user_id: Optional[str]) -> "RowStore":
        return RowStore(self.session, user_id=user_id)

    def close(self):
        self.session.close()


class FileStore:
    """Blob storage on the local filesystem, served under MEDIA_URL"""

    def __init__(self, root: str = MEDIA_ROOT, base_url: str = MEDIA_URL):
        self.root = root
        self.base_url = base_url.rstrip('/')

    def upload(self, bucket: str, path: str, blob: bytes) -> str:
        relative = os.path.normpath(os.path.join(bucket, path))
        if relative.startswith('..') or os.path.isabs(relative):
            raise StoreError(f"invalid object path: {path}")
        full_path = os.path.join(self.root, relative)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, 'wb') as f:
            f.write(blob)
        logger.info(f"Stored {len(blob):,} bytes at {full_path}")
        return f"{self.base_url}/{relative.replace(os.sep, '/')}"
