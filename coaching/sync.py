import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from coaching.config import OUTBOX_MAX_ATTEMPTS
from coaching.tree import descendant_ids
from coaching.ordering import changed_orders
from database.local_cache import LocalCache, row_matches
from database.models import new_id
from database.row_store import RowStore, StoreError

logger = logging.getLogger()

MIRRORED_TABLES = ('habits', 'habit_completions')


@dataclass
class Intent:
    op: str  # insert, update, upsert, delete
    table: str
    row_id: str
    payload: Optional[Dict[str, Any]] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.row_id)


def scope_key(row: Dict[str, Any]) -> tuple:
    """Sibling set of an ordered row: parent, else project, else owner and day"""
    if row.get('parent_id'):
        return ('parent', row['parent_id'])
    if row.get('project_id'):
        return ('project', row['project_id'])
    due = row.get('due_date')
    return ('day', row.get('user_id'), str(due)[:10] if due else None)


class SyncAdapter:
    def __init__(self, store: RowStore, cache: Optional[LocalCache] = None,
                 max_attempts: int = OUTBOX_MAX_ATTEMPTS,
                 on_error: Optional[Callable[[Intent, str], None]] = None,
                 mirrored: Iterable[str] = MIRRORED_TABLES):
        self.store = store
        self.cache = cache
        self.max_attempts = max(1, max_attempts)
        self.on_error = on_error
        self.mirrored = set(mirrored) if cache is not None else set()

        self.rows: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.outbox: List[Intent] = []
        self.failed: List[Intent] = []
        self._queries: Dict[str, Tuple[Optional[Dict[str, Any]], Optional[List[str]]]] = {}

    # Reads

    def load(self, table: str, filters: Optional[Dict[str, Any]] = None,
             order: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Replace the local view of `table` with the remote rows matching `filters`"""
        self._queries[table] = (filters, order)
        try:
            rows = self.store.select(table, filters, order)
        except StoreError as e:
            logger.error(f"Loading {table} failed, keeping an empty view: {e}")
            rows = []
        self.rows[table] = {row['id']: dict(row) for row in rows}
        return self.all(table)

    def reload(self, table: Optional[str] = None):
        """Refetch remote state, dropping unconfirmed local edits for the table"""
        tables = [table] if table else list(self._queries)
        for name in tables:
            filters, order = self._queries.get(name, (None, None))
            self.load(name, filters, order)

    def all(self, table: str) -> List[Dict[str, Any]]:
        return list(self.rows.get(table, {}).values())

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        return self.rows.get(table, {}).get(row_id)

    # Optimistic writes

    def _queue(self, intent: Intent):
        self.outbox.append(intent)
        if intent.table in self.mirrored:
            if intent.op == 'delete':
                self.cache.delete(intent.table, intent.row_id, dirty=True)
            else:
                self.cache.put(intent.table, self.rows[intent.table][intent.row_id], dirty=True)

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(row)
        row.setdefault('id', new_id())
        self.rows.setdefault(table, {})[row['id']] = row
        self._queue(Intent('insert', table, row['id'], dict(row)))
        return row

    def _known(self, table: str, row_id: str) -> Dict[str, Any]:
        """Local row, fetched from the cache or the store when not loaded yet"""
        local = self.rows.setdefault(table, {})
        if row_id not in local:
            row = self.cache.get(table, row_id) if table in self.mirrored else None
            if row is None:
                row = self.store.get(table, row_id)
            if row is None:
                raise StoreError(f"{table} row {row_id} not found")
            local[row_id] = dict(row)
        return local[row_id]

    def update(self, table: str, row_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        row = self._known(table, row_id)
        row.update(patch)
        self._queue(Intent('update', table, row_id, dict(patch)))
        return row

    def delete(self, table: str, row_id: str, cascade: bool = True) -> List[str]:
        """Delete a row (and its subtree); remaining siblings are renumbered"""
        local = self.rows.setdefault(table, {})
        row = local.get(row_id)
        ids = (descendant_ids(local.values(), row_id) if cascade else []) + [row_id]
        for item_id in ids:
            local.pop(item_id, None)
            self._queue(Intent('delete', table, item_id))

        if row is not None and 'sort_order' in row:
            key = scope_key(row)
            siblings = sorted(
                (r for r in local.values() if scope_key(r) == key),
                key=lambda r: (r.get('sort_order') is None, r.get('sort_order') or 0),
            )
            ids_in_order = [r['id'] for r in siblings]
            current = {r['id']: r.get('sort_order') for r in siblings}
            for sibling_id, position in changed_orders(ids_in_order, current).items():
                self.update(table, sibling_id, {'sort_order': position})
        return ids

    def apply_plan(self, table: str, plan) -> int:
        for update in plan.updates:
            self.update(table, update.id, update.patch)
        return len(plan.updates)

    # Delivery

    @property
    def pending(self) -> int:
        return len(self.outbox)

    def _deliver(self, intent: Intent):
        if intent.op == 'insert':
            self.store.insert(intent.table, intent.payload)
        elif intent.op == 'update':
            self.store.update(intent.table, intent.row_id, intent.payload)
        elif intent.op == 'upsert':
            self.store.upsert(intent.table, intent.payload)
        elif intent.op == 'delete':
            self.store.delete(intent.table, intent.row_id)
        else:
            raise ValueError(f"Unknown intent {intent.op}")

    def flush(self) -> int:
        """Deliver queued intents in order; returns how many were acknowledged"""
        blocked = {intent.key for intent in self.failed}
        remaining: List[Intent] = []
        delivered = 0

        for position, intent in enumerate(self.outbox):
            if intent.key in blocked:
                remaining.append(intent)
                continue
            try:
                self._deliver(intent)
            except StoreError as e:
                intent.attempts += 1
                intent.error = str(e)
                blocked.add(intent.key)
                if intent.attempts >= self.max_attempts:
                    self._park(intent)
                else:
                    logger.warning(f"{intent.op} {intent.table}/{intent.row_id} failed, will retry: {e}")
                    remaining.append(intent)
                continue
            delivered += 1
            later = remaining + self.outbox[position + 1:]
            if intent.table in self.mirrored and not any(i.key == intent.key for i in later):
                self.cache.mark_clean(intent.table, intent.row_id)

        self.outbox = remaining
        if delivered:
            logger.info(f"Synced {delivered} change(s), {len(self.outbox)} pending, {len(self.failed)} failed")
        return delivered

    def _park(self, intent: Intent):
        self.failed.append(intent)
        logger.error(f"❌ {intent.op} {intent.table}/{intent.row_id} failed after "
                     f"{intent.attempts} attempt(s): {intent.error}")
        if self.on_error:
            self.on_error(intent, intent.error)

    def retry_failed(self) -> int:
        """Put parked intents back at the front of the outbox and flush"""
        parked, self.failed = self.failed, []
        for intent in parked:
            intent.attempts = 0
        self.outbox = parked + self.outbox
        return self.flush()

    def discard_failed(self) -> List[Intent]:
        """Give up on parked intents; local rows keep their optimistic values until reload"""
        parked, self.failed = self.failed, []
        for intent in parked:
            if intent.table in self.mirrored and not any(i.key == intent.key for i in self.outbox):
                if intent.op == 'insert':
                    self.cache.purge(intent.table, intent.row_id)
                else:
                    self.cache.mark_clean(intent.table, intent.row_id)
        return parked

    # Offline mirror

    def resume_dirty(self) -> int:
        """Re-queue cached rows a previous run never got acknowledged"""
        queued = 0
        for table in self.mirrored:
            for entry in self.cache.dirty(table):
                row = entry['row']
                if entry['deleted']:
                    self.rows.setdefault(table, {}).pop(row['id'], None)
                    self.outbox.append(Intent('delete', table, row['id']))
                else:
                    self.rows.setdefault(table, {})[row['id']] = dict(row)
                    self.outbox.append(Intent('upsert', table, row['id'], dict(row)))
                queued += 1
        if queued:
            logger.info(f"Resuming {queued} offline change(s)")
        return queued

    def pull(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Merge remote rows into the cache; dirty local rows always win"""
        if table not in self.mirrored:
            return self.load(table, filters)
        try:
            remote = self.store.select(table, filters)
        except StoreError as e:
            logger.warning(f"Pull of {table} failed, serving cached rows: {e}")
            remote = None

        if remote is not None:
            remote_ids = set()
            for row in remote:
                remote_ids.add(row['id'])
                if not self.cache.is_dirty(table, row['id']):
                    self.cache.put(table, row, dirty=False)
            for row in self.cache.rows(table):
                if row['id'] not in remote_ids and row_matches(row, filters) \
                        and not self.cache.is_dirty(table, row['id']):
                    self.cache.purge(table, row['id'])

        rows = [row for row in self.cache.rows(table) if row_matches(row, filters)]
        self.rows[table] = {row['id']: row for row in rows}
        self._queries[table] = (filters, None)
        return rows
