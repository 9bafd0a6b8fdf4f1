import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from coaching.errors import NotFoundError, ValidationError
from coaching.ordering import Edge, changed_orders, reorder
from coaching.sync import SyncAdapter
from database.local_cache import LocalCache
from database.row_store import RowStore

logger = logging.getLogger()

FREQUENCIES = ('daily', 'weekly', 'monthly')
TARGET_TYPES = ('boolean', 'count', 'duration')


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def period_index(day: date, frequency: str) -> int:
    if frequency == 'weekly':
        return (day - timedelta(days=day.weekday())).toordinal() // 7
    if frequency == 'monthly':
        return day.year * 12 + day.month
    return day.toordinal()


def compute_streaks(days: Iterable[date], frequency: str = 'daily', today: date = None) -> Tuple[int, int]:
    """(current, longest) run of consecutive periods with at least one completion.

    The current period still counts as open: a daily streak ending yesterday
    is alive until today is over.
    """
    periods = sorted({period_index(d, frequency) for d in days})
    if not periods:
        return 0, 0

    longest, run = 1, 1
    for previous, current in zip(periods, periods[1:]):
        run = run + 1 if current == previous + 1 else 1
        longest = max(longest, run)

    now = period_index(today or date.today(), frequency)
    if periods[-1] < now - 1:
        return 0, longest
    current = 1
    for index in range(len(periods) - 1, 0, -1):
        if periods[index] - 1 != periods[index - 1]:
            break
        current += 1
    return current, longest


class HabitTracker:
    def __init__(self, store: RowStore = None, cache: LocalCache = None, on_error: Callable = None):
        self.store = store or RowStore()
        self.sync = SyncAdapter(self.store, cache=cache, on_error=on_error)

    def resume(self) -> int:
        """Push whatever a previous offline session left behind"""
        self.sync.resume_dirty()
        return self.sync.flush()

    def _load(self, table: str, user_id: str) -> List[Dict[str, Any]]:
        if self.sync.cache is not None:
            return self.sync.pull(table, {'user_id': user_id})
        return self.sync.load(table, {'user_id': user_id})

    def habits(self, user_id: str, include_inactive: bool = False) -> List[Dict[str, Any]]:
        rows = [h for h in self._load('habits', user_id) if include_inactive or h.get('is_active', True)]
        return sorted(rows, key=lambda h: h.get('sort_order') or 0)

    def completions(self, user_id: str) -> List[Dict[str, Any]]:
        return self._load('habit_completions', user_id)

    def _habit(self, habit_id: str) -> Dict[str, Any]:
        habit = self.sync.get('habits', habit_id)
        if habit is None:
            habit = self.store.get('habits', habit_id)
            if habit is None:
                raise NotFoundError(f"Habit {habit_id} not found")
            self.sync.rows.setdefault('habits', {})[habit_id] = habit
        return habit

    def get_habit(self, habit_id: str) -> Dict[str, Any]:
        return dict(self._habit(habit_id))

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if 'name' in data and not (data['name'] or '').strip():
            raise ValidationError("Habit name is required")
        if 'frequency' in data and data['frequency'] not in FREQUENCIES:
            raise ValidationError(f"Unknown frequency: {data['frequency']}")
        if 'target_type' in data and data['target_type'] not in TARGET_TYPES:
            raise ValidationError(f"Unknown target type: {data['target_type']}")
        if data.get('target_type', 'boolean') != 'boolean' and not data.get('target_value', 1):
            raise ValidationError("Count and duration habits need a target value")
        if 'start_date' in data:
            data['start_date'] = _as_date(data['start_date'])
        return data

    def create_habit(self, user_id: str, name: str, **fields) -> Dict[str, Any]:
        data = self._validate({'name': name, **fields})
        existing = self.habits(user_id, include_inactive=True)
        habit = self.sync.insert('habits', {
            'user_id': user_id,
            'frequency': 'daily',
            'target_type': 'boolean',
            'current_streak': 0,
            'longest_streak': 0,
            'total_completions': 0,
            'is_active': True,
            'start_date': date.today(),
            **data,
            'sort_order': len(existing),
        })
        self.sync.flush()
        logger.info(f"🌱 Habit created: {habit['name']}")
        return habit

    def update_habit(self, habit_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self._habit(habit_id)
        patch = self._validate({k: v for k, v in patch.items() if k not in ('id', 'user_id')})
        habit = self.sync.update('habits', habit_id, patch)
        self.sync.flush()
        return habit

    def delete_habit(self, habit_id: str):
        habit = self._habit(habit_id)
        self.habits(habit['user_id'], include_inactive=True)
        for completion in self.completions(habit['user_id']):
            if completion['habit_id'] == habit_id:
                self.sync.delete('habit_completions', completion['id'], cascade=False)
        self.sync.delete('habits', habit_id, cascade=False)
        self.sync.flush()

    def reorder(self, user_id: str, source_id: str, target_id: str, edge: Edge = Edge.BEFORE) -> int:
        habits = self.habits(user_id, include_inactive=True)
        ids = [h['id'] for h in habits]
        new_order = reorder(ids, source_id, target_id, edge)
        changed = changed_orders(new_order, {h['id']: h.get('sort_order') for h in habits})
        for habit_id, position in changed.items():
            self.sync.update('habits', habit_id, {'sort_order': position})
        self.sync.flush()
        return len(changed)

    def _completion(self, habit_id: str, day: date) -> Optional[Dict[str, Any]]:
        for row in self.sync.all('habit_completions'):
            if row['habit_id'] == habit_id and _as_date(row['completed_date']) == day:
                return row
        return None

    def set_completed(self, habit_id: str, day=None, completed: bool = True, count: int = 1,
                      duration: int = None, notes: str = None) -> bool:
        """Bring the completion for `day` into the requested state; repeated calls change nothing"""
        habit = self._habit(habit_id)
        day = _as_date(day) or date.today()
        if 'habit_completions' not in self.sync.rows:
            self.completions(habit['user_id'])

        existing = self._completion(habit_id, day)
        if completed and existing is None:
            self.sync.insert('habit_completions', {
                'habit_id': habit_id,
                'user_id': habit['user_id'],
                'completed_date': day,
                'count': count,
                'duration': duration,
                'notes': notes,
            })
        elif not completed and existing is not None:
            self.sync.delete('habit_completions', existing['id'], cascade=False)
        else:
            return completed

        self.recompute(habit_id)
        self.sync.flush()
        return completed

    def toggle(self, habit_id: str, day=None, **details) -> bool:
        """Flip the completion for `day`; returns the new state"""
        habit = self._habit(habit_id)
        day = _as_date(day) or date.today()
        if 'habit_completions' not in self.sync.rows:
            self.completions(habit['user_id'])
        done = self._completion(habit_id, day) is not None
        return self.set_completed(habit_id, day, completed=not done, **details)

    def recompute(self, habit_id: str, today: date = None) -> Dict[str, int]:
        habit = self._habit(habit_id)
        days = [_as_date(c['completed_date']) for c in self.sync.all('habit_completions')
                if c['habit_id'] == habit_id]
        current, longest = compute_streaks(days, habit.get('frequency') or 'daily', today)
        stats = {
            'current_streak': current,
            'longest_streak': longest,
            'total_completions': len(days),
        }
        if any(habit.get(k) != v for k, v in stats.items()):
            self.sync.update('habits', habit_id, stats)
        return stats

    def week_grid(self, user_id: str, week_start=None) -> List[Dict[str, Any]]:
        """Seven-day completion grid per active habit, Monday first"""
        week_start = _as_date(week_start) or date.today()
        week_start -= timedelta(days=week_start.weekday())
        days = [week_start + timedelta(days=n) for n in range(7)]
        done = {(c['habit_id'], _as_date(c['completed_date'])) for c in self.completions(user_id)}
        return [
            {'habit': habit, 'days': [(habit['id'], day) in done for day in days]}
            for habit in self.habits(user_id)
        ]
