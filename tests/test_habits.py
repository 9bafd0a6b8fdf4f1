from datetime import date, timedelta

import pytest

from coaching.errors import NotFoundError, ValidationError
from coaching.habits import HabitTracker, compute_streaks, period_index
from coaching.ordering import Edge

MONDAY = date(2024, 1, 1)


@pytest.fixture
def tracker(store, cache):
    return HabitTracker(store, cache=cache)


def days(*offsets):
    return [MONDAY + timedelta(days=n) for n in offsets]


def test_period_index():
    assert period_index(MONDAY, 'weekly') == period_index(MONDAY + timedelta(days=6), 'weekly')
    assert period_index(MONDAY + timedelta(days=7), 'weekly') == period_index(MONDAY, 'weekly') + 1
    assert period_index(date(2023, 12, 31), 'monthly') + 1 == period_index(MONDAY, 'monthly')


def test_daily_streaks():
    today = MONDAY + timedelta(days=9)
    assert compute_streaks([], 'daily', today) == (0, 0)
    assert compute_streaks(days(0, 1, 2, 5, 6, 7, 8, 9), 'daily', today) == (5, 5)
    # Yesterday still counts until today is over
    assert compute_streaks(days(7, 8), 'daily', today) == (2, 2)
    assert compute_streaks(days(0, 1, 2), 'daily', today) == (0, 3)


def test_weekly_and_monthly_streaks():
    assert compute_streaks(days(0, 8, 15), 'weekly', MONDAY + timedelta(days=16)) == (3, 3)
    assert compute_streaks([date(2024, 1, 5), date(2024, 2, 9)], 'monthly', date(2024, 3, 1)) == (2, 2)


def test_create_and_list(tracker, student):
    read = tracker.create_habit(student['id'], 'Read', target_type='count', target_value=20)
    run = tracker.create_habit(student['id'], 'Run')
    assert [h['id'] for h in tracker.habits(student['id'])] == [read['id'], run['id']]
    assert run['sort_order'] == 1


@pytest.mark.parametrize('fields', [
    {'name': ''},
    {'name': 'Read', 'frequency': 'hourly'},
    {'name': 'Read', 'target_type': 'pages'},
    {'name': 'Read', 'target_type': 'count', 'target_value': 0},
])
def test_invalid_habits(tracker, student, fields):
    name = fields.pop('name')
    with pytest.raises(ValidationError):
        tracker.create_habit(student['id'], name, **fields)


def test_toggle_twice_is_a_no_op(tracker, store, student):
    habit = tracker.create_habit(student['id'], 'Meditate')
    day = date.today()

    assert tracker.toggle(habit['id'], day) is True
    assert len(store.select('habit_completions', {'habit_id': habit['id']})) == 1
    assert store.get('habits', habit['id'])['current_streak'] == 1

    assert tracker.toggle(habit['id'], day) is False
    assert store.select('habit_completions', {'habit_id': habit['id']}) == []
    assert store.get('habits', habit['id'])['current_streak'] == 0


def test_undoing_a_completion_lowers_every_counter(tracker, store, student):
    habit = tracker.create_habit(student['id'], 'Floss')
    today = date.today()
    tracker.set_completed(habit['id'], today - timedelta(days=1))
    tracker.set_completed(habit['id'], today)
    assert store.get('habits', habit['id'])['longest_streak'] == 2

    tracker.set_completed(habit['id'], today, completed=False)
    saved = store.get('habits', habit['id'])
    assert (saved['current_streak'], saved['longest_streak'], saved['total_completions']) == (1, 1, 1)

    tracker.set_completed(habit['id'], today - timedelta(days=1), completed=False)
    saved = store.get('habits', habit['id'])
    assert (saved['current_streak'], saved['longest_streak'], saved['total_completions']) == (0, 0, 0)


def test_completing_twice_keeps_one_row(tracker, store, student):
    habit = tracker.create_habit(student['id'], 'Stretch')
    day = date.today()
    tracker.set_completed(habit['id'], day, completed=True)
    tracker.set_completed(habit['id'], day, completed=True)
    assert len(store.select('habit_completions', {'habit_id': habit['id']})) == 1
    assert store.get('habits', habit['id'])['total_completions'] == 1


def test_streak_is_recomputed(tracker, store, student):
    habit = tracker.create_habit(student['id'], 'Walk')
    today = date.today()
    for offset in (2, 1, 0):
        tracker.set_completed(habit['id'], today - timedelta(days=offset))
    saved = store.get('habits', habit['id'])
    assert (saved['current_streak'], saved['longest_streak'], saved['total_completions']) == (3, 3, 3)


def test_reorder(tracker, student):
    a = tracker.create_habit(student['id'], 'A')
    b = tracker.create_habit(student['id'], 'B')
    c = tracker.create_habit(student['id'], 'C')
    assert tracker.reorder(student['id'], c['id'], a['id'], Edge.BEFORE) == 3
    assert [h['name'] for h in tracker.habits(student['id'])] == ['C', 'A', 'B']


def test_update_and_delete(tracker, store, student):
    habit = tracker.create_habit(student['id'], 'Journal')
    tracker.toggle(habit['id'], date.today())
    tracker.update_habit(habit['id'], {'name': 'Journal nightly', 'color': 'amber'})
    assert store.get('habits', habit['id'])['name'] == 'Journal nightly'

    tracker.delete_habit(habit['id'])
    assert store.get('habits', habit['id']) is None
    assert store.select('habit_completions') == []
    with pytest.raises(NotFoundError):
        tracker.get_habit(habit['id'])


def test_week_grid(tracker, student):
    habit = tracker.create_habit(student['id'], 'Read')
    tracker.set_completed(habit['id'], MONDAY + timedelta(days=2))
    grid = tracker.week_grid(student['id'], MONDAY + timedelta(days=4))
    assert grid[0]['habit']['id'] == habit['id']
    assert grid[0]['days'] == [False, False, True, False, False, False, False]


def test_toggle_works_offline_and_resumes(store, cache, student, monkeypatch):
    online = HabitTracker(store, cache=cache)
    habit = online.create_habit(student['id'], 'Practice')

    offline = HabitTracker(store, cache=cache)
    offline.habits(student['id'])

    def unreachable(*args, **kwargs):
        from database.row_store import StoreError
        raise StoreError('could not connect to server')

    monkeypatch.setattr(store, 'insert', unreachable)
    monkeypatch.setattr(store, 'update', unreachable)
    assert offline.toggle(habit['id'], date.today()) is True
    assert cache.dirty('habit_completions')
    assert store.select('habit_completions') == []
    monkeypatch.undo()

    restarted = HabitTracker(store, cache=cache)
    assert restarted.resume() >= 1
    assert len(store.select('habit_completions', {'habit_id': habit['id']})) == 1
    assert not cache.dirty('habit_completions')
