from datetime import date


def test_put_get_and_dirty_flags(cache):
    cache.put('habits', {'id': 'h1', 'name': 'Read', 'start_date': date(2024, 1, 1)})
    assert cache.get('habits', 'h1') == {'id': 'h1', 'name': 'Read', 'start_date': '2024-01-01'}
    assert cache.is_dirty('habits', 'h1')

    cache.mark_clean('habits', 'h1')
    assert not cache.is_dirty('habits', 'h1')
    assert cache.dirty('habits') == []


def test_delete_leaves_a_tombstone_until_acknowledged(cache):
    cache.put('habits', {'id': 'h1', 'name': 'Read'}, dirty=False)
    cache.delete('habits', 'h1')
    assert cache.get('habits', 'h1') is None
    assert cache.dirty('habits') == [{'row': {'id': 'h1', 'name': 'Read'}, 'deleted': True}]

    cache.mark_clean('habits', 'h1')
    assert cache.dirty('habits') == []
    assert cache.rows('habits') == []


def test_clean_delete_and_purge(cache):
    cache.put('habits', {'id': 'h1', 'name': 'A'}, dirty=False)
    cache.put('habits', {'id': 'h2', 'name': 'B'})
    cache.delete('habits', 'h1', dirty=False)
    cache.purge('habits', 'h2')
    assert cache.rows('habits') == []
    assert cache.dirty('habits') == []


def test_tables_are_separate(cache):
    cache.put('habits', {'id': 'x', 'name': 'Habit'})
    cache.put('habit_completions', {'id': 'x', 'habit_id': 'h'})
    assert cache.get('habits', 'x')['name'] == 'Habit'
    assert cache.get('habit_completions', 'x')['habit_id'] == 'h'


def test_live_collection_follows_changes(cache):
    seen = []
    live = cache.query('habit_completions', {'habit_id': 'h1'})
    live.subscribe(lambda rows: seen.append(len(rows)))

    cache.put('habit_completions', {'id': 'c1', 'habit_id': 'h1', 'completed_date': date(2024, 1, 1)})
    cache.put('habit_completions', {'id': 'c2', 'habit_id': 'other'})
    assert len(live) == 1
    assert live[0]['completed_date'] == '2024-01-01'

    cache.delete('habit_completions', 'c1')
    assert list(live) == []
    assert seen == [0, 1, 1, 0]

    live.close()
    cache.put('habit_completions', {'id': 'c3', 'habit_id': 'h1'})
    assert seen == [0, 1, 1, 0]
