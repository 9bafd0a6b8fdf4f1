from coaching.tree import build_tree, depth_of, descendant_ids, find_node, flatten, subtree_height


def rows():
    return [
        {'id': 'c1', 'parent_id': 'p1', 'sort_order': 1},
        {'id': 'p2', 'parent_id': None, 'sort_order': 0},
        {'id': 'c0', 'parent_id': 'p1', 'sort_order': 0},
        {'id': 'p1', 'parent_id': None, 'sort_order': 1},
        {'id': 'g', 'parent_id': 'c1', 'sort_order': 0},
    ]


def test_build_tree_nests_and_orders():
    tree = build_tree(rows())
    assert [n.id for n in tree] == ['p2', 'p1']
    assert [n.id for n in tree[1].children] == ['c0', 'c1']
    assert [n.id for n in tree[1].children[1].children] == ['g']


def test_flatten_puts_parents_before_descendants():
    flat = [r['id'] for r in flatten(build_tree(rows()))]
    assert flat == ['p2', 'p1', 'c0', 'c1', 'g']
    assert sorted(flat) == sorted(r['id'] for r in rows())


def test_missing_sort_order_sorts_last_in_input_order():
    tree = build_tree([
        {'id': 'a', 'sort_order': None},
        {'id': 'b', 'sort_order': 0},
        {'id': 'c'},
    ])
    assert [n.id for n in tree] == ['b', 'a', 'c']


def test_orphans_become_roots():
    tree = build_tree([{'id': 'x', 'parent_id': 'gone', 'sort_order': 0}])
    assert [n.id for n in tree] == ['x']


def test_cycles_do_not_lose_rows():
    tree = build_tree([
        {'id': 'a', 'parent_id': 'b', 'sort_order': 0},
        {'id': 'b', 'parent_id': 'a', 'sort_order': 1},
    ])
    assert sorted(r['id'] for r in flatten(tree)) == ['a', 'b']


def test_to_dict_nests_children():
    node = find_node(build_tree(rows()), 'p1')
    data = node.to_dict()
    assert [c['id'] for c in data['children']] == ['c0', 'c1']


def test_descendants_depth_and_height():
    data = rows()
    assert descendant_ids(data, 'p1') == ['g', 'c1', 'c0']
    assert depth_of(data, 'g') == 2
    assert depth_of(data, 'p2') == 0
    assert subtree_height(data, 'p1') == 3
    assert subtree_height(data, 'p2') == 1
