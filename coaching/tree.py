from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional


@dataclass
class TreeNode:
    row: Dict[str, Any]
    children: List["TreeNode"] = field(default_factory=list)

    @property
    def id(self):
        return self.row['id']

    def to_dict(self) -> Dict[str, Any]:
        return {**self.row, 'children': [child.to_dict() for child in self.children]}


def _sort_key(indexed_row):
    position, row = indexed_row
    order = row.get('sort_order')
    return (order is None, order if order is not None else 0, position)


def _sorted(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [row for _, row in sorted(enumerate(rows), key=_sort_key)]


def build_tree(rows: Iterable[Dict[str, Any]]) -> List[TreeNode]:
    """Nest flat rows by parent_id, each level ordered by sort_order"""
    rows = list(rows)
    ids = {row['id'] for row in rows}
    children_of: Dict[Optional[str], List[Dict[str, Any]]] = {}
    roots = []
    for row in rows:
        parent_id = row.get('parent_id')
        if parent_id and parent_id in ids and parent_id != row['id']:
            children_of.setdefault(parent_id, []).append(row)
        else:
            roots.append(row)

    attached = set()

    def attach(row) -> TreeNode:
        attached.add(row['id'])
        node = TreeNode(row)
        for child in _sorted(children_of.get(row['id'], [])):
            if child['id'] not in attached:
                node.children.append(attach(child))
        return node

    tree = [attach(row) for row in _sorted(roots)]

    # Rows caught in a parent cycle never hang off a root; surface them as roots
    for row in _sorted(rows):
        if row['id'] not in attached:
            tree.append(attach(row))
    return tree


def flatten(nodes: Iterable[TreeNode]) -> List[Dict[str, Any]]:
    """Pre-order: every parent immediately followed by its descendants"""
    result = []
    for node in nodes:
        result.append(node.row)
        result.extend(flatten(node.children))
    return result


def find_node(nodes: Iterable[TreeNode], node_id: str) -> Optional[TreeNode]:
    for node in nodes:
        if node.id == node_id:
            return node
        found = find_node(node.children, node_id)
        if found:
            return found
    return None


def descendant_ids(rows: Iterable[Dict[str, Any]], root_id: str) -> List[str]:
    """Ids below `root_id`, deepest first so children can be deleted before parents"""
    children_of: Dict[str, List[str]] = {}
    for row in rows:
        if row.get('parent_id'):
            children_of.setdefault(row['parent_id'], []).append(row['id'])

    ordered, seen = [], {root_id}

    def walk(node_id):
        for child_id in children_of.get(node_id, []):
            if child_id in seen:
                continue
            seen.add(child_id)
            walk(child_id)
            ordered.append(child_id)

    walk(root_id)
    return ordered


def depth_of(rows: Iterable[Dict[str, Any]], node_id: str) -> int:
    """0 for a root, 1 for its children, ..."""
    parents = {row['id']: row.get('parent_id') for row in rows}
    depth, seen = 0, {node_id}
    current = parents.get(node_id)
    while current and current in parents and current not in seen:
        seen.add(current)
        depth += 1
        current = parents.get(current)
    return depth


def subtree_height(rows: Iterable[Dict[str, Any]], node_id: str) -> int:
    """Number of levels in the subtree rooted at `node_id`, itself included"""
    rows = list(rows)
    node = find_node(build_tree(rows), node_id)
    if node is None:
        return 0

    def height(n: TreeNode) -> int:
        return 1 + max((height(child) for child in n.children), default=0)

    return height(node)
