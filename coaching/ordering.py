from enum import Enum
from typing import Dict, Hashable, List, Optional, Sequence


class Edge(str, Enum):
    BEFORE = 'before'
    AFTER = 'after'


class NotSiblingError(ValueError):
    """Source and target do not share a sibling set; reparent instead"""


def reorder(order: Sequence[Hashable], source_id: Hashable, target_id: Hashable,
            edge: Edge = Edge.BEFORE) -> List[Hashable]:
    """Move `source_id` next to `target_id` on the given edge"""
    if source_id == target_id:
        return list(order)
    if source_id not in order or target_id not in order:
        raise NotSiblingError(f"{source_id} and {target_id} are not siblings")

    remaining = [item for item in order if item != source_id]
    index = remaining.index(target_id)
    if Edge(edge) is Edge.AFTER:
        index += 1
    remaining.insert(index, source_id)
    return remaining


def insert_at(order: Sequence[Hashable], item_id: Hashable, index: Optional[int] = None) -> List[Hashable]:
    """Place `item_id` at `index` (end when None), removing any earlier occurrence"""
    remaining = [item for item in order if item != item_id]
    if index is None or index > len(remaining):
        index = len(remaining)
    remaining.insert(max(0, index), item_id)
    return remaining


def renumber(ids: Sequence[Hashable]) -> Dict[Hashable, int]:
    return {item: position for position, item in enumerate(ids)}


def changed_orders(ids: Sequence[Hashable], current: Dict[Hashable, Optional[int]]) -> Dict[Hashable, int]:
    """Dense positions for `ids`, limited to entries whose stored value differs"""
    return {item: position for item, position in renumber(ids).items() if current.get(item) != position}


def is_dense(values: Sequence[int]) -> bool:
    return sorted(values) == list(range(len(values)))
