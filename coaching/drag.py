import logging
import math
import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from coaching.config import (
    DRAG_ACTIVATION_DISTANCE, DRAG_LONG_PRESS_DELAY, DRAG_LONG_PRESS_TOLERANCE, MAX_TASK_DEPTH,
)
from coaching.errors import ValidationError
from coaching.ordering import Edge, NotSiblingError, changed_orders, insert_at, is_dense, reorder
from coaching.tree import depth_of, descendant_ids, subtree_height

logger = logging.getLogger()


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class Scope:
    """One sibling set sharing a sort-order sequence"""
    parent_id: Optional[str] = None
    project_id: Optional[str] = None
    due_date: Optional[date] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass
class RowUpdate:
    id: str
    patch: Dict[str, Any]


@dataclass
class MovePlan:
    updates: List[RowUpdate] = field(default_factory=list)

    def __bool__(self):
        return bool(self.updates)

    def __len__(self):
        return len(self.updates)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {update.id: update.patch for update in self.updates}


class Board:
    """Task rows grouped into sibling scopes.

    On a day board (`by_date=True`) top-level tasks are scoped by their due
    date; otherwise by their project. Children are always scoped by parent.
    """

    def __init__(self, rows: Iterable[Dict[str, Any]], by_date: bool = False, max_depth: int = MAX_TASK_DEPTH):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self._position: Dict[str, int] = {}
        for position, row in enumerate(rows):
            self.rows[row['id']] = dict(row)
            self._position[row['id']] = position
        self.by_date = by_date
        self.max_depth = max_depth

    def scope_of(self, item_id: str) -> Scope:
        row = self.rows[item_id]
        if row.get('parent_id'):
            return Scope(parent_id=row['parent_id'])
        if self.by_date:
            return Scope(due_date=_as_date(row.get('due_date')))
        return Scope(project_id=row.get('project_id'))

    def scopes(self) -> List[Scope]:
        seen = []
        for item_id in self.rows:
            scope = self.scope_of(item_id)
            if scope not in seen:
                seen.append(scope)
        return seen

    def order(self, scope: Scope) -> List[str]:
        """Visual order of a scope: sort_order ascending, ties in input order"""
        members = [item_id for item_id in self.rows if self.scope_of(item_id) == scope]

        def key(item_id):
            order = self.rows[item_id].get('sort_order')
            return (order is None, order or 0, self._position[item_id])

        return sorted(members, key=key)

    def _current(self, ids: Iterable[str]) -> Dict[str, Optional[int]]:
        return {item_id: self.rows[item_id].get('sort_order') for item_id in ids}

    def _renumber(self, ids: List[str], patches: Dict[str, Dict[str, Any]]):
        for item_id, position in changed_orders(ids, self._current(ids)).items():
            patches.setdefault(item_id, {})['sort_order'] = position

    def _plan(self, patches: Dict[str, Dict[str, Any]]) -> MovePlan:
        return MovePlan([RowUpdate(item_id, patch) for item_id, patch in patches.items() if patch])

    def _redate(self, item_id: str, due: Optional[date], patches: Dict[str, Dict[str, Any]]):
        """Move a task and its whole subtree to `due`"""
        for node_id in [item_id] + descendant_ids(self.rows.values(), item_id):
            if _as_date(self.rows[node_id].get('due_date')) != due:
                patches.setdefault(node_id, {})['due_date'] = due

    def plan_reorder(self, source_id: str, target_id: str, edge: Edge = Edge.BEFORE) -> MovePlan:
        """Reorder within one scope; raises NotSiblingError across scopes"""
        if source_id == target_id:
            return MovePlan()
        scope = self.scope_of(source_id)
        if target_id not in self.rows or self.scope_of(target_id) != scope:
            raise NotSiblingError(f"{source_id} and {target_id} are not siblings")
        patches: Dict[str, Dict[str, Any]] = {}
        self._renumber(reorder(self.order(scope), source_id, target_id, edge), patches)
        return self._plan(patches)

    def validate_move(self, item_id: str, scope: Scope):
        row = self.rows[item_id]
        if scope.parent_id is None:
            if not self.by_date and scope.project_id != row.get('project_id'):
                raise ValidationError("Tasks cannot be moved between projects")
            return

        parent = self.rows.get(scope.parent_id)
        if parent is None:
            raise ValidationError(f"Parent task {scope.parent_id} is not on this board")
        if scope.parent_id == item_id or scope.parent_id in descendant_ids(self.rows.values(), item_id):
            raise ValidationError("A task cannot be nested under itself or its own subtasks")
        if parent.get('user_id') != row.get('user_id'):
            raise ValidationError("Parent task belongs to another user")
        if parent.get('project_id') != row.get('project_id'):
            raise ValidationError("Parent task belongs to another project")
        levels = depth_of(self.rows.values(), scope.parent_id) + 1 + subtree_height(self.rows.values(), item_id)
        if levels > self.max_depth:
            raise ValidationError(f"Tasks can be nested at most {self.max_depth} levels deep")

    def validate_plan(self, plan: MovePlan):
        """Check a plan built elsewhere before it is written.

        Parent changes follow the same rules as `validate_move`. Every sibling
        set the plan touches must end up numbered 0..n-1.
        """
        for update in plan.updates:
            if update.id not in self.rows:
                raise ValidationError(f"Task {update.id} is not on this board")

        after = Board([{**row, **plan.as_dict().get(item_id, {})} for item_id, row in self.rows.items()],
                      by_date=self.by_date, max_depth=self.max_depth)
        touched = []
        for update in plan.updates:
            for scope in (self.scope_of(update.id), after.scope_of(update.id)):
                if scope not in touched:
                    touched.append(scope)

        checked = set()
        for update in plan.updates:
            for item_id in [update.id] + [i for i, row in after.rows.items() if row.get('parent_id') == update.id]:
                if item_id in checked:
                    continue
                checked.add(item_id)
                after._validate_parent(item_id)

        for scope in touched:
            orders = [after.rows[i].get('sort_order') for i in after.order(scope)]
            if not all(isinstance(value, int) for value in orders) or not is_dense(orders):
                raise ValidationError(f"Sort order of {scope} must run 0..{len(orders) - 1}, got {orders}")

    def _validate_parent(self, item_id: str):
        row = self.rows[item_id]
        parent_id = row.get('parent_id')
        if not parent_id:
            return
        parent = self.rows.get(parent_id)
        if parent is None:
            raise ValidationError(f"Parent task {parent_id} is not on this board")

        seen, current = {item_id}, parent
        while current is not None:
            if current['id'] in seen:
                raise ValidationError("A task cannot be nested under itself or its own subtasks")
            seen.add(current['id'])
            current = self.rows.get(current.get('parent_id')) if current.get('parent_id') else None

        if parent.get('user_id') != row.get('user_id'):
            raise ValidationError("Parent task belongs to another user")
        if parent.get('project_id') != row.get('project_id'):
            raise ValidationError("Parent task belongs to another project")
        if self.by_date and _as_date(parent.get('due_date')) != _as_date(row.get('due_date')):
            raise ValidationError("Subtasks share their parent's day")
        levels = depth_of(self.rows.values(), parent_id) + 1 + subtree_height(self.rows.values(), item_id)
        if levels > self.max_depth:
            raise ValidationError(f"Tasks can be nested at most {self.max_depth} levels deep")

    def plan_move(self, item_id: str, scope: Scope, index: Optional[int] = None) -> MovePlan:
        """Move `item_id` to position `index` of `scope` (end when None)"""
        if item_id not in self.rows:
            raise ValidationError(f"Task {item_id} is not on this board")
        source_scope = self.scope_of(item_id)
        patches: Dict[str, Dict[str, Any]] = {}

        if scope == source_scope:
            self._renumber(insert_at(self.order(scope), item_id, index), patches)
            return self._plan(patches)

        self.validate_move(item_id, scope)
        row = self.rows[item_id]
        patch = patches.setdefault(item_id, {})
        if row.get('parent_id') != scope.parent_id:
            patch['parent_id'] = scope.parent_id
        if self.by_date:
            # Children live on their parent's day
            due = scope.due_date if scope.is_root else _as_date(self.rows[scope.parent_id].get('due_date'))
            self._redate(item_id, due, patches)

        remaining = [i for i in self.order(source_scope) if i != item_id]
        self._renumber(remaining, patches)

        target = insert_at(self.order(scope), item_id, index)
        positions = {i: n for n, i in enumerate(target)}
        self._renumber(target, patches)
        # The moved row always carries its new position, even when the number happens to match
        patch['sort_order'] = positions[item_id]
        return self._plan(patches)

    def plan_group_move(self, ids: List[str], due_date, index: Optional[int] = None) -> MovePlan:
        """Move a compound unit (e.g. a day's meals) to another day as one block"""
        due_date = _as_date(due_date)
        ids = [i for i in ids if i in self.rows]
        if not ids:
            return MovePlan()
        target_scope = Scope(due_date=due_date)
        patches: Dict[str, Dict[str, Any]] = {}

        for item_id in ids:
            self._redate(item_id, due_date, patches)
        ids = [i for i in ids if self.scope_of(i).is_root]

        source_scopes = []
        for item_id in ids:
            scope = self.scope_of(item_id)
            if scope != target_scope and scope not in source_scopes:
                source_scopes.append(scope)
        for scope in source_scopes:
            self._renumber([i for i in self.order(scope) if i not in ids], patches)

        target = [i for i in self.order(target_scope) if i not in ids]
        if index is None or index > len(target):
            index = len(target)
        target[index:index] = ids
        if self.by_date:
            self._renumber(target, patches)
        return self._plan(patches)

    def apply(self, plan: MovePlan):
        """Fold a plan into the board's own rows"""
        for update in plan.updates:
            self.rows[update.id].update(update.patch)


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def distance(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def contains(self, point: Point) -> bool:
        return self.x <= point.x <= self.x + self.width and self.y <= point.y <= self.y + self.height

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class Layout:
    """Measured geometry of everything droppable on screen"""
    items: Dict[str, Rect] = field(default_factory=dict)
    containers: Dict[Scope, Rect] = field(default_factory=dict)
    groups: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DropIndicator:
    scope: Scope
    target_id: Optional[str]
    edge: Optional[Edge]
    index: int


class DragState(str, Enum):
    IDLE = 'idle'
    DRAGGING = 'dragging'
    RESOLVING = 'resolving'


class DragSession:
    def __init__(self, board: Board, layout: Layout, clock: Callable[[], float] = time.monotonic,
                 activation_distance: float = DRAG_ACTIVATION_DISTANCE,
                 long_press_delay: float = DRAG_LONG_PRESS_DELAY,
                 long_press_tolerance: float = DRAG_LONG_PRESS_TOLERANCE):
        self.board = board
        self.layout = layout
        self.clock = clock
        self.activation_distance = activation_distance
        self.long_press_delay = long_press_delay
        self.long_press_tolerance = long_press_tolerance

        self.state = DragState.IDLE
        self.transitions: List[Tuple[DragState, DragState]] = []
        self.active_id: Optional[str] = None
        self.indicator: Optional[DropIndicator] = None
        self._press: Optional[Tuple[str, Point, str, float]] = None
        self._pointer: Optional[Point] = None

    def _transition(self, state: DragState):
        self.transitions.append((self.state, state))
        self.state = state

    def _members(self, active_id: str) -> List[str]:
        return self.layout.groups.get(active_id, [active_id])

    @property
    def is_group(self) -> bool:
        return self.active_id in self.layout.groups

    def pointer_down(self, item_id: str, point: Point, pointer_type: str = 'mouse'):
        if self.state is not DragState.IDLE:
            return
        self._press = (item_id, point, pointer_type, self.clock())
        self._pointer = point

    def _activate(self, item_id: str):
        self.active_id = item_id
        self._press = None
        self._transition(DragState.DRAGGING)
        logger.debug(f"Drag started on {item_id}")

    def poll(self):
        """Promote a touch long-press once the delay elapsed without the finger wandering"""
        if self._press is None:
            return
        item_id, origin, pointer_type, pressed_at = self._press
        if pointer_type == 'touch' and self.clock() - pressed_at >= self.long_press_delay:
            self._activate(item_id)
            self.indicator = self.resolve(self._pointer)

    def pointer_move(self, point: Point) -> Optional[DropIndicator]:
        self._pointer = point
        if self._press is not None:
            item_id, origin, pointer_type, pressed_at = self._press
            moved = point.distance(origin)
            if pointer_type == 'touch':
                if self.clock() - pressed_at >= self.long_press_delay:
                    self._activate(item_id)
                elif moved > self.long_press_tolerance:
                    # A scroll, not a press
                    self._press = None
                    return None
            elif moved >= self.activation_distance:
                self._activate(item_id)

        if self.state is DragState.DRAGGING:
            self.indicator = self.resolve(point)
            return self.indicator
        return None

    def _container_at(self, point: Point) -> Optional[Scope]:
        hits = [(rect.area, scope) for scope, rect in self.layout.containers.items() if rect.contains(point)]
        if not hits:
            return None
        return min(hits, key=lambda hit: hit[0])[1]

    def _scope_members(self, scope: Scope) -> List[str]:
        if self.is_group and scope.parent_id is None:
            members = set(self._members(self.active_id))
            return [i for i in self.board.order(scope) if i not in members and i in self.layout.items]
        return [i for i in self.board.order(scope) if i in self.layout.items]

    def resolve(self, point: Optional[Point]) -> Optional[DropIndicator]:
        """Drop target for a pointer position; a pure function of pointer and layout"""
        if point is None:
            return None
        scope = self._container_at(point)
        if scope is None:
            return None

        members = self._scope_members(scope)
        if not members:
            return DropIndicator(scope, None, None, 0)

        target = next((i for i in members if self.layout.items[i].contains(point)), None)
        if target is None:
            target = min(members, key=lambda i: self.layout.items[i].center.distance(point))
        rect = self.layout.items[target]
        edge = Edge.BEFORE if point.y < rect.center.y else Edge.AFTER

        others = [i for i in members if i != self.active_id]
        if target == self.active_id:
            index = members.index(target)
        else:
            index = others.index(target) + (1 if edge is Edge.AFTER else 0)
        return DropIndicator(scope, target, edge, index)

    def pointer_up(self, point: Optional[Point] = None) -> MovePlan:
        """Release: returns the plan to persist (empty when nothing moved)"""
        if point is not None:
            self.pointer_move(point)
        if self.state is not DragState.DRAGGING:
            self._press = None
            return MovePlan()

        self._transition(DragState.RESOLVING)
        try:
            plan = self._plan_drop(self.indicator)
        finally:
            self.active_id = None
            self.indicator = None
            self._transition(DragState.IDLE)
        return plan

    def _plan_drop(self, indicator: Optional[DropIndicator]) -> MovePlan:
        if indicator is None or indicator.target_id == self.active_id:
            return MovePlan()

        if self.is_group:
            if indicator.scope.due_date is None:
                return MovePlan()
            return self.board.plan_group_move(self._members(self.active_id), indicator.scope.due_date, indicator.index)

        if indicator.scope == self.board.scope_of(self.active_id) and indicator.target_id:
            return self.board.plan_reorder(self.active_id, indicator.target_id, indicator.edge)
        return self.board.plan_move(self.active_id, indicator.scope, indicator.index)

    def cancel(self):
        self._press = None
        if self.state is DragState.DRAGGING:
            self.active_id = None
            self.indicator = None
            self._transition(DragState.IDLE)
