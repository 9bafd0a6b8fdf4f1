from typing import List, Optional, Dict, Any, Callable
from datetime import date, datetime, timedelta, timezone
import logging
import re

from coaching.config import MAX_TASK_DEPTH, TIMEZONE_OFFSET_HOURS
from coaching.drag import Board, MovePlan, Scope
from coaching.errors import NotFoundError, ValidationError
from coaching.ordering import Edge
from coaching.sync import SyncAdapter
from coaching.task_types import parse_task_type, validate_settings
from coaching.tree import TreeNode, build_tree, descendant_ids
from database.row_store import FileStore, RowStore, StoreError

logger = logging.getLogger()

PROJECT_STATUSES = ('planning', 'active', 'on-hold', 'completed')
PROJECT_PRIORITIES = ('low', 'medium', 'high', 'critical')

TASK_FIELDS = (
    'title', 'description', 'task_type', 'due_date', 'due_time', 'duration_minutes', 'settings',
    'task_metadata', 'is_private', 'project_id', 'parent_id', 'assigned_by', 'relationship_id',
)
EDITABLE_TASK_FIELDS = ('title', 'description', 'task_type', 'due_date', 'due_time',
                        'duration_minutes', 'settings', 'task_metadata', 'is_private')

_TIME_RE = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def local_now() -> datetime:
    """Wall clock in the planner's timezone"""
    return datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=TIMEZONE_OFFSET_HOURS)


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")


class TaskManager:
    def __init__(self, store: RowStore = None, on_error: Callable = None, files: FileStore = None):
        self.store = store or RowStore()
        self.sync = SyncAdapter(self.store, on_error=on_error)
        self.files = files or FileStore()

    def _commit(self):
        """Flush queued writes; a delivery that got parked surfaces as StoreError"""
        failed_before = len(self.sync.failed)
        self.sync.flush()
        if len(self.sync.failed) > failed_before:
            raise StoreError(self.sync.failed[-1].error)

    # Boards

    def day_board(self, user_id: str, day) -> Board:
        return self.range_board(user_id, day, day)

    def range_board(self, user_id: str, start, end) -> Board:
        """Standalone tasks of the user due between start and end, day-scoped"""
        rows = self.sync.load('tasks', {
            'user_id': user_id,
            'project_id': None,
            'due_date__gte': _as_date(start),
            'due_date__lte': _as_date(end),
        }, order=['due_date', 'sort_order'])
        return Board(rows, by_date=True)

    def project_board(self, project_id: str) -> Board:
        rows = self.sync.load('tasks', {'project_id': project_id}, order=['sort_order'])
        return Board(rows, by_date=False)

    def day_tree(self, user_id: str, day) -> List[TreeNode]:
        return build_tree(self.day_board(user_id, day).rows.values())

    def project_tree(self, project_id: str) -> List[TreeNode]:
        return build_tree(self.project_board(project_id).rows.values())

    # Tasks

    def get_task(self, task_id: str) -> Dict[str, Any]:
        task = self.store.get('tasks', task_id)
        if not task:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _depth(self, task: Dict[str, Any]) -> int:
        depth, seen = 0, {task['id']}
        while task.get('parent_id') and task['parent_id'] not in seen:
            seen.add(task['parent_id'])
            task = self.store.get('tasks', task['parent_id'])
            if not task:
                break
            depth += 1
        return depth

    def _scope_filters(self, task: Dict[str, Any]) -> Dict[str, Any]:
        if task.get('parent_id'):
            return {'parent_id': task['parent_id']}
        if task.get('project_id'):
            return {'project_id': task['project_id'], 'parent_id': None}
        return {'user_id': task['user_id'], 'project_id': None, 'parent_id': None,
                'due_date': task.get('due_date')}

    def _validate_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if 'title' in data and not (data['title'] or '').strip():
            raise ValidationError("Task title is required")
        if data.get('due_time') and not _TIME_RE.match(data['due_time']):
            raise ValidationError(f"due_time must be HH:MM, got {data['due_time']}")
        if 'due_date' in data:
            data['due_date'] = _as_date(data['due_date'])
        if 'duration_minutes' in data and (data['duration_minutes'] or 0) < 0:
            raise ValidationError("duration_minutes cannot be negative")
        if 'task_type' in data or 'settings' in data:
            data['task_type'] = parse_task_type(data.get('task_type')).value
            data['settings'] = validate_settings(data['task_type'], data.get('settings'))
        return data

    def create_task(self, user_id: str, title: str, created_by: str = None, **fields) -> Dict[str, Any]:
        """Create a task at the end of its scope; children inherit project and day"""
        unknown = set(fields) - set(TASK_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        data = self._validate_fields({'title': title, 'task_type': fields.pop('task_type', None), **fields})
        data['title'] = data['title'].strip()

        if data.get('parent_id'):
            parent = self.store.get('tasks', data['parent_id'])
            if not parent:
                raise ValidationError(f"Parent task {data['parent_id']} not found")
            if parent['user_id'] != user_id:
                raise ValidationError("Parent task belongs to another user")
            if self._depth(parent) + 2 > MAX_TASK_DEPTH:
                raise ValidationError(f"Tasks can be nested at most {MAX_TASK_DEPTH} levels deep")
            data['project_id'] = parent.get('project_id')
            data['due_date'] = parent.get('due_date')

        task = {
            'user_id': user_id,
            'created_by': created_by or user_id,
            'is_completed': False,
            **data,
        }
        siblings = self.store.select('tasks', self._scope_filters(task))
        task['sort_order'] = len(siblings)

        task = self.sync.insert('tasks', task)
        self._commit()
        logger.info(f"📝 Task created for {user_id}: {task['title'][:50]}")
        return self.get_task(task['id'])

    def update_task(self, task_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        task = self.get_task(task_id)
        unknown = set(patch) - set(EDITABLE_TASK_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited here: {', '.join(sorted(unknown))}")
        if 'settings' in patch and 'task_type' not in patch:
            patch = {**patch, 'task_type': task.get('task_type')}
        patch = self._validate_fields(patch)

        if 'due_date' in patch and patch['due_date'] == task.get('due_date'):
            patch.pop('due_date')
        if 'due_date' in patch:
            if task.get('parent_id'):
                raise ValidationError("Subtasks share their parent's day; move the parent instead")
            if task.get('project_id'):
                board = self.project_board(task['project_id'])
                for node_id in descendant_ids(board.rows.values(), task_id):
                    self.sync.update('tasks', node_id, {'due_date': patch['due_date']})
            else:
                # Changing the day moves the task (with its subtasks) to the end of the other day's list
                new_day = patch.pop('due_date')
                board = self._standalone_board(task['user_id'], [task.get('due_date'), new_day], task)
                self.sync.apply_plan('tasks', board.plan_move(task_id, Scope(due_date=new_day)))

        if patch:
            self.sync.update('tasks', task_id, patch)
        self._commit()
        return self.get_task(task_id)

    def set_completed(self, task_id: str, completed: bool = True) -> Dict[str, Any]:
        self.get_task(task_id)
        self.sync.update('tasks', task_id, {
            'is_completed': completed,
            'completed_at': datetime.now() if completed else None,
        })
        self._commit()
        logger.info(f"{'✅' if completed else '↩️'} Task {task_id} {'completed' if completed else 'reopened'}")
        return self.get_task(task_id)

    def delete_task(self, task_id: str) -> List[str]:
        """Delete a task with all its subtasks; siblings close the gap"""
        task = self.get_task(task_id)
        if task.get('project_id'):
            self.sync.load('tasks', {'project_id': task['project_id']})
        else:
            self.sync.load('tasks', {'user_id': task['user_id'], 'project_id': None})
        ids = self.sync.delete('tasks', task_id)
        self._commit()
        logger.info(f"🗑️ Deleted {len(ids)} task(s) starting at {task_id}")
        return ids

    def _standalone_board(self, user_id: str, days, *tasks) -> Board:
        """Day board spanning `days`, guaranteed to contain `tasks`"""
        days = [_as_date(d) for d in days if d]
        rows = list(self.range_board(user_id, min(days), max(days)).rows.values()) if days else []
        present = {row['id'] for row in rows}
        extra = [task for task in tasks if task['id'] not in present]
        for task in extra:
            self.sync.rows.setdefault('tasks', {})[task['id']] = dict(task)
        return Board(rows + extra, by_date=True)

    def move_task(self, task_id: str, parent_id: Optional[str] = None, index: Optional[int] = None,
                  due_date=None) -> MovePlan:
        """Move a task into another scope (or position) without a drag gesture"""
        task = self.get_task(task_id)
        if task.get('project_id'):
            board = self.project_board(task['project_id'])
            scope = Scope(parent_id=parent_id) if parent_id else Scope(project_id=task['project_id'])
        elif parent_id:
            parent = self.get_task(parent_id)
            board = self._standalone_board(task['user_id'], [task.get('due_date'), parent.get('due_date')],
                                           task, parent)
            scope = Scope(parent_id=parent_id)
        else:
            day = _as_date(due_date) or _as_date(task.get('due_date'))
            board = self._standalone_board(task['user_id'], [task.get('due_date'), day], task)
            scope = Scope(due_date=day)
        plan = board.plan_move(task_id, scope, index)
        self.apply_plan(plan)
        return plan

    def reorder_task(self, source_id: str, target_id: str, edge: Edge = Edge.BEFORE) -> MovePlan:
        """Place a task before or after one of its siblings"""
        task = self.get_task(source_id)
        target = self.get_task(target_id)
        if task.get('project_id'):
            board = self.project_board(task['project_id'])
        else:
            board = self._standalone_board(task['user_id'], [task.get('due_date'), target.get('due_date')],
                                           task, target)
        plan = board.plan_reorder(source_id, target_id, edge)
        self.apply_plan(plan)
        return plan

    def apply_plan(self, plan: MovePlan) -> int:
        """Persist a drag plan; every changed row is written independently"""
        if not plan:
            return 0
        count = self.sync.apply_plan('tasks', plan)
        self._commit()
        return count

    def apply_client_plan(self, plan: MovePlan) -> int:
        """Validate a plan built by a client against the stored board, then persist it"""
        if not plan:
            return 0
        tasks = [self.get_task(update.id) for update in plan.updates]
        for update in plan.updates:
            if 'due_date' in update.patch:
                update.patch['due_date'] = _as_date(update.patch['due_date'])
        if len({t['user_id'] for t in tasks}) > 1 or len({t.get('project_id') for t in tasks}) > 1:
            raise ValidationError("A plan can only touch one user's board")

        project_id = tasks[0].get('project_id')
        if project_id:
            board = self.project_board(project_id)
        else:
            days = [t.get('due_date') for t in tasks]
            days += [u.patch['due_date'] for u in plan.updates if u.patch.get('due_date')]
            for update in plan.updates:
                parent = self.store.get('tasks', update.patch['parent_id']) if update.patch.get('parent_id') else None
                if parent and parent['user_id'] == tasks[0]['user_id']:
                    days.append(parent.get('due_date'))
            board = self._standalone_board(tasks[0]['user_id'], days, *tasks)
        board.validate_plan(plan)
        return self.apply_plan(plan)

    # Scheduled jobs

    def rollover(self, today=None) -> Dict[str, Any]:
        """Carry unfinished standalone tasks from past days over to today; subtasks travel with their parent"""
        today = _as_date(today) or local_now().date()
        try:
            overdue = self.store.select('tasks', {
                'is_completed': False,
                'project_id': None,
                'parent_id': None,
                'due_date__lt': today,
            })
        except StoreError as e:
            logger.error(f"Rollover lookup failed: {e}")
            return {'total': 0, 'users': {}, 'date': today.isoformat()}

        users: Dict[str, int] = {}
        for task in overdue:
            users[task['user_id']] = users.get(task['user_id'], 0) + 1

        for user_id in users:
            first_day = min(t['due_date'] for t in overdue if t['user_id'] == user_id)
            board = self.range_board(user_id, first_day, today)
            moving = [t['id'] for t in sorted(
                (t for t in overdue if t['user_id'] == user_id),
                key=lambda t: (t['due_date'], t.get('sort_order') or 0),
            )]
            self.sync.apply_plan('tasks', board.plan_group_move(moving, today))
        self._commit()

        total = sum(users.values())
        if total:
            logger.info(f"🔁 Rolled {total} task(s) over to {today} for {len(users)} user(s)")
        return {'total': total, 'users': users, 'date': today.isoformat()}

    def due_reminders(self, now: datetime = None) -> List[Dict[str, Any]]:
        """Open tasks due this minute that nobody was told about yet"""
        now = now or local_now()
        try:
            tasks = self.store.select('tasks', {
                'due_date': now.date(),
                'due_time': now.strftime('%H:%M'),
                'is_completed': False,
            })
        except StoreError as e:
            logger.error(f"Reminder lookup failed: {e}")
            return []
        return [t for t in tasks if not (t.get('task_metadata') or {}).get('notified')]

    def mark_notified(self, task: Dict[str, Any]):
        metadata = {**(task.get('task_metadata') or {}), 'notified': True}
        self.sync.update('tasks', task['id'], {'task_metadata': metadata})
        self._commit()

    # Projects

    def _validate_project(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if 'name' in data and not (data['name'] or '').strip():
            raise ValidationError("Project name is required")
        if 'status' in data and data['status'] not in PROJECT_STATUSES:
            raise ValidationError(f"Unknown project status: {data['status']}")
        if 'priority' in data and data['priority'] not in PROJECT_PRIORITIES:
            raise ValidationError(f"Unknown project priority: {data['priority']}")
        for key in ('start_date', 'end_date'):
            if key in data:
                data[key] = _as_date(data[key])
        if data.get('start_date') and data.get('end_date') and data['end_date'] < data['start_date']:
            raise ValidationError("Project cannot end before it starts")
        return data

    def list_projects(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            return self.store.select('projects', {'user_id': user_id}, order=['-created_at'])
        except StoreError as e:
            logger.error(f"Error fetching projects: {e}")
            return []

    def get_project(self, project_id: str) -> Dict[str, Any]:
        project = self.store.get('projects', project_id)
        if not project:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def create_project(self, user_id: str, name: str, **fields) -> Dict[str, Any]:
        data = self._validate_project({'name': name, **fields})
        project = self.store.insert('projects', {'user_id': user_id, **data})
        logger.info(f"📁 Project created: {project['name']}")
        return project

    def update_project(self, project_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self.get_project(project_id)
        patch = self._validate_project({k: v for k, v in patch.items() if k not in ('id', 'user_id')})
        return self.store.update('projects', project_id, patch)

    def delete_project(self, project_id: str) -> int:
        """Remove a project together with every task in it"""
        self.get_project(project_id)
        rows = self.sync.load('tasks', {'project_id': project_id})
        for root in [r for r in rows if not r.get('parent_id')]:
            if self.sync.get('tasks', root['id']):
                self.sync.delete('tasks', root['id'])
        self._commit()
        self.store.delete('projects', project_id)
        return len(rows)

    def project_progress(self, project_id: str) -> int:
        """Share of completed tasks, stored on the project"""
        project = self.get_project(project_id)
        tasks = self.store.select('tasks', {'project_id': project_id})
        percent = round(100 * sum(1 for t in tasks if t['is_completed']) / len(tasks)) if tasks else 0
        if project.get('progress_percent') != percent:
            self.store.update('projects', project_id, {'progress_percent': percent})
        return percent

    # Attachments

    def attach_file(self, task_id: str, filename: str, blob: bytes) -> Dict[str, Any]:
        task = self.get_task(task_id)
        if not filename:
            raise ValidationError("File name is required")
        url = self.files.upload('attachments', f"{task['user_id']}/{task_id}/{filename}", blob)
        metadata = dict(task.get('task_metadata') or {})
        metadata['attachments'] = metadata.get('attachments', []) + [{'name': filename, 'url': url}]
        self.sync.update('tasks', task_id, {'task_metadata': metadata})
        self._commit()
        return {'name': filename, 'url': url}

    # Reporting

    def completion_stats(self, user_id: str, start, end) -> List[Dict[str, Any]]:
        """Per-day totals used by the coach charts"""
        start, end = _as_date(start), _as_date(end)
        try:
            tasks = self.store.select('tasks', {
                'user_id': user_id, 'due_date__gte': start, 'due_date__lte': end,
            })
        except StoreError as e:
            logger.error(f"Error fetching completion stats: {e}")
            tasks = []

        days = []
        current = start
        while current <= end:
            on_day = [t for t in tasks if t['due_date'] == current]
            done = sum(1 for t in on_day if t['is_completed'])
            days.append({
                'date': current.isoformat(),
                'total': len(on_day),
                'completed': done,
                'rate': round(100 * done / len(on_day)) if on_day else 0,
            })
            current += timedelta(days=1)
        return days

    def close(self):
        """Close database session"""
        self.store.close()


# Usage helper
def create_task_manager(store: RowStore = None):
    """Create a new TaskManager instance"""
    return TaskManager(store)
