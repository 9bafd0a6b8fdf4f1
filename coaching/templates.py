import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Union

from coaching.errors import NotFoundError, ValidationError
from coaching.task_types import validate_settings
from coaching.tree import build_tree, flatten
from database.models import new_id
from database.row_store import RowStore, StoreError

logger = logging.getLogger()

MODULES = ('exam', 'nutrition', 'music', 'coding', 'general')


@dataclass
class TaskBlueprint:
    day: int
    title: str
    description: Optional[str] = None
    duration_minutes: int = 30
    task_type: str = 'todo'
    settings: Dict[str, Any] = field(default_factory=dict)
    key: Optional[str] = None
    parent_key: Optional[str] = None


@dataclass
class ProgramTemplate:
    id: str
    name: str
    description: str
    module: str
    duration_days: int
    tasks: List[TaskBlueprint] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'module': self.module,
            'duration_days': self.duration_days,
            'tasks': [asdict(t) for t in self.tasks],
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ProgramTemplate":
        return cls(
            id=row['id'],
            name=row['name'],
            description=row.get('description') or '',
            module=row.get('module') or 'general',
            duration_days=row.get('duration_days') or 1,
            tasks=[TaskBlueprint(**t) for t in row.get('tasks') or []],
        )


_REGISTRY: Dict[str, List[ProgramTemplate]] = {module: [] for module in MODULES}


def register_template(template: ProgramTemplate) -> ProgramTemplate:
    _REGISTRY.setdefault(template.module, []).append(template)
    return template


def templates_by_module(module: str) -> List[ProgramTemplate]:
    return list(_REGISTRY.get(module, []))


def get_template(template_id: str) -> Optional[ProgramTemplate]:
    for templates in _REGISTRY.values():
        for template in templates:
            if template.id == template_id:
                return template
    return None


def all_templates() -> List[ProgramTemplate]:
    return [t for templates in _REGISTRY.values() for t in templates]


def expand_template(template: ProgramTemplate, user_id: str, start_date: date,
                    project_id: Optional[str] = None, created_by: Optional[str] = None) -> List[Dict[str, Any]]:
    """Concrete task rows for a program starting on `start_date`.

    Day N lands on start_date + N - 1. Parents come before their children and
    every sibling set is numbered from zero.
    """
    ids = {bp.key: new_id() for bp in template.tasks if bp.key}
    counters: Dict[Optional[str], int] = {}
    rows = []
    for blueprint in template.tasks:
        if blueprint.day < 1:
            raise ValidationError(f"Template day must be 1 or later: {blueprint.title}")
        parent_id = ids.get(blueprint.parent_key) if blueprint.parent_key else None
        if blueprint.parent_key and parent_id is None:
            raise ValidationError(f"Unknown parent '{blueprint.parent_key}' in {blueprint.title}")
        position = counters.get(parent_id, 0)
        counters[parent_id] = position + 1
        rows.append({
            'id': ids.get(blueprint.key) or new_id(),
            'user_id': user_id,
            'project_id': project_id,
            'parent_id': parent_id,
            'title': blueprint.title,
            'description': blueprint.description,
            'task_type': blueprint.task_type,
            'settings': dict(blueprint.settings),
            'duration_minutes': blueprint.duration_minutes,
            'due_date': start_date + timedelta(days=blueprint.day - 1),
            'sort_order': position,
            'is_completed': False,
            'created_by': created_by,
            'assigned_by': created_by,
        })
    return rows


class TemplateService:
    def __init__(self, store: RowStore = None):
        self.store = store or RowStore()

    def list_templates(self, module: Optional[str] = None) -> List[ProgramTemplate]:
        templates = templates_by_module(module) if module else all_templates()
        try:
            rows = self.store.select('program_templates', {'module': module} if module else None)
        except StoreError as e:
            logger.error(f"Error fetching saved templates: {e}")
            rows = []
        return templates + [ProgramTemplate.from_row(row) for row in rows]

    def resolve(self, template: Union[str, ProgramTemplate]) -> ProgramTemplate:
        if isinstance(template, ProgramTemplate):
            return template
        found = get_template(template)
        if found:
            return found
        row = self.store.get('program_templates', template)
        if not row:
            raise NotFoundError(f"Template {template} not found")
        return ProgramTemplate.from_row(row)

    def apply_template(self, template: Union[str, ProgramTemplate], student_id: str, start_date,
                       coach_id: Optional[str] = None) -> Dict[str, Any]:
        """Create a coach project for the student holding every task of the program.

        If any task insert fails the project (and the tasks written so far) is
        removed again and the store error is raised.
        """
        template = self.resolve(template)
        if isinstance(start_date, str):
            start_date = date.fromisoformat(start_date)
        for blueprint in template.tasks:
            validate_settings(blueprint.task_type, blueprint.settings)

        project = self.store.insert('projects', {
            'user_id': student_id,
            'name': template.name,
            'description': template.description,
            'status': 'active',
            'module': template.module,
            'is_coach_project': True,
            'start_date': start_date,
            'end_date': start_date + timedelta(days=max(template.duration_days, 1) - 1),
            'settings': {
                'duration_days': template.duration_days,
                'template_id': template.id,
                'created_by': coach_id,
            },
        })

        rows = expand_template(template, student_id, start_date, project['id'], coach_id or student_id)
        created = []
        try:
            for row in rows:
                self.store.insert('tasks', row)
                created.append(row['id'])
        except StoreError:
            logger.error(f"❌ Applying template {template.id} failed after {len(created)} task(s), rolling back")
            for task_id in reversed(created):
                self.store.delete('tasks', task_id)
            self.store.delete('projects', project['id'])
            raise

        logger.info(f"📋 Applied template {template.id} to {student_id}: {len(rows)} task(s) from {start_date}")
        return {**project, 'task_count': len(rows)}

    def save_template(self, template: ProgramTemplate, created_by: Optional[str] = None) -> Dict[str, Any]:
        if template.module not in MODULES:
            raise ValidationError(f"Unknown module: {template.module}")
        if not template.name.strip():
            raise ValidationError("Template name is required")
        for blueprint in template.tasks:
            validate_settings(blueprint.task_type, blueprint.settings)
        row = template.to_row()
        row['created_by'] = created_by
        return self.store.upsert('program_templates', row)

    def convert_project_to_template(self, project_id: str, name: Optional[str] = None,
                                    created_by: Optional[str] = None) -> Dict[str, Any]:
        """Snapshot a project's task tree as a reusable program"""
        project = self.store.get('projects', project_id)
        if not project:
            raise NotFoundError(f"Project {project_id} not found")
        tasks = flatten(build_tree(self.store.select('tasks', {'project_id': project_id})))

        dated = [t['due_date'] for t in tasks if t.get('due_date')]
        start = project.get('start_date') or (min(dated) if dated else None)
        blueprints = []
        for task in tasks:
            day = (task['due_date'] - start).days + 1 if start and task.get('due_date') else 1
            blueprints.append(TaskBlueprint(
                day=max(day, 1),
                title=task['title'],
                description=task.get('description'),
                duration_minutes=task.get('duration_minutes') or 0,
                task_type=task.get('task_type') or 'todo',
                settings=task.get('settings') or {},
                key=task['id'],
                parent_key=task.get('parent_id'),
            ))

        duration = max([bp.day for bp in blueprints] + [1])
        template = ProgramTemplate(
            id=new_id(),
            name=name or project['name'],
            description=project.get('description') or '',
            module=project.get('module') or 'general',
            duration_days=duration,
            tasks=blueprints,
        )
        return self.save_template(template, created_by)


# Built-in programs register themselves on import
from coaching import builtin_templates  # noqa: E402,F401
