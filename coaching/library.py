import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from coaching.errors import NotFoundError, ValidationError
from coaching.ordering import changed_orders
from coaching.task_manager import TaskManager, _as_date, local_now
from coaching.task_types import parse_task_type, validate_settings
from database.row_store import RowStore, StoreError

logger = logging.getLogger()

RESOURCE_TYPES = ('video', 'document', 'link', 'book', 'other')

SUBJECT_FIELDS = ('name', 'description', 'category', 'color', 'icon', 'is_active')
TOPIC_FIELDS = ('name', 'description', 'is_active')
RESOURCE_FIELDS = ('name', 'type', 'url', 'description', 'topic_id', 'is_active')

# Starter catalogues a coach can seed in one go, keyed by specialty
SPECIALTY_TEMPLATES: Dict[str, List[Dict[str, Any]]] = {
    'sport': [
        {'name': 'Training Program', 'icon': 'dumbbell', 'color': '#EF4444',
         'topics': ['Cardio', 'Strength Training', 'Flexibility', 'Rest']},
        {'name': 'Nutrition Tracking', 'icon': 'apple', 'color': '#10B981',
         'topics': ['Breakfast', 'Lunch', 'Dinner', 'Snacks', 'Water Intake']},
    ],
    'math': [
        {'name': 'Mathematics', 'icon': 'calculator', 'color': '#3B82F6',
         'topics': ['Numbers', 'Algebra', 'Equations', 'Geometry', 'Trigonometry']},
    ],
    'lgs': [
        {'name': 'LGS Preparation', 'icon': 'book', 'color': '#8B5CF6',
         'topics': ['Practice Exams', 'Problem Solving', 'Topic Review', 'Reading']},
    ],
}


def specialty_templates() -> List[Dict[str, Any]]:
    return [
        {
            'slug': slug,
            'name': slug.capitalize(),
            'preview': ', '.join(subject['name'] for subject in subjects),
        }
        for slug, subjects in SPECIALTY_TEMPLATES.items()
    ]


def _pick(data: Dict[str, Any], allowed) -> Dict[str, Any]:
    unknown = set(data) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    if 'name' in data:
        if not (data['name'] or '').strip():
            raise ValidationError("Name is required")
        data = {**data, 'name': data['name'].strip()}
    return dict(data)


class LibraryService:
    """Subjects, their topics and resources, and the task library coaches assign from"""

    def __init__(self, store: RowStore = None):
        self.store = store or RowStore()

    # Subjects

    def subjects(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        """Subjects with their topics attached, newest first"""
        filters = None if include_inactive else {'is_active': True}
        try:
            subjects = self.store.select('subjects', filters, order=['-created_at'])
            topics = self.store.select('topics', filters, order=['sort_order'])
        except StoreError as e:
            logger.error(f"Error fetching subjects: {e}")
            return []
        by_subject: Dict[str, List[Dict[str, Any]]] = {}
        for topic in topics:
            by_subject.setdefault(topic['subject_id'], []).append(topic)
        return [{**subject, 'topics': by_subject.get(subject['id'], [])} for subject in subjects]

    def get_subject(self, subject_id: str) -> Dict[str, Any]:
        subject = self.store.get('subjects', subject_id)
        if not subject:
            raise NotFoundError(f"Subject {subject_id} not found")
        return subject

    def create_subject(self, name: str, created_by: Optional[str] = None, topics: Optional[List[str]] = None,
                       **fields) -> Dict[str, Any]:
        data = _pick({'name': name, **fields}, SUBJECT_FIELDS)
        subject = self.store.insert('subjects', {**data, 'created_by': created_by, 'is_system': False})
        for name in topics or []:
            self.create_topic(subject['id'], name, created_by=created_by)
        logger.info(f"📚 Subject created: {subject['name']} ({len(topics or [])} topics)")
        return subject

    def update_subject(self, subject_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self.get_subject(subject_id)
        return self.store.update('subjects', subject_id, _pick(patch, SUBJECT_FIELDS))

    def delete_subject(self, subject_id: str) -> Dict[str, int]:
        """Remove a subject with its topics, resources and library items"""
        self.get_subject(subject_id)
        removed = {}
        for table in ('library_items', 'resources', 'topics'):
            rows = self.store.select(table, {'subject_id': subject_id})
            for row in rows:
                self.store.delete(table, row['id'])
            removed[table] = len(rows)
        self.store.delete('subjects', subject_id)
        logger.info(f"🗑️ Subject {subject_id} deleted with {sum(removed.values())} dependent row(s)")
        return removed

    def seed_specialty(self, slug: str, created_by: Optional[str] = None) -> List[Dict[str, Any]]:
        template = SPECIALTY_TEMPLATES.get(slug)
        if template is None:
            raise NotFoundError(f"Specialty template {slug} not found")
        return [
            self.create_subject(
                subject['name'], created_by=created_by, topics=subject['topics'],
                icon=subject['icon'], color=subject['color'],
            )
            for subject in template
        ]

    # Topics

    def topics(self, subject_id: str) -> List[Dict[str, Any]]:
        return self.store.select('topics', {'subject_id': subject_id}, order=['sort_order'])

    def get_topic(self, topic_id: str) -> Dict[str, Any]:
        topic = self.store.get('topics', topic_id)
        if not topic:
            raise NotFoundError(f"Topic {topic_id} not found")
        return topic

    def create_topic(self, subject_id: str, name: str, description: Optional[str] = None,
                     created_by: Optional[str] = None) -> Dict[str, Any]:
        self.get_subject(subject_id)
        data = _pick({'name': name, 'description': description}, TOPIC_FIELDS)
        return self.store.insert('topics', {
            **data,
            'subject_id': subject_id,
            'sort_order': len(self.topics(subject_id)),
            'created_by': created_by,
            'is_system': False,
        })

    def update_topic(self, topic_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self.get_topic(topic_id)
        return self.store.update('topics', topic_id, _pick(patch, TOPIC_FIELDS))

    def delete_topic(self, topic_id: str):
        """Drop a topic; resources and library items keep their subject but lose the topic"""
        topic = self.get_topic(topic_id)
        for table in ('resources', 'library_items'):
            for row in self.store.select(table, {'topic_id': topic_id}):
                self.store.update(table, row['id'], {'topic_id': None})
        self.store.delete('topics', topic_id)

        remaining = self.topics(topic['subject_id'])
        current = {t['id']: t.get('sort_order') for t in remaining}
        for other_id, position in changed_orders([t['id'] for t in remaining], current).items():
            self.store.update('topics', other_id, {'sort_order': position})

    def _check_topic(self, subject_id: str, topic_id: Optional[str]):
        if topic_id and self.get_topic(topic_id)['subject_id'] != subject_id:
            raise ValidationError(f"Topic {topic_id} does not belong to subject {subject_id}")

    # Resources

    def resources(self, subject_id: Optional[str] = None, include_inactive: bool = False) -> List[Dict[str, Any]]:
        filters = {}
        if subject_id:
            filters['subject_id'] = subject_id
        if not include_inactive:
            filters['is_active'] = True
        try:
            return self.store.select('resources', filters, order=['-created_at'])
        except StoreError as e:
            logger.error(f"Error fetching resources: {e}")
            return []

    def get_resource(self, resource_id: str) -> Dict[str, Any]:
        resource = self.store.get('resources', resource_id)
        if not resource:
            raise NotFoundError(f"Resource {resource_id} not found")
        return resource

    def _validate_resource(self, subject_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        data = _pick(data, RESOURCE_FIELDS)
        if 'type' in data and data['type'] not in RESOURCE_TYPES:
            raise ValidationError(f"Unknown resource type: {data['type']}")
        if 'topic_id' in data:
            self._check_topic(subject_id, data['topic_id'])
        return data

    def create_resource(self, subject_id: str, name: str, **fields) -> Dict[str, Any]:
        self.get_subject(subject_id)
        data = self._validate_resource(subject_id, {'name': name, **fields})
        return self.store.insert('resources', {'type': 'other', **data, 'subject_id': subject_id})

    def update_resource(self, resource_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        resource = self.get_resource(resource_id)
        return self.store.update('resources', resource_id, self._validate_resource(resource['subject_id'], patch))

    def delete_resource(self, resource_id: str):
        self.get_resource(resource_id)
        self.store.delete('resources', resource_id)

    # Library

    def library_items(self, subject_id: str) -> List[Dict[str, Any]]:
        try:
            return self.store.select('library_items', {'subject_id': subject_id}, order=['day_offset', 'created_at'])
        except StoreError as e:
            logger.error(f"Error fetching library items: {e}")
            return []

    def create_library_item(self, subject_id: str, title: str, day_offset: int = 0, task_type: str = None,
                            settings: Optional[Dict[str, Any]] = None, topic_id: Optional[str] = None,
                            description: Optional[str] = None, duration_minutes: int = 0,
                            created_by: Optional[str] = None) -> Dict[str, Any]:
        self.get_subject(subject_id)
        self._check_topic(subject_id, topic_id)
        if not (title or '').strip():
            raise ValidationError("Library item title is required")
        if day_offset < 0:
            raise ValidationError("day_offset cannot be negative")
        if duration_minutes < 0:
            raise ValidationError("duration_minutes cannot be negative")
        task_type = parse_task_type(task_type).value
        return self.store.insert('library_items', {
            'subject_id': subject_id,
            'topic_id': topic_id,
            'title': title.strip(),
            'description': description,
            'task_type': task_type,
            'settings': validate_settings(task_type, settings),
            'duration_minutes': duration_minutes,
            'day_offset': day_offset,
            'created_by': created_by,
        })

    def delete_library_item(self, item_id: str):
        if not self.store.get('library_items', item_id):
            raise NotFoundError(f"Library item {item_id} not found")
        self.store.delete('library_items', item_id)

    def assign(self, subject_id: str, student_id: str, start_date, coach_id: Optional[str] = None,
               item_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Turn library items into the student's tasks; an item lands on start_date + day_offset"""
        self.get_subject(subject_id)
        start = _as_date(start_date) or local_now().date()
        items = self.library_items(subject_id)
        if item_ids is not None:
            missing = set(item_ids) - {item['id'] for item in items}
            if missing:
                raise ValidationError(f"Not in this subject's library: {', '.join(sorted(missing))}")
            items = [item for item in items if item['id'] in item_ids]

        manager = TaskManager(self.store)
        tasks = []
        for item in items:
            tasks.append(manager.create_task(
                student_id, item['title'],
                created_by=coach_id,
                description=item.get('description'),
                task_type=item.get('task_type'),
                settings=item.get('settings') or {},
                duration_minutes=item.get('duration_minutes') or 0,
                due_date=start + timedelta(days=item.get('day_offset') or 0),
                assigned_by=coach_id,
            ))
        logger.info(f"📋 Assigned {len(tasks)} library item(s) of {subject_id} to {student_id} from {start}")
        return tasks
