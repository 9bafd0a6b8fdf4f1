import logging
import re
from typing import Any, Dict, List, Optional

from coaching.errors import NotFoundError, PermissionDenied, ValidationError
from database.row_store import RowStore, StoreError

logger = logging.getLogger()

ROLES = ('student', 'coach', 'admin')
DEFAULT_ROLE_LABEL = 'General Coach'

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class UserService:
    def __init__(self, store: RowStore = None):
        self.store = store or RowStore()

    # Users

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.store.get('users', user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def list_users(self, role: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            users = self.store.select('users', order=['name'])
        except StoreError as e:
            logger.error(f"Error fetching users: {e}")
            return []
        return [u for u in users if role is None or role in (u.get('roles') or [])]

    def coaches(self) -> List[Dict[str, Any]]:
        return self.list_users('coach')

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if 'email' in data:
            data['email'] = (data['email'] or '').strip().lower()
            if not _EMAIL_RE.match(data['email']):
                raise ValidationError(f"Invalid email: {data['email']}")
        if 'name' in data and not (data['name'] or '').strip():
            raise ValidationError("Name is required")
        if 'roles' in data:
            roles = list(dict.fromkeys(data['roles'] or []))
            if not roles or any(r not in ROLES for r in roles):
                raise ValidationError(f"Roles must be a non-empty subset of {', '.join(ROLES)}")
            data['roles'] = roles
        return data

    def create_user(self, email: str, name: str, roles: Optional[List[str]] = None, **fields) -> Dict[str, Any]:
        data = self._validate({'email': email, 'name': name, 'roles': roles or ['student'], **fields})
        if self.store.select('users', {'email': data['email']}):
            raise ValidationError(f"A user with email {data['email']} already exists")
        user = self.store.insert('users', data)
        logger.info(f"👤 User created: {user['email']} {user['roles']}")
        return user

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self.get_user(user_id)
        patch = self._validate({k: v for k, v in patch.items() if k != 'id'})
        return self.store.update('users', user_id, patch)

    def delete_user(self, user_id: str):
        """Remove a user with the coaching links that point at them"""
        self.get_user(user_id)
        for column in ('coach_id', 'student_id'):
            for link in self.store.select('user_relationships', {column: user_id}):
                self.store.delete('user_relationships', link['id'])
        self.store.delete('users', user_id)
        logger.info(f"User {user_id} deleted")

    # Coach / student links

    def assign_coach(self, student_id: str, coach_id: str, role_label: str = DEFAULT_ROLE_LABEL) -> Dict[str, Any]:
        """Link a coach to a student; a student may have several coaches with different labels"""
        student = self.get_user(student_id)
        coach = self.get_user(coach_id)
        if 'coach' not in (coach.get('roles') or []) and 'admin' not in (coach.get('roles') or []):
            raise ValidationError(f"{coach['name']} is not a coach")
        if student_id == coach_id:
            raise ValidationError("A user cannot coach themselves")

        existing = self.store.select('user_relationships', {
            'coach_id': coach_id, 'student_id': student_id, 'role_label': role_label,
        })
        if existing:
            return self.store.update('user_relationships', existing[0]['id'], {'is_active': True})
        link = self.store.insert('user_relationships', {
            'coach_id': coach_id,
            'student_id': student_id,
            'role_label': role_label or DEFAULT_ROLE_LABEL,
            'is_active': True,
        })
        logger.info(f"🤝 {coach['name']} now coaches {student['name']} as {link['role_label']}")
        return link

    def remove_coach(self, relationship_id: str):
        if not self.store.delete('user_relationships', relationship_id):
            raise NotFoundError(f"Relationship {relationship_id} not found")

    def students_of(self, coach_id: str) -> List[Dict[str, Any]]:
        try:
            links = self.store.select('user_relationships', {'coach_id': coach_id, 'is_active': True})
        except StoreError as e:
            logger.error(f"Error fetching students: {e}")
            return []
        students = []
        for link in links:
            student = self.store.get('users', link['student_id'])
            if student:
                students.append({
                    'id': student['id'],
                    'name': student['name'],
                    'email': student['email'],
                    'relationship_id': link['id'],
                    'role': link.get('role_label') or DEFAULT_ROLE_LABEL,
                })
        return students

    def coaches_of(self, student_id: str) -> List[Dict[str, Any]]:
        links = self.store.select('user_relationships', {'student_id': student_id, 'is_active': True})
        return [{**link, 'coach': self.store.get('users', link['coach_id'])} for link in links]

    # Permissions

    def has_role(self, user_id: str, role: str) -> bool:
        user = self.store.get('users', user_id)
        return bool(user and role in (user.get('roles') or []))

    def require_role(self, user_id: str, *roles: str) -> Dict[str, Any]:
        user = self.get_user(user_id)
        if not set(roles) & set(user.get('roles') or []):
            raise PermissionDenied(f"{', '.join(roles)} role required")
        return user

    def can_manage(self, actor_id: str, student_id: str) -> bool:
        """Self, an admin, or an active coach of the student"""
        if actor_id == student_id:
            return True
        if self.has_role(actor_id, 'admin'):
            return True
        return bool(self.store.select('user_relationships', {
            'coach_id': actor_id, 'student_id': student_id, 'is_active': True,
        }))

    def require_manage(self, actor_id: str, student_id: str):
        if not self.can_manage(actor_id, student_id):
            raise PermissionDenied("Not allowed to manage this student")

    # Telegram

    def link_telegram(self, email: str, chat_id: str) -> Optional[Dict[str, Any]]:
        users = self.store.select('users', {'email': (email or '').strip().lower()})
        if not users:
            return None
        return self.store.update('users', users[0]['id'], {'telegram_chat_id': str(chat_id)})

    def by_telegram_chat(self, chat_id: str) -> Optional[Dict[str, Any]]:
        users = self.store.select('users', {'telegram_chat_id': str(chat_id)})
        return users[0] if users else None
