import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from errors import NotFoundError, ValidationError

ROLE_PERMISSIONS = {
    'admin': ['view', 'add', 'edit', 'delete', 'attendance', 'reports', 'manage_users'],
    'teacher': ['view', 'edit', 'attendance', 'reports'],
    'student': ['view_own'],
}

ROLE_NAMES = {
    'admin': 'Administrator',
    'teacher': 'Teacher',
    'student': 'Student',
}

DEFAULT_ADMIN_ID = '1'


def default_users() -> List[Dict]:
    return [
        {
            'id': DEFAULT_ADMIN_ID,
            'username': 'admin',
            'password_hash': generate_password_hash('admin123'),
            'role': 'admin',
            'name': 'Administrator',
            'email': 'admin@school.com',
        },
        {
            'id': '2',
            'username': 'teacher',
            'password_hash': generate_password_hash('teacher123'),
            'role': 'teacher',
            'name': 'John Teacher',
            'email': 'teacher@school.com',
        },
    ]


def public_user(user: Dict) -> Dict:
    return {k: v for k, v in user.items() if k != 'password_hash'}


def has_permission(user: Optional[Dict], permission: str) -> bool:
    if not user:
        return False
    return permission in ROLE_PERMISSIONS.get(user.get('role'), [])


def role_display(role: Optional[str]) -> str:
    return ROLE_NAMES.get(role, 'Unknown')


class AuthManager:
    """User accounts and roles. Seeds the default admin and teacher on first use."""

    def __init__(self, storage):
        self.logger = logging.getLogger(__name__)
        self.storage = storage
        self.users: List[Dict] = []
        self._last_id = 0

    def load(self) -> List[Dict]:
        users = self.storage.load_all()
        if not users:
            users = default_users()
            self.storage.save_all(users)
            self.logger.info("Created default admin and teacher accounts")
        self.users = users
        self._last_id = max((int(u['id']) for u in users if str(u.get('id')).isdigit()), default=0)
        return self.all_users()

    def _next_id(self) -> str:
        self._last_id = max(time.time_ns() // 1_000_000, self._last_id + 1)
        return str(self._last_id)

    def _save(self, users: List[Dict]) -> None:
        self.storage.save_all(users)
        self.users = users

    def get_user(self, user_id: str) -> Optional[Dict]:
        for user in self.users:
            if user['id'] == user_id:
                return public_user(user)
        return None

    def authenticate(self, username: str, password: str) -> Optional[Dict]:
        for user in self.users:
            if user['username'] == username and check_password_hash(user['password_hash'], password or ''):
                return public_user(user)
        self.logger.warning(f"Failed login for {username}")
        return None

    def is_username_unique(self, username: str, exclude_id: Optional[str] = None) -> bool:
        return not any(
            u['username'].lower() == username.lower() and u['id'] != exclude_id
            for u in self.users
        )

    def is_email_unique(self, email: str, exclude_id: Optional[str] = None) -> bool:
        return not any(
            u['email'].lower() == email.lower() and u['id'] != exclude_id
            for u in self.users
        )

    def add_user(self, data: Dict, created_by: str = 'System') -> Dict:
        fields = {}
        for field in ['username', 'password', 'role', 'name', 'email']:
            value = str(data.get(field) or '').strip()
            if not value:
                raise ValidationError(field, f"{field.capitalize()} is required")
            fields[field] = value

        if fields['role'] not in ROLE_PERMISSIONS:
            raise ValidationError('role', 'Please select a role')
        if not self.is_username_unique(fields['username']):
            raise ValidationError('username', 'Username already exists')
        if not self.is_email_unique(fields['email']):
            raise ValidationError('email', 'Email already exists')

        user = {
            'id': self._next_id(),
            'username': fields['username'],
            'password_hash': generate_password_hash(fields['password']),
            'role': fields['role'],
            'name': fields['name'],
            'email': fields['email'],
            'created_at': datetime.now().isoformat(timespec='seconds'),
            'created_by': created_by,
        }
        self._save(self.users + [user])
        self.logger.info(f"Added {user['role']} account {user['username']}")
        return public_user(user)

    def all_users(self) -> List[Dict]:
        return [public_user(u) for u in self.users]

    def delete_user(self, user_id: str, current_user_id: Optional[str] = None) -> None:
        if user_id == DEFAULT_ADMIN_ID:
            raise ValidationError('id', 'Cannot delete default admin account')
        if user_id == current_user_id:
            raise ValidationError('id', 'Cannot delete your own account')
        if not any(u['id'] == user_id for u in self.users):
            raise NotFoundError('User', user_id)

        self._save([u for u in self.users if u['id'] != user_id])
        self.logger.info(f"Deleted user {user_id}")
