"""
Authentication Manager Module - UniMark Geofenced Attendance System

This module handles user accounts, role-based access control and the
check-in proof capability used by the attendance gate.

Roles form a closed enumeration; every capability check dispatches on the
role tag rather than on the shape of the user record.

Features:
- User authentication with hashed passwords
- Login attempt tracking and lockout
- Role-based permissions and landing pages
- User account creation and lookup
- Pluggable check-in proof verification (PIN placeholder)
"""

from werkzeug.security import generate_password_hash, check_password_hash
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import re
import threading
import uuid

from unimark.modules.exceptions import PermissionDenied


class UserRole(str, Enum):
    SUPER_ADMIN = 'super-admin'
    UNIVERSITY_ADMIN = 'university-admin'
    FACULTY = 'faculty'
    STUDENT = 'student'


PERMISSIONS = {
    UserRole.SUPER_ADMIN: frozenset([
        'manage_universities', 'manage_users', 'view_platform_stats', 'export_data'
    ]),
    UserRole.UNIVERSITY_ADMIN: frozenset([
        'manage_users', 'view_university_sessions', 'view_analytics', 'export_data'
    ]),
    UserRole.FACULTY: frozenset([
        'create_session', 'close_session', 'view_own_sessions', 'export_data'
    ]),
    UserRole.STUDENT: frozenset([
        'mark_attendance', 'view_own_attendance'
    ])
}

LANDING_PAGES = {
    UserRole.SUPER_ADMIN: '/super-admin',
    UserRole.UNIVERSITY_ADMIN: '/university-admin',
    UserRole.FACULTY: '/faculty',
    UserRole.STUDENT: '/student'
}


@dataclass
class User:
    """Account information for any role."""
    id: str
    username: str
    email: str
    name: str
    role: UserRole
    university_id: Optional[str] = None
    university_name: Optional[str] = None
    branch: Optional[str] = None
    class_name: Optional[str] = None
    batch: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'User':
        created_at = row.get('created_at')
        return cls(
            id=row['id'],
            username=row['username'],
            email=row['email'],
            name=row['name'],
            role=UserRole(row['role']),
            university_id=row.get('university_id'),
            university_name=row.get('university_name'),
            branch=row.get('branch'),
            class_name=row.get('class_name'),
            batch=row.get('batch'),
            is_active=bool(row.get('is_active', 1)),
            created_at=datetime.fromisoformat(created_at) if created_at else None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'name': self.name,
            'role': self.role.value,
            'university_id': self.university_id,
            'university_name': self.university_name,
            'branch': self.branch,
            'class': self.class_name,
            'batch': self.batch
        }


class AuthProofVerifier:
    """
    Capability that decides whether a check-in proof is acceptable.
    Substitute a biometric attestation or TOTP implementation here.
    """

    def verify(self, student: User, proof: Optional[str]) -> bool:
        raise NotImplementedError


class PinProofVerifier(AuthProofVerifier):
    """Placeholder policy: any PIN of exactly ``length`` ASCII digits is accepted."""

    def __init__(self, length: int = 4):
        self.length = length

    def verify(self, student: User, proof: Optional[str]) -> bool:
        if not isinstance(proof, str) or len(proof) != self.length:
            return False
        return proof.isascii() and proof.isdigit()


class AuthManager:
    """
    Authentication and authorization management.
    Handles login, lockout and account management on top of the database manager.
    """

    def __init__(self, database_manager, config):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            config: Configuration class
        """
        self.db = database_manager
        self.config = config
        self.logger = logging.getLogger(__name__)

        # Failed login attempts tracking
        self.failed_attempts = {}
        self._attempts_lock = threading.Lock()

        self.logger.info("Authentication manager initialized")

    def authenticate_user(self, username: str, password: str,
                          role: UserRole) -> Optional[User]:
        """
        Authenticate user with username (or email), password and selected role.

        Args:
            username (str): Username or email address
            password (str): Password
            role (UserRole): Role selected at login

        Returns:
            User: User if authenticated, None otherwise
        """
        role = UserRole(role)

        if self._is_account_locked(username):
            self.logger.warning(f"Authentication attempt for locked account: {username}")
            return None

        try:
            row = self.db.execute_query(
                """SELECT u.*, un.name AS university_name
                   FROM users u
                   LEFT JOIN universities un ON u.university_id = un.id
                   WHERE (u.username = ? OR u.email = ?) AND u.is_active = 1""",
                (username, username),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Authentication error for user {username}: {str(e)}")
            return None

        if not row:
            self._record_failed_attempt(username)
            self.logger.warning(f"Authentication failed - user not found: {username}")
            return None

        if not check_password_hash(row['password_hash'], password):
            self._record_failed_attempt(username)
            self.logger.warning(f"Authentication failed - invalid password: {username}")
            return None

        if row['role'] != role.value:
            self._record_failed_attempt(username)
            self.logger.warning(f"Authentication failed - role mismatch for {username}: "
                                f"requested {role.value}, account is {row['role']}")
            return None

        self._clear_failed_attempts(username)
        self.logger.info(f"User authenticated successfully: {username} ({role.value})")
        return User.from_row(row)

    def create_user(self, username: str, password: str, name: str, email: str,
                    role: UserRole, university_id: str = None, branch: str = None,
                    class_name: str = None, batch: str = None,
                    created_by: str = None) -> Dict[str, Any]:
        """
        Create a new user account.

        Returns:
            Dict[str, Any]: Creation result with the new user on success
        """
        try:
            role = UserRole(role)
        except ValueError:
            return {'success': False, 'error': f'Unknown role: {role}'}

        validation_result = self._validate_user_data(username, password, email)
        if not validation_result['valid']:
            return {'success': False, 'error': validation_result['error']}

        try:
            existing_user = self.db.execute_query(
                "SELECT id FROM users WHERE username = ? OR email = ?",
                (username, email),
                fetch_all=False
            )
            if existing_user:
                return {'success': False, 'error': 'Username or email already exists'}

            user_id = str(uuid.uuid4())
            self.db.execute_update(
                """INSERT INTO users (id, username, email, password_hash, name, role,
                                      university_id, branch, class_name, batch, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (user_id, username, email, generate_password_hash(password), name, role.value,
                 university_id, branch, class_name, batch, datetime.now(timezone.utc).isoformat())
            )

            self.logger.info(f"User created successfully: {username} ({role.value}, ID: {user_id}) by {created_by}")
            return {
                'success': True,
                'user': self.get_user_by_id(user_id),
                'message': 'User account created successfully'
            }

        except Exception as e:
            self.logger.error(f"User creation failed for {username}: {str(e)}")
            return {'success': False, 'error': 'Failed to create user account'}

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        try:
            row = self.db.execute_query(
                """SELECT u.*, un.name AS university_name
                   FROM users u
                   LEFT JOIN universities un ON u.university_id = un.id
                   WHERE u.id = ?""",
                (user_id,),
                fetch_all=False
            )
            return User.from_row(row) if row else None
        except Exception as e:
            self.logger.error(f"Failed to get user {user_id}: {str(e)}")
            return None

    def get_users(self, role: Optional[UserRole] = None,
                  university_id: Optional[str] = None) -> List[User]:
        """
        List active users, optionally filtered by role and university.
        """
        conditions = ["u.is_active = 1"]
        params = []
        if role is not None:
            conditions.append("u.role = ?")
            params.append(UserRole(role).value)
        if university_id is not None:
            conditions.append("u.university_id = ?")
            params.append(university_id)

        try:
            rows = self.db.execute_query(f"""
                SELECT u.*, un.name AS university_name
                FROM users u
                LEFT JOIN universities un ON u.university_id = un.id
                WHERE {' AND '.join(conditions)}
                ORDER BY u.role, u.name
            """, params)
            return [User.from_row(row) for row in rows]
        except Exception as e:
            self.logger.error(f"Failed to get users: {str(e)}")
            return []

    def deactivate_user(self, user_id: str, deactivated_by: str = None) -> bool:
        try:
            affected_rows = self.db.execute_update(
                "UPDATE users SET is_active = 0 WHERE id = ?",
                (user_id,)
            )
            if affected_rows > 0:
                self.logger.info(f"User {user_id} deactivated by {deactivated_by}")
                return True
            return False
        except Exception as e:
            self.logger.error(f"Failed to deactivate user {user_id}: {str(e)}")
            return False

    @staticmethod
    def get_user_permissions(role: UserRole) -> frozenset:
        return PERMISSIONS[UserRole(role)]

    def has_permission(self, user: User, permission: str) -> bool:
        return permission in self.get_user_permissions(user.role)

    def require_permission(self, user: User, permission: str) -> None:
        """
        Raise PermissionDenied unless the user's role grants ``permission``.
        """
        if user is None or not self.has_permission(user, permission):
            self.logger.warning(f"Permission denied: {getattr(user, 'id', None)} lacks {permission}")
            raise PermissionDenied(f"Your role does not allow {permission.replace('_', ' ')}")

    @staticmethod
    def landing_page(role: UserRole) -> str:
        return LANDING_PAGES[UserRole(role)]

    def _validate_user_data(self, username: str, password: str, email: str) -> Dict[str, Any]:
        if not username or len(username) < 3:
            return {'valid': False, 'error': 'Username must be at least 3 characters long'}

        if not re.match(r'^[a-zA-Z0-9_.-]+$', username):
            return {'valid': False, 'error': 'Username can only contain letters, numbers, dots, hyphens, and underscores'}

        if not password or len(password) < self.config.PASSWORD_MIN_LENGTH:
            return {'valid': False, 'error': f'Password must be at least {self.config.PASSWORD_MIN_LENGTH} characters long'}

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not email or not re.match(email_pattern, email):
            return {'valid': False, 'error': 'Invalid email address format'}

        return {'valid': True}

    def _is_expired(self, attempt_data: Dict[str, Any], now: datetime) -> bool:
        return now - attempt_data['last_attempt'] > self.config.LOGIN_LOCKOUT_DURATION

    def _is_account_locked(self, username: str) -> bool:
        with self._attempts_lock:
            attempt_data = self.failed_attempts.get(username)
            if attempt_data is None:
                return False

            if self._is_expired(attempt_data, datetime.now(timezone.utc)):
                del self.failed_attempts[username]
                return False

            return attempt_data['count'] >= self.config.MAX_LOGIN_ATTEMPTS

    def _record_failed_attempt(self, username: str) -> None:
        now = datetime.now(timezone.utc)
        with self._attempts_lock:
            expired = [name for name, data in self.failed_attempts.items() if self._is_expired(data, now)]
            for name in expired:
                del self.failed_attempts[name]

            attempt_data = self.failed_attempts.setdefault(username, {'count': 0, 'last_attempt': now})
            attempt_data['count'] += 1
            attempt_data['last_attempt'] = now
            count = attempt_data['count']

        self.logger.warning(f"Failed login attempt {count} for {username}")

    def _clear_failed_attempts(self, username: str) -> None:
        with self._attempts_lock:
            self.failed_attempts.pop(username, None)
