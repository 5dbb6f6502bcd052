"""
Session Manager Module - UniMark Geofenced Attendance System

This module owns the lifecycle of faculty-created attendance sessions:
code generation, the active time window, the geofence and the roster
(branch/class/batch) restrictions that decide who may check in.

Session state is derived from timestamps at query time. The stored
``is_active`` flag only records an early close by the owner, so a session
whose end time has passed is closed even if nobody ever flipped the flag.

Features:
- Session creation with collision-free codes among open sessions
- Derived Scheduled / Open / Closed status
- Eligibility filters with empty-set wildcards
- Owner-only early close
- Attendance counter maintenance
"""

import logging
import math
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from unimark.modules.auth_manager import UserRole
from unimark.modules.exceptions import (
    InvalidDuration, InvalidRadius, PermissionDenied, SessionCodeExhausted
)
from unimark.modules.geo_verifier import Coordinate


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    SCHEDULED = 'scheduled'
    OPEN = 'open'
    CLOSED = 'closed'


def _name_set(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(v.strip() for v in values if v and v.strip())


@dataclass(frozen=True)
class Eligibility:
    """Roster restriction for a session. An empty set admits everyone."""
    branches: FrozenSet[str] = field(default_factory=frozenset)
    classes: FrozenSet[str] = field(default_factory=frozenset)
    batches: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, 'branches', _name_set(self.branches))
        object.__setattr__(self, 'classes', _name_set(self.classes))
        object.__setattr__(self, 'batches', _name_set(self.batches))

    @staticmethod
    def _admits(allowed: FrozenSet[str], value: Optional[str]) -> bool:
        if not allowed:
            return True
        return value is not None and value.strip() in allowed

    def matches(self, branch: Optional[str], class_name: Optional[str],
                batch: Optional[str]) -> bool:
        return (self._admits(self.branches, branch) and
                self._admits(self.classes, class_name) and
                self._admits(self.batches, batch))

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            'branches': sorted(self.branches),
            'classes': sorted(self.classes),
            'batches': sorted(self.batches)
        }


@dataclass
class Session:
    """A time-boxed, location-anchored attendance-taking event."""
    id: str
    faculty_id: str
    faculty_name: str
    university_id: Optional[str]
    code: str
    title: str
    eligibility: Eligibility
    anchor: Coordinate
    radius_meters: float
    start_time: datetime
    end_time: datetime
    is_active: bool = True
    attendance_count: int = 0

    def status(self, now: datetime) -> SessionStatus:
        if not self.is_active or now >= self.end_time:
            return SessionStatus.CLOSED
        if now < self.start_time:
            return SessionStatus.SCHEDULED
        return SessionStatus.OPEN

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'faculty_id': self.faculty_id,
            'faculty_name': self.faculty_name,
            'university_id': self.university_id,
            'code': self.code,
            'title': self.title,
            'location': self.anchor.to_dict(),
            'radius_meters': self.radius_meters,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'is_active': self.is_active,
            'attendance_count': self.attendance_count
        }
        data.update(self.eligibility.to_dict())
        if now is not None:
            data['status'] = self.status(now).value
        return data


class SessionManager:
    """
    Lifecycle management for attendance sessions.
    All persistence goes through the injected attendance store.
    """

    def __init__(self, store, config, code_generator: Optional[Callable[[], str]] = None):
        """
        Initialize the session manager.

        Args:
            store: AttendanceStore instance
            config: Configuration class
            code_generator: Optional zero-argument callable returning codes
        """
        self.store = store
        self.config = config
        self.code_generator = code_generator or self.generate_session_code
        self.logger = logging.getLogger(__name__)

        self.logger.info("Session manager initialized")

    def generate_session_code(self) -> str:
        """
        Generate a random numeric session code.

        Returns:
            str: Code of SESSION_CODE_LENGTH digits within [SESSION_CODE_MIN, SESSION_CODE_MAX]
        """
        low = self.config.SESSION_CODE_MIN
        high = self.config.SESSION_CODE_MAX
        value = low + secrets.randbelow(high - low + 1)
        return str(value).zfill(self.config.SESSION_CODE_LENGTH)

    def _allocate_code(self, now: datetime) -> str:
        taken = self.store.open_session_codes(now)
        for attempt in range(1, self.config.SESSION_CODE_MAX_ATTEMPTS + 1):
            code = self.code_generator()
            if code not in taken:
                return code
            self.logger.debug(f"Session code collision on attempt {attempt}: {code}")

        self.logger.error(f"No free session code after {self.config.SESSION_CODE_MAX_ATTEMPTS} attempts")
        raise SessionCodeExhausted()

    def create(self, faculty, title: str, anchor: Coordinate,
               radius_meters: Optional[float] = None,
               eligibility: Optional[Eligibility] = None,
               duration_minutes: Optional[float] = None,
               now: Optional[datetime] = None) -> Session:
        """
        Create and persist a new open session.

        Args:
            faculty: Owning faculty user
            title (str): Session title
            anchor (Coordinate): Geofence center
            radius_meters (float): Geofence radius, defaults to DEFAULT_GEOFENCE_RADIUS_METERS
            eligibility (Eligibility): Roster restriction, defaults to everyone
            duration_minutes (float): Length of the session, defaults to DEFAULT_SESSION_DURATION_MINUTES
            now (datetime): Creation time, defaults to the current UTC time

        Returns:
            Session: The created session

        Raises:
            PermissionDenied: The actor is not a faculty member
            InvalidDuration: Duration is not a finite positive length of time
            InvalidRadius: Radius is not a finite positive distance
            SessionCodeExhausted: No unused code could be generated
        """
        if getattr(faculty, 'role', None) is not UserRole.FACULTY:
            raise PermissionDenied("Only faculty members can create sessions")

        if duration_minutes is None:
            duration_minutes = self.config.DEFAULT_SESSION_DURATION_MINUTES
        if radius_meters is None:
            radius_meters = self.config.DEFAULT_GEOFENCE_RADIUS_METERS

        if not (math.isfinite(duration_minutes) and duration_minutes > 0):
            raise InvalidDuration()
        if not (math.isfinite(radius_meters) and radius_meters > 0):
            raise InvalidRadius()

        now = now or now_utc()

        try:
            end_time = now + timedelta(minutes=duration_minutes)
        except OverflowError:
            raise InvalidDuration()
        # Sub-microsecond durations round down to an empty window
        if end_time <= now:
            raise InvalidDuration()

        with self.store.transaction():
            session = Session(
                id=str(uuid.uuid4()),
                faculty_id=faculty.id,
                faculty_name=faculty.name,
                university_id=faculty.university_id,
                code=self._allocate_code(now),
                title=title.strip() if title else 'Untitled Session',
                eligibility=eligibility or Eligibility(),
                anchor=anchor,
                radius_meters=float(radius_meters),
                start_time=now,
                end_time=end_time,
                is_active=True,
                attendance_count=0
            )
            self.store.add_session(session)

        self.logger.info(f"Session created: {session.title} (code {session.code}) by {faculty.id}, "
                         f"radius {session.radius_meters}m, ends {session.end_time.isoformat()}")
        return session

    def is_open(self, session: Session, now: Optional[datetime] = None) -> bool:
        now = now or now_utc()
        return session.is_active and session.start_time <= now < session.end_time

    def is_eligible(self, session: Session, student) -> bool:
        return session.eligibility.matches(
            getattr(student, 'branch', None),
            getattr(student, 'class_name', None),
            getattr(student, 'batch', None)
        )

    def close(self, session: Session, actor=None) -> Session:
        """
        Close a session early. Closing an already closed session is a no-op.

        Args:
            session (Session): Session to close
            actor: Optional user performing the close; must own the session

        Returns:
            Session: The closed session
        """
        if actor is not None and actor.id != session.faculty_id:
            raise PermissionDenied("Only the owning faculty member can close this session")

        if not session.is_active:
            return session

        self.store.set_session_active(session.id, False)
        session.is_active = False
        self.logger.info(f"Session closed: {session.id} (code {session.code})")
        return session

    def record_attendance(self, session: Session) -> int:
        """
        Increment the session attendance counter by one.
        Callers serialize this with the attendance insert.

        Returns:
            int: New attendance count
        """
        self.store.increment_attendance_count(session.id)
        session.attendance_count += 1
        return session.attendance_count

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.store.get_session(session_id)

    def get_sessions(self, university_id: Optional[str] = None,
                     faculty_id: Optional[str] = None) -> List[Session]:
        return self.store.list_sessions(university_id=university_id, faculty_id=faculty_id)

    def get_active_sessions(self, now: Optional[datetime] = None, **filters) -> List[Session]:
        now = now or now_utc()
        return [s for s in self.get_sessions(**filters) if s.status(now) is SessionStatus.OPEN]

    def get_past_sessions(self, now: Optional[datetime] = None, **filters) -> List[Session]:
        now = now or now_utc()
        return [s for s in self.get_sessions(**filters) if s.status(now) is SessionStatus.CLOSED]
