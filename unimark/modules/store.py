"""
Attendance Store Module - UniMark Geofenced Attendance System

Persistence boundary for sessions and attendance records. The managers only
talk to the ``AttendanceStore`` interface, so the backing store can be swapped
without touching session or check-in logic.

Two implementations are provided:
- InMemoryAttendanceStore: process-local dictionaries guarded by a lock
- SQLiteAttendanceStore: tables managed by DatabaseManager, with a
  UNIQUE(session_id, student_id) constraint on attendance

Both return copies of stored sessions; callers never hold a reference into
the store's own state.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from unimark.modules.attendance_manager import AttendanceRecord
from unimark.modules.exceptions import DuplicateAttendanceError, StorageError
from unimark.modules.geo_verifier import Coordinate
from unimark.modules.session_manager import Eligibility, Session, SessionStatus


class AttendanceStore:
    """Repository interface for sessions and attendance records."""

    def transaction(self):
        """Context manager for an all-or-nothing unit of work. Nested use joins the outer unit."""
        raise NotImplementedError

    # Sessions

    def add_session(self, session: Session) -> Session:
        raise NotImplementedError

    def get_session(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def list_sessions(self, university_id: Optional[str] = None,
                      faculty_id: Optional[str] = None) -> List[Session]:
        raise NotImplementedError

    def lookup_open_session_by_code(self, code: str, now: datetime) -> Optional[Session]:
        raise NotImplementedError

    def open_session_codes(self, now: datetime) -> Set[str]:
        raise NotImplementedError

    def set_session_active(self, session_id: str, is_active: bool) -> None:
        raise NotImplementedError

    def increment_attendance_count(self, session_id: str) -> int:
        raise NotImplementedError

    # Attendance

    def insert_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        raise NotImplementedError

    def find_attendance(self, session_id: str, student_id: str) -> Optional[AttendanceRecord]:
        raise NotImplementedError

    def attendance_for_student(self, student_id: str) -> List[AttendanceRecord]:
        raise NotImplementedError

    def attendance_for_session(self, session_id: str) -> List[AttendanceRecord]:
        raise NotImplementedError


def _latest_open(sessions, now: datetime) -> Optional[Session]:
    candidates = [s for s in sessions if s.status(now) is SessionStatus.OPEN]
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.start_time)


class InMemoryAttendanceStore(AttendanceStore):
    """
    Dictionary-backed store. State is lost when the process exits.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._local = threading.local()
        self._sessions: Dict[str, Session] = {}
        self._attendance: Dict[Tuple[str, str], AttendanceRecord] = {}

    @contextmanager
    def transaction(self):
        with self._lock:
            depth = getattr(self._local, 'depth', 0)
            if depth == 0:
                sessions_snapshot = {k: replace(v) for k, v in self._sessions.items()}
                attendance_snapshot = dict(self._attendance)
            self._local.depth = depth + 1
            try:
                yield self
            except Exception:
                if depth == 0:
                    self._sessions = sessions_snapshot
                    self._attendance = attendance_snapshot
                    self.logger.debug("In-memory transaction rolled back")
                raise
            finally:
                self._local.depth = depth

    def add_session(self, session: Session) -> Session:
        with self._lock:
            if session.id in self._sessions:
                raise StorageError(f"Session already exists: {session.id}")
            self._sessions[session.id] = replace(session)
            return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def list_sessions(self, university_id=None, faculty_id=None) -> List[Session]:
        with self._lock:
            return [
                replace(s) for s in self._sessions.values()
                if (university_id is None or s.university_id == university_id) and
                   (faculty_id is None or s.faculty_id == faculty_id)
            ]

    def lookup_open_session_by_code(self, code: str, now: datetime) -> Optional[Session]:
        with self._lock:
            session = _latest_open((s for s in self._sessions.values() if s.code == code), now)
            return replace(session) if session else None

    def open_session_codes(self, now: datetime) -> Set[str]:
        with self._lock:
            return {s.code for s in self._sessions.values() if s.status(now) is SessionStatus.OPEN}

    def _require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise StorageError(f"Session not found: {session_id}")
        return session

    def set_session_active(self, session_id: str, is_active: bool) -> None:
        with self._lock:
            self._require_session(session_id).is_active = bool(is_active)

    def increment_attendance_count(self, session_id: str) -> int:
        with self._lock:
            session = self._require_session(session_id)
            session.attendance_count += 1
            return session.attendance_count

    def insert_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        key = (record.session_id, record.student_id)
        with self._lock:
            if key in self._attendance:
                raise DuplicateAttendanceError()
            self._attendance[key] = record
            return record

    def find_attendance(self, session_id: str, student_id: str) -> Optional[AttendanceRecord]:
        with self._lock:
            return self._attendance.get((session_id, student_id))

    def attendance_for_student(self, student_id: str) -> List[AttendanceRecord]:
        with self._lock:
            return [r for r in self._attendance.values() if r.student_id == student_id]

    def attendance_for_session(self, session_id: str) -> List[AttendanceRecord]:
        with self._lock:
            return [r for r in self._attendance.values() if r.session_id == session_id]


class SQLiteAttendanceStore(AttendanceStore):
    """
    Store backed by the SQLite schema created in DatabaseManager.
    """

    def __init__(self, database_manager):
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def transaction(self):
        with self.db.transaction():
            yield self

    @staticmethod
    def _session_from_row(row) -> Session:
        return Session(
            id=row['id'],
            faculty_id=row['faculty_id'],
            faculty_name=row['faculty_name'],
            university_id=row['university_id'],
            code=row['code'],
            title=row['title'],
            eligibility=Eligibility(
                branches=json.loads(row['branches']),
                classes=json.loads(row['classes']),
                batches=json.loads(row['batches'])
            ),
            anchor=Coordinate(row['latitude'], row['longitude']),
            radius_meters=row['radius_meters'],
            start_time=datetime.fromisoformat(row['start_time']),
            end_time=datetime.fromisoformat(row['end_time']),
            is_active=bool(row['is_active']),
            attendance_count=row['attendance_count']
        )

    @staticmethod
    def _record_from_row(row) -> AttendanceRecord:
        return AttendanceRecord(
            id=row['id'],
            session_id=row['session_id'],
            student_id=row['student_id'],
            student_name=row['student_name'],
            timestamp=datetime.fromisoformat(row['timestamp']),
            location=Coordinate(row['latitude'], row['longitude']),
            verified=bool(row['verified'])
        )

    def add_session(self, session: Session) -> Session:
        eligibility = session.eligibility.to_dict()
        try:
            self.db.execute_update(
                """INSERT INTO sessions (id, faculty_id, faculty_name, university_id, code, title,
                                         branches, classes, batches, latitude, longitude,
                                         radius_meters, start_time, end_time, is_active,
                                         attendance_count)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (session.id, session.faculty_id, session.faculty_name, session.university_id,
                 session.code, session.title,
                 json.dumps(eligibility['branches']), json.dumps(eligibility['classes']),
                 json.dumps(eligibility['batches']),
                 session.anchor.latitude, session.anchor.longitude, session.radius_meters,
                 session.start_time.isoformat(), session.end_time.isoformat(),
                 int(session.is_active), session.attendance_count)
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store session {session.id}: {e}")
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        row = self.db.execute_query("SELECT * FROM sessions WHERE id = ?", (session_id,), fetch_all=False)
        return self._session_from_row(row) if row else None

    def list_sessions(self, university_id=None, faculty_id=None) -> List[Session]:
        conditions = []
        params = []
        if university_id is not None:
            conditions.append("university_id = ?")
            params.append(university_id)
        if faculty_id is not None:
            conditions.append("faculty_id = ?")
            params.append(faculty_id)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        rows = self.db.execute_query(
            f"SELECT * FROM sessions WHERE {where_clause} ORDER BY start_time DESC", params
        )
        return [self._session_from_row(row) for row in rows]

    def lookup_open_session_by_code(self, code: str, now: datetime) -> Optional[Session]:
        rows = self.db.execute_query(
            "SELECT * FROM sessions WHERE code = ? AND is_active = 1", (code,)
        )
        return _latest_open((self._session_from_row(row) for row in rows), now)

    def open_session_codes(self, now: datetime) -> Set[str]:
        rows = self.db.execute_query("SELECT * FROM sessions WHERE is_active = 1")
        return {
            session.code for session in map(self._session_from_row, rows)
            if session.status(now) is SessionStatus.OPEN
        }

    def set_session_active(self, session_id: str, is_active: bool) -> None:
        affected_rows = self.db.execute_update(
            "UPDATE sessions SET is_active = ? WHERE id = ?", (int(is_active), session_id)
        )
        if affected_rows == 0:
            raise StorageError(f"Session not found: {session_id}")

    def increment_attendance_count(self, session_id: str) -> int:
        with self.db.transaction():
            affected_rows = self.db.execute_update(
                "UPDATE sessions SET attendance_count = attendance_count + 1 WHERE id = ?",
                (session_id,)
            )
            if affected_rows == 0:
                raise StorageError(f"Session not found: {session_id}")
            row = self.db.execute_query(
                "SELECT attendance_count FROM sessions WHERE id = ?", (session_id,), fetch_all=False
            )
            return row['attendance_count']

    def insert_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        try:
            self.db.execute_update(
                """INSERT INTO attendance (id, session_id, student_id, student_name, timestamp,
                                           latitude, longitude, verified)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (record.id, record.session_id, record.student_id, record.student_name,
                 record.timestamp.isoformat(), record.location.latitude,
                 record.location.longitude, int(record.verified))
            )
        except sqlite3.IntegrityError as e:
            if 'UNIQUE' in str(e).upper():
                raise DuplicateAttendanceError()
            raise StorageError(f"Failed to store attendance {record.id}: {e}")
        return record

    def find_attendance(self, session_id: str, student_id: str) -> Optional[AttendanceRecord]:
        row = self.db.execute_query(
            "SELECT * FROM attendance WHERE session_id = ? AND student_id = ?",
            (session_id, student_id),
            fetch_all=False
        )
        return self._record_from_row(row) if row else None

    def attendance_for_student(self, student_id: str) -> List[AttendanceRecord]:
        rows = self.db.execute_query(
            "SELECT * FROM attendance WHERE student_id = ? ORDER BY timestamp", (student_id,)
        )
        return [self._record_from_row(row) for row in rows]

    def attendance_for_session(self, session_id: str) -> List[AttendanceRecord]:
        rows = self.db.execute_query(
            "SELECT * FROM attendance WHERE session_id = ? ORDER BY timestamp", (session_id,)
        )
        return [self._record_from_row(row) for row in rows]


def create_store(config, database_manager=None) -> AttendanceStore:
    """
    Build the store selected by ``config.STORAGE_BACKEND``.
    """
    backend = config.STORAGE_BACKEND
    if backend == 'memory':
        return InMemoryAttendanceStore()
    if backend == 'sqlite':
        if database_manager is None:
            raise ValueError("SQLite storage requires a DatabaseManager")
        return SQLiteAttendanceStore(database_manager)
    raise ValueError(f"Unknown storage backend: {backend}")
