"""
Attendance Manager Module - UniMark Geofenced Attendance System

This module is the single entry point that turns a student's check-in attempt
(session code, identity, observed location, proof) into either a committed
attendance record or a named rejection.

Checks run in a fixed order and the first failure wins:

1. the code resolves to an open session       -> SessionNotFound
2. a device location is available             -> LocationUnavailable
3. the student matches the session roster     -> NotEligible
4. the location is inside the geofence        -> OutOfRange
5. the proof is accepted                      -> AuthenticationFailed
6. the student has not already checked in     -> AlreadyMarked

Only when all checks pass is a record inserted and the session counter
incremented, both inside one serialized store transaction.

Features:
- Ordered, side-effect-free validation
- Exactly-once commit per (session, student)
- Two-phase flow support (code verification before PIN entry)
- Student and session attendance history
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import threading
import uuid

from unimark.modules.exceptions import (
    AlreadyMarked, AuthenticationFailed, DuplicateAttendanceError,
    LocationUnavailable, NotEligible, OutOfRange, SessionNotFound
)
from unimark.modules.geo_verifier import Coordinate
from unimark.modules.session_manager import Session, now_utc


@dataclass(frozen=True)
class AttendanceRecord:
    """Data class for attendance record structure."""
    id: str
    session_id: str
    student_id: str
    student_name: str
    timestamp: datetime
    location: Coordinate
    verified: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'session_id': self.session_id,
            'student_id': self.student_id,
            'student_name': self.student_name,
            'timestamp': self.timestamp.isoformat(),
            'location': self.location.to_dict(),
            'verified': self.verified
        }


class AttendanceManager:
    """
    Orchestrates geofenced check-in and owns the attendance history.
    """

    def __init__(self, store, session_manager, geo_verifier, proof_verifier):
        """
        Initialize the attendance manager.

        Args:
            store: AttendanceStore instance
            session_manager: SessionManager instance
            geo_verifier: GeoVerifier instance
            proof_verifier: AuthProofVerifier instance
        """
        self.store = store
        self.session_manager = session_manager
        self.geo_verifier = geo_verifier
        self.proof_verifier = proof_verifier
        self.logger = logging.getLogger(__name__)

        # Serializes the duplicate check with the insert and counter increment
        self._commit_lock = threading.Lock()

        self.logger.info("Attendance manager initialized")

    def _resolve_open_session(self, code: str, now: datetime) -> Session:
        session = None
        if code:
            session = self.store.lookup_open_session_by_code(str(code).strip(), now)
        if session is None or not self.session_manager.is_open(session, now):
            raise SessionNotFound()
        return session

    def verify_session_code(self, code: str, student, observed_location: Optional[Coordinate],
                            now: Optional[datetime] = None) -> Session:
        """
        Run the session, location, roster and geofence checks without committing.

        Args:
            code (str): Session code entered by the student
            student: Student user
            observed_location (Coordinate): Current device location or None
            now (datetime): Evaluation time, defaults to the current UTC time

        Returns:
            Session: The open session the student may check into

        Raises:
            SessionNotFound, LocationUnavailable, NotEligible, OutOfRange
        """
        now = now or now_utc()

        session = self._resolve_open_session(code, now)

        if observed_location is None:
            raise LocationUnavailable()

        if not self.session_manager.is_eligible(session, student):
            raise NotEligible()

        if not self.geo_verifier.is_within_radius(observed_location, session.anchor, session.radius_meters):
            distance = self.geo_verifier.distance_meters(observed_location, session.anchor)
            raise OutOfRange(distance, session.radius_meters)

        return session

    def check_in(self, code: str, student, observed_location: Optional[Coordinate],
                 auth_proof: Optional[str], now: Optional[datetime] = None) -> AttendanceRecord:
        """
        Mark attendance for a student.

        Args:
            code (str): Session code entered by the student
            student: Student user
            observed_location (Coordinate): Current device location or None
            auth_proof (str): Proof checked by the configured proof verifier
            now (datetime): Evaluation time, defaults to the current UTC time

        Returns:
            AttendanceRecord: The committed, verified record

        Raises:
            SessionNotFound, LocationUnavailable, NotEligible, OutOfRange,
            AuthenticationFailed, AlreadyMarked
        """
        now = now or now_utc()

        try:
            session = self.verify_session_code(code, student, observed_location, now)

            if not self.proof_verifier.verify(student, auth_proof):
                raise AuthenticationFailed()

            with self._commit_lock, self.store.transaction():
                if self.store.find_attendance(session.id, student.id) is not None:
                    raise AlreadyMarked()

                record = AttendanceRecord(
                    id=str(uuid.uuid4()),
                    session_id=session.id,
                    student_id=student.id,
                    student_name=student.name,
                    timestamp=now,
                    location=observed_location,
                    verified=True
                )
                try:
                    self.store.insert_attendance_record(record)
                except DuplicateAttendanceError:
                    raise AlreadyMarked()
                self.session_manager.record_attendance(session)

        except (SessionNotFound, LocationUnavailable, NotEligible, OutOfRange,
                AuthenticationFailed, AlreadyMarked) as e:
            self.logger.warning(f"Check-in rejected for student {student.id} with code {code!r}: {e.error_type}")
            raise

        self.logger.info(f"Attendance recorded: student {student.id}, session {session.id} "
                         f"(code {session.code}), count now {session.attendance_count}")
        return record

    def has_marked(self, session_id: str, student_id: str) -> bool:
        return self.store.find_attendance(session_id, student_id) is not None

    def get_student_attendance_history(self, student_id: str) -> List[AttendanceRecord]:
        """
        Get attendance history for a student, newest first.
        """
        records = self.store.attendance_for_student(student_id)
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    def get_session_attendance(self, session_id: str) -> List[AttendanceRecord]:
        """
        Get attendance records for a session in check-in order.
        """
        records = self.store.attendance_for_session(session_id)
        return sorted(records, key=lambda r: r.timestamp)
