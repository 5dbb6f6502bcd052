"""
UniMark Geofenced Attendance System - Composition Root

This module wires the storage layer and the business managers together and
exposes the role-gated operations behind each dashboard: login, starting and
closing sessions (faculty) and marking attendance (students).
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from config import init_config
from unimark.modules.attendance_manager import AttendanceManager, AttendanceRecord
from unimark.modules.auth_manager import AuthManager, PinProofVerifier, User, UserRole
from unimark.modules.database_manager import DatabaseManager
from unimark.modules.exceptions import LocationUnavailable, SessionNotFound
from unimark.modules.geo_verifier import Coordinate, GeoVerifier
from unimark.modules.location_tracker import LocationTracker
from unimark.modules.report_generator import ReportGenerator
from unimark.modules.session_manager import Eligibility, Session, SessionManager
from unimark.modules.store import create_store
from unimark.modules.university_manager import UniversityManager

logger = logging.getLogger(__name__)


class AttendanceSystem:
    """
    Owns one instance of every component, configured from a config class.
    """

    def __init__(self, config_class, location_provider=None, proof_verifier=None,
                 code_generator=None):
        """
        Initialize system components.

        Args:
            config_class: Configuration class (see config.py)
            location_provider: Optional device location provider for the tracker
            proof_verifier: Optional AuthProofVerifier, defaults to the PIN placeholder
            code_generator: Optional session code generator
        """
        self.config = config_class

        self.db_manager = DatabaseManager(
            config_class.DATABASE_PATH,
            seed_defaults=config_class.SEED_DEFAULT_DATA,
            default_password=config_class.DEFAULT_ADMIN_PASSWORD
        )
        self.store = create_store(config_class, self.db_manager)

        self.geo_verifier = GeoVerifier(config_class.EARTH_RADIUS_METERS)
        self.proof_verifier = proof_verifier or PinProofVerifier(config_class.PIN_LENGTH)

        self.auth_manager = AuthManager(self.db_manager, config_class)
        self.university_manager = UniversityManager(self.db_manager)
        self.session_manager = SessionManager(self.store, config_class, code_generator)
        self.attendance_manager = AttendanceManager(
            self.store, self.session_manager, self.geo_verifier, self.proof_verifier
        )
        self.report_generator = ReportGenerator(
            self.store, config_class.REPORTS_FOLDER, config_class.REPORTS_MAX_RECORDS
        )

        self.location_tracker = None
        if location_provider is not None:
            self.location_tracker = LocationTracker(
                location_provider,
                first_fix_timeout=config_class.LOCATION_FIRST_FIX_TIMEOUT_SECONDS,
                max_age=config_class.LOCATION_MAX_AGE_SECONDS
            )

        logger.info(f"UniMark attendance system initialized ({config_class.__name__}, "
                    f"{config_class.STORAGE_BACKEND} storage)")

    def login(self, username: str, password: str, role) -> Dict[str, Any]:
        """
        Authenticate a user for the selected role.

        Returns:
            Dict[str, Any]: Login result with the user and their landing page
        """
        if not username or not password:
            return {'success': False, 'message': 'Please provide both username and password.'}

        try:
            role = UserRole(role)
        except ValueError:
            return {'success': False, 'message': f'Unknown role: {role}'}

        user = self.auth_manager.authenticate_user(username.strip(), password, role)
        if user is None:
            return {'success': False, 'message': 'Invalid credentials'}

        return {
            'success': True,
            'user': user,
            'landing_page': self.auth_manager.landing_page(user.role)
        }

    def _resolve_location(self, location: Optional[Coordinate]) -> Optional[Coordinate]:
        if location is not None:
            return location
        if self.location_tracker is None:
            return None
        return self.location_tracker.refresh_if_stale()

    def start_session(self, faculty: User, title: str, eligibility: Optional[Eligibility] = None,
                      duration_minutes: Optional[float] = None,
                      radius_meters: Optional[float] = None,
                      location: Optional[Coordinate] = None,
                      now: Optional[datetime] = None) -> Session:
        """
        Start a session anchored at the faculty member's current location.

        Raises:
            PermissionDenied: The user may not create sessions
            LocationUnavailable: No location was given and none is known
        """
        self.auth_manager.require_permission(faculty, 'create_session')

        anchor = self._resolve_location(location)
        if anchor is None:
            raise LocationUnavailable("Location permission is required to create sessions")

        return self.session_manager.create(
            faculty, title, anchor,
            radius_meters=radius_meters,
            eligibility=eligibility,
            duration_minutes=duration_minutes,
            now=now
        )

    def close_session(self, faculty: User, session_id: str) -> Session:
        self.auth_manager.require_permission(faculty, 'close_session')

        session = self.session_manager.get_session(session_id)
        if session is None:
            raise SessionNotFound()
        return self.session_manager.close(session, actor=faculty)

    def mark_attendance(self, student: User, code: str, pin: Optional[str],
                        location: Optional[Coordinate] = None,
                        now: Optional[datetime] = None) -> AttendanceRecord:
        """
        Check a student into the open session identified by ``code``.

        Raises:
            PermissionDenied: The user may not mark attendance
            CheckInError: Any named check-in rejection
        """
        self.auth_manager.require_permission(student, 'mark_attendance')

        return self.attendance_manager.check_in(
            code, student, self._resolve_location(location), pin, now=now
        )

    def shutdown(self) -> None:
        if self.location_tracker is not None:
            self.location_tracker.shutdown()
        self.db_manager.close_all_connections()
        logger.info("UniMark attendance system shut down")


def create_system(config_name: Optional[str] = None, **kwargs) -> AttendanceSystem:
    """
    Resolve and validate a configuration, then build the system.
    """
    return AttendanceSystem(init_config(config_name), **kwargs)
