# UniMark Geofenced Attendance - App Package
"""
Main application package for the UniMark geofenced attendance system.
Faculty open time-boxed sessions anchored at their location; students check
in with a session code from inside the geofence.
"""

__version__ = "1.0.0"
__author__ = "UniMark Team"
__description__ = "Geofenced, role-scoped university attendance management"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.geo_verifier import Coordinate, GeoVerifier
from .modules.session_manager import Eligibility, Session, SessionManager
from .modules.attendance_manager import AttendanceManager, AttendanceRecord
from .modules.auth_manager import AuthManager, PinProofVerifier, User, UserRole
from .modules.location_tracker import LocationTracker
from .modules.university_manager import UniversityManager
from .modules.report_generator import ReportGenerator
from .system import AttendanceSystem, create_system

__all__ = [
    'DatabaseManager',
    'Coordinate',
    'GeoVerifier',
    'Eligibility',
    'Session',
    'SessionManager',
    'AttendanceManager',
    'AttendanceRecord',
    'AuthManager',
    'PinProofVerifier',
    'User',
    'UserRole',
    'LocationTracker',
    'UniversityManager',
    'ReportGenerator',
    'AttendanceSystem',
    'create_system'
]
