# UniMark Geofenced Attendance - Modules Package
"""
Core business logic modules for the UniMark attendance system.
"""

__version__ = "1.0.0"
__description__ = "Core modules for geofenced attendance functionality"

# Module descriptions
MODULES = {
    'exceptions': 'Named check-in and session creation failures',
    'geo_verifier': 'Haversine distance and geofence containment',
    'session_manager': 'Attendance session lifecycle and eligibility',
    'attendance_manager': 'Geofenced check-in and attendance history',
    'store': 'Session and attendance persistence boundary',
    'database_manager': 'SQLite schema and connection management',
    'auth_manager': 'Accounts, roles and check-in proof verification',
    'location_tracker': 'Device location acquisition with timeouts',
    'university_manager': 'University administration',
    'report_generator': 'Attendance reports and data export'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
