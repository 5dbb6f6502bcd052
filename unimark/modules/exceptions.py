"""
Exceptions Module - UniMark Geofenced Attendance System

Named failure outcomes for session creation and attendance check-in.
Every check-in failure carries a stable ``error_type`` so the presentation
layer can render a specific message without parsing exception text.
"""

from typing import Any, Dict, Optional


class UniMarkError(Exception):
    """Base class for all UniMark errors."""

    error_type = 'unimark_error'
    default_message = 'An error occurred'

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': False,
            'message': self.message,
            'error_type': self.error_type
        }


class StorageError(UniMarkError):
    error_type = 'storage_error'
    default_message = 'Storage operation failed'


class DuplicateAttendanceError(StorageError):
    """Raised by a store when (session, student) already has a record."""

    error_type = 'duplicate_attendance'
    default_message = 'Attendance record already exists'


class PermissionDenied(UniMarkError):
    error_type = 'permission_denied'
    default_message = 'You do not have permission to perform this action'


class InvalidCoordinate(UniMarkError, ValueError):
    error_type = 'invalid_coordinate'
    default_message = 'Coordinate is not a finite latitude/longitude pair'


# Check-in outcomes

class CheckInError(UniMarkError):
    error_type = 'check_in_error'
    default_message = 'Attendance could not be marked'


class SessionNotFound(CheckInError):
    error_type = 'session_not_found'
    default_message = 'Invalid or expired session code'


class LocationUnavailable(CheckInError):
    error_type = 'location_unavailable'
    default_message = 'Location access is required to mark attendance'


class NotEligible(CheckInError):
    error_type = 'not_eligible'
    default_message = 'You are not enrolled in the branch, class or batch for this session'


class OutOfRange(CheckInError):
    error_type = 'out_of_range'
    default_message = 'You are not within the required distance from the session location'

    def __init__(self, distance_meters: float, radius_meters: float,
                 message: Optional[str] = None):
        super().__init__(message)
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['distance_meters'] = round(self.distance_meters, 1)
        result['radius_meters'] = self.radius_meters
        return result


class AuthenticationFailed(CheckInError):
    error_type = 'authentication_failed'
    default_message = 'Verification failed. Please enter a valid PIN'


class AlreadyMarked(CheckInError):
    error_type = 'already_marked'
    default_message = 'Attendance already marked for this session'


# Session creation

class SessionCreationError(UniMarkError):
    error_type = 'session_creation_error'
    default_message = 'Session could not be created'


class InvalidDuration(SessionCreationError):
    error_type = 'invalid_duration'
    default_message = 'Session duration must be greater than zero'


class InvalidRadius(SessionCreationError):
    error_type = 'invalid_radius'
    default_message = 'Geofence radius must be greater than zero'


class SessionCodeExhausted(SessionCreationError):
    error_type = 'session_code_exhausted'
    default_message = 'No free session code is available, try again shortly'
