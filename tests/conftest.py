import math
from datetime import datetime, timezone

import pytest

from config import TestingConfig
from unimark.modules.attendance_manager import AttendanceManager
from unimark.modules.auth_manager import PinProofVerifier, User, UserRole
from unimark.modules.database_manager import DatabaseManager
from unimark.modules.geo_verifier import Coordinate, GeoVerifier
from unimark.modules.session_manager import Eligibility, SessionManager
from unimark.modules.store import InMemoryAttendanceStore, SQLiteAttendanceStore

CAMPUS = Coordinate(23.0225, 72.5714)
NOW = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    return TestingConfig


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def campus():
    return CAMPUS


@pytest.fixture
def north_of():
    """Coordinate ``meters`` due north of ``origin`` on the 6371 km sphere."""
    def offset(origin, meters):
        return Coordinate(origin.latitude + math.degrees(meters / 6371000.0), origin.longitude)
    return offset


@pytest.fixture
def db_manager():
    db = DatabaseManager(':memory:', seed_defaults=False)
    yield db
    db.close_all_connections()


@pytest.fixture(params=['memory', 'sqlite'])
def store(request, db_manager):
    if request.param == 'memory':
        return InMemoryAttendanceStore()
    return SQLiteAttendanceStore(db_manager)


@pytest.fixture
def session_manager(store, config):
    return SessionManager(store, config)


@pytest.fixture
def attendance_manager(store, session_manager, config):
    return AttendanceManager(store, session_manager, GeoVerifier(), PinProofVerifier(config.PIN_LENGTH))


@pytest.fixture
def faculty():
    return User(
        id='faculty-1',
        username='prof.sharma',
        email='prof.sharma@darshan.ac.in',
        name='Prof. Priya Sharma',
        role=UserRole.FACULTY,
        university_id='univ-1',
        branch='Computer Engineering'
    )


@pytest.fixture
def make_student():
    def build(student_id='student-1', branch='Computer Engineering',
              class_name='B.Tech', batch='2022-2026'):
        return User(
            id=student_id,
            username=student_id,
            email=f'{student_id}@darshan.ac.in',
            name=f'Student {student_id}',
            role=UserRole.STUDENT,
            university_id='univ-1',
            branch=branch,
            class_name=class_name,
            batch=batch
        )
    return build


@pytest.fixture
def student(make_student):
    return make_student()


@pytest.fixture
def cse_eligibility():
    return Eligibility(
        branches=['Computer Engineering'],
        classes=['B.Tech'],
        batches=['2022-2026']
    )


@pytest.fixture
def open_session(session_manager, faculty, campus, cse_eligibility, now):
    return session_manager.create(
        faculty, 'Data Structures & Algorithms', campus,
        radius_meters=500, eligibility=cse_eligibility, duration_minutes=120, now=now
    )
