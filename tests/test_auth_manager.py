import threading
from datetime import datetime, timedelta, timezone

import pytest

from unimark.modules.auth_manager import AuthManager, PinProofVerifier, User, UserRole
from unimark.modules.exceptions import PermissionDenied


@pytest.fixture
def auth_manager(db_manager, config):
    return AuthManager(db_manager, config)


@pytest.fixture
def faculty_account(auth_manager):
    result = auth_manager.create_user(
        username='prof.mehta',
        password='secret-pass',
        name='Prof. Anil Mehta',
        email='anil.mehta@darshan.ac.in',
        role=UserRole.FACULTY,
        branch='Computer Engineering',
        created_by='admin-1'
    )
    assert result['success'], result
    return result['user']


@pytest.mark.parametrize('proof, accepted', [
    ('1234', True),
    ('0000', True),
    ('123', False),
    ('12345', False),
    ('12a4', False),
    ('', False),
    (None, False),
    (1234, False),
    ('١٢٣٤', False),
])
def test_pin_proof_verifier(student, proof, accepted):
    assert PinProofVerifier(4).verify(student, proof) is accepted


def test_pin_length_is_configurable(student):
    verifier = PinProofVerifier(6)
    assert verifier.verify(student, '123456')
    assert not verifier.verify(student, '1234')


def test_create_user_returns_user(faculty_account):
    assert isinstance(faculty_account, User)
    assert faculty_account.role is UserRole.FACULTY
    assert faculty_account.branch == 'Computer Engineering'
    assert faculty_account.is_active is True
    assert faculty_account.created_at is not None


def test_authenticate_by_username_and_email(auth_manager, faculty_account):
    by_username = auth_manager.authenticate_user('prof.mehta', 'secret-pass', UserRole.FACULTY)
    by_email = auth_manager.authenticate_user('anil.mehta@darshan.ac.in', 'secret-pass', 'faculty')

    assert by_username.id == faculty_account.id
    assert by_email.id == faculty_account.id


def test_wrong_password_is_rejected(auth_manager, faculty_account):
    assert auth_manager.authenticate_user('prof.mehta', 'wrong', UserRole.FACULTY) is None


def test_role_mismatch_is_rejected(auth_manager, faculty_account):
    assert auth_manager.authenticate_user('prof.mehta', 'secret-pass', UserRole.STUDENT) is None


def test_unknown_user_is_rejected(auth_manager):
    assert auth_manager.authenticate_user('nobody', 'secret-pass', UserRole.STUDENT) is None


def test_account_locks_after_repeated_failures(auth_manager, faculty_account, config):
    for _ in range(config.MAX_LOGIN_ATTEMPTS):
        assert auth_manager.authenticate_user('prof.mehta', 'wrong', UserRole.FACULTY) is None

    assert auth_manager.authenticate_user('prof.mehta', 'secret-pass', UserRole.FACULTY) is None


def test_successful_login_clears_failures(auth_manager, faculty_account, config):
    for _ in range(config.MAX_LOGIN_ATTEMPTS - 1):
        auth_manager.authenticate_user('prof.mehta', 'wrong', UserRole.FACULTY)

    assert auth_manager.authenticate_user('prof.mehta', 'secret-pass', UserRole.FACULTY) is not None
    assert 'prof.mehta' not in auth_manager.failed_attempts


def test_deactivated_user_cannot_log_in(auth_manager, faculty_account):
    assert auth_manager.deactivate_user(faculty_account.id, deactivated_by='admin-1')
    assert auth_manager.authenticate_user('prof.mehta', 'secret-pass', UserRole.FACULTY) is None
    assert auth_manager.get_users(role=UserRole.FACULTY) == []


def test_duplicate_username_or_email_is_rejected(auth_manager, faculty_account):
    result = auth_manager.create_user('prof.mehta', 'another-pass', 'Someone', 'other@darshan.ac.in',
                                      UserRole.STUDENT)
    assert result['success'] is False

    result = auth_manager.create_user('someone.else', 'another-pass', 'Someone',
                                      'anil.mehta@darshan.ac.in', UserRole.STUDENT)
    assert result['success'] is False


@pytest.mark.parametrize('username, password, email', [
    ('ab', 'secret-pass', 'ab@darshan.ac.in'),
    ('bad name', 'secret-pass', 'bad@darshan.ac.in'),
    ('valid.name', '123', 'valid@darshan.ac.in'),
    ('valid.name', 'secret-pass', 'not-an-email'),
])
def test_invalid_user_data_is_rejected(auth_manager, username, password, email):
    result = auth_manager.create_user(username, password, 'Name', email, UserRole.STUDENT)
    assert result['success'] is False
    assert result['error']


def test_unknown_role_is_rejected(auth_manager):
    result = auth_manager.create_user('valid.name', 'secret-pass', 'Name', 'v@darshan.ac.in', 'janitor')
    assert result['success'] is False


def test_get_users_filters_by_role_and_university(auth_manager, db_manager, faculty_account):
    db_manager.execute_update(
        "INSERT INTO universities (id, name, domain, admin_email, created_at) VALUES (?, ?, ?, ?, ?)",
        ('univ-1', 'Darshan University', 'darshan.ac.in', 'admin@darshan.ac.in', '2024-01-15T00:00:00+00:00')
    )
    auth_manager.create_user('stud.one', 'secret-pass', 'Student One', 'one@darshan.ac.in',
                             UserRole.STUDENT, university_id='univ-1', branch='Computer Engineering',
                             class_name='B.Tech', batch='2022-2026')

    students = auth_manager.get_users(role=UserRole.STUDENT)
    assert [u.username for u in students] == ['stud.one']
    assert students[0].class_name == 'B.Tech'
    assert students[0].university_name == 'Darshan University'
    assert [u.username for u in auth_manager.get_users(university_id='univ-1')] == ['stud.one']
    assert len(auth_manager.get_users()) == 2


@pytest.mark.parametrize('role, permission, allowed', [
    (UserRole.FACULTY, 'create_session', True),
    (UserRole.FACULTY, 'close_session', True),
    (UserRole.FACULTY, 'mark_attendance', False),
    (UserRole.STUDENT, 'mark_attendance', True),
    (UserRole.STUDENT, 'create_session', False),
    (UserRole.UNIVERSITY_ADMIN, 'view_analytics', True),
    (UserRole.UNIVERSITY_ADMIN, 'create_session', False),
    (UserRole.SUPER_ADMIN, 'manage_universities', True),
    (UserRole.SUPER_ADMIN, 'mark_attendance', False),
])
def test_role_permissions(auth_manager, student, role, permission, allowed):
    student.role = role
    assert auth_manager.has_permission(student, permission) is allowed


def test_require_permission_raises(auth_manager, student):
    with pytest.raises(PermissionDenied):
        auth_manager.require_permission(student, 'create_session')
    with pytest.raises(PermissionDenied):
        auth_manager.require_permission(None, 'mark_attendance')
    auth_manager.require_permission(student, 'mark_attendance')


@pytest.mark.parametrize('role, page', [
    ('super-admin', '/super-admin'),
    ('university-admin', '/university-admin'),
    ('faculty', '/faculty'),
    ('student', '/student'),
])
def test_landing_pages(role, page):
    assert AuthManager.landing_page(role) == page


def test_user_to_dict_uses_role_value(student):
    data = student.to_dict()
    assert data['role'] == 'student'
    assert data['class'] == 'B.Tech'


def test_expired_failed_attempts_are_pruned(auth_manager, config):
    auth_manager.authenticate_user('ghost.one', 'wrong', UserRole.STUDENT)
    auth_manager.authenticate_user('ghost.two', 'wrong', UserRole.STUDENT)
    stale = datetime.now(timezone.utc) - config.LOGIN_LOCKOUT_DURATION - timedelta(seconds=1)
    for name in ('ghost.one', 'ghost.two'):
        auth_manager.failed_attempts[name]['last_attempt'] = stale

    auth_manager.authenticate_user('ghost.three', 'wrong', UserRole.STUDENT)

    assert set(auth_manager.failed_attempts) == {'ghost.three'}


def test_concurrent_failures_are_all_counted(auth_manager):
    start = threading.Barrier(8)

    def fail_login():
        start.wait()
        for _ in range(25):
            auth_manager._record_failed_attempt('shared.name')

    threads = [threading.Thread(target=fail_login) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert auth_manager.failed_attempts['shared.name']['count'] == 200
