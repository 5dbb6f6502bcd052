import threading
from datetime import timedelta

import pytest

from unimark.modules.exceptions import (
    AlreadyMarked, AuthenticationFailed, LocationUnavailable, NotEligible,
    OutOfRange, SessionNotFound, StorageError
)
from unimark.modules.geo_verifier import Coordinate

PIN = '1234'


def test_successful_check_in_commits_record_and_count(attendance_manager, session_manager,
                                                      open_session, student, campus, now):
    record = attendance_manager.check_in(open_session.code, student, campus, PIN, now=now)

    assert record.session_id == open_session.id
    assert record.student_id == student.id
    assert record.student_name == student.name
    assert record.timestamp == now
    assert record.location == campus
    assert record.verified is True
    assert session_manager.get_session(open_session.id).attendance_count == 1
    assert attendance_manager.has_marked(open_session.id, student.id)


def test_check_in_scenario(attendance_manager, session_manager, open_session, make_student, now):
    inside = Coordinate(23.0252, 72.5714)
    rahul = make_student('student-1')

    attendance_manager.check_in(open_session.code, rahul, inside, PIN, now=now)
    assert session_manager.get_session(open_session.id).attendance_count == 1

    with pytest.raises(AlreadyMarked):
        attendance_manager.check_in(open_session.code, rahul, inside, PIN, now=now + timedelta(minutes=1))

    mech = make_student('student-2', branch='Mechanical Engineering')
    with pytest.raises(NotEligible):
        attendance_manager.check_in(open_session.code, mech, inside, PIN, now=now)

    far = make_student('student-3')
    with pytest.raises(OutOfRange) as excinfo:
        attendance_manager.check_in(open_session.code, far, Coordinate(23.0279, 72.5714), PIN, now=now)
    assert excinfo.value.distance_meters == pytest.approx(600, abs=3)
    assert excinfo.value.radius_meters == 500

    assert session_manager.get_session(open_session.id).attendance_count == 1
    assert [r.student_id for r in attendance_manager.get_session_attendance(open_session.id)] == ['student-1']


@pytest.mark.parametrize('code', ['000', '99', '', None, 'abc'])
def test_unknown_code_is_session_not_found(attendance_manager, open_session, student, campus, now, code):
    with pytest.raises(SessionNotFound):
        attendance_manager.check_in(code, student, campus, PIN, now=now)


def test_code_is_matched_after_trimming(attendance_manager, open_session, student, campus, now):
    record = attendance_manager.check_in(f' {open_session.code} ', student, campus, PIN, now=now)
    assert record.session_id == open_session.id


def test_expired_session_rejects_with_flag_still_set(attendance_manager, session_manager,
                                                     open_session, student, campus):
    after_end = open_session.end_time + timedelta(seconds=1)

    with pytest.raises(SessionNotFound):
        attendance_manager.check_in(open_session.code, student, campus, PIN, now=after_end)

    stored = session_manager.get_session(open_session.id)
    assert stored.is_active is True
    assert stored.attendance_count == 0


def test_check_in_at_end_time_is_rejected(attendance_manager, open_session, student, campus):
    with pytest.raises(SessionNotFound):
        attendance_manager.check_in(open_session.code, student, campus, PIN, now=open_session.end_time)


def test_closed_session_rejects(attendance_manager, session_manager, open_session, faculty, student, campus, now):
    session_manager.close(open_session, actor=faculty)

    with pytest.raises(SessionNotFound):
        attendance_manager.check_in(open_session.code, student, campus, PIN, now=now)


def test_missing_location_is_location_unavailable(attendance_manager, open_session, student, now):
    with pytest.raises(LocationUnavailable):
        attendance_manager.check_in(open_session.code, student, None, PIN, now=now)


@pytest.mark.parametrize('pin', ['123', '12345', 'abcd', '', None, '12 4'])
def test_bad_pin_is_authentication_failed(attendance_manager, session_manager, open_session,
                                          student, campus, now, pin):
    with pytest.raises(AuthenticationFailed):
        attendance_manager.check_in(open_session.code, student, campus, pin, now=now)

    assert not attendance_manager.has_marked(open_session.id, student.id)
    assert session_manager.get_session(open_session.id).attendance_count == 0


def test_boundary_of_geofence_is_inside(attendance_manager, open_session, student, campus, north_of, now):
    edge = north_of(campus, 499.5)
    record = attendance_manager.check_in(open_session.code, student, edge, PIN, now=now)
    assert record.location == edge


def test_out_of_range_error_reports_distance(attendance_manager, open_session, student, campus, north_of, now):
    with pytest.raises(OutOfRange) as excinfo:
        attendance_manager.check_in(open_session.code, student, north_of(campus, 750), PIN, now=now)

    payload = excinfo.value.to_dict()
    assert payload['success'] is False
    assert payload['error_type'] == 'out_of_range'
    assert payload['distance_meters'] == pytest.approx(750, abs=1)
    assert payload['radius_meters'] == 500


# When several checks fail, the earliest check in the order wins

def test_unknown_code_wins_over_missing_location(attendance_manager, open_session, make_student, now):
    outsider = make_student('student-9', branch='Civil Engineering')
    with pytest.raises(SessionNotFound):
        attendance_manager.check_in('000', outsider, None, 'x', now=now)


def test_missing_location_wins_over_roster(attendance_manager, open_session, make_student, now):
    outsider = make_student('student-9', branch='Civil Engineering')
    with pytest.raises(LocationUnavailable):
        attendance_manager.check_in(open_session.code, outsider, None, 'x', now=now)


def test_roster_wins_over_geofence(attendance_manager, open_session, make_student, campus, north_of, now):
    outsider = make_student('student-9', branch='Civil Engineering')
    with pytest.raises(NotEligible):
        attendance_manager.check_in(open_session.code, outsider, north_of(campus, 5000), 'x', now=now)


def test_geofence_wins_over_pin(attendance_manager, open_session, student, campus, north_of, now):
    with pytest.raises(OutOfRange):
        attendance_manager.check_in(open_session.code, student, north_of(campus, 5000), 'x', now=now)


def test_pin_wins_over_duplicate(attendance_manager, open_session, student, campus, now):
    attendance_manager.check_in(open_session.code, student, campus, PIN, now=now)
    with pytest.raises(AuthenticationFailed):
        attendance_manager.check_in(open_session.code, student, campus, 'x', now=now)


def test_verify_session_code_does_not_commit(attendance_manager, session_manager, open_session,
                                             student, campus, now):
    session = attendance_manager.verify_session_code(open_session.code, student, campus, now=now)

    assert session.id == open_session.id
    assert not attendance_manager.has_marked(open_session.id, student.id)
    assert session_manager.get_session(open_session.id).attendance_count == 0


def test_same_student_can_attend_different_sessions(attendance_manager, session_manager, faculty,
                                                   student, campus, now):
    first = session_manager.create(faculty, 'Morning', campus, now=now)
    second = session_manager.create(faculty, 'Afternoon', campus, now=now + timedelta(hours=3))

    attendance_manager.check_in(first.code, student, campus, PIN, now=now + timedelta(minutes=5))
    attendance_manager.check_in(second.code, student, campus, PIN, now=now + timedelta(hours=3, minutes=5))

    history = attendance_manager.get_student_attendance_history(student.id)
    assert [r.session_id for r in history] == [second.id, first.id]


def test_session_attendance_is_in_check_in_order(attendance_manager, open_session, make_student, campus, now):
    for minute, student_id in enumerate(['s-3', 's-1', 's-2']):
        attendance_manager.check_in(open_session.code, make_student(student_id), campus, PIN,
                                    now=now + timedelta(minutes=minute))

    records = attendance_manager.get_session_attendance(open_session.id)
    assert [r.student_id for r in records] == ['s-3', 's-1', 's-2']


def test_concurrent_check_ins_commit_exactly_once(attendance_manager, session_manager,
                                                  open_session, student, campus, now):
    outcomes = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(8)

    def attempt():
        start.wait()
        try:
            attendance_manager.check_in(open_session.code, student, campus, PIN, now=now)
            result = 'ok'
        except AlreadyMarked:
            result = 'duplicate'
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert outcomes.count('ok') == 1
    assert outcomes.count('duplicate') == 7
    assert session_manager.get_session(open_session.id).attendance_count == 1
    assert len(attendance_manager.get_session_attendance(open_session.id)) == 1


def test_concurrent_distinct_students_are_all_counted(attendance_manager, session_manager,
                                                      open_session, make_student, campus, now):
    students = [make_student(f'student-{i}') for i in range(10)]
    threads = [
        threading.Thread(target=attendance_manager.check_in,
                         args=(open_session.code, s, campus, PIN), kwargs={'now': now})
        for s in students
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert session_manager.get_session(open_session.id).attendance_count == 10
    assert len(attendance_manager.get_session_attendance(open_session.id)) == 10


def test_failed_counter_update_rolls_back_record(attendance_manager, session_manager, store,
                                                 open_session, student, campus, now, monkeypatch):
    def fail(session_id):
        raise StorageError("counter unavailable")

    monkeypatch.setattr(store, 'increment_attendance_count', fail)

    with pytest.raises(StorageError):
        attendance_manager.check_in(open_session.code, student, campus, PIN, now=now)

    monkeypatch.undo()
    assert not attendance_manager.has_marked(open_session.id, student.id)
    assert session_manager.get_session(open_session.id).attendance_count == 0

    attendance_manager.check_in(open_session.code, student, campus, PIN, now=now)
    assert session_manager.get_session(open_session.id).attendance_count == 1
