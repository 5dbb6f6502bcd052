"""
Report Generator Module - UniMark Geofenced Attendance System

Tabular views of sessions and attendance for the dashboards, plus CSV and
Excel export of a session's attendance sheet.

Features:
- Session attendance sheets
- Faculty session overview (active and past)
- Student attendance history
- Dashboard counters
- CSV/Excel export
"""

import pandas as pd
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from unimark.modules.session_manager import SessionStatus, now_utc

ATTENDANCE_COLUMNS = ['student_id', 'student_name', 'timestamp', 'latitude', 'longitude', 'verified']
SESSION_COLUMNS = ['code', 'title', 'status', 'attendance_count', 'radius_meters',
                   'start_time', 'end_time', 'branches', 'classes', 'batches']


class ReportGenerator:
    """
    Builds pandas DataFrames from the attendance store and exports them.
    """

    def __init__(self, store, output_dir, max_records: int = 10000):
        """
        Initialize the report generator.

        Args:
            store: AttendanceStore instance
            output_dir: Directory for exported files
            max_records (int): Row cap per export
        """
        self.store = store
        self.output_dir = Path(output_dir)
        self.max_records = max_records
        self.supported_formats = ['csv', 'excel']
        self.logger = logging.getLogger(__name__)

    def session_attendance_frame(self, session_id: str) -> pd.DataFrame:
        records = sorted(self.store.attendance_for_session(session_id), key=lambda r: r.timestamp)
        rows = [{
            'student_id': r.student_id,
            'student_name': r.student_name,
            'timestamp': r.timestamp,
            'latitude': r.location.latitude,
            'longitude': r.location.longitude,
            'verified': r.verified
        } for r in records]
        return pd.DataFrame(rows, columns=ATTENDANCE_COLUMNS)

    def faculty_sessions_frame(self, faculty_id: str, now: Optional[datetime] = None) -> pd.DataFrame:
        """
        Overview of one faculty member's sessions, newest first.
        """
        now = now or now_utc()
        rows = []
        for session in self.store.list_sessions(faculty_id=faculty_id):
            eligibility = session.eligibility.to_dict()
            rows.append({
                'code': session.code,
                'title': session.title,
                'status': session.status(now).value,
                'attendance_count': session.attendance_count,
                'radius_meters': session.radius_meters,
                'start_time': session.start_time,
                'end_time': session.end_time,
                'branches': ', '.join(eligibility['branches']),
                'classes': ', '.join(eligibility['classes']),
                'batches': ', '.join(eligibility['batches'])
            })

        df = pd.DataFrame(rows, columns=SESSION_COLUMNS)
        if not df.empty:
            df = df.sort_values('start_time', ascending=False).reset_index(drop=True)
        return df

    def student_history_frame(self, student_id: str) -> pd.DataFrame:
        records = self.store.attendance_for_student(student_id)
        sessions = {s.id: s for s in self.store.list_sessions()} if records else {}

        rows = []
        for record in records:
            session = sessions.get(record.session_id)
            rows.append({
                'session_title': session.title if session else None,
                'session_code': session.code if session else None,
                'faculty_name': session.faculty_name if session else None,
                'timestamp': record.timestamp,
                'verified': record.verified
            })

        df = pd.DataFrame(rows, columns=['session_title', 'session_code', 'faculty_name',
                                         'timestamp', 'verified'])
        if not df.empty:
            df = df.sort_values('timestamp', ascending=False).reset_index(drop=True)
        return df

    def get_dashboard_stats(self, now: Optional[datetime] = None,
                            university_id: Optional[str] = None,
                            faculty_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Counters shown on the faculty and university-admin dashboards.

        Returns:
            Dict[str, Any]: active, past and total sessions and total attendance
        """
        now = now or now_utc()
        sessions = self.store.list_sessions(university_id=university_id, faculty_id=faculty_id)
        statuses = [s.status(now) for s in sessions]

        return {
            'active_sessions': statuses.count(SessionStatus.OPEN),
            'past_sessions': statuses.count(SessionStatus.CLOSED),
            'total_sessions': len(sessions),
            'total_attendance': sum(s.attendance_count for s in sessions)
        }

    def export_session_report(self, session_id: str, output_format: str = 'csv') -> Dict[str, Any]:
        """
        Export a session's attendance sheet.

        Args:
            session_id (str): Session ID
            output_format (str): 'csv' or 'excel'

        Returns:
            Dict[str, Any]: Export result with the file path on success
        """
        if output_format not in self.supported_formats:
            return {
                'success': False,
                'error': f'Unsupported output format: {output_format}'
            }

        session = self.store.get_session(session_id)
        if session is None:
            return {'success': False, 'error': 'Session not found'}

        df = self.session_attendance_frame(session_id).head(self.max_records).copy()
        if not df.empty:
            df['timestamp'] = df['timestamp'].map(lambda ts: ts.isoformat())

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            stamp = now_utc().strftime('%Y%m%d_%H%M%S')

            if output_format == 'csv':
                filepath = self.output_dir / f"session_{session.code}_{stamp}.csv"
                df.to_csv(filepath, index=False, encoding='utf-8')
            else:
                filepath = self.output_dir / f"session_{session.code}_{stamp}.xlsx"
                summary = pd.DataFrame([
                    {'field': key, 'value': ', '.join(value) if isinstance(value, list) else value}
                    for key, value in session.to_dict(now_utc()).items()
                    if key != 'location'
                ])
                with pd.ExcelWriter(filepath, engine='openpyxl') as writer:
                    df.to_excel(writer, sheet_name='Attendance', index=False)
                    summary.to_excel(writer, sheet_name='Session', index=False)

            self.logger.info(f"Report generated successfully: {filepath.name} ({len(df)} records)")
            return {
                'success': True,
                'filename': filepath.name,
                'filepath': str(filepath),
                'record_count': len(df)
            }

        except Exception as e:
            self.logger.error(f"Report generation failed for session {session_id}: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }
