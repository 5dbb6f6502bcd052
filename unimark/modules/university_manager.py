"""
University Manager Module - UniMark Geofenced Attendance System

This module handles university administration for the platform super-admin:
onboarding universities, updating their subscription and status, removing
them and summarizing platform-wide counts.

Features:
- University creation and updates
- Status and subscription management
- Deletion of universities without accounts
- Platform statistics
"""

from datetime import datetime, timezone
from typing import Dict, List, Any, Optional
import logging
import re
import uuid


class UniversityManager:
    """
    University administration on top of the database manager.
    """

    STATUSES = ('active', 'trial', 'inactive')

    def __init__(self, database_manager):
        """
        Initialize the university manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.logger.info("University manager initialized")

    def create_university(self, name: str, domain: str, admin_email: str,
                          status: str = 'trial', plan: str = 'Trial',
                          expires_at: Optional[datetime] = None,
                          created_by: str = None) -> Dict[str, Any]:
        """
        Create a new university.

        Args:
            name (str): University name
            domain (str): Unique email domain, e.g. darshan.ac.in
            admin_email (str): Contact email of the university admin
            status (str): active, trial or inactive
            plan (str): Subscription plan name
            expires_at (datetime): Subscription expiry
            created_by (str): ID of user creating the university

        Returns:
            Dict[str, Any]: Creation result
        """
        if not name or not domain or not admin_email:
            return {
                'success': False,
                'error': 'Name, domain and admin email are required'
            }

        domain = domain.strip().lower()
        if not re.match(r'^[a-z0-9.-]+\.[a-z]{2,}$', domain):
            return {'success': False, 'error': 'Invalid domain'}

        if status not in self.STATUSES:
            return {'success': False, 'error': f'Invalid status: {status}'}

        try:
            existing = self.db.execute_query(
                "SELECT id FROM universities WHERE domain = ?",
                (domain,),
                fetch_all=False
            )
            if existing:
                return {'success': False, 'error': 'A university with this domain already exists'}

            university_id = str(uuid.uuid4())
            self.db.execute_update(
                """INSERT INTO universities (id, name, domain, admin_email, status, plan,
                                             expires_at, students_count, faculty_count, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?)""",
                (university_id, name.strip(), domain, admin_email.strip(), status, plan,
                 expires_at.isoformat() if expires_at else None,
                 datetime.now(timezone.utc).isoformat())
            )

            self.logger.info(f"University created successfully: {name} (ID: {university_id}) by {created_by}")

            return {
                'success': True,
                'university_id': university_id,
                'message': 'University created successfully'
            }

        except Exception as e:
            self.logger.error(f"University creation failed for {domain}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create university'
            }

    def update_university(self, university_id: str, updates: Dict[str, Any],
                          updated_by: str = None) -> Dict[str, Any]:
        """
        Update university information.

        Args:
            university_id (str): University ID
            updates (Dict[str, Any]): Fields to change
            updated_by (str): ID of user making the update

        Returns:
            Dict[str, Any]: Update result
        """
        allowed_fields = ('name', 'admin_email', 'status', 'plan', 'expires_at',
                          'students_count', 'faculty_count')

        update_fields = []
        params = []
        for field in allowed_fields:
            if field not in updates:
                continue
            value = updates[field]
            if field == 'status' and value not in self.STATUSES:
                return {'success': False, 'error': f'Invalid status: {value}'}
            if field == 'expires_at' and isinstance(value, datetime):
                value = value.isoformat()
            update_fields.append(f"{field} = ?")
            params.append(value)

        if not update_fields:
            return {
                'success': False,
                'error': 'No valid fields to update'
            }

        try:
            params.append(university_id)
            affected_rows = self.db.execute_update(
                f"UPDATE universities SET {', '.join(update_fields)} WHERE id = ?",
                params
            )

            if affected_rows > 0:
                self.logger.info(f"University {university_id} updated by {updated_by}")
                return {
                    'success': True,
                    'university': self.get_university(university_id),
                    'message': 'University updated successfully'
                }
            return {
                'success': False,
                'error': 'University not found'
            }

        except Exception as e:
            self.logger.error(f"University update failed for ID {university_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to update university'
            }

    def delete_university(self, university_id: str, deleted_by: str = None) -> bool:
        """
        Delete a university. Universities with user accounts are deactivated instead.

        Returns:
            bool: Success status
        """
        try:
            has_users = self.db.execute_query(
                "SELECT COUNT(*) as count FROM users WHERE university_id = ?",
                (university_id,),
                fetch_all=False
            )['count'] > 0

            if has_users:
                affected_rows = self.db.execute_update(
                    "UPDATE universities SET status = 'inactive' WHERE id = ?",
                    (university_id,)
                )
            else:
                affected_rows = self.db.execute_update(
                    "DELETE FROM universities WHERE id = ?",
                    (university_id,)
                )

            if affected_rows > 0:
                action = 'deactivated' if has_users else 'deleted'
                self.logger.info(f"University {university_id} {action} by {deleted_by}")
                return True
            return False

        except Exception as e:
            self.logger.error(f"Failed to delete university {university_id}: {str(e)}")
            return False

    def get_university(self, university_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.db.execute_query(
                "SELECT * FROM universities WHERE id = ?",
                (university_id,),
                fetch_all=False
            )
        except Exception as e:
            self.logger.error(f"Failed to get university {university_id}: {str(e)}")
            return None

    def get_all_universities(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            if status:
                return self.db.execute_query(
                    "SELECT * FROM universities WHERE status = ? ORDER BY name", (status,)
                )
            return self.db.execute_query("SELECT * FROM universities ORDER BY name")
        except Exception as e:
            self.logger.error(f"Failed to get universities: {str(e)}")
            return []

    def get_university_count(self, status: Optional[str] = None) -> int:
        return len(self.get_all_universities(status))

    def get_platform_stats(self) -> Dict[str, Any]:
        """
        Summarize universities for the super-admin overview.

        Returns:
            Dict[str, Any]: Totals and per-status counts
        """
        universities = self.get_all_universities()
        status_counts = {status: 0 for status in self.STATUSES}
        for university in universities:
            status_counts[university['status']] = status_counts.get(university['status'], 0) + 1

        return {
            'total_universities': len(universities),
            'status_counts': status_counts,
            'total_students': sum(u['students_count'] or 0 for u in universities),
            'total_faculty': sum(u['faculty_count'] or 0 for u in universities)
        }
