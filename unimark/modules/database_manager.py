"""
Database Manager Module - UniMark Geofenced Attendance System

This module handles all SQLite operations for the attendance system.
It owns the connection, creates the schema, seeds demo data and provides
query, update and transaction helpers used by the store and the managers.

Features:
- SQLite connection management (single shared connection, serialized)
- Table schema creation
- Demo universities and role accounts
- Nested transaction support with rollback
- System settings storage
"""

import sqlite3
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from werkzeug.security import generate_password_hash


class DatabaseManager:
    """
    Database management class for the attendance system.
    Handles connection management, schema creation and data manipulation
    with error logging and transaction support.
    """

    def __init__(self, db_path, seed_defaults=True, default_password='admin123'):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file, or ':memory:'
            seed_defaults (bool): Insert demo data into empty tables
            default_password (str): Password given to seeded demo accounts
        """
        self.db_path = str(db_path)
        self.seed_defaults = seed_defaults
        self.default_password = default_password
        self.logger = logging.getLogger(__name__)

        # One connection shared by all threads; every use holds the lock
        self._lock = threading.RLock()
        self._local = threading.local()
        self._connection = None

        if self.db_path != ':memory:':
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    def _connect(self):
        if self._connection is None:
            self._connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    @property
    def in_transaction(self):
        return getattr(self._local, 'depth', 0) > 0

    @contextmanager
    def get_connection(self):
        """
        Context manager yielding the shared connection while holding the lock.

        Yields:
            sqlite3.Connection: Database connection object
        """
        with self._lock:
            connection = self._connect()
            try:
                yield connection
            except Exception as e:
                if not self.in_transaction:
                    connection.rollback()
                self.logger.error(f"Database operation failed: {str(e)}")
                raise

    def initialize_database(self):
        """
        Create all necessary tables and initial data.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS universities (
                        id VARCHAR(64) PRIMARY KEY,
                        name VARCHAR(150) NOT NULL,
                        domain VARCHAR(150) UNIQUE NOT NULL,
                        admin_email VARCHAR(150) NOT NULL,
                        status VARCHAR(20) DEFAULT 'trial',
                        plan VARCHAR(50) DEFAULT 'Trial',
                        expires_at TIMESTAMP,
                        students_count INTEGER DEFAULT 0,
                        faculty_count INTEGER DEFAULT 0,
                        created_at TIMESTAMP NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS users (
                        id VARCHAR(64) PRIMARY KEY,
                        username VARCHAR(100) UNIQUE NOT NULL,
                        email VARCHAR(150) UNIQUE NOT NULL,
                        password_hash VARCHAR(255) NOT NULL,
                        name VARCHAR(150) NOT NULL,
                        role VARCHAR(30) NOT NULL,
                        university_id VARCHAR(64),
                        branch VARCHAR(100),
                        class_name VARCHAR(100),
                        batch VARCHAR(50),
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP NOT NULL,
                        FOREIGN KEY (university_id) REFERENCES universities(id)
                    )
                """)

                # Eligibility sets are stored as JSON arrays
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sessions (
                        id VARCHAR(64) PRIMARY KEY,
                        faculty_id VARCHAR(64) NOT NULL,
                        faculty_name VARCHAR(150),
                        university_id VARCHAR(64),
                        code VARCHAR(10) NOT NULL,
                        title VARCHAR(200) NOT NULL,
                        branches TEXT NOT NULL DEFAULT '[]',
                        classes TEXT NOT NULL DEFAULT '[]',
                        batches TEXT NOT NULL DEFAULT '[]',
                        latitude REAL NOT NULL,
                        longitude REAL NOT NULL,
                        radius_meters REAL NOT NULL,
                        start_time TIMESTAMP NOT NULL,
                        end_time TIMESTAMP NOT NULL,
                        is_active BOOLEAN DEFAULT 1,
                        attendance_count INTEGER DEFAULT 0
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance (
                        id VARCHAR(64) PRIMARY KEY,
                        session_id VARCHAR(64) NOT NULL,
                        student_id VARCHAR(64) NOT NULL,
                        student_name VARCHAR(150),
                        timestamp TIMESTAMP NOT NULL,
                        latitude REAL NOT NULL,
                        longitude REAL NOT NULL,
                        verified BOOLEAN DEFAULT 1,
                        FOREIGN KEY (session_id) REFERENCES sessions(id),
                        UNIQUE(session_id, student_id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS system_settings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        setting_key VARCHAR(100) UNIQUE NOT NULL,
                        setting_value TEXT,
                        description TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_code ON sessions(code)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_faculty ON sessions(faculty_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_student ON attendance(student_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)")

                conn.commit()

                if self.seed_defaults:
                    self._insert_default_data(cursor)
                    conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def _insert_default_data(self, cursor):
        """
        Insert demo universities and one account per role.

        Args:
            cursor: Database cursor object
        """
        now = datetime.now(timezone.utc).isoformat()

        cursor.execute("SELECT COUNT(*) FROM universities")
        if cursor.fetchone()[0] == 0:
            sample_universities = [
                ('univ-1', 'Darshan University', 'darshan.ac.in', 'admin@darshan.ac.in',
                 'active', 'Premium', '2025-01-15T00:00:00+00:00', 2500, 180, '2024-01-15T00:00:00+00:00'),
                ('univ-2', 'Gujarat University', 'gujaratuniversity.ac.in', 'admin@gujaratuniversity.ac.in',
                 'trial', 'Trial', '2025-02-01T00:00:00+00:00', 1200, 85, '2024-11-01T00:00:00+00:00'),
                ('univ-3', 'Nirma University', 'nirmauni.ac.in', 'admin@nirmauni.ac.in',
                 'active', 'Standard', '2025-03-20T00:00:00+00:00', 1800, 120, '2024-03-20T00:00:00+00:00')
            ]
            cursor.executemany("""
                INSERT INTO universities (id, name, domain, admin_email, status, plan,
                                          expires_at, students_count, faculty_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, sample_universities)

        cursor.execute("SELECT COUNT(*) FROM users")
        if cursor.fetchone()[0] == 0:
            password_hash = generate_password_hash(self.default_password)
            sample_users = [
                ('super-admin-1', 'superadmin', 'superadmin@unimark.com', password_hash,
                 'Super Administrator', 'super-admin', None, None, None, None, now),
                ('admin-1', 'darshan-admin', 'admin@darshan.ac.in', password_hash,
                 'Dr. Rajesh Patel', 'university-admin', 'univ-1', None, None, None, now),
                ('faculty-1', 'prof.sharma', 'prof.sharma@darshan.ac.in', password_hash,
                 'Prof. Priya Sharma', 'faculty', 'univ-1', 'Computer Engineering', None, None, now),
                ('student-1', 'rahul.patel', 'student@darshan.ac.in', password_hash,
                 'Rahul Patel', 'student', 'univ-1', 'Computer Engineering', 'B.Tech', '2022-2026', now)
            ]
            cursor.executemany("""
                INSERT INTO users (id, username, email, password_hash, name, role, university_id,
                                   branch, class_name, batch, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, sample_users)

        cursor.execute("SELECT COUNT(*) FROM system_settings")
        if cursor.fetchone()[0] == 0:
            default_settings = [
                ('system_name', 'UniMark Attendance', 'Name of the attendance system'),
                ('default_radius_meters', '500', 'Default geofence radius for new sessions'),
                ('pin_length', '4', 'Digits in the check-in PIN')
            ]
            cursor.executemany("""
                INSERT INTO system_settings (setting_key, setting_value, description)
                VALUES (?, ?, ?)
            """, default_settings)

        self.logger.info("Default data inserted successfully")

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.
        Inside a transaction the commit is deferred to the transaction.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if not self.in_transaction:
                    conn.commit()

                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.
        Nested use joins the outermost transaction.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self._lock:
            conn = self._connect()
            depth = getattr(self._local, 'depth', 0)
            self._local.depth = depth + 1
            try:
                yield conn
                if depth == 0:
                    conn.commit()
            except Exception as e:
                if depth == 0:
                    conn.rollback()
                    self.logger.error(f"Transaction rolled back: {str(e)}")
                raise
            finally:
                self._local.depth = depth

    def get_system_setting(self, key, default_value=None):
        """
        Get a system setting value by key.

        Args:
            key (str): Setting key
            default_value: Default value if setting not found

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except Exception as e:
            self.logger.error(f"Failed to get system setting {key}: {str(e)}")
            return default_value

    def update_system_setting(self, key, value, description=None):
        """
        Update or insert a system setting.

        Returns:
            bool: Success status
        """
        try:
            with self.transaction() as conn:
                conn.execute("""
                    INSERT INTO system_settings (setting_key, setting_value, description)
                    VALUES (?, ?, ?)
                    ON CONFLICT(setting_key) DO UPDATE SET
                        setting_value = excluded.setting_value,
                        description = COALESCE(excluded.description, system_settings.description),
                        updated_at = CURRENT_TIMESTAMP
                """, (key, value, description))
                return True

        except Exception as e:
            self.logger.error(f"Failed to update system setting {key}: {str(e)}")
            return False

    @staticmethod
    def new_id():
        return str(uuid.uuid4())

    def close_all_connections(self):
        """Close the database connection for cleanup."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                except sqlite3.Error as e:
                    self.logger.error(f"Error closing connections: {str(e)}")
                finally:
                    self._connection = None
