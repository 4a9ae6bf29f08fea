import os
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, date
from decimal import Decimal

import psycopg2
from psycopg2.extras import RealDictCursor
from werkzeug.security import generate_password_hash

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

DATABASE_URL = os.environ.get('DATABASE_URL', '')
DB_PATH = os.environ.get('DB_PATH', os.path.join(BASE_DIR, 'rif_mis.db'))
USE_POSTGRES = DATABASE_URL.startswith(('postgres://', 'postgresql://'))

IntegrityError = (sqlite3.IntegrityError, psycopg2.IntegrityError)

ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@rif-ii.org').lower()
ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin')
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'Admin@#123')


class PgCursor:
    """Cursor wrapper so SQL can be written once with sqlite-style ``?`` params."""

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, sql, params=()):
        self._cursor.execute(sql.replace('?', '%s'), tuple(params))
        return self

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    def __getattr__(self, name):
        return getattr(self._cursor, name)


class PgConnection:

    def __init__(self, conn):
        self._conn = conn

    def cursor(self):
        return PgCursor(self._conn.cursor(cursor_factory=RealDictCursor))

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def get_db_connection():
    if USE_POSTGRES:
        return PgConnection(psycopg2.connect(DATABASE_URL))

    conn = sqlite3.connect(DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


@contextmanager
def get_cursor(commit=False):
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        yield cursor
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def insert_returning_id(cursor, sql, params, pk='id'):
    """Run an INSERT and return the generated primary key on either backend."""
    if USE_POSTGRES:
        cursor.execute(f'{sql} RETURNING {pk}', params)
        return cursor.fetchone()[pk]
    cursor.execute(sql, params)
    return cursor.lastrowid


def row_to_dict(row):
    if row is None:
        return None
    result = {}
    for key in row.keys():
        value = row[key]
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        result[key] = value
    return result


def rows_to_dicts(rows):
    return [row_to_dict(row) for row in rows]


def _pk():
    return 'SERIAL PRIMARY KEY' if USE_POSTGRES else 'INTEGER PRIMARY KEY AUTOINCREMENT'


SCHEMA = [
    '''CREATE TABLE IF NOT EXISTS user_access (
        id {pk},
        username TEXT NOT NULL UNIQUE,
        password TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        full_name TEXT,
        department TEXT,
        region TEXT,
        address TEXT,
        contact_no TEXT,
        access_level TEXT DEFAULT 'User',
        access_granted_at TIMESTAMP,
        access_add INTEGER DEFAULT 0,
        access_edit INTEGER DEFAULT 0,
        access_delete INTEGER DEFAULT 0,
        access_reports INTEGER DEFAULT 0,
        user_login_logs INTEGER DEFAULT 0,
        tracking_section INTEGER DEFAULT 1,
        training_section INTEGER DEFAULT 1,
        setting INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
    '''CREATE TABLE IF NOT EXISTS user_login_logs (
        id {pk},
        username TEXT,
        email TEXT,
        ip_address TEXT,
        user_agent TEXT,
        success INTEGER DEFAULT 0,
        login_time TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
    '''CREATE TABLE IF NOT EXISTS security_incidents (
        id {pk},
        incident_title TEXT NOT NULL,
        category TEXT NOT NULL,
        location_district TEXT NOT NULL,
        location_province TEXT NOT NULL,
        incident_date TEXT NOT NULL,
        incident_summary TEXT NOT NULL,
        operational_impact TEXT NOT NULL,
        recommended_actions TEXT NOT NULL,
        date_reported TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        reported_by TEXT DEFAULT 'System',
        comment TEXT,
        reference_number TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS training_events (
        sn {pk},
        training_title TEXT,
        output TEXT,
        sub_no TEXT,
        sub_activity_name TEXT,
        event_type TEXT,
        sector TEXT,
        venue TEXT,
        location_tehsil TEXT,
        district TEXT,
        start_date TEXT,
        end_date TEXT,
        total_days INTEGER DEFAULT 0,
        training_facilitator_name TEXT,
        tma_male INTEGER DEFAULT 0,
        tma_female INTEGER DEFAULT 0,
        phed_male INTEGER DEFAULT 0,
        phed_female INTEGER DEFAULT 0,
        lgrd_male INTEGER DEFAULT 0,
        lgrd_female INTEGER DEFAULT 0,
        pdd_male INTEGER DEFAULT 0,
        pdd_female INTEGER DEFAULT 0,
        community_male INTEGER DEFAULT 0,
        community_female INTEGER DEFAULT 0,
        any_other_male INTEGER DEFAULT 0,
        any_other_female INTEGER DEFAULT 0,
        any_other_specify TEXT,
        total_male INTEGER DEFAULT 0,
        total_female INTEGER DEFAULT 0,
        total_participants INTEGER DEFAULT 0,
        pre_training_evaluation TEXT,
        post_training_evaluation TEXT,
        event_agendas TEXT,
        expected_outcomes TEXT,
        challenges_faced TEXT,
        suggested_actions TEXT,
        activity_completion_report_link TEXT,
        participant_list_attachment TEXT,
        picture_attachment TEXT,
        external_links TEXT,
        remarks TEXT,
        data_compiler_name TEXT,
        data_verified_by TEXT,
        created_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        last_modified_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
    '''CREATE TABLE IF NOT EXISTS training_participants (
        sn {pk},
        participant_name TEXT NOT NULL,
        so_do_wo_ho TEXT,
        gender TEXT,
        organization_department TEXT,
        designation TEXT,
        profession TEXT,
        cnic_number TEXT,
        contact_number TEXT,
        tehsil TEXT,
        district TEXT,
        workshop_training_name TEXT,
        workshop_session_conference TEXT,
        start_date TEXT,
        end_date TEXT,
        date_entered_by TEXT,
        entry_timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
    '''CREATE TABLE IF NOT EXISTS tracking_outputs (
        output_id TEXT PRIMARY KEY,
        output TEXT NOT NULL,
        weightage REAL DEFAULT 0
    )''',
    '''CREATE TABLE IF NOT EXISTS tracking_main_activities (
        activity_id TEXT PRIMARY KEY,
        output_id TEXT NOT NULL,
        main_activity_name TEXT NOT NULL,
        weightage_of_main_activity REAL DEFAULT 0
    )''',
    '''CREATE TABLE IF NOT EXISTS tracking_sub_activities (
        sub_activity_id TEXT PRIMARY KEY,
        activity_id TEXT NOT NULL,
        sub_activity_name TEXT NOT NULL
    )''',
    '''CREATE TABLE IF NOT EXISTS tehsils (
        id {pk},
        district TEXT NOT NULL,
        tehsil TEXT NOT NULL
    )''',
    '''CREATE TABLE IF NOT EXISTS tracking_sheet (
        id {pk},
        output_id TEXT NOT NULL,
        output TEXT,
        activity_id TEXT NOT NULL,
        main_activity_name TEXT NOT NULL,
        sub_activity_id TEXT NOT NULL,
        sub_activity_name TEXT NOT NULL,
        sub_sub_activity_id TEXT NOT NULL,
        sub_sub_activity_name TEXT NOT NULL,
        unit_name TEXT,
        planned_targets REAL DEFAULT 0,
        achieved_targets REAL DEFAULT 0,
        activity_progress REAL DEFAULT 0,
        activity_weightage REAL DEFAULT 0,
        activity_weightage_progress REAL DEFAULT 0,
        planned_start_date TEXT,
        planned_end_date TEXT,
        remarks TEXT,
        links TEXT,
        sector_name TEXT,
        district TEXT,
        tehsil TEXT,
        beneficiaries_male INTEGER DEFAULT 0,
        beneficiaries_female INTEGER DEFAULT 0,
        total_beneficiaries INTEGER DEFAULT 0,
        beneficiary_types TEXT,
        created_by TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
    '''CREATE TABLE IF NOT EXISTS pictures (
        picture_id {pk},
        group_name TEXT,
        main_category TEXT NOT NULL,
        sub_category TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_path TEXT NOT NULL,
        file_size_kb INTEGER DEFAULT 0,
        uploaded_by TEXT,
        upload_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        is_active INTEGER DEFAULT 1,
        event_date TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS documents (
        document_id {pk},
        title TEXT NOT NULL,
        description TEXT,
        file_path TEXT NOT NULL,
        upload_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        uploaded_by TEXT,
        file_type TEXT,
        documents_type TEXT,
        allow_priority_users INTEGER DEFAULT 0,
        allow_internal_users INTEGER DEFAULT 0,
        allow_others_users INTEGER DEFAULT 0,
        category TEXT,
        sub_category TEXT,
        document_date TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS reports (
        report_id {pk},
        report_title TEXT NOT NULL,
        description TEXT,
        file_path TEXT NOT NULL,
        event_date TEXT,
        main_category TEXT,
        sub_category TEXT,
        uploaded_by TEXT,
        upload_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
    '''CREATE TABLE IF NOT EXISTS kml_files (
        id {pk},
        name TEXT NOT NULL,
        description TEXT,
        file_path TEXT NOT NULL,
        upload_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        uploaded_by TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS gis_maps (
        map_id {pk},
        area_name TEXT NOT NULL,
        map_type TEXT,
        file_name TEXT,
        district TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''',
]

INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_login_logs_username ON user_login_logs (username)',
    'CREATE INDEX IF NOT EXISTS idx_security_category ON security_incidents (category)',
    'CREATE INDEX IF NOT EXISTS idx_training_district ON training_events (district)',
    'CREATE INDEX IF NOT EXISTS idx_participants_district ON training_participants (district)',
    'CREATE INDEX IF NOT EXISTS idx_tracking_output ON tracking_sheet (output_id)',
    'CREATE INDEX IF NOT EXISTS idx_tracking_activity ON tracking_sheet (activity_id)',
    'CREATE INDEX IF NOT EXISTS idx_pictures_category ON pictures (main_category, sub_category)',
    'CREATE INDEX IF NOT EXISTS idx_gis_maps_area ON gis_maps (area_name)',
]

# Child tables first so a wipe never trips a constraint.
ALL_TABLES = [
    'user_login_logs', 'security_incidents', 'training_participants',
    'training_events', 'tracking_sheet', 'tracking_sub_activities',
    'tracking_main_activities', 'tracking_outputs', 'tehsils', 'pictures',
    'documents', 'reports', 'kml_files', 'gis_maps', 'user_access',
]


def seed_admin(cursor):
    cursor.execute('SELECT COUNT(*) AS n FROM user_access')
    if cursor.fetchone()['n']:
        return False

    now = datetime.now().isoformat(timespec='seconds')
    cursor.execute(
        '''INSERT INTO user_access (username, password, email, full_name, access_level,
               access_granted_at, access_add, access_edit, access_delete, access_reports,
               user_login_logs, tracking_section, training_section, setting,
               created_at, updated_at)
           VALUES (?, ?, ?, ?, 'Admin', ?, 1, 1, 1, 1, 1, 1, 1, 1, ?, ?)''',
        (ADMIN_USERNAME, generate_password_hash(ADMIN_PASSWORD), ADMIN_EMAIL,
         'Administrator', now, now, now))
    logger.info('Seeded bootstrap admin account %s', ADMIN_EMAIL)
    return True


def init_db():
    pk = _pk()
    with get_cursor(commit=True) as cursor:
        for statement in SCHEMA:
            cursor.execute(statement.format(pk=pk))
        for statement in INDEXES:
            cursor.execute(statement)
        seed_admin(cursor)
    logger.info('Database ready (%s)', 'postgres' if USE_POSTGRES else DB_PATH)
