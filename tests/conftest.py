import io
import os
import shutil
import sys
import tempfile

import pytest
from PIL import Image
from werkzeug.security import generate_password_hash

TEST_DIR = tempfile.mkdtemp(prefix='rif-mis-tests-')
os.environ['DB_PATH'] = os.path.join(TEST_DIR, 'test.db')
os.environ['UPLOAD_ROOT'] = os.path.join(TEST_DIR, 'uploads')
os.environ['MAPS_DIR'] = os.path.join(TEST_DIR, 'maps')
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ.pop('DATABASE_URL', None)

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import db
import uploads
from app import app, failed_login_attempts

PASSWORD = 'Passw0rd!#'
ALL_FLAGS = ('access_add', 'access_edit', 'access_delete', 'access_reports',
             'user_login_logs', 'tracking_section', 'training_section', 'setting')


def create_user(username, access_level='User', email=None, full_name=None, password=PASSWORD, **flags):
    values = {
        'username': username,
        'email': email or f'{username}@example.org',
        'password': generate_password_hash(password),
        'full_name': full_name or username.title(),
        'access_level': access_level,
        'access_add': 0,
        'access_edit': 0,
        'access_delete': 0,
        'access_reports': 0,
        'user_login_logs': 0,
        'tracking_section': 1,
        'training_section': 1,
        'setting': 0,
    }
    values.update(flags)
    columns = ', '.join(values)
    placeholders = ', '.join('?' for _ in values)
    with db.get_cursor(commit=True) as cursor:
        cursor.execute(f'INSERT INTO user_access ({columns}) VALUES ({placeholders})', list(values.values()))
    return values


def login(client, email, password=PASSWORD):
    res = client.post('/api/login', json={'email': email, 'password': password})
    assert res.status_code == 200, res.get_json()
    return {'X-CSRF-Token': res.get_json()['csrf_token']}


def signed_in(username, access_level='User', **flags):
    """Create a user, log a fresh client in, return (client, csrf headers)."""
    user = create_user(username, access_level=access_level, **flags)
    client = app.test_client()
    return client, login(client, user['email'])


def upload_path(public_path):
    return os.path.join(uploads.UPLOAD_ROOT, *public_path[len('/uploads/'):].split('/'))


def make_image(fmt='PNG', mode='RGB', size=(64, 48)):
    color = (200, 30, 30, 128) if mode == 'RGBA' else (200, 30, 30)
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    buf.seek(0)
    return buf


@pytest.fixture(autouse=True)
def clean_db():
    with db.get_cursor(commit=True) as cursor:
        for table in db.ALL_TABLES:
            cursor.execute(f'DELETE FROM {table}')
    failed_login_attempts.clear()
    shutil.rmtree(uploads.UPLOAD_ROOT, ignore_errors=True)
    yield


@pytest.fixture
def client():
    return app.test_client()


@pytest.fixture
def admin():
    return signed_in('admin', access_level='Admin', **{flag: 1 for flag in ALL_FLAGS})


@pytest.fixture
def viewer():
    return signed_in('viewer')
