from flask import Flask, jsonify, request, session, g, send_from_directory, send_file
from flask_cors import CORS
from flask_limiter import Limiter
from functools import wraps
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.utils import secure_filename
import os
import secrets
import logging
import time
from datetime import datetime, timedelta

import db
import exports
import gis
import progress
import uploads
from db import get_cursor, insert_returning_id, row_to_dict, rows_to_dicts, IntegrityError
from uploads import UploadError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
REDIS_URL = os.environ.get('REDIS_URL')
MAPS_DIR = os.environ.get('MAPS_DIR', os.path.join(BASE_DIR, 'maps'))
CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
RATE_LIMIT_DEFAULT = os.environ.get('RATE_LIMIT_DEFAULT', '1000 per hour')
LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '20 per minute')

app = Flask(__name__)
CORS(app, origins=CORS_ORIGINS, supports_credentials=True)
app.secret_key = os.environ.get('SECRET_KEY', 'dev-secret-key')

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE='Lax',
    SESSION_COOKIE_SECURE=os.environ.get('FLASK_ENV') == 'production',
    PERMANENT_SESSION_LIFETIME=timedelta(hours=8),
    MAX_CONTENT_LENGTH=120 * 1024 * 1024,
    RATELIMIT_ENABLED=os.environ.get('RATELIMIT_ENABLED', 'true').lower() not in ('0', 'false', 'no'),
)

# In-memory store for failed login attempts, keyed by client IP
failed_login_attempts = {}
LOGIN_BLOCK_THRESHOLD = 5
LOGIN_BLOCK_WINDOW = 15 * 60  # 15 minutes

ADMIN_REQUIRED_MESSAGE = ('Insufficient Permissions. This action requires Admin level access. '
                          'Please contact your administrator if you believe this is an error.')

PERMISSION_MESSAGES = {
    'access_add': ('Insufficient Permissions. This action requires add access. '
                   'Please contact your administrator if you believe this is an error.'),
    'access_edit': ('Insufficient Permissions. This action requires edit access. '
                    'Please contact your administrator if you believe this is an error.'),
    'access_delete': ('Insufficient Permissions. This action requires delete access. '
                      'Please contact your administrator if you believe this is an error.'),
    'access_reports': ('Insufficient Permissions. This action requires reports access. '
                       'Please contact your administrator if you believe this is an error.'),
    'user_login_logs': 'Access denied. Only users with Login Logs access can view login history',
    'setting': 'Access denied. Only users with Setting access can manage users',
}

SECTION_NAMES = {
    'tracking_section': 'Tracking Section',
    'training_section': 'Training Section',
}

ACCESS_FLAGS = ('access_add', 'access_edit', 'access_delete', 'access_reports',
                'user_login_logs', 'tracking_section', 'training_section', 'setting')


def get_client_ip():
    # Respect X-Forwarded-For if present
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or '127.0.0.1'


limiter = Limiter(key_func=get_client_ip, app=app, storage_uri=REDIS_URL or 'memory://',
                  default_limits=[RATE_LIMIT_DEFAULT])


def is_ip_blocked(ip):
    info = failed_login_attempts.get(ip)
    if not info:
        return False
    blocked_until = info.get('blocked_until')
    if blocked_until and blocked_until > time.time():
        return True
    if time.time() - info.get('first_failed', 0) > LOGIN_BLOCK_WINDOW:
        failed_login_attempts.pop(ip, None)
    return False


def register_failed_login(ip):
    now = time.time()
    info = failed_login_attempts.get(ip)
    if not info or now - info.get('first_failed', 0) > LOGIN_BLOCK_WINDOW:
        failed_login_attempts[ip] = {'count': 1, 'first_failed': now}
        return
    info['count'] = info.get('count', 0) + 1
    if info['count'] >= LOGIN_BLOCK_THRESHOLD:
        info['blocked_until'] = now + LOGIN_BLOCK_WINDOW


def reset_failed_login(ip):
    failed_login_attempts.pop(ip, None)


@app.before_request
def csrf_protect():
    # Only session-authenticated requests carry a token to compare against
    if request.method in ('POST', 'PUT', 'PATCH', 'DELETE') and request.endpoint != 'login':
        if session.get('is_authenticated'):
            header = request.headers.get('X-CSRF-Token')
            if not header or header != session.get('csrf_token'):
                return jsonify({'success': False, 'message': 'Missing or invalid CSRF token.'}), 400


@app.after_request
def set_security_headers(response):
    if request.scheme == 'https' or os.environ.get('FLASK_ENV') == 'production':
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'no-referrer-when-downgrade'
    response.headers['Permissions-Policy'] = 'geolocation=(self)'
    return response


@app.errorhandler(413)
def request_too_large(e):
    return jsonify({'success': False, 'message': 'Uploaded content is too large'}), 413


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def fail(message, status=400, **extra):
    payload = {'success': False, 'message': message}
    payload.update(extra)
    return jsonify(payload), status


def server_error(message, e):
    logger.exception(message)
    return jsonify({'success': False, 'message': message, 'error': str(e)}), 500


def is_truthy(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def as_flag(value):
    return 1 if is_truthy(value) else 0


def now_iso():
    return datetime.now().isoformat(timespec='seconds')


def blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def as_text(value):
    return '' if value is None else str(value).strip()


def like_pattern(term):
    """Substring LIKE pattern with the wildcards in ``term`` matched literally (pair with ESCAPE '\\')."""
    escaped = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f'%{escaped}%'


def missing_fields(data, fields):
    return [field for field in fields if blank(data.get(field))]


def pick(data, fields):
    return {field: data[field] for field in fields if field in data}


def insert_row(cursor, table, values, pk='id'):
    columns = ', '.join(values)
    placeholders = ', '.join('?' for _ in values)
    return insert_returning_id(cursor, f'INSERT INTO {table} ({columns}) VALUES ({placeholders})',
                               list(values.values()), pk)


def update_row(cursor, table, values, pk, pk_value):
    assignments = ', '.join(f'{column} = ?' for column in values)
    cursor.execute(f'UPDATE {table} SET {assignments} WHERE {pk} = ?', list(values.values()) + [pk_value])
    return cursor.rowcount


def fetch_one(cursor, table, pk, pk_value):
    cursor.execute(f'SELECT * FROM {table} WHERE {pk} = ?', (pk_value,))
    return row_to_dict(cursor.fetchone())


def build_filters(args, mapping, skip_all=()):
    """Turn query-string filters into WHERE clauses; ``skip_all`` params ignore the value 'All'."""
    clauses, params = [], []
    for arg, column in mapping.items():
        value = (args.get(arg) or '').strip()
        if not value or (arg in skip_all and value == 'All'):
            continue
        clauses.append(f'{column} = ?')
        params.append(value)
    return clauses, params


def where_sql(clauses):
    return (' WHERE ' + ' AND '.join(clauses)) if clauses else ''


def xlsx_response(rows, columns, sheet_title, filename):
    return send_file(exports.build_xlsx(rows, columns, sheet_title), as_attachment=True,
                     download_name=filename, mimetype=exports.XLSX_MIMETYPE)


def csv_response(rows, columns, filename):
    return app.response_class(exports.build_csv(rows, columns), mimetype='text/csv',
                              headers={'Content-Disposition': f'attachment;filename={filename}'})


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------

def load_user(identifier):
    if blank(identifier):
        return None
    identifier = identifier.strip()
    with get_cursor() as cursor:
        cursor.execute('SELECT * FROM user_access WHERE username = ? OR LOWER(email) = ?',
                       (identifier, identifier.lower()))
        return row_to_dict(cursor.fetchone())


def has_flag(user, flag):
    value = user.get(flag)
    # Section flags predate the column and count as granted when unset
    if value is None and flag in SECTION_NAMES:
        return True
    return is_truthy(value)


def is_admin(user):
    return user.get('access_level') == 'Admin'


def access_payload(user):
    admin = is_admin(user)
    return {
        'accessLevel': user.get('access_level'),
        'isAdmin': admin,
        'canUpload': admin,
        'canManageCategories': admin,
        'canManageSubCategories': admin,
        'accessAdd': has_flag(user, 'access_add'),
        'accessEdit': has_flag(user, 'access_edit'),
        'accessDelete': has_flag(user, 'access_delete'),
        'accessReports': has_flag(user, 'access_reports'),
        'userLoginLogs': has_flag(user, 'user_login_logs'),
        'trackingSection': has_flag(user, 'tracking_section'),
        'trainingSection': has_flag(user, 'training_section'),
        'setting': has_flag(user, 'setting'),
    }


def current_username():
    user = g.get('current_user')
    if user:
        return user.get('full_name') or user.get('username')
    return None


def login_required(f):

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('is_authenticated'):
            return fail('Authentication required', 401)
        user = load_user(session.get('username'))
        if user is None:
            session.clear()
            return fail('Authentication required', 401)
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def access_guard(check, message):

    def decorator(f):

        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if not check(g.current_user):
                logger.warning('Access denied for %s on %s', g.current_user.get('username'), request.path)
                return fail(message, 403)
            return f(*args, **kwargs)

        return decorated_function

    return decorator


admin_required = access_guard(is_admin, ADMIN_REQUIRED_MESSAGE)


def permission_required(flag):
    return access_guard(lambda user: has_flag(user, flag), PERMISSION_MESSAGES[flag])


def section_required(flag):
    message = f'You do not have access to the {SECTION_NAMES[flag]}. Please contact your administrator.'
    return access_guard(lambda user: has_flag(user, flag), message)


# ---------------------------------------------------------------------------
# Health & static files
# ---------------------------------------------------------------------------

@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'})


@app.route('/uploads/<path:filename>')
@login_required
def serve_upload(filename):
    return send_from_directory(uploads.UPLOAD_ROOT, filename)


@app.route('/maps/<path:filename>')
def serve_map(filename):
    return send_from_directory(MAPS_DIR, filename)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def record_login(cursor, username, email, success):
    cursor.execute(
        'INSERT INTO user_login_logs (username, email, ip_address, user_agent, success, login_time) '
        'VALUES (?, ?, ?, ?, ?, ?)',
        (username, email, get_client_ip(), request.headers.get('User-Agent', '')[:255],
         1 if success else 0, now_iso()))


@app.route('/api/login', methods=['POST'])
@limiter.limit(LOGIN_RATE_LIMIT)
def login():
    data = json_body()
    email = as_text(data.get('email')).lower()
    password = data.get('password')
    if not isinstance(password, str):
        password = ''

    client_ip = get_client_ip()
    if is_ip_blocked(client_ip):
        return fail('Too many failed login attempts. Try again later.', 429)

    if not email or not password:
        return fail('Email and password are required')

    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('SELECT * FROM user_access WHERE LOWER(email) = ?', (email,))
            user = row_to_dict(cursor.fetchone())
            valid = user is not None and check_password_hash(user['password'], password)
            record_login(cursor, user['username'] if user else None, email, valid)
    except Exception as e:
        return server_error('Login failed', e)

    if not valid:
        register_failed_login(client_ip)
        logger.warning('Failed login for %s from %s', email, client_ip)
        return fail('Invalid email or password', 401)

    reset_failed_login(client_ip)
    session.clear()
    session.permanent = True
    session['is_authenticated'] = True
    session['username'] = user['username']
    session['csrf_token'] = secrets.token_urlsafe(32)
    logger.info('User %s logged in', user['username'])

    return jsonify({
        'success': True,
        'user': {
            'id': user['email'],
            'name': user.get('full_name') or user['username'],
            'username': user['username'],
            'department': user.get('department'),
            'region': user.get('region'),
            'contact_no': user.get('contact_no'),
            'access_level': user.get('access_level'),
            'tracking_section': has_flag(user, 'tracking_section'),
            'training_section': has_flag(user, 'training_section'),
        },
        'full_name': user.get('full_name'),
        'csrf_token': session['csrf_token'],
    })


@app.route('/api/logout', methods=['POST'])
def logout():
    username = session.get('username')
    session.clear()
    if username:
        logger.info('User %s logged out', username)
    return jsonify({'success': True, 'message': 'Logged out successfully'})


@app.route('/api/auth/access', methods=['GET'])
@login_required
def user_access():
    identifier = request.args.get('userId') or session.get('username')
    if blank(identifier):
        return fail('User ID is required')
    try:
        user = load_user(identifier)
    except Exception as e:
        return server_error('Failed to check user access', e)
    if user is None:
        return fail('User not found', 404)

    payload = {'success': True}
    payload.update(access_payload(user))
    return jsonify(payload)


@app.route('/api/auth/me', methods=['GET'])
@login_required
def current_user_profile():
    user = g.current_user
    return jsonify({
        'success': True,
        'user': {column: user.get(column) for column in USER_PUBLIC_COLUMNS},
        'access': access_payload(user),
        'csrf_token': session.get('csrf_token'),
    })


# ---------------------------------------------------------------------------
# User settings
# ---------------------------------------------------------------------------

USER_PUBLIC_COLUMNS = (
    'id', 'username', 'email', 'full_name', 'department', 'region', 'address', 'contact_no',
    'access_level', 'access_granted_at', 'access_add', 'access_edit', 'access_delete',
    'access_reports', 'user_login_logs', 'tracking_section', 'training_section', 'setting',
    'created_at', 'updated_at',
)
USER_PROFILE_FIELDS = ('email', 'full_name', 'department', 'region', 'address', 'contact_no')


@app.route('/api/admin/users/settings', methods=['GET'])
@permission_required('setting')
def list_user_settings():
    columns = ', '.join(USER_PUBLIC_COLUMNS)
    user_id = request.args.get('id')
    try:
        with get_cursor() as cursor:
            if user_id:
                cursor.execute(f'SELECT {columns} FROM user_access WHERE username = ?', (user_id,))
                user = row_to_dict(cursor.fetchone())
                if user is None:
                    return fail('User not found', 404)
                return jsonify({'success': True, 'user': user})

            cursor.execute(f'SELECT {columns} FROM user_access ORDER BY full_name, username LIMIT 1000')
            return jsonify({'success': True, 'users': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch users', e)


@app.route('/api/admin/users/add', methods=['POST'])
@permission_required('setting')
def add_user():
    data = json_body()
    if missing_fields(data, ('username', 'email', 'password')):
        return fail('Username, email and password are required')
    if not isinstance(data['password'], str):
        return fail('Password must be a string')

    username = as_text(data['username'])
    values = {field: data.get(field) for field in USER_PROFILE_FIELDS}
    values['email'] = as_text(data['email']).lower()
    values['username'] = username
    values['password'] = generate_password_hash(data['password'])
    values['access_level'] = data.get('access_level') or 'User'
    for flag in ACCESS_FLAGS:
        default = 1 if flag in SECTION_NAMES else 0
        values[flag] = as_flag(data[flag]) if flag in data else default
    stamp = now_iso()
    values['access_granted_at'] = stamp
    values['created_at'] = stamp
    values['updated_at'] = stamp

    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('SELECT 1 FROM user_access WHERE username = ?', (username,))
            if cursor.fetchone():
                return fail('Username already exists')
            new_id = insert_row(cursor, 'user_access', values)
    except IntegrityError:
        return fail('Email already exists', 409)
    except Exception as e:
        return server_error('Failed to add user', e)

    logger.info('User %s created by %s', username, g.current_user['username'])
    return jsonify({'success': True, 'message': 'User added successfully', 'id': new_id}), 201


@app.route('/api/admin/users/add', methods=['PUT'])
@permission_required('setting')
def update_user():
    data = json_body()
    if blank(data.get('id')) and blank(data.get('username')):
        return fail('User ID or username is required')

    values = pick(data, USER_PROFILE_FIELDS)
    if 'email' in values and values['email']:
        values['email'] = as_text(values['email']).lower()
    if data.get('password'):
        if not isinstance(data['password'], str):
            return fail('Password must be a string')
        values['password'] = generate_password_hash(data['password'])
    granted = False
    if data.get('access_level'):
        values['access_level'] = data['access_level']
        granted = True
    for flag in ACCESS_FLAGS:
        if flag in data:
            values[flag] = as_flag(data[flag])
            granted = True

    if not values:
        return fail('No fields to update')

    stamp = now_iso()
    values['updated_at'] = stamp
    if granted:
        values['access_granted_at'] = stamp

    key, key_value = ('id', data['id']) if not blank(data.get('id')) else ('username', data['username'])
    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'user_access', values, key, key_value):
                return fail('User not found', 404)
    except IntegrityError:
        return fail('Email already exists', 409)
    except Exception as e:
        return server_error('Failed to update user', e)

    return jsonify({'success': True, 'message': 'User updated successfully'})


@app.route('/api/admin/users/delete', methods=['DELETE'])
@permission_required('setting')
def delete_user():
    username = request.args.get('id') or json_body().get('username')
    if blank(username):
        return fail('User ID is required')
    if username == g.current_user['username']:
        return fail('You cannot delete your own account')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('DELETE FROM user_access WHERE username = ?', (username,))
            if not cursor.rowcount:
                return fail('User not found', 404)
    except Exception as e:
        return server_error('Failed to delete user', e)

    logger.info('User %s deleted by %s', username, g.current_user['username'])
    return jsonify({'success': True, 'message': 'User deleted successfully'})


@app.route('/api/admin/users/login-logs', methods=['GET'])
@permission_required('user_login_logs')
def login_logs():
    username = request.args.get('username')
    limit = min(max(progress.to_int(request.args.get('limit'), 200), 1), 1000)
    clauses, params = [], []
    if username:
        clauses.append('username = ?')
        params.append(username)
    try:
        with get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM user_login_logs{where_sql(clauses)} '
                           'ORDER BY login_time DESC, id DESC LIMIT ?', params + [limit])
            return jsonify({'success': True, 'logs': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch login logs', e)


# ---------------------------------------------------------------------------
# Security incidents
# ---------------------------------------------------------------------------

INCIDENT_REQUIRED = (
    'incident_title', 'category', 'location_district', 'location_province', 'incident_date',
    'incident_summary', 'operational_impact', 'recommended_actions',
)
INCIDENT_FIELDS = INCIDENT_REQUIRED + ('reported_by', 'comment', 'reference_number')
INCIDENT_FILTERS = {
    'category': 'category',
    'locationDistrict': 'location_district',
    'locationProvince': 'location_province',
}


def query_incidents(cursor, args):
    clauses, params = build_filters(args, INCIDENT_FILTERS)
    search = (args.get('search') or '').strip().lower()
    if search:
        clauses.append("(LOWER(incident_title) LIKE ? ESCAPE '\\' OR LOWER(incident_summary) LIKE ? ESCAPE '\\')")
        params.extend([like_pattern(search)] * 2)
    cursor.execute(f'SELECT * FROM security_incidents{where_sql(clauses)} '
                   'ORDER BY date_reported DESC, id DESC LIMIT 1000', params)
    return rows_to_dicts(cursor.fetchall())


@app.route('/api/security-updates', methods=['GET'])
@login_required
def list_security_updates():
    try:
        with get_cursor() as cursor:
            incident_id = request.args.get('id')
            if incident_id:
                return jsonify({'success': True,
                                'incident': fetch_one(cursor, 'security_incidents', 'id', incident_id)})
            return jsonify({'success': True, 'incidents': query_incidents(cursor, request.args)})
    except Exception as e:
        return server_error('Failed to fetch security incidents', e)


@app.route('/api/security-updates/add', methods=['POST'])
@permission_required('access_add')
def add_security_update():
    data = json_body()
    if missing_fields(data, INCIDENT_REQUIRED):
        return fail('All required fields must be filled')

    values = pick(data, INCIDENT_FIELDS)
    values['reported_by'] = data.get('reported_by') or current_username() or 'System'
    values['date_reported'] = now_iso()
    try:
        with get_cursor(commit=True) as cursor:
            new_id = insert_row(cursor, 'security_incidents', values)
    except Exception as e:
        return server_error('Failed to add security incident', e)

    logger.info('Security incident %s reported by %s', new_id, values['reported_by'])
    return jsonify({'success': True, 'message': 'Security incident added successfully', 'id': new_id}), 201


@app.route('/api/security-updates/update', methods=['PUT'])
@permission_required('access_edit')
def update_security_update():
    data = json_body()
    if blank(data.get('id')):
        return fail('Incident ID is required')
    if missing_fields(data, INCIDENT_REQUIRED):
        return fail('All required fields must be filled')

    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'security_incidents', pick(data, INCIDENT_FIELDS), 'id', data['id']):
                return fail('Security incident not found', 404)
    except Exception as e:
        return server_error('Failed to update security incident', e)

    return jsonify({'success': True, 'message': 'Security incident updated successfully'})


@app.route('/api/security-updates/delete', methods=['DELETE'])
@permission_required('access_delete')
def delete_security_update():
    incident_id = request.args.get('id')
    if blank(incident_id):
        return fail('Incident ID is required')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('DELETE FROM security_incidents WHERE id = ?', (incident_id,))
            if not cursor.rowcount:
                return fail('Security incident not found', 404)
    except Exception as e:
        return server_error('Failed to delete security incident', e)

    logger.info('Security incident %s deleted by %s', incident_id, g.current_user['username'])
    return jsonify({'success': True, 'message': 'Security incident deleted successfully'})


@app.route('/api/security-updates/export', methods=['GET'])
@permission_required('access_reports')
def export_security_updates():
    try:
        with get_cursor() as cursor:
            rows = query_incidents(cursor, request.args)
        return csv_response(rows, exports.SECURITY_COLUMNS, 'security_incidents.csv')
    except Exception as e:
        return server_error('Failed to export security incidents', e)


# ---------------------------------------------------------------------------
# Training events
# ---------------------------------------------------------------------------

PARTICIPANT_COUNT_FIELDS = tuple(f'{group}_{gender}' for group in progress.PARTICIPANT_GROUPS
                                 for gender in ('male', 'female'))
TRAINING_FIELDS = (
    'training_title', 'output', 'sub_no', 'sub_activity_name', 'event_type', 'sector', 'venue',
    'location_tehsil', 'district', 'start_date', 'end_date', 'training_facilitator_name',
) + PARTICIPANT_COUNT_FIELDS + (
    'any_other_specify', 'pre_training_evaluation', 'post_training_evaluation', 'event_agendas',
    'expected_outcomes', 'challenges_faced', 'suggested_actions', 'activity_completion_report_link',
    'participant_list_attachment', 'picture_attachment', 'external_links', 'remarks',
    'data_compiler_name', 'data_verified_by',
)
TRAINING_FILTERS = {
    'district': 'district',
    'output': 'output',
    'eventType': 'event_type',
    'locationTehsil': 'location_tehsil',
    'trainingFacilitator': 'training_facilitator_name',
}
TRAINING_TOTALS_SQL = ('COUNT(*) AS total_trainings, COALESCE(SUM(total_days), 0) AS total_days, '
                       'COALESCE(SUM(total_male), 0) AS total_male, '
                       'COALESCE(SUM(total_female), 0) AS total_female, '
                       'COALESCE(SUM(total_participants), 0) AS total_participants')


def training_values(data):
    values = pick(data, TRAINING_FIELDS)
    for field in PARTICIPANT_COUNT_FIELDS:
        values[field] = progress.to_int(data.get(field))
    values.update(progress.training_totals(values))
    values['data_compiler_name'] = data.get('data_compiler_name') or current_username()
    values['last_modified_date'] = now_iso()
    return values


def query_training(cursor, args):
    clauses, params = build_filters(args, TRAINING_FILTERS, skip_all=('district',))
    cursor.execute(f'SELECT * FROM training_events{where_sql(clauses)} '
                   'ORDER BY start_date DESC, training_title', params)
    return rows_to_dicts(cursor.fetchall())


@app.route('/api/training', methods=['GET'])
@section_required('training_section')
def list_training():
    try:
        with get_cursor() as cursor:
            training_id = request.args.get('id')
            if training_id:
                record = fetch_one(cursor, 'training_events', 'sn', training_id)
                if record is None:
                    return fail('Training record not found', 404)
                return jsonify({'success': True, 'trainingData': record})
            return jsonify({'success': True, 'trainingData': query_training(cursor, request.args)})
    except Exception as e:
        return server_error('Failed to fetch training data', e)


@app.route('/api/training/add', methods=['POST'])
@permission_required('access_add')
def add_training():
    data = json_body()
    if blank(data.get('training_title')):
        return fail('Training title is required')

    values = training_values(data)
    values['created_date'] = values['last_modified_date']
    try:
        with get_cursor(commit=True) as cursor:
            sn = insert_row(cursor, 'training_events', values, pk='sn')
    except Exception as e:
        return server_error('Failed to add training record', e)

    logger.info('Training event %s added by %s', sn, g.current_user['username'])
    return jsonify({'success': True, 'message': 'Training record added successfully', 'sn': sn,
                    'totals': progress.training_totals(values)}), 201


@app.route('/api/training/update', methods=['PUT'])
@permission_required('access_edit')
def update_training():
    data = json_body()
    sn = data.get('id') or data.get('sn')
    if blank(sn):
        return fail('Training ID is required')
    if blank(data.get('training_title')):
        return fail('Training title is required')

    values = training_values(data)
    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'training_events', values, 'sn', sn):
                return fail('Training record not found', 404)
    except Exception as e:
        return server_error('Failed to update training record', e)

    return jsonify({'success': True, 'message': 'Training record updated successfully',
                    'totals': progress.training_totals(values)})


@app.route('/api/training/delete', methods=['DELETE'])
@permission_required('access_delete')
def delete_training():
    sn = json_body().get('id') or request.args.get('id')
    if blank(sn):
        return fail('Training ID is required')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('DELETE FROM training_events WHERE sn = ?', (sn,))
            if not cursor.rowcount:
                return fail('Training record not found', 404)
    except Exception as e:
        return server_error('Failed to delete training record', e)

    logger.info('Training event %s deleted by %s', sn, g.current_user['username'])
    return jsonify({'success': True, 'message': 'Training record deleted successfully'})


@app.route('/api/training/graphs', methods=['GET'])
@section_required('training_section')
def training_graphs():
    try:
        with get_cursor() as cursor:
            cursor.execute(
                'SELECT event_type, district, SUM(total_male) AS total_male, '
                'SUM(total_female) AS total_female, SUM(total_participants) AS total_participants '
                'FROM training_events WHERE event_type IS NOT NULL AND district IS NOT NULL '
                'GROUP BY event_type, district ORDER BY event_type, district')
            return jsonify({'success': True, 'graphData': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch training graph data', e)


@app.route('/api/training/dashboard', methods=['GET'])
@section_required('training_section')
def training_dashboard():
    try:
        with get_cursor() as cursor:
            cursor.execute(f'SELECT {TRAINING_TOTALS_SQL} FROM training_events')
            overall = row_to_dict(cursor.fetchone())
            cursor.execute(f'SELECT event_type, {TRAINING_TOTALS_SQL} FROM training_events '
                           'WHERE event_type IS NOT NULL GROUP BY event_type ORDER BY event_type')
            by_event_type = rows_to_dicts(cursor.fetchall())
            cursor.execute(f'SELECT district, {TRAINING_TOTALS_SQL} FROM training_events '
                           'WHERE district IS NOT NULL GROUP BY district ORDER BY district')
            by_district = rows_to_dicts(cursor.fetchall())
    except Exception as e:
        return server_error('Failed to fetch training dashboard', e)

    return jsonify({'success': True, 'overall': overall, 'by_event_type': by_event_type,
                    'by_district': by_district})


@app.route('/api/training/upload', methods=['POST'])
@login_required
def upload_training_files():
    file_type = request.form.get('fileType')
    sn = uploads.sanitize_title(request.form.get('sn'), default=str(uploads.timestamp_ms()))
    title = uploads.sanitize_title(request.form.get('trainingTitle'))

    try:
        if file_type in ('report', 'participantList'):
            storage = request.files.get('file')
            ext = uploads.check_file(storage, uploads.TRAINING_DOCUMENT_EXTENSIONS)
            if file_type == 'report':
                relative = f'Training/{title}_{sn}/ActivityCompletionReport.{ext}'
            else:
                name = uploads.safe_segment(storage.filename, default=f'participants.{ext}')
                relative = f'participantList/{sn}_{name}'
            path = uploads.store(storage, relative)
            return jsonify({'success': True, 'uploadedFiles': [path], 'filePath': path})

        if file_type == 'pictures':
            files = [f for f in request.files.getlist('files') if f and f.filename]
            if len(files) < uploads.MIN_TRAINING_PICTURES:
                return fail(f'At least {uploads.MIN_TRAINING_PICTURES} pictures are required')
            extensions = [uploads.check_file(f, uploads.IMAGE_EXTENSIONS, label='Picture') for f in files]
            folder = f'{sn}_{title}'
            paths = uploads.store_many(
                (storage, f'Training/picture/{folder}/{folder}_{index}.{ext}')
                for index, (storage, ext) in enumerate(zip(files, extensions), start=1)
            )
            return jsonify({'success': True, 'uploadedFiles': paths, 'filePath': ','.join(paths)})
    except UploadError as e:
        return fail(str(e))
    except Exception as e:
        return server_error('Failed to upload training files', e)

    return fail('Invalid file type. Expected report, participantList or pictures')


@app.route('/api/training/export', methods=['GET'])
@permission_required('access_reports')
def export_training():
    try:
        with get_cursor() as cursor:
            rows = query_training(cursor, request.args)
        return xlsx_response(rows, exports.TRAINING_COLUMNS, 'Training Data', 'training_data.xlsx')
    except Exception as e:
        return server_error('Failed to export training data', e)


# ---------------------------------------------------------------------------
# Training participants
# ---------------------------------------------------------------------------

PARTICIPANT_FIELDS = (
    'participant_name', 'so_do_wo_ho', 'gender', 'organization_department', 'designation',
    'profession', 'cnic_number', 'contact_number', 'tehsil', 'district', 'workshop_training_name',
    'workshop_session_conference', 'start_date', 'end_date', 'date_entered_by',
)
PARTICIPANT_FILTERS = {
    'district': 'district',
    'tehsil': 'tehsil',
    'gender': 'gender',
    'organizationDepartment': 'organization_department',
    'workshopTrainingName': 'workshop_training_name',
}
PARTICIPANT_SEARCHES = {
    'participantName': 'participant_name',
    'cnicNumber': 'cnic_number',
    'contactNumber': 'contact_number',
}
GENDERS = ('Male', 'Female')


def validate_participant(data):
    if missing_fields(data, ('participant_name', 'gender')):
        return 'Participant name and gender are required'
    if data['gender'] not in GENDERS:
        return 'Gender must be Male or Female'
    return None


def query_participants(cursor, args):
    clauses, params = build_filters(args, PARTICIPANT_FILTERS, skip_all=('district',))
    for arg, column in PARTICIPANT_SEARCHES.items():
        value = (args.get(arg) or '').strip().lower()
        if value:
            clauses.append(f"LOWER({column}) LIKE ? ESCAPE '\\'")
            params.append(like_pattern(value))
    cursor.execute(f'SELECT * FROM training_participants{where_sql(clauses)} '
                   'ORDER BY entry_timestamp DESC, sn DESC', params)
    return rows_to_dicts(cursor.fetchall())


@app.route('/api/training/participants', methods=['GET'])
@section_required('training_section')
def list_participants():
    try:
        with get_cursor() as cursor:
            sn = request.args.get('sn')
            if sn:
                participant = fetch_one(cursor, 'training_participants', 'sn', sn)
                if participant is None:
                    return fail('Participant not found', 404)
                return jsonify({'success': True, 'participant': participant})
            return jsonify({'success': True, 'participants': query_participants(cursor, request.args)})
    except Exception as e:
        return server_error('Failed to fetch participants', e)


@app.route('/api/training/participants', methods=['POST'])
@permission_required('access_add')
def add_participant():
    data = json_body()
    error = validate_participant(data)
    if error:
        return fail(error)

    values = pick(data, PARTICIPANT_FIELDS)
    values['date_entered_by'] = data.get('date_entered_by') or current_username()
    values['entry_timestamp'] = now_iso()
    try:
        with get_cursor(commit=True) as cursor:
            sn = insert_row(cursor, 'training_participants', values, pk='sn')
    except Exception as e:
        return server_error('Failed to add participant', e)

    return jsonify({'success': True, 'message': 'Participant added successfully', 'sn': sn}), 201


@app.route('/api/training/participants', methods=['PUT'])
@permission_required('access_edit')
def update_participant():
    data = json_body()
    if blank(data.get('sn')):
        return fail('Participant SN is required')
    error = validate_participant(data)
    if error:
        return fail(error)

    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'training_participants', pick(data, PARTICIPANT_FIELDS), 'sn', data['sn']):
                return fail('Participant not found', 404)
    except Exception as e:
        return server_error('Failed to update participant', e)

    return jsonify({'success': True, 'message': 'Participant updated successfully'})


@app.route('/api/training/participants/delete', methods=['DELETE'])
@permission_required('access_delete')
def delete_participant():
    sn = request.args.get('sn')
    if blank(sn):
        return fail('Participant SN is required')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('DELETE FROM training_participants WHERE sn = ?', (sn,))
            if not cursor.rowcount:
                return fail('Participant not found', 404)
    except Exception as e:
        return server_error('Failed to delete participant', e)

    return jsonify({'success': True, 'message': 'Participant deleted successfully'})


@app.route('/api/training/participants/export', methods=['GET'])
@permission_required('access_reports')
def export_participants():
    try:
        with get_cursor() as cursor:
            rows = query_participants(cursor, request.args)
        return csv_response(rows, exports.PARTICIPANT_COLUMNS, 'training_participants.csv')
    except Exception as e:
        return server_error('Failed to export participants', e)


# ---------------------------------------------------------------------------
# Tracking sheet
# ---------------------------------------------------------------------------

TRACKING_REQUIRED = (
    'output_id', 'activity_id', 'main_activity_name', 'sub_activity_id', 'sub_activity_name',
    'sub_sub_activity_id', 'sub_sub_activity_name',
)
TRACKING_TEXT_FIELDS = (
    'output', 'unit_name', 'planned_start_date', 'planned_end_date', 'remarks', 'links',
    'sector_name', 'district', 'tehsil', 'beneficiary_types',
)
TRACKING_NON_NEGATIVE = ('planned_targets', 'achieved_targets', 'beneficiaries_male', 'beneficiaries_female')
TRACKING_PERCENTAGES = ('activity_progress', 'activity_weightage')
TRACKING_FILTERS = {
    'sector': 'sector_name',
    'district': 'district',
    'tehsil': 'tehsil',
    'outputID': 'output_id',
    'activityID': 'activity_id',
    'subActivityID': 'sub_activity_id',
    'subSubActivityID': 'sub_sub_activity_id',
}


def label(field):
    return field.replace('_', ' ').capitalize()


def validate_tracking(data):
    """Return (values, errors) for a tracking-sheet row."""
    errors = {}
    for field in TRACKING_REQUIRED:
        value = data.get(field)
        if blank(value) or value in (0, '0'):
            errors[field] = f'{label(field)} is required'

    values = {field: str(data[field]).strip() for field in TRACKING_REQUIRED if field not in errors}
    values.update(pick(data, TRACKING_TEXT_FIELDS))

    for field in TRACKING_NON_NEGATIVE + TRACKING_PERCENTAGES:
        raw = data.get(field)
        if blank(raw):
            values[field] = 0
            continue
        number = progress.to_float(raw, default=None)
        if number is None:
            errors[field] = f'{label(field)} must be a number'
        elif number < 0:
            errors[field] = f'{label(field)} cannot be negative'
        elif field in TRACKING_PERCENTAGES and number > 100:
            errors[field] = f'{label(field)} must be between 0 and 100'
        else:
            values[field] = number

    if errors:
        return None, errors

    values['beneficiaries_male'] = int(values['beneficiaries_male'])
    values['beneficiaries_female'] = int(values['beneficiaries_female'])
    values['total_beneficiaries'] = values['beneficiaries_male'] + values['beneficiaries_female']
    values['activity_weightage_progress'] = progress.activity_weightage_progress(
        values['activity_progress'], values['activity_weightage'])
    values['updated_at'] = now_iso()
    return values, None


def query_tracking(cursor, args):
    clauses, params = build_filters(args, TRACKING_FILTERS, skip_all=('district',))
    cursor.execute(f'SELECT * FROM tracking_sheet{where_sql(clauses)} '
                   'ORDER BY output_id, activity_id, sub_activity_id, sub_sub_activity_id, id', params)
    return rows_to_dicts(cursor.fetchall())


def load_progress_inputs(cursor):
    cursor.execute('SELECT output_id, output, weightage FROM tracking_outputs ORDER BY output_id')
    outputs = rows_to_dicts(cursor.fetchall())
    cursor.execute('SELECT activity_id, output_id, main_activity_name, weightage_of_main_activity '
                   'FROM tracking_main_activities ORDER BY output_id, activity_id')
    main_activities = rows_to_dicts(cursor.fetchall())
    cursor.execute('SELECT activity_id, district, activity_weightage_progress FROM tracking_sheet')
    sheet_rows = rows_to_dicts(cursor.fetchall())
    return outputs, main_activities, sheet_rows


@app.route('/api/tracking-sheet', methods=['GET'])
@section_required('tracking_section')
def list_tracking_sheet():
    try:
        with get_cursor() as cursor:
            row_id = request.args.get('id')
            if row_id:
                record = fetch_one(cursor, 'tracking_sheet', 'id', row_id)
                if record is None:
                    return fail('Tracking record not found', 404)
                return jsonify({'success': True, 'record': record})
            return jsonify({'success': True, 'trackingData': query_tracking(cursor, request.args)})
    except Exception as e:
        return server_error('Failed to fetch tracking sheet', e)


@app.route('/api/tracking-sheet/add', methods=['POST'])
@permission_required('access_add')
def add_tracking_record():
    values, errors = validate_tracking(json_body())
    if errors:
        return fail('Validation failed', errors=errors)

    values['created_by'] = current_username()
    values['created_at'] = values['updated_at']
    try:
        with get_cursor(commit=True) as cursor:
            new_id = insert_row(cursor, 'tracking_sheet', values)
    except Exception as e:
        return server_error('Failed to add tracking record', e)

    return jsonify({'success': True, 'message': 'Tracking record added successfully', 'id': new_id,
                    'activity_weightage_progress': values['activity_weightage_progress'],
                    'total_beneficiaries': values['total_beneficiaries']}), 201


@app.route('/api/tracking-sheet/update', methods=['PUT'])
@permission_required('access_edit')
def update_tracking_record():
    data = json_body()
    if blank(data.get('id')):
        return fail('Tracking record ID is required')
    values, errors = validate_tracking(data)
    if errors:
        return fail('Validation failed', errors=errors)

    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'tracking_sheet', values, 'id', data['id']):
                return fail('Tracking record not found', 404)
    except Exception as e:
        return server_error('Failed to update tracking record', e)

    return jsonify({'success': True, 'message': 'Tracking record updated successfully',
                    'activity_weightage_progress': values['activity_weightage_progress'],
                    'total_beneficiaries': values['total_beneficiaries']})


@app.route('/api/tracking-sheet/delete', methods=['DELETE'])
@permission_required('access_delete')
def delete_tracking_record():
    row_id = json_body().get('id') or request.args.get('id')
    if blank(row_id):
        return fail('Tracking record ID is required')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('DELETE FROM tracking_sheet WHERE id = ?', (row_id,))
            if not cursor.rowcount:
                return fail('Tracking record not found', 404)
    except Exception as e:
        return server_error('Failed to delete tracking record', e)

    logger.info('Tracking record %s deleted by %s', row_id, g.current_user['username'])
    return jsonify({'success': True, 'message': 'Tracking record deleted successfully'})


@app.route('/api/tracking-sheet/export', methods=['GET'])
@permission_required('access_reports')
def export_tracking_sheet():
    try:
        with get_cursor() as cursor:
            rows = query_tracking(cursor, request.args)
        return xlsx_response(rows, exports.TRACKING_COLUMNS, 'Tracking Sheet', 'tracking_sheet.xlsx')
    except Exception as e:
        return server_error('Failed to export tracking sheet', e)


@app.route('/api/tracking-sheet/outputs', methods=['GET'])
@section_required('tracking_section')
def list_outputs():
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT * FROM tracking_outputs ORDER BY output_id')
            return jsonify({'success': True, 'outputs': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch outputs', e)


def output_values(data):
    weightage = progress.to_float(data.get('weightage'), default=None)
    if weightage is None or not 0 <= weightage <= 100:
        return None
    return {'output': as_text(data['output']), 'weightage': weightage}


@app.route('/api/tracking-sheet/outputs', methods=['POST'])
@admin_required
def add_output():
    data = json_body()
    if missing_fields(data, ('output_id', 'output')):
        return fail('Output ID and output name are required')
    values = output_values(data)
    if values is None:
        return fail('Weightage must be between 0 and 100')
    values['output_id'] = str(data['output_id']).strip()

    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('INSERT INTO tracking_outputs (output_id, output, weightage) VALUES (?, ?, ?)',
                           (values['output_id'], values['output'], values['weightage']))
    except IntegrityError:
        return fail('Output ID already exists', 409)
    except Exception as e:
        return server_error('Failed to add output', e)

    return jsonify({'success': True, 'message': 'Output added successfully'}), 201


@app.route('/api/tracking-sheet/outputs', methods=['PUT'])
@admin_required
def update_output():
    data = json_body()
    if missing_fields(data, ('output_id', 'output')):
        return fail('Output ID and output name are required')
    values = output_values(data)
    if values is None:
        return fail('Weightage must be between 0 and 100')

    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'tracking_outputs', values, 'output_id', data['output_id']):
                return fail('Output not found', 404)
    except Exception as e:
        return server_error('Failed to update output', e)

    return jsonify({'success': True, 'message': 'Output updated successfully'})


@app.route('/api/tracking-sheet/outputs', methods=['DELETE'])
@admin_required
def delete_output():
    output_id = request.args.get('outputID') or json_body().get('output_id')
    if blank(output_id):
        return fail('Output ID is required')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute('SELECT COUNT(*) AS n FROM tracking_main_activities WHERE output_id = ?', (output_id,))
            if cursor.fetchone()['n']:
                return fail('Output still has main activities; remove them first')
            cursor.execute('DELETE FROM tracking_outputs WHERE output_id = ?', (output_id,))
            if not cursor.rowcount:
                return fail('Output not found', 404)
    except Exception as e:
        return server_error('Failed to delete output', e)

    return jsonify({'success': True, 'message': 'Output deleted successfully'})


@app.route('/api/tracking-sheet/main-activities', methods=['GET'])
@section_required('tracking_section')
def list_main_activities():
    output_id = request.args.get('outputID')
    if blank(output_id):
        return fail('Output ID is required')
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT * FROM tracking_main_activities WHERE output_id = ? ORDER BY activity_id',
                           (output_id,))
            return jsonify({'success': True, 'mainActivities': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch main activities', e)


@app.route('/api/tracking-sheet/main-activities', methods=['POST'])
@admin_required
def add_main_activity():
    data = json_body()
    if missing_fields(data, ('activity_id', 'output_id', 'main_activity_name')):
        return fail('Activity ID, output ID and main activity name are required')
    weightage = progress.to_float(data.get('weightage_of_main_activity'), default=None)
    if weightage is None or not 0 <= weightage <= 100:
        return fail('Weightage of main activity must be between 0 and 100')

    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute(
                'INSERT INTO tracking_main_activities (activity_id, output_id, main_activity_name, '
                'weightage_of_main_activity) VALUES (?, ?, ?, ?)',
                (str(data['activity_id']).strip(), str(data['output_id']).strip(),
                 as_text(data['main_activity_name']), weightage))
    except IntegrityError:
        return fail('Activity ID already exists', 409)
    except Exception as e:
        return server_error('Failed to add main activity', e)

    return jsonify({'success': True, 'message': 'Main activity added successfully'}), 201


@app.route('/api/tracking-sheet/sub-activities', methods=['GET'])
@section_required('tracking_section')
def list_sub_activities():
    activity_id = request.args.get('ActivityID')
    if blank(activity_id):
        return fail('Activity ID is required')
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT * FROM tracking_sub_activities WHERE activity_id = ? ORDER BY sub_activity_id',
                           (activity_id,))
            return jsonify({'success': True, 'subActivities': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch sub activities', e)


@app.route('/api/tracking-sheet/sub-activities', methods=['POST'])
@admin_required
def add_sub_activity():
    data = json_body()
    if missing_fields(data, ('sub_activity_id', 'activity_id', 'sub_activity_name')):
        return fail('Sub activity ID, activity ID and sub activity name are required')
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute(
                'INSERT INTO tracking_sub_activities (sub_activity_id, activity_id, sub_activity_name) '
                'VALUES (?, ?, ?)',
                (str(data['sub_activity_id']).strip(), str(data['activity_id']).strip(),
                 as_text(data['sub_activity_name'])))
    except IntegrityError:
        return fail('Sub activity ID already exists', 409)
    except Exception as e:
        return server_error('Failed to add sub activity', e)

    return jsonify({'success': True, 'message': 'Sub activity added successfully'}), 201


@app.route('/api/tracking-sheet/tehsils', methods=['GET'])
@login_required
def list_tehsils():
    district = request.args.get('district')
    try:
        with get_cursor() as cursor:
            if district:
                cursor.execute('SELECT DISTINCT tehsil FROM tehsils WHERE district = ? ORDER BY tehsil', (district,))
            else:
                cursor.execute('SELECT DISTINCT tehsil FROM tehsils ORDER BY tehsil')
            return jsonify({'success': True, 'tehsils': [row['tehsil'] for row in cursor.fetchall()]})
    except Exception as e:
        return server_error('Failed to fetch tehsils', e)


@app.route('/api/tracking-sheet/tehsils', methods=['POST'])
@admin_required
def add_tehsil():
    data = json_body()
    if missing_fields(data, ('district', 'tehsil')):
        return fail('District and tehsil are required')
    try:
        with get_cursor(commit=True) as cursor:
            new_id = insert_row(cursor, 'tehsils', {'district': as_text(data['district']),
                                                    'tehsil': as_text(data['tehsil'])})
    except Exception as e:
        return server_error('Failed to add tehsil', e)

    return jsonify({'success': True, 'id': new_id}), 201


@app.route('/api/tracking-sheet/sector-progress', methods=['GET'])
@section_required('tracking_section')
def sector_progress():
    try:
        with get_cursor() as cursor:
            cursor.execute("SELECT activity_progress, sector_name FROM tracking_sheet "
                           "WHERE sector_name IS NOT NULL AND sector_name <> ''")
            rows = rows_to_dicts(cursor.fetchall())
    except Exception as e:
        return server_error('Failed to fetch sector progress', e)

    return jsonify({'success': True, 'sectorProgress': rows,
                    'sectors': progress.average_by(rows, 'sector_name', 'activity_progress')})


@app.route('/api/tracking-sheet/district-progress-summary', methods=['GET'])
@section_required('tracking_section')
def district_progress_summary():
    try:
        with get_cursor() as cursor:
            cursor.execute("SELECT district, AVG(activity_progress) AS average_progress, "
                           "COUNT(*) AS activity_count FROM tracking_sheet "
                           "WHERE district IS NOT NULL AND district <> '' GROUP BY district ORDER BY district")
            rows = rows_to_dicts(cursor.fetchall())
    except Exception as e:
        return server_error('Failed to fetch district progress', e)

    for row in rows:
        row['average_progress'] = round(progress.to_float(row['average_progress']), 2)
    return jsonify({'success': True, 'districtProgress': rows})


@app.route('/api/tracking-sheet/output-weightage', methods=['GET'])
@section_required('tracking_section')
def output_weightage():
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT output_id, weightage AS total_weightage FROM tracking_outputs ORDER BY output_id')
            return jsonify({'success': True, 'outputWeightage': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch output weightage', e)


@app.route('/api/tracking-sheet/activity-progress-summary', methods=['GET'])
@section_required('tracking_section')
def activity_progress_summary():
    try:
        with get_cursor() as cursor:
            _, main_activities, sheet_rows = load_progress_inputs(cursor)
    except Exception as e:
        return server_error('Failed to fetch activity progress', e)

    return jsonify({'success': True,
                    'activityProgress': progress.activity_progress_summary(main_activities, sheet_rows)})


@app.route('/api/tracking-sheet/output-progress', methods=['GET'])
@section_required('tracking_section')
def output_progress():
    try:
        with get_cursor() as cursor:
            outputs, main_activities, sheet_rows = load_progress_inputs(cursor)
    except Exception as e:
        return server_error('Failed to fetch output progress', e)

    by_output = progress.output_progress(progress.activity_progress_summary(main_activities, sheet_rows))
    result = [
        {'output_id': output['output_id'], 'output': output['output'],
         'output_key': progress.normalize_output_key(output['output_id']),
         'output_progress': round(by_output.get(progress.normalize_output_key(output['output_id']), 0.0), 2)}
        for output in outputs
    ]
    return jsonify({'success': True, 'outputProgress': result})


@app.route('/api/tracking-sheet/output-progress-by-district', methods=['GET'])
@section_required('tracking_section')
def output_progress_by_district():
    try:
        with get_cursor() as cursor:
            _, main_activities, sheet_rows = load_progress_inputs(cursor)
    except Exception as e:
        return server_error('Failed to fetch district output progress', e)

    return jsonify({'success': True,
                    'districtOutputProgress': progress.output_progress_by_district(main_activities, sheet_rows)})


@app.route('/api/tracking-sheet/total-progress', methods=['GET'])
@section_required('tracking_section')
def total_progress():
    try:
        with get_cursor() as cursor:
            outputs, main_activities, sheet_rows = load_progress_inputs(cursor)
    except Exception as e:
        return server_error('Failed to calculate total progress', e)

    result = progress.total_progress(outputs, progress.activity_progress_summary(main_activities, sheet_rows))
    result['success'] = True
    return jsonify(result)


# ---------------------------------------------------------------------------
# Pictures
# ---------------------------------------------------------------------------

PICTURE_FIELDS = ('group_name', 'main_category', 'sub_category', 'file_name', 'file_path',
                  'file_size_kb', 'is_active', 'event_date')
PICTURE_REQUIRED = ('main_category', 'sub_category', 'file_name', 'file_path')


@app.route('/api/pictures', methods=['GET'])
@login_required
def picture_categories():
    try:
        with get_cursor() as cursor:
            cursor.execute(
                'SELECT p.main_category, p.sub_category, MAX(p.event_date) AS event_date, '
                'COUNT(*) AS total_pictures, '
                '(SELECT p2.file_path FROM pictures p2 WHERE p2.main_category = p.main_category '
                'AND p2.sub_category = p.sub_category AND p2.is_active = 1 '
                'ORDER BY p2.upload_date DESC, p2.picture_id DESC LIMIT 1) AS preview_image '
                'FROM pictures p WHERE p.is_active = 1 '
                'GROUP BY p.main_category, p.sub_category ORDER BY p.main_category, p.sub_category')
            return jsonify({'success': True, 'categories': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch picture categories', e)


@app.route('/api/pictures/groups', methods=['GET'])
@login_required
def picture_groups():
    try:
        with get_cursor() as cursor:
            cursor.execute(
                "SELECT p.group_name, COUNT(*) AS picture_count, "
                "(SELECT p2.file_path FROM pictures p2 WHERE p2.group_name = p.group_name "
                "AND p2.is_active = 1 AND p2.file_path IS NOT NULL AND p2.file_path <> '' "
                "ORDER BY p2.upload_date DESC, p2.picture_id DESC LIMIT 1) AS thumbnail "
                "FROM pictures p WHERE p.is_active = 1 AND p.group_name IS NOT NULL AND p.group_name <> '' "
                "GROUP BY p.group_name ORDER BY p.group_name")
            return jsonify({'success': True, 'groups': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch picture groups', e)


@app.route('/api/pictures/details', methods=['GET'])
@login_required
def picture_details():
    clauses, params = build_filters(request.args, {
        'groupName': 'group_name',
        'mainCategory': 'main_category',
        'subCategory': 'sub_category',
    })
    clauses.append('is_active = 1')
    try:
        with get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM pictures{where_sql(clauses)} '
                           'ORDER BY upload_date DESC, picture_id DESC', params)
            return jsonify({'success': True, 'pictures': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch pictures', e)


@app.route('/api/pictures/dashboard', methods=['GET'])
@login_required
def picture_dashboard():
    limit = min(max(progress.to_int(request.args.get('limit'), 20), 1), 100)
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT * FROM pictures WHERE is_active = 1 '
                           'ORDER BY upload_date DESC, picture_id DESC LIMIT ?', (limit,))
            return jsonify({'success': True, 'pictures': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch latest pictures', e)


@app.route('/api/pictures/manage', methods=['GET'])
@admin_required
def manage_pictures():
    page = max(progress.to_int(request.args.get('page'), 1), 1)
    limit = min(max(progress.to_int(request.args.get('limit'), 50), 1), 500)
    offset = (page - 1) * limit
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT COUNT(*) AS n FROM pictures')
            total = cursor.fetchone()['n']
            cursor.execute('SELECT * FROM pictures ORDER BY upload_date DESC, picture_id DESC LIMIT ? OFFSET ?',
                           (limit, offset))
            pictures = rows_to_dicts(cursor.fetchall())
    except Exception as e:
        return server_error('Failed to fetch pictures', e)

    return jsonify({'success': True, 'pictures': pictures, 'total': total, 'page': page, 'limit': limit})


@app.route('/api/pictures/manage', methods=['POST'])
@admin_required
def add_picture():
    data = json_body()
    if missing_fields(data, PICTURE_REQUIRED):
        return fail('Main category, sub category, file name and file path are required')

    values = pick(data, PICTURE_FIELDS)
    values['is_active'] = as_flag(data.get('is_active', 1))
    values['file_size_kb'] = progress.to_int(data.get('file_size_kb'))
    values['uploaded_by'] = data.get('uploaded_by') or current_username()
    values['upload_date'] = now_iso()
    try:
        with get_cursor(commit=True) as cursor:
            picture_id = insert_row(cursor, 'pictures', values, pk='picture_id')
    except Exception as e:
        return server_error('Failed to add picture', e)

    return jsonify({'success': True, 'message': 'Picture added successfully', 'picture_id': picture_id}), 201


@app.route('/api/pictures/manage', methods=['PUT'])
@admin_required
def update_picture():
    data = json_body()
    if blank(data.get('picture_id')):
        return fail('Picture ID is required')

    values = pick(data, PICTURE_FIELDS)
    if 'is_active' in values:
        values['is_active'] = as_flag(values['is_active'])
    if 'file_size_kb' in values:
        values['file_size_kb'] = progress.to_int(values['file_size_kb'])
    if not values:
        return fail('No fields to update')

    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'pictures', values, 'picture_id', data['picture_id']):
                return fail('Picture not found', 404)
    except Exception as e:
        return server_error('Failed to update picture', e)

    return jsonify({'success': True, 'message': 'Picture updated successfully'})


@app.route('/api/pictures/manage', methods=['DELETE'])
@admin_required
def delete_picture():
    picture_id = request.args.get('pictureID')
    if blank(picture_id):
        return fail('Picture ID is required')
    try:
        with get_cursor(commit=True) as cursor:
            picture = fetch_one(cursor, 'pictures', 'picture_id', picture_id)
            if picture is None:
                return fail('Picture not found', 404)
            cursor.execute('DELETE FROM pictures WHERE picture_id = ?', (picture_id,))
    except Exception as e:
        return server_error('Failed to delete picture', e)

    uploads.remove_upload(picture['file_path'])
    return jsonify({'success': True, 'message': 'Picture deleted successfully'})


@app.route('/api/pictures/upload', methods=['POST'])
@admin_required
def upload_pictures():
    form = request.form
    if missing_fields(form, ('main_category', 'sub_category')):
        return fail('Main category and sub category are required')
    files = [f for f in request.files.getlist('files') if f and f.filename]
    if not files:
        return fail('No pictures provided')

    try:
        optimized = []
        for storage in files:
            uploads.check_file(storage, uploads.IMAGE_EXTENSIONS, label='Picture')
            optimized.append((storage.filename, uploads.optimize_image(storage.stream)))
    except UploadError as e:
        return fail(str(e))

    folder = f"pictures/{uploads.safe_segment(form['main_category'])}/{uploads.safe_segment(form['sub_category'])}"
    stamp = f"{uploads.timestamp_ms()}_{secrets.token_hex(4)}"
    created = []
    written = []
    try:
        with get_cursor(commit=True) as cursor:
            for index, (original_name, image) in enumerate(optimized, start=1):
                data = image.getvalue()
                path = uploads.store_bytes(data, f'{folder}/{stamp}_{index}.jpg')
                written.append(path)
                picture_id = insert_row(cursor, 'pictures', {
                    'group_name': form.get('group_name'),
                    'main_category': form['main_category'],
                    'sub_category': form['sub_category'],
                    'file_name': secure_filename(original_name) or f'{stamp}_{index}.jpg',
                    'file_path': path,
                    'file_size_kb': max(len(data) // 1024, 1),
                    'uploaded_by': current_username(),
                    'upload_date': now_iso(),
                    'is_active': 1,
                    'event_date': form.get('event_date'),
                }, pk='picture_id')
                created.append({'picture_id': picture_id, 'file_path': path})
    except Exception as e:
        for path in written:
            uploads.remove_upload(path)
        return server_error('Failed to upload pictures', e)

    logger.info('%d pictures uploaded to %s by %s', len(created), folder, g.current_user['username'])
    return jsonify({'success': True, 'message': f'{len(created)} pictures uploaded successfully',
                    'pictures': created}), 201


# ---------------------------------------------------------------------------
# Documents & reports
# ---------------------------------------------------------------------------

def store_library_files(files, allowed_extensions, folder):
    """Validate every file first, then store them as <folder>/<epoch ms>_<random>_<n>.<ext>."""
    checked = [(storage, uploads.check_file(storage, allowed_extensions)) for storage in files]
    stamp = f"{uploads.timestamp_ms()}_{secrets.token_hex(4)}"
    paths = uploads.store_many(
        (storage, f'{folder}/{stamp}_{index}.{ext}')
        for index, (storage, ext) in enumerate(checked, start=1)
    )
    return list(zip([storage for storage, _ in checked], paths))


DOCUMENT_FIELDS = ('title', 'description', 'category', 'sub_category', 'document_date', 'documents_type',
                   'allow_priority_users', 'allow_internal_users', 'allow_others_users')
DOCUMENT_REQUIRED = ('title', 'category', 'sub_category', 'document_date')
DOCUMENT_VISIBILITY = ('allow_priority_users', 'allow_internal_users', 'allow_others_users')


@app.route('/api/documents/upload', methods=['POST'])
@admin_required
def upload_documents():
    form = request.form
    if missing_fields(form, DOCUMENT_REQUIRED):
        return fail('Title, category, sub category and document date are required')
    uploaded_by = form.get('uploaded_by') or current_username()
    if blank(uploaded_by):
        return fail('Uploaded by is required')
    files = [f for f in request.files.getlist('files') if f and f.filename]
    if not files:
        return fail('At least one file is required')

    folder = f"documents/{uploads.safe_segment(form['category'])}/{uploads.safe_segment(form['sub_category'])}"
    try:
        stored = store_library_files(files, uploads.DOCUMENT_EXTENSIONS, folder)
    except UploadError as e:
        return fail(str(e))
    except OSError as e:
        return server_error('Failed to store documents', e)

    document_ids = []
    try:
        with get_cursor(commit=True) as cursor:
            for storage, path in stored:
                values = pick(form, DOCUMENT_FIELDS)
                for flag in DOCUMENT_VISIBILITY:
                    values[flag] = as_flag(form.get(flag))
                values.update({
                    'file_path': path,
                    'file_type': uploads.file_extension(storage.filename),
                    'uploaded_by': uploaded_by,
                    'upload_date': now_iso(),
                })
                document_ids.append(insert_row(cursor, 'documents', values, pk='document_id'))
    except Exception as e:
        for _, path in stored:
            uploads.remove_upload(path)
        return server_error('Failed to save documents', e)

    return jsonify({'success': True, 'message': f'{len(document_ids)} document(s) uploaded successfully',
                    'documentIds': document_ids}), 201


@app.route('/api/documents', methods=['GET'])
@login_required
def list_documents():
    clauses, params = build_filters(request.args, {'category': 'category', 'subCategory': 'sub_category'})
    search = (request.args.get('search') or '').strip().lower()
    if search:
        clauses.append("(LOWER(title) LIKE ? ESCAPE '\\' OR LOWER(description) LIKE ? ESCAPE '\\')")
        params.extend([like_pattern(search)] * 2)
    try:
        with get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM documents{where_sql(clauses)} '
                           'ORDER BY upload_date DESC, document_id DESC', params)
            return jsonify({'success': True, 'documents': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch documents', e)


@app.route('/api/documents/<int:document_id>', methods=['GET'])
@login_required
def get_document(document_id):
    try:
        with get_cursor() as cursor:
            document = fetch_one(cursor, 'documents', 'document_id', document_id)
    except Exception as e:
        return server_error('Failed to fetch document', e)
    if document is None:
        return fail('Document not found', 404)
    return jsonify({'success': True, 'document': document})


@app.route('/api/documents/<int:document_id>', methods=['PUT'])
@permission_required('access_edit')
def update_document(document_id):
    data = json_body()
    if missing_fields(data, DOCUMENT_REQUIRED):
        return fail('Title, category, sub category and document date are required')
    values = pick(data, DOCUMENT_FIELDS)
    for flag in DOCUMENT_VISIBILITY:
        if flag in values:
            values[flag] = as_flag(values[flag])
    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'documents', values, 'document_id', document_id):
                return fail('Document not found', 404)
    except Exception as e:
        return server_error('Failed to update document', e)

    return jsonify({'success': True, 'message': 'Document updated successfully'})


@app.route('/api/documents/<int:document_id>', methods=['DELETE'])
@permission_required('access_delete')
def delete_document(document_id):
    try:
        with get_cursor(commit=True) as cursor:
            document = fetch_one(cursor, 'documents', 'document_id', document_id)
            if document is None:
                return fail('Document not found', 404)
            cursor.execute('DELETE FROM documents WHERE document_id = ?', (document_id,))
    except Exception as e:
        return server_error('Failed to delete document', e)

    uploads.remove_upload(document['file_path'])
    logger.info('Document %s deleted by %s', document_id, g.current_user['username'])
    return jsonify({'success': True, 'message': 'Document deleted successfully'})


REPORT_FIELDS = ('report_title', 'description', 'main_category', 'sub_category', 'event_date')
REPORT_REQUIRED = ('report_title', 'main_category', 'sub_category', 'event_date')


@app.route('/api/reports/upload', methods=['POST'])
@admin_required
def upload_reports():
    form = request.form
    if missing_fields(form, REPORT_REQUIRED):
        return fail('Report title, main category, sub category and event date are required')
    files = [f for f in request.files.getlist('files') if f and f.filename]
    if not files:
        return fail('At least one file is required')

    folder = f"reports/{uploads.safe_segment(form['main_category'])}/{uploads.safe_segment(form['sub_category'])}"
    try:
        stored = store_library_files(files, uploads.REPORT_EXTENSIONS, folder)
    except UploadError as e:
        return fail(str(e))
    except OSError as e:
        return server_error('Failed to store reports', e)

    report_ids = []
    try:
        with get_cursor(commit=True) as cursor:
            for _, path in stored:
                values = pick(form, REPORT_FIELDS)
                values.update({'file_path': path, 'uploaded_by': current_username(), 'upload_date': now_iso()})
                report_ids.append(insert_row(cursor, 'reports', values, pk='report_id'))
    except Exception as e:
        for _, path in stored:
            uploads.remove_upload(path)
        return server_error('Failed to save reports', e)

    return jsonify({'success': True, 'message': f'{len(report_ids)} report(s) uploaded successfully',
                    'reportIds': report_ids}), 201


@app.route('/api/reports', methods=['GET'])
@login_required
def list_reports():
    clauses, params = build_filters(request.args, {'mainCategory': 'main_category', 'subCategory': 'sub_category'})
    search = (request.args.get('search') or '').strip().lower()
    if search:
        clauses.append("(LOWER(report_title) LIKE ? ESCAPE '\\' OR LOWER(description) LIKE ? ESCAPE '\\')")
        params.extend([like_pattern(search)] * 2)
    try:
        with get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM reports{where_sql(clauses)} '
                           'ORDER BY event_date DESC, report_id DESC', params)
            return jsonify({'success': True, 'reports': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch reports', e)


@app.route('/api/reports/<int:report_id>', methods=['GET'])
@login_required
def get_report(report_id):
    try:
        with get_cursor() as cursor:
            report = fetch_one(cursor, 'reports', 'report_id', report_id)
    except Exception as e:
        return server_error('Failed to fetch report', e)
    if report is None:
        return fail('Report not found', 404)
    return jsonify({'success': True, 'report': report})


@app.route('/api/reports/<int:report_id>', methods=['PUT'])
@permission_required('access_edit')
def update_report(report_id):
    data = json_body()
    if missing_fields(data, REPORT_REQUIRED):
        return fail('Report title, main category, sub category and event date are required')
    try:
        with get_cursor(commit=True) as cursor:
            if not update_row(cursor, 'reports', pick(data, REPORT_FIELDS), 'report_id', report_id):
                return fail('Report not found', 404)
    except Exception as e:
        return server_error('Failed to update report', e)

    return jsonify({'success': True, 'message': 'Report updated successfully'})


@app.route('/api/reports/<int:report_id>', methods=['DELETE'])
@permission_required('access_delete')
def delete_report(report_id):
    try:
        with get_cursor(commit=True) as cursor:
            report = fetch_one(cursor, 'reports', 'report_id', report_id)
            if report is None:
                return fail('Report not found', 404)
            cursor.execute('DELETE FROM reports WHERE report_id = ?', (report_id,))
    except Exception as e:
        return server_error('Failed to delete report', e)

    uploads.remove_upload(report['file_path'])
    logger.info('Report %s deleted by %s', report_id, g.current_user['username'])
    return jsonify({'success': True, 'message': 'Report deleted successfully'})


# ---------------------------------------------------------------------------
# KML files & GIS maps
# ---------------------------------------------------------------------------

@app.route('/api/kml/files', methods=['GET'])
@login_required
def list_kml_files():
    try:
        with get_cursor() as cursor:
            cursor.execute('SELECT * FROM kml_files ORDER BY upload_date DESC, id DESC')
            return jsonify({'success': True, 'files': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch KML files', e)


@app.route('/api/kml/upload', methods=['POST'])
@login_required
def upload_kml():
    storage = request.files.get('kmlFile')
    name = (request.form.get('name') or '').strip()
    if storage is None or not storage.filename or not name:
        return fail('KML file and name are required')
    try:
        uploads.check_file(storage, {'kml'}, max_size=uploads.MAX_KML_SIZE, label='KML file')
    except UploadError as e:
        return fail(str(e))

    path = None
    try:
        path = uploads.store(storage, f'kml/{uploads.timestamp_ms()}_{secrets.token_hex(4)}.kml')
        with get_cursor(commit=True) as cursor:
            kml_id = insert_row(cursor, 'kml_files', {
                'name': name,
                'description': request.form.get('description'),
                'file_path': path,
                'upload_date': now_iso(),
                'uploaded_by': current_username() or 'System',
            })
    except Exception as e:
        if path:
            uploads.remove_upload(path)
        return server_error('Failed to upload KML file', e)

    return jsonify({'success': True, 'message': 'KML file uploaded successfully', 'id': kml_id,
                    'filePath': path}), 201


@app.route('/api/kml/delete/<int:kml_id>', methods=['DELETE'])
@permission_required('access_delete')
def delete_kml(kml_id):
    try:
        with get_cursor(commit=True) as cursor:
            record = fetch_one(cursor, 'kml_files', 'id', kml_id)
            if record is None:
                return fail('KML file not found', 404)
            cursor.execute('DELETE FROM kml_files WHERE id = ?', (kml_id,))
    except Exception as e:
        return server_error('Failed to delete KML file', e)

    uploads.remove_upload(record['file_path'])
    return jsonify({'success': True, 'message': 'KML file deleted successfully'})


@app.route('/api/gis-maps', methods=['GET'])
@login_required
def list_gis_maps():
    clauses, params = build_filters(request.args, {'district': 'district', 'mapType': 'map_type'},
                                    skip_all=('district',))
    try:
        with get_cursor() as cursor:
            cursor.execute(f'SELECT * FROM gis_maps{where_sql(clauses)} ORDER BY area_name, map_id', params)
            return jsonify({'success': True, 'maps': rows_to_dicts(cursor.fetchall())})
    except Exception as e:
        return server_error('Failed to fetch GIS maps', e)


@app.route('/api/gis-maps', methods=['POST'])
@admin_required
def add_gis_map():
    data = json_body()
    if blank(data.get('area_name')):
        return fail('Area name is required')
    try:
        with get_cursor(commit=True) as cursor:
            map_id = insert_row(cursor, 'gis_maps', {
                'area_name': as_text(data['area_name']),
                'map_type': data.get('map_type'),
                'file_name': data.get('file_name'),
                'district': data.get('district'),
                'created_at': now_iso(),
            }, pk='map_id')
    except Exception as e:
        return server_error('Failed to add GIS map', e)

    return jsonify({'success': True, 'map_id': map_id}), 201


@app.route('/api/gis-maps/delete-by-kml', methods=['POST'])
@permission_required('access_delete')
def delete_gis_maps_by_kml():
    storage = request.files.get('kmlFile')
    if storage is None or not storage.filename:
        return fail('No file provided')

    try:
        uploads.check_file(storage, {'kml', 'kmz'}, max_size=uploads.MAX_KML_SIZE, label='KML file')
        file_type, area_names = gis.read_area_names(storage.filename, storage.read(),
                                                    max_size=uploads.MAX_KML_SIZE)
    except (UploadError, gis.KMLError) as e:
        return fail(str(e))
    if not area_names:
        return fail('No area names found in the uploaded file')

    placeholders = ', '.join('?' for _ in area_names)
    try:
        with get_cursor(commit=True) as cursor:
            cursor.execute(f'SELECT * FROM gis_maps WHERE area_name IN ({placeholders}) ORDER BY map_id',
                           area_names)
            matching = rows_to_dicts(cursor.fetchall())
            deleted = 0
            if matching:
                cursor.execute(f'DELETE FROM gis_maps WHERE area_name IN ({placeholders})', area_names)
                deleted = cursor.rowcount
    except Exception as e:
        return server_error('Failed to delete GIS maps', e)

    logger.info('Deleted %d GIS maps from %s %s', deleted, file_type, storage.filename)
    return jsonify({
        'success': True,
        'message': f'Deleted {deleted} map(s) matching the {file_type} file',
        'deletedCount': deleted,
        'fileType': file_type,
        'areaNamesFromKML': area_names,
        'matchingMaps': matching,
    })


@app.route('/api/gis/layers', methods=['GET'])
@login_required
def gis_layers():
    return jsonify({'success': True, 'layers': gis.layer_catalogue(MAPS_DIR)})


db.init_db()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
