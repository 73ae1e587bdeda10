import logging
import re

from flask import Blueprint, jsonify, request, current_app

from utils import (
    get_db_connection, db_unavailable, user_token_required, hash_password, check_password,
    issue_user_token, set_auth_cookie, clear_auth_cookie, new_id, serialize_row, utcnow
)

logger = logging.getLogger(__name__)
users_bp = Blueprint('users', __name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
MIN_NAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


def serialize_user(row):
    return serialize_row(row, exclude=('password_hash',))


def validate_registration(data):
    """Field errors for a registration body, as ``[{field, message}]``."""
    errors = []
    first_name = (data.get('firstname') or data.get('firstName') or '').strip()
    last_name = (data.get('lastname') or data.get('lastName') or '').strip()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''

    if not first_name:
        errors.append({'field': 'firstname', 'message': 'First name is required'})
    elif len(first_name) < MIN_NAME_LENGTH:
        errors.append({'field': 'firstname', 'message': 'First name must be at least 3 characters'})
    if last_name and len(last_name) < MIN_NAME_LENGTH:
        errors.append({'field': 'lastname', 'message': 'Last name must be at least 3 characters'})
    if not EMAIL_PATTERN.match(email):
        errors.append({'field': 'email', 'message': 'A valid email is required'})
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append({'field': 'password', 'message': 'Password must be at least 6 characters'})
    return errors


def _with_session(payload, status, user):
    response = jsonify(payload)
    set_auth_cookie(response, 'accessToken', issue_user_token(user),
                    current_app.config['USER_TOKEN_DAYS'] * 24 * 3600)
    return response, status


@users_bp.route('/register', methods=['POST'])
def register():
    try:
        data = request.get_json(silent=True) or {}
        errors = validate_registration(data)
        if errors:
            return jsonify({'success': False, 'message': 'Validation failed', 'errors': errors}), 400

        user = {
            'id': new_id(),
            'first_name': (data.get('firstname') or data.get('firstName')).strip(),
            'last_name': (data.get('lastname') or data.get('lastName') or '').strip() or None,
            'email': data['email'].strip().lower(),
            'status': 'active',
        }

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT id FROM users WHERE email = %s', (user['email'],))
            if cursor.fetchone():
                return jsonify({'success': False, 'message': 'An account with this email already exists'}), 409

            cursor.execute('''
                INSERT INTO users (id, first_name, last_name, email, password_hash, status)
                VALUES (%s, %s, %s, %s, %s, %s)
            ''', (
                user['id'], user['first_name'], user['last_name'], user['email'],
                hash_password(data['password']), user['status']
            ))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error registering user: {e}")
            return jsonify({'success': False, 'message': 'Registration failed'}), 500
        finally:
            cursor.close()
            conn.close()

        return _with_session({
            'success': True,
            'message': 'Registration successful',
            'data': {'user': serialize_user(user)}
        }, 201, user)

    except Exception as e:
        logger.error(f"Error in register: {e}")
        return jsonify({'success': False, 'message': 'Registration failed'}), 500


@users_bp.route('/login', methods=['POST'])
def login():
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get('email') or '').strip().lower()
        password = data.get('password')
        if not email or not password:
            return jsonify({'success': False, 'message': 'Email and password are required'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT * FROM users WHERE email = %s', (email,))
            user = cursor.fetchone()
            if not user or not check_password(password, user.get('password_hash')):
                return jsonify({'success': False, 'message': 'Invalid email or password'}), 401
            if user['status'] != 'active':
                return jsonify({'success': False, 'message': 'Account is not active'}), 403

            cursor.execute('UPDATE users SET last_login = %s WHERE id = %s', (utcnow(), user['id']))
            conn.commit()
        finally:
            cursor.close()
            conn.close()

        return _with_session({
            'success': True,
            'message': 'Login successful',
            'data': {'user': serialize_user(user)}
        }, 200, user)

    except Exception as e:
        logger.error(f"Error in login: {e}")
        return jsonify({'success': False, 'message': 'Login failed'}), 500


@users_bp.route('/profile', methods=['GET'])
@user_token_required
def profile(current_user):
    return jsonify({'success': True, 'message': 'User profile', 'data': {'user': serialize_user(current_user)}}), 200


@users_bp.route('/logout', methods=['POST'])
def logout():
    response = jsonify({'success': True, 'message': 'Logged out successfully'})
    clear_auth_cookie(response, 'accessToken')
    return response, 200
