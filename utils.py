import json
import logging
import os
import secrets
import uuid
from datetime import datetime, timedelta, timezone, date
from decimal import Decimal
from functools import wraps

import bcrypt
import jwt
import mysql.connector
import mysql.connector.pooling
from flask import jsonify, request, current_app
from werkzeug.utils import secure_filename

from config import DB_CONFIG

logger = logging.getLogger(__name__)

# Database connection pool
db_pool = None


def init_db_pool(db_config=None):
    """Initialize database connection pool"""
    global db_pool
    try:
        db_pool = mysql.connector.pooling.MySQLConnectionPool(**(db_config or DB_CONFIG))
        logger.info("Database connection pool created successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to create database connection pool: {e}")
        return False


def get_db_connection():
    """Get a database connection from the pool"""
    try:
        if db_pool is None:
            if not init_db_pool():
                return None
        return db_pool.get_connection()
    except Exception as e:
        logger.error(f"Error getting database connection: {e}")
        return None


def db_unavailable():
    return jsonify({'success': False, 'message': 'Database connection failed'}), 500


# ===================== Passwords & tokens =====================
def hash_password(password):
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=10)).decode('utf-8')


def check_password(password, password_hash):
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # malformed hash in the database
        return False


def generate_temp_password(length=12):
    """Random pronounceable password: alternating consonants and vowels with digits mixed in."""
    consonants = 'bcdfghjkmnpqrstvwxz'
    vowels = 'aeiou'
    digits = '23456789'
    chars = []
    for i in range(length):
        if i % 4 == 3:
            chars.append(secrets.choice(digits))
        elif i % 2 == 0:
            chars.append(secrets.choice(consonants))
        else:
            chars.append(secrets.choice(vowels))
    return ''.join(chars).capitalize()


def issue_vendor_token(vendor):
    return jwt.encode({
        'vendor_id': vendor['id'],
        'email': vendor['primary_email'],
        'role': 'vendor',
        'exp': datetime.now(timezone.utc) + timedelta(days=current_app.config['VENDOR_TOKEN_DAYS'])
    }, current_app.config['SECRET_KEY'], algorithm="HS256")


def issue_admin_token(username, email):
    return jwt.encode({
        'username': username,
        'email': email,
        'role': 'admin',
        'exp': datetime.now(timezone.utc) + timedelta(hours=current_app.config['ADMIN_TOKEN_HOURS'])
    }, current_app.config['SECRET_KEY'], algorithm="HS256")


def issue_user_token(user):
    return jwt.encode({
        'user_id': user['id'],
        'email': user['email'],
        'role': 'user',
        'exp': datetime.now(timezone.utc) + timedelta(days=current_app.config['USER_TOKEN_DAYS'])
    }, current_app.config['SECRET_KEY'], algorithm="HS256")


def set_auth_cookie(response, name, token, max_age):
    response.set_cookie(
        name, token,
        max_age=max_age,
        httponly=True,
        secure=current_app.config['COOKIE_SECURE'],
        samesite='Strict',
        path='/'
    )
    return response


def clear_auth_cookie(response, name):
    response.delete_cookie(
        name, path='/', httponly=True,
        secure=current_app.config['COOKIE_SECURE'], samesite='Strict'
    )
    return response


def _extract_token(cookie_name):
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get('Authorization')
    if auth_header:
        parts = auth_header.split()
        if len(parts) == 2 and parts[0].lower() == 'bearer':
            return parts[1]
    return None


# JWT token required decorator (vendor)
def vendor_token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _extract_token('vendorToken')
        if not token:
            return jsonify({'success': False, 'message': 'Authentication required'}), 401

        try:
            data = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            return jsonify({'success': False, 'message': 'Invalid or expired token'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid or expired token'}), 401

        if data.get('role') != 'vendor' or not data.get('vendor_id'):
            return jsonify({'success': False, 'message': 'Invalid or expired token'}), 401

        try:
            current_vendor = get_vendor_by_id(data['vendor_id'])
        except Exception as e:
            logger.error(f"Vendor token validation error: {e}")
            return jsonify({'success': False, 'message': 'Authentication error'}), 500

        if not current_vendor:
            return jsonify({'success': False, 'message': 'Vendor not found'}), 401
        if current_vendor['status'] != 'active':
            return jsonify({'success': False, 'message': 'Vendor account is not active'}), 403

        return f(current_vendor, *args, **kwargs)

    return decorated


# Admin token required decorator
def admin_token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _extract_token('adminToken')
        if not token:
            return jsonify({'success': False, 'message': 'Admin token is missing'}), 401
        try:
            data = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            logger.warning(f"Admin token validation error: {e}")
            return jsonify({'success': False, 'message': 'Invalid or expired admin token'}), 401
        if data.get('role') != 'admin':
            return jsonify({'success': False, 'message': 'Admin privileges required'}), 403
        current_admin = {'username': data.get('username'), 'email': data.get('email'), 'role': 'admin'}
        return f(current_admin, *args, **kwargs)
    return decorated


# End-user token required decorator
def user_token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _extract_token('accessToken')
        if not token:
            return jsonify({'success': False, 'message': 'Authentication required'}), 401
        try:
            data = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=["HS256"])
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid or expired token'}), 401
        if data.get('role') != 'user' or not data.get('user_id'):
            return jsonify({'success': False, 'message': 'Invalid or expired token'}), 401

        try:
            current_user = get_user_by_id(data['user_id'])
        except Exception as e:
            logger.error(f"User token validation error: {e}")
            return jsonify({'success': False, 'message': 'Authentication error'}), 500

        if not current_user:
            return jsonify({'success': False, 'message': 'User not found'}), 401
        if current_user['status'] != 'active':
            return jsonify({'success': False, 'message': 'Account is not active'}), 403
        return f(current_user, *args, **kwargs)
    return decorated


# ===================== Vendor lookups =====================
VENDOR_PUBLIC_COLUMNS = '''
    id, company_name, display_name, primary_email, additional_emails, contact_phone,
    country, currency, initial_password_set, status, created_by, vendor_manager,
    metadata, created_at, updated_at
'''


def get_vendor_by_id(vendor_id):
    conn = get_db_connection()
    if conn is None:
        return None

    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(f'SELECT {VENDOR_PUBLIC_COLUMNS} FROM vendors WHERE id = %s', (vendor_id,))
        return cursor.fetchone()
    finally:
        cursor.close()
        conn.close()


def get_vendor_by_email(email):
    conn = get_db_connection()
    if conn is None:
        return None

    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(
            f'SELECT {VENDOR_PUBLIC_COLUMNS}, password_hash FROM vendors WHERE primary_email = %s',
            (email.lower().strip(),)
        )
        return cursor.fetchone()
    finally:
        cursor.close()
        conn.close()


# ===================== User lookups =====================
USER_PUBLIC_COLUMNS = 'id, first_name, last_name, email, status, last_login, created_at, updated_at'


def get_user_by_id(user_id):
    conn = get_db_connection()
    if conn is None:
        return None

    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(f'SELECT {USER_PUBLIC_COLUMNS} FROM users WHERE id = %s', (user_id,))
        return cursor.fetchone()
    finally:
        cursor.close()
        conn.close()


# ===================== Request / row helpers =====================
def new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def request_meta():
    forwarded = request.headers.get('X-Forwarded-For', '')
    ip_address = forwarded.split(',')[0].strip() if forwarded else (request.remote_addr or 'unknown')
    return ip_address, request.headers.get('User-Agent', 'unknown')


def get_pagination(default_limit=50, max_limit=100):
    try:
        page = max(1, int(request.args.get('page', 1)))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(request.args.get('limit', default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    limit = min(max(1, limit), max_limit)
    return page, limit, (page - 1) * limit


def count_rows(cursor, sql, params=()):
    cursor.execute(sql, params)
    row = cursor.fetchone()
    if not row:
        return 0
    return int(row.get('total') or 0)


def status_counts(cursor, table, statuses, where='1 = 1', params=()):
    """Row counts per status, with zeros for statuses that have no rows."""
    cursor.execute(f'SELECT status, COUNT(*) AS total FROM {table} WHERE {where} GROUP BY status', params)
    counts = {s: 0 for s in statuses}
    for row in cursor.fetchall():
        counts[row['status']] = int(row['total'])
    return counts


def load_json(value, default=None):
    if value is None or value == '':
        return default
    if isinstance(value, (list, dict)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Could not decode JSON column value")
        return default


def to_camel(name):
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


JSON_LIST_COLUMNS = ('additional_emails', 'plans', 'attachments', 'profiles')


def serialize_row(row, json_fields=(), exclude=(), bool_fields=()):
    """Convert a DB row into a camelCase JSON friendly dict."""
    if row is None:
        return None
    out = {}
    for key, value in row.items():
        if key in exclude:
            continue
        if key in json_fields:
            value = load_json(value, [] if key in JSON_LIST_COLUMNS else {})
        elif key in bool_fields:
            value = bool(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        out[to_camel(key)] = value
    return out


class UploadError(ValueError):
    pass


def save_upload(file, subdir, allowed_extensions, max_bytes, prefix):
    """Store an uploaded file under UPLOAD_FOLDER/subdir and describe it."""
    if file is None or not file.filename:
        raise UploadError('No file selected')
    ext = file.filename.rsplit('.', 1)[1].lower() if '.' in file.filename else ''
    if ext not in allowed_extensions:
        raise UploadError('File type not allowed')

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    if size > max_bytes:
        raise UploadError(f'File exceeds the {max_bytes // (1024 * 1024)}MB limit')

    folder = os.path.join(current_app.config['UPLOAD_FOLDER'], subdir)
    os.makedirs(folder, exist_ok=True)
    filename = secure_filename(f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}.{ext}")
    file.save(os.path.join(folder, filename))
    return {
        'url': f'/uploads/{subdir}/{filename}',
        'filename': file.filename,
        'mimetype': file.mimetype,
        'size': size
    }


def remove_uploads(saved):
    """Delete files written by save_upload when the request that stored them fails."""
    for item in saved or []:
        relative = item['url'][len('/uploads/'):]
        path = os.path.join(current_app.config['UPLOAD_FOLDER'], *relative.split('/'))
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove upload {path}: {e}")


def serialize_vendor(row, include_notes=False):
    exclude = ('password_hash',) if include_notes else ('password_hash', 'notes')
    return serialize_row(
        row,
        json_fields=('additional_emails', 'metadata'),
        exclude=exclude,
        bool_fields=('initial_password_set',)
    )


def serialize_product(row):
    """Product row without the encrypted account password."""
    return serialize_row(row, exclude=('account_password',))


def serialize_product_request(row):
    return serialize_row(row, json_fields=('plans', 'attachments'))


def serialize_stock_request(row):
    data = serialize_row(row)
    if data is not None:
        data['remainingQuantity'] = max(0, int(row['quantity_requested']) - int(row['quantity_fulfilled'] or 0))
    return data


AUDIT_TABLES = {
    'vendor_audit': ('vendor_id', 'action', 'actor_id', 'details', 'ip_address', 'user_agent'),
    'product_request_audit': ('request_id', 'vendor_id', 'action', 'actor_id', 'comment',
                              'previous_status', 'new_status', 'ip_address', 'user_agent'),
    'stock_request_audit': ('request_id', 'vendor_id', 'product_id', 'action', 'actor_id',
                            'actor_type', 'details', 'ip_address', 'user_agent'),
    'credential_audit': ('credential_id', 'product_id', 'vendor_id', 'action', 'actor_id',
                         'actor_type', 'details', 'ip_address', 'user_agent'),
}


def write_audit(cursor, table, **fields):
    """Insert an audit row using an open cursor (part of the caller's transaction)."""
    columns = AUDIT_TABLES[table]
    ip_address, user_agent = request_meta()
    fields.setdefault('ip_address', ip_address)
    fields.setdefault('user_agent', user_agent)
    if 'details' in fields and not isinstance(fields['details'], str):
        fields['details'] = json.dumps(fields['details'], default=str)
    values = [fields.get(c) for c in columns]
    placeholders = ', '.join(['%s'] * (len(columns) + 1))
    cursor.execute(
        f"INSERT INTO {table} (id, {', '.join(columns)}) VALUES ({placeholders})",
        (new_id(), *values)
    )


def fetch_audit(cursor, table, request_id, limit=50):
    cursor.execute(
        f'SELECT * FROM {table} WHERE request_id = %s ORDER BY created_at DESC LIMIT %s',
        (request_id, limit)
    )
    return [serialize_row(r, json_fields=('details',)) for r in cursor.fetchall()]


# ===================== Database initialization =====================
SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS vendors (
        id VARCHAR(36) PRIMARY KEY,
        company_name VARCHAR(255) NOT NULL,
        display_name VARCHAR(255),
        primary_email VARCHAR(255) UNIQUE NOT NULL,
        additional_emails TEXT,
        contact_phone VARCHAR(50),
        country VARCHAR(100),
        currency VARCHAR(10) DEFAULT 'USD',
        password_hash VARCHAR(255) NOT NULL,
        initial_password_set BOOLEAN DEFAULT FALSE,
        status ENUM('pending', 'active', 'suspended', 'rejected') DEFAULT 'pending',
        created_by VARCHAR(255) NOT NULL,
        vendor_manager VARCHAR(255),
        notes TEXT,
        metadata TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        INDEX idx_vendors_status (status, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS vendor_audit (
        id VARCHAR(36) PRIMARY KEY,
        vendor_id VARCHAR(36) NOT NULL,
        action VARCHAR(50) NOT NULL,
        actor_id VARCHAR(255) NOT NULL,
        details TEXT,
        ip_address VARCHAR(64),
        user_agent VARCHAR(512),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        INDEX idx_vendor_audit_vendor (vendor_id, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS products (
        id VARCHAR(36) PRIMARY KEY,
        vendor_id VARCHAR(36) NOT NULL,
        title VARCHAR(255) NOT NULL,
        sku VARCHAR(100) UNIQUE,
        service_type ENUM('account_share', 'email_invite', 'license_key', 'other') NOT NULL DEFAULT 'account_share',
        provider ENUM('netflix', 'spotify', 'adobe', 'disney', 'hulu', 'amazon', 'apple', 'microsoft', 'other') NOT NULL,
        plan_duration_days INT NOT NULL,
        price_decimal DECIMAL(12, 2) NOT NULL,
        currency VARCHAR(10) NOT NULL DEFAULT 'USD',
        stock INT NOT NULL DEFAULT 0,
        account_email VARCHAR(255),
        account_password TEXT,
        warranty_days INT DEFAULT 0,
        warranty_type ENUM('full', 'limited', 'none') DEFAULT 'none',
        replacement_policy TEXT,
        rules TEXT,
        status ENUM('draft', 'pending', 'active', 'inactive', 'archived') DEFAULT 'draft',
        admin_review_status ENUM('pending', 'approved', 'rejected') DEFAULT 'pending',
        admin_review_notes TEXT,
        reviewed_by VARCHAR(255),
        reviewed_at DATETIME NULL,
        description TEXT,
        product_request_id VARCHAR(36),
        version INT NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        FOREIGN KEY (vendor_id) REFERENCES vendors(id) ON DELETE CASCADE,
        CHECK (stock >= 0),
        INDEX idx_products_vendor (vendor_id, status),
        INDEX idx_products_provider (provider, status)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_profiles (
        id VARCHAR(36) PRIMARY KEY,
        product_id VARCHAR(36) NOT NULL,
        credential_id VARCHAR(36),
        profile_name VARCHAR(255) NOT NULL,
        pin VARCHAR(50),
        is_assigned BOOLEAN DEFAULT FALSE,
        assigned_to VARCHAR(255),
        assigned_at DATETIME NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE,
        INDEX idx_profiles_free (product_id, is_assigned)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_requests (
        id VARCHAR(36) PRIMARY KEY,
        vendor_id VARCHAR(36) NOT NULL,
        title VARCHAR(255) NOT NULL,
        provider ENUM('netflix', 'spotify', 'adobe', 'disney', 'hulu', 'amazon', 'apple', 'microsoft', 'other') NOT NULL,
        service_type ENUM('account_share', 'email_invite', 'license_key', 'other') NOT NULL,
        plans TEXT NOT NULL,
        stock INT NOT NULL DEFAULT 0,
        warranty_days INT DEFAULT 0,
        replacement_policy TEXT,
        rules TEXT,
        description TEXT,
        attachments TEXT,
        status ENUM('pending_review', 'approved', 'rejected', 'changes_requested') DEFAULT 'pending_review',
        admin_comment TEXT,
        reviewed_by VARCHAR(255),
        reviewed_at DATETIME NULL,
        product_id VARCHAR(36),
        version INT NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        FOREIGN KEY (vendor_id) REFERENCES vendors(id) ON DELETE CASCADE,
        INDEX idx_product_requests_vendor (vendor_id, status),
        INDEX idx_product_requests_status (status, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_request_audit (
        id VARCHAR(36) PRIMARY KEY,
        request_id VARCHAR(36) NOT NULL,
        vendor_id VARCHAR(36) NOT NULL,
        action ENUM('submitted', 'resubmitted', 'approved', 'rejected', 'changes_requested') NOT NULL,
        actor_id VARCHAR(255) NOT NULL,
        comment TEXT,
        previous_status VARCHAR(50),
        new_status VARCHAR(50),
        ip_address VARCHAR(64),
        user_agent VARCHAR(512),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        INDEX idx_pr_audit_request (request_id, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS admin_stock_requests (
        id VARCHAR(36) PRIMARY KEY,
        admin_id VARCHAR(255) NOT NULL,
        vendor_id VARCHAR(36) NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        quantity_requested INT NOT NULL,
        quantity_fulfilled INT NOT NULL DEFAULT 0,
        status ENUM('requested', 'partially_fulfilled', 'fulfilled', 'rejected', 'cancelled') DEFAULT 'requested',
        notes TEXT,
        deadline DATETIME NULL,
        fulfilled_at DATETIME NULL,
        fulfilled_by VARCHAR(255),
        version INT NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        FOREIGN KEY (vendor_id) REFERENCES vendors(id) ON DELETE CASCADE,
        FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE,
        CHECK (quantity_requested >= 1),
        CHECK (quantity_fulfilled >= 0 AND quantity_fulfilled <= quantity_requested),
        INDEX idx_stock_requests_vendor (vendor_id, status),
        INDEX idx_stock_requests_status (status, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS stock_request_audit (
        id VARCHAR(36) PRIMARY KEY,
        request_id VARCHAR(36) NOT NULL,
        vendor_id VARCHAR(36) NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        action VARCHAR(50) NOT NULL,
        actor_id VARCHAR(255) NOT NULL,
        actor_type ENUM('admin', 'vendor', 'system') NOT NULL,
        details TEXT,
        ip_address VARCHAR(64),
        user_agent VARCHAR(512),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        INDEX idx_stock_audit_request (request_id, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_credentials (
        id VARCHAR(36) PRIMARY KEY,
        product_id VARCHAR(36) NOT NULL,
        vendor_id VARCHAR(36) NOT NULL,
        credential_type ENUM('account_share', 'email_invite', 'license_key') NOT NULL,
        payload_encrypted TEXT NOT NULL,
        profiles TEXT,
        account_email VARCHAR(255),
        total_count INT NOT NULL DEFAULT 0,
        assigned_count INT NOT NULL DEFAULT 0,
        available_count INT NOT NULL DEFAULT 0,
        created_by VARCHAR(255) NOT NULL,
        batch_number INT NOT NULL DEFAULT 1,
        admin_request_id VARCHAR(36),
        is_valid BOOLEAN DEFAULT TRUE,
        review_status ENUM('pending', 'approved', 'rejected') DEFAULT 'pending',
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE,
        INDEX idx_credentials_product (product_id, is_valid),
        INDEX idx_credentials_request (admin_request_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS credential_audit (
        id VARCHAR(36) PRIMARY KEY,
        credential_id VARCHAR(36) NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        vendor_id VARCHAR(36) NOT NULL,
        action VARCHAR(50) NOT NULL,
        actor_id VARCHAR(255) NOT NULL,
        actor_type ENUM('admin', 'vendor', 'system') NOT NULL,
        details TEXT,
        ip_address VARCHAR(64),
        user_agent VARCHAR(512),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        INDEX idx_credential_audit (credential_id, created_at)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(36) PRIMARY KEY,
        order_number VARCHAR(64) UNIQUE NOT NULL,
        customer_email VARCHAR(255) NOT NULL,
        vendor_id VARCHAR(36) NOT NULL,
        product_id VARCHAR(36) NOT NULL,
        product_title VARCHAR(255) NOT NULL,
        quantity INT NOT NULL DEFAULT 1,
        total_amount DECIMAL(12, 2) NOT NULL,
        currency VARCHAR(10) NOT NULL DEFAULT 'USD',
        status ENUM('pending', 'in_progress', 'fulfilled', 'disputed', 'refunded', 'cancelled') DEFAULT 'pending',
        fulfillment_status ENUM('pending', 'processing', 'completed', 'failed') DEFAULT 'pending',
        fulfillment_notes TEXT,
        tracking_info TEXT,
        fulfilled_at DATETIME NULL,
        payment_status ENUM('pending', 'paid', 'failed', 'refunded') DEFAULT 'pending',
        payment_method VARCHAR(50),
        profile_id VARCHAR(36),
        customer_notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        INDEX idx_orders_vendor (vendor_id, status),
        INDEX idx_orders_customer (customer_email)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS vendor_team (
        id VARCHAR(36) PRIMARY KEY,
        vendor_id VARCHAR(36) NOT NULL,
        email VARCHAR(255) UNIQUE NOT NULL,
        display_name VARCHAR(255) NOT NULL,
        role ENUM('loader', 'support', 'manager', 'owner') NOT NULL DEFAULT 'loader',
        permissions TEXT,
        status ENUM('active', 'inactive', 'suspended') DEFAULT 'active',
        password_hash VARCHAR(255) NOT NULL,
        invited_by VARCHAR(255),
        last_login DATETIME NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        INDEX idx_team_vendor (vendor_id, status),
        FOREIGN KEY (vendor_id) REFERENCES vendors(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR(36) PRIMARY KEY,
        first_name VARCHAR(100) NOT NULL,
        last_name VARCHAR(100),
        email VARCHAR(255) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        status ENUM('active', 'suspended') DEFAULT 'active',
        last_login DATETIME NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
    )
    ''',
]


def init_db():
    """Initialize database tables"""
    conn = get_db_connection()
    if conn is None:
        logger.error("Failed to connect to database. Skipping table creation.")
        return False

    cursor = conn.cursor()
    try:
        for statement in SCHEMA:
            cursor.execute(statement)
        conn.commit()
        logger.info("Database tables initialized")
        return True
    except mysql.connector.Error as e:
        conn.rollback()
        logger.error(f"Error initializing database: {e}")
        return False
    finally:
        cursor.close()
        conn.close()
