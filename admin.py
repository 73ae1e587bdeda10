import hmac
import json
import logging

from flask import Blueprint, jsonify, request, current_app

from encryption import encrypt_value
from utils import (
    admin_token_required, get_db_connection, db_unavailable, issue_admin_token, set_auth_cookie,
    clear_auth_cookie, hash_password, serialize_vendor, get_pagination, count_rows, status_counts,
    new_id, write_audit, serialize_row, generate_temp_password
)
from workflow import PRODUCT_REQUEST_STATUSES, OPEN_STOCK_STATUSES

logger = logging.getLogger(__name__)
admin_bp = Blueprint('admin', __name__)

VENDOR_STATUSES = ('pending', 'active', 'suspended', 'rejected')
# request field -> column, for admin vendor updates
VENDOR_FIELDS = {
    'companyName': 'company_name',
    'displayName': 'display_name',
    'contactPhone': 'contact_phone',
    'country': 'country',
    'currency': 'currency',
    'vendorManager': 'vendor_manager',
    'notes': 'notes',
}


def _matches(given, expected):
    return hmac.compare_digest(str(given).encode('utf-8'), str(expected).encode('utf-8'))


# ===================== ADMIN AUTH =====================
@admin_bp.route('/login', methods=['POST'])
def admin_login():
    try:
        data = request.get_json(silent=True) or {}
        username = data.get('username') or ''
        password = data.get('password') or ''
        if not username or not password:
            return jsonify({'success': False, 'message': 'Username and password are required'}), 400

        expected_user = current_app.config['ADMIN_USERNAME']
        expected_password = current_app.config['ADMIN_PASSWORD']
        if not expected_password:
            logger.error("ADMIN_PASSWORD is not configured; admin login disabled")
            return jsonify({'success': False, 'message': 'Invalid admin credentials'}), 401
        if not (_matches(username, expected_user) and _matches(password, expected_password)):
            logger.warning(f"Failed admin login for {username}")
            return jsonify({'success': False, 'message': 'Invalid admin credentials'}), 401

        email = current_app.config['ADMIN_EMAIL']
        token = issue_admin_token(username, email)
        response = jsonify({
            'success': True,
            'message': 'Admin login successful',
            'data': {'token': token, 'admin': {'username': username, 'email': email, 'role': 'admin'}}
        })
        set_auth_cookie(response, 'adminToken', token, current_app.config['ADMIN_TOKEN_HOURS'] * 3600)
        return response, 200

    except Exception as e:
        logger.error(f"Error in admin login: {e}")
        return jsonify({'success': False, 'message': 'Login failed'}), 500


@admin_bp.route('/logout', methods=['POST'])
def admin_logout():
    response = jsonify({'success': True, 'message': 'Logged out successfully'})
    clear_auth_cookie(response, 'adminToken')
    return response, 200


@admin_bp.route('/me', methods=['GET'])
@admin_token_required
def admin_me(current_admin):
    return jsonify({'success': True, 'message': 'Admin info', 'data': {'admin': current_admin}}), 200


@admin_bp.route('/dashboard', methods=['GET'])
@admin_token_required
def admin_dashboard(current_admin):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            vendor_counts = status_counts(cursor, 'vendors', VENDOR_STATUSES)
            request_counts = status_counts(cursor, 'product_requests', PRODUCT_REQUEST_STATUSES)
            open_stock = count_rows(
                cursor,
                'SELECT COUNT(*) AS total FROM admin_stock_requests WHERE status IN (%s, %s)',
                OPEN_STOCK_STATUSES
            )
            products = count_rows(cursor, 'SELECT COUNT(*) AS total FROM products')
            active_products = count_rows(cursor, "SELECT COUNT(*) AS total FROM products WHERE status = 'active'")
            orders = count_rows(cursor, 'SELECT COUNT(*) AS total FROM orders')

            return jsonify({
                'success': True,
                'message': 'Dashboard stats',
                'data': {
                    'vendors': {'total': sum(vendor_counts.values()), **vendor_counts},
                    'productRequests': {'total': sum(request_counts.values()), **request_counts},
                    'openStockRequests': open_stock,
                    'products': {'total': products, 'active': active_products},
                    'orders': orders
                }
            }), 200
        except Exception as e:
            logger.error(f"Error fetching dashboard data: {e}")
            return jsonify({'success': False, 'message': 'Failed to fetch dashboard data'}), 500
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_dashboard: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch dashboard data'}), 500


# ===================== ADMIN VENDOR MANAGEMENT =====================
@admin_bp.route('/vendors', methods=['POST'])
@admin_token_required
def admin_create_vendor(current_admin):
    """
    Creates a vendor account with a generated password.
    The plaintext password is returned once; the audit log keeps an encrypted copy.
    """
    try:
        data = request.get_json(silent=True) or {}
        company_name = (data.get('companyName') or '').strip()
        email = (data.get('primaryEmail') or data.get('email') or '').strip().lower()
        if not company_name or not email:
            return jsonify({'success': False, 'message': 'companyName and primaryEmail are required'}), 400
        if '@' not in email:
            return jsonify({'success': False, 'message': 'Invalid email address'}), 400
        status = data.get('status') or 'pending'
        if status not in VENDOR_STATUSES:
            return jsonify({'success': False, 'message': 'Invalid status'}), 400

        additional_emails = [e.strip().lower() for e in data.get('additionalEmails') or [] if e and e.strip()]
        temp_password = generate_temp_password()
        vendor_id = new_id()

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT id FROM vendors WHERE primary_email = %s', (email,))
            if cursor.fetchone():
                return jsonify({'success': False, 'message': 'A vendor with this email already exists'}), 409

            cursor.execute('''
                INSERT INTO vendors
                (id, company_name, display_name, primary_email, additional_emails, contact_phone, country,
                 currency, password_hash, initial_password_set, status, created_by, vendor_manager, notes, metadata)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, FALSE, %s, %s, %s, %s, %s)
            ''', (
                vendor_id, company_name, (data.get('displayName') or company_name).strip(), email,
                json.dumps(additional_emails), data.get('contactPhone'), data.get('country'),
                data.get('currency') or 'USD', hash_password(temp_password), status, current_admin['email'],
                data.get('vendorManager'), data.get('notes'), json.dumps({})
            ))
            write_audit(cursor, 'vendor_audit', vendor_id=vendor_id, action='created',
                        actor_id=current_admin['email'], details={'status': status, 'email': email})
            write_audit(cursor, 'vendor_audit', vendor_id=vendor_id, action='password_generated',
                        actor_id=current_admin['email'],
                        details={'passwordEncrypted': encrypt_value(temp_password)})
            conn.commit()
            cursor.execute('SELECT * FROM vendors WHERE id = %s', (vendor_id,))
            vendor = cursor.fetchone()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error creating vendor: {e}")
            return jsonify({'success': False, 'message': 'Failed to create vendor'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Vendor {vendor_id} created by {current_admin['email']}")
        return jsonify({
            'success': True,
            'message': 'Vendor created successfully',
            'data': {'vendor': serialize_vendor(vendor, include_notes=True), 'temporaryPassword': temp_password}
        }), 201

    except Exception as e:
        logger.error(f"Error in admin_create_vendor: {e}")
        return jsonify({'success': False, 'message': 'Failed to create vendor'}), 500


@admin_bp.route('/vendors', methods=['GET'])
@admin_token_required
def admin_get_vendors(current_admin):
    try:
        page, limit, offset = get_pagination(default_limit=20)
        where = ['1 = 1']
        params = []
        status = request.args.get('status')
        search = (request.args.get('search') or '').strip()
        if status in VENDOR_STATUSES:
            where.append('status = %s')
            params.append(status)
        if search:
            where.append('(company_name LIKE %s OR display_name LIKE %s OR primary_email LIKE %s)')
            params.extend([f'%{search}%'] * 3)
        clause = ' AND '.join(where)

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                f'SELECT * FROM vendors WHERE {clause} ORDER BY created_at DESC LIMIT %s OFFSET %s',
                (*params, limit, offset)
            )
            vendors = [serialize_vendor(v, include_notes=True) for v in cursor.fetchall()]
            total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM vendors WHERE {clause}', tuple(params))
            return jsonify({
                'success': True,
                'message': 'Vendors fetched',
                'data': {'vendors': vendors, 'total': total, 'page': page, 'limit': limit}
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_vendors: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch vendors'}), 500


@admin_bp.route('/vendors/<vendor_id>', methods=['GET'])
@admin_token_required
def admin_get_vendor(current_admin, vendor_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT * FROM vendors WHERE id = %s', (vendor_id,))
            vendor = cursor.fetchone()
            if not vendor:
                return jsonify({'success': False, 'message': 'Vendor not found'}), 404

            data = serialize_vendor(vendor, include_notes=True)
            data['productCount'] = count_rows(
                cursor, 'SELECT COUNT(*) AS total FROM products WHERE vendor_id = %s', (vendor_id,))
            data['productRequestCount'] = count_rows(
                cursor, 'SELECT COUNT(*) AS total FROM product_requests WHERE vendor_id = %s', (vendor_id,))
            cursor.execute(
                'SELECT id, action, actor_id, details, created_at FROM vendor_audit '
                'WHERE vendor_id = %s ORDER BY created_at DESC LIMIT 50',
                (vendor_id,)
            )
            data['auditLog'] = [
                serialize_row(a, json_fields=('details',)) for a in cursor.fetchall()
            ]
            # encrypted copies of generated passwords stay server side
            for entry in data['auditLog']:
                if isinstance(entry.get('details'), dict):
                    entry['details'].pop('passwordEncrypted', None)
            return jsonify({'success': True, 'message': 'Vendor fetched', 'data': {'vendor': data}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_vendor: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch vendor'}), 500


@admin_bp.route('/vendors/<vendor_id>', methods=['PUT'])
@admin_token_required
def admin_update_vendor(current_admin, vendor_id):
    try:
        data = request.get_json(silent=True) or {}
        values = {column: data[field] for field, column in VENDOR_FIELDS.items() if field in data}
        if 'additionalEmails' in data:
            values['additional_emails'] = json.dumps(
                [e.strip().lower() for e in data['additionalEmails'] or [] if e and e.strip()]
            )
        if not values:
            return jsonify({'success': False, 'message': 'No fields to update'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            assignments = ', '.join(f'{column} = %s' for column in values)
            cursor.execute(f'UPDATE vendors SET {assignments} WHERE id = %s', (*values.values(), vendor_id))
            if cursor.rowcount == 0:
                cursor.execute('SELECT id FROM vendors WHERE id = %s', (vendor_id,))
                if not cursor.fetchone():
                    conn.rollback()
                    return jsonify({'success': False, 'message': 'Vendor not found'}), 404
            write_audit(cursor, 'vendor_audit', vendor_id=vendor_id, action='updated',
                        actor_id=current_admin['email'], details={'fields': sorted(values)})
            conn.commit()
            cursor.execute('SELECT * FROM vendors WHERE id = %s', (vendor_id,))
            vendor = cursor.fetchone()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error updating vendor: {e}")
            return jsonify({'success': False, 'message': 'Failed to update vendor'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Vendor updated successfully',
            'data': {'vendor': serialize_vendor(vendor, include_notes=True)}
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_update_vendor: {e}")
        return jsonify({'success': False, 'message': 'Failed to update vendor'}), 500


@admin_bp.route('/vendors/<vendor_id>/status', methods=['PUT'])
@admin_token_required
def admin_update_vendor_status(current_admin, vendor_id):
    try:
        data = request.get_json(silent=True) or {}
        status = data.get('status')
        if status not in VENDOR_STATUSES:
            return jsonify({'success': False, 'message': 'Invalid status'}), 400
        reason = (data.get('rejectionReason') or data.get('reason') or '').strip() or None

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT status FROM vendors WHERE id = %s', (vendor_id,))
            vendor = cursor.fetchone()
            if not vendor:
                return jsonify({'success': False, 'message': 'Vendor not found'}), 404

            cursor.execute('UPDATE vendors SET status = %s WHERE id = %s', (status, vendor_id))
            write_audit(cursor, 'vendor_audit', vendor_id=vendor_id, action='status_changed',
                        actor_id=current_admin['email'],
                        details={'from': vendor['status'], 'to': status, 'reason': reason})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error updating vendor status: {e}")
            return jsonify({'success': False, 'message': 'Failed to update vendor status'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Vendor {vendor_id} status {vendor['status']} -> {status}")
        return jsonify({
            'success': True,
            'message': 'Vendor status updated successfully',
            'data': {'vendorId': vendor_id, 'status': status}
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_update_vendor_status: {e}")
        return jsonify({'success': False, 'message': 'Failed to update vendor status'}), 500


@admin_bp.route('/vendors/<vendor_id>/reset-password', methods=['POST'])
@admin_token_required
def admin_reset_vendor_password(current_admin, vendor_id):
    try:
        temp_password = generate_temp_password()

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                'UPDATE vendors SET password_hash = %s, initial_password_set = FALSE WHERE id = %s',
                (hash_password(temp_password), vendor_id)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return jsonify({'success': False, 'message': 'Vendor not found'}), 404
            write_audit(cursor, 'vendor_audit', vendor_id=vendor_id, action='password_reset',
                        actor_id=current_admin['email'],
                        details={'passwordEncrypted': encrypt_value(temp_password)})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error resetting vendor password: {e}")
            return jsonify({'success': False, 'message': 'Failed to reset password'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Password reset successfully',
            'data': {'vendorId': vendor_id, 'temporaryPassword': temp_password}
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_reset_vendor_password: {e}")
        return jsonify({'success': False, 'message': 'Failed to reset password'}), 500
