import json
import logging

from flask import Blueprint, jsonify, request, current_app

from utils import (
    get_db_connection, db_unavailable, vendor_token_required, get_vendor_by_email,
    check_password, hash_password, issue_vendor_token, set_auth_cookie, clear_auth_cookie,
    serialize_vendor, load_json, save_upload, remove_uploads, UploadError, count_rows, write_audit
)

logger = logging.getLogger(__name__)
vendors_bp = Blueprint('vendors', __name__)

LOGO_EXTENSIONS = {'png', 'jpg', 'jpeg', 'svg', 'webp'}
LOGO_MAX_BYTES = 2 * 1024 * 1024
MIN_PASSWORD_LENGTH = 8


# ===================== VENDOR AUTH ENDPOINTS =====================
@vendors_bp.route('/login', methods=['POST'])
def vendor_login():
    """
    Password is checked before account status, so a wrong password is always a 401.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get('email') or '').strip().lower()
        password = data.get('password')
        if not email or not password:
            return jsonify({'success': False, 'message': 'Email and password are required'}), 400

        vendor = get_vendor_by_email(email)
        if not vendor or not check_password(password, vendor.get('password_hash')):
            return jsonify({'success': False, 'message': 'Invalid credentials'}), 401

        if vendor['status'] != 'active':
            return jsonify({
                'success': False,
                'message': f"Vendor account is {vendor['status']}. Please contact admin."
            }), 403

        token = issue_vendor_token(vendor)
        response = jsonify({
            'success': True,
            'message': 'Login successful',
            'data': {
                'vendor': {
                    'id': vendor['id'],
                    'companyName': vendor['company_name'],
                    'displayName': vendor['display_name'],
                    'email': vendor['primary_email'],
                    'status': vendor['status'],
                    'initialPasswordSet': bool(vendor['initial_password_set'])
                },
                'requiresPasswordChange': not vendor['initial_password_set']
            }
        })
        set_auth_cookie(response, 'vendorToken', token, current_app.config['VENDOR_TOKEN_DAYS'] * 24 * 3600)
        return response, 200

    except Exception as e:
        logger.error(f"Error in vendor_login: {e}")
        return jsonify({'success': False, 'message': 'Login failed'}), 500


@vendors_bp.route('/logout', methods=['POST'])
@vendor_token_required
def vendor_logout(current_vendor):
    response = jsonify({'success': True, 'message': 'Logged out successfully'})
    clear_auth_cookie(response, 'vendorToken')
    return response, 200


@vendors_bp.route('/me', methods=['GET'])
@vendor_token_required
def get_vendor_info(current_vendor):
    return jsonify({
        'success': True,
        'message': 'Vendor info',
        'data': {'vendor': serialize_vendor(current_vendor)}
    }), 200


@vendors_bp.route('/change-password', methods=['PUT'])
@vendor_token_required
def change_password(current_vendor):
    """
    First-login setup skips the current password check; afterwards it is required.
    """
    try:
        data = request.get_json(silent=True) or {}
        current_password = data.get('currentPassword')
        new_password = data.get('newPassword') or ''

        if len(new_password) < MIN_PASSWORD_LENGTH:
            return jsonify({'success': False, 'message': 'Password must be at least 8 characters'}), 400

        vendor = get_vendor_by_email(current_vendor['primary_email'])
        if not vendor:
            return jsonify({'success': False, 'message': 'Vendor not found'}), 404

        if vendor['initial_password_set']:
            if not current_password:
                return jsonify({'success': False, 'message': 'Current password is required'}), 400
            if not check_password(current_password, vendor['password_hash']):
                return jsonify({'success': False, 'message': 'Current password is incorrect'}), 401

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor()
        try:
            cursor.execute(
                'UPDATE vendors SET password_hash = %s, initial_password_set = TRUE WHERE id = %s',
                (hash_password(new_password), vendor['id'])
            )
            write_audit(cursor, 'vendor_audit', vendor_id=vendor['id'], action='password_changed',
                        actor_id=vendor['primary_email'], details={})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error changing vendor password: {e}")
            return jsonify({'success': False, 'message': 'Failed to change password'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({'success': True, 'message': 'Password changed successfully'}), 200

    except Exception as e:
        logger.error(f"Error in change_password: {e}")
        return jsonify({'success': False, 'message': 'Failed to change password'}), 500


@vendors_bp.route('/profile', methods=['PUT'])
@vendor_token_required
def update_profile(current_vendor):
    """
    Accepts JSON or multipart/form-data (with an optional ``logo`` file).
    """
    try:
        body = request.form.to_dict() if request.form else (request.get_json(silent=True) or {})

        display_name = (body.get('displayName') or '').strip()
        metadata = load_json(current_vendor.get('metadata'), {}) or {}
        additional_emails = load_json(current_vendor.get('additional_emails'), []) or []

        for field in ('ownerName', 'whatsappNumber', 'businessHours', 'supportLink'):
            value = body.get(field)
            if value:
                metadata[field] = value.strip() if isinstance(value, str) else value

        secondary_email = (body.get('secondaryEmail') or '').strip().lower()
        if secondary_email and secondary_email not in additional_emails:
            additional_emails.append(secondary_email)

        uploaded = []
        logo = request.files.get('logo')
        if logo is not None and logo.filename:
            try:
                stored = save_upload(logo, 'logos', LOGO_EXTENSIONS, LOGO_MAX_BYTES, current_vendor['id'])
            except UploadError as e:
                return jsonify({'success': False, 'message': str(e)}), 400
            metadata['logo'] = stored['url']
            uploaded.append(stored)

        conn = get_db_connection()
        if conn is None:
            remove_uploads(uploaded)
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('''
                UPDATE vendors
                SET display_name = COALESCE(%s, display_name), metadata = %s, additional_emails = %s
                WHERE id = %s
            ''', (display_name or None, json.dumps(metadata), json.dumps(additional_emails), current_vendor['id']))
            write_audit(cursor, 'vendor_audit', vendor_id=current_vendor['id'], action='profile_updated',
                        actor_id=current_vendor['primary_email'],
                        details={'fields': sorted(k for k in body if k != 'logo')})
            cursor.execute('SELECT * FROM vendors WHERE id = %s', (current_vendor['id'],))
            vendor = cursor.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            remove_uploads(uploaded)
            logger.error(f"Error updating vendor profile: {e}")
            return jsonify({'success': False, 'message': 'Failed to update profile'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Profile updated successfully',
            'data': {'vendor': serialize_vendor(vendor)}
        }), 200

    except Exception as e:
        logger.error(f"Error in update_profile: {e}")
        return jsonify({'success': False, 'message': 'Failed to update profile'}), 400


# ===================== VENDOR DASHBOARD STATS =====================
@vendors_bp.route('/dashboard-stats', methods=['GET'])
@vendor_token_required
def vendor_dashboard_stats(current_vendor):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            vid = current_vendor['id']
            stats = {
                'products': count_rows(cursor, 'SELECT COUNT(*) AS total FROM products WHERE vendor_id = %s', (vid,)),
                'activeProducts': count_rows(
                    cursor, "SELECT COUNT(*) AS total FROM products WHERE vendor_id = %s AND status = 'active'", (vid,)),
                'pendingProductRequests': count_rows(
                    cursor,
                    "SELECT COUNT(*) AS total FROM product_requests WHERE vendor_id = %s AND status = 'pending_review'",
                    (vid,)),
                'openStockRequests': count_rows(
                    cursor,
                    "SELECT COUNT(*) AS total FROM admin_stock_requests "
                    "WHERE vendor_id = %s AND status IN ('requested', 'partially_fulfilled')",
                    (vid,)),
                'pendingOrders': count_rows(
                    cursor, "SELECT COUNT(*) AS total FROM orders WHERE vendor_id = %s AND status = 'pending'", (vid,)),
            }
            return jsonify({'success': True, 'message': 'Dashboard stats', 'data': stats}), 200
        except Exception as e:
            logger.error(f"Error fetching vendor dashboard stats: {e}")
            return jsonify({'success': False, 'message': 'Failed to fetch dashboard stats'}), 500
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in vendor_dashboard_stats: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch dashboard stats'}), 500
