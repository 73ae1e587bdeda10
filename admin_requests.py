import logging

from flask import Blueprint, jsonify, request

from encryption import decrypt_json, DecryptionError
from utils import (
    admin_token_required, get_db_connection, db_unavailable, get_pagination, count_rows, status_counts,
    serialize_row, serialize_product, serialize_product_request, serialize_stock_request, load_json,
    new_id, utcnow, write_audit, fetch_audit
)
from vendor_products import generate_sku, is_product_approved, add_profiles_to_product
from credentials import mask_email
from workflow import (
    PRODUCT_REQUEST_STATUSES, STOCK_REQUEST_STATUSES, OPEN_STOCK_STATUSES, PENDING_REVIEW, APPROVED,
    FULFILLED, REQUESTED, WorkflowError, check_review_comment, review_transition, revert_fulfillment,
    check_cancellable, clean_comment
)

logger = logging.getLogger(__name__)
admin_requests_bp = Blueprint('admin_requests', __name__)

REVIEW_AUDIT_ACTIONS = {'approve': 'approved', 'reject': 'rejected', 'request_changes': 'changes_requested'}


def _conflict():
    return jsonify({'success': False, 'message': 'Request was modified concurrently, please reload and retry'}), 409


def fetch_stock_request(cursor, request_id):
    cursor.execute('''
        SELECT r.*, p.title AS product_title, p.provider AS product_provider,
               p.service_type AS product_service_type, v.company_name AS vendor_name
        FROM admin_stock_requests r
        JOIN products p ON p.id = r.product_id
        JOIN vendors v ON v.id = r.vendor_id
        WHERE r.id = %s
    ''', (request_id,))
    return cursor.fetchone()


def fetch_request_credential(cursor, request_id, credential_id):
    cursor.execute(
        'SELECT * FROM product_credentials WHERE id = %s AND admin_request_id = %s',
        (credential_id, request_id)
    )
    return cursor.fetchone()


def credential_summary(row):
    data = serialize_row(row, exclude=('payload_encrypted', 'account_email', 'profiles'), bool_fields=('is_valid',))
    data['accountEmail'] = mask_email(row.get('account_email'))
    data['profiles'] = load_json(row.get('profiles'), []) or []
    return data


# ===================== ADMIN PRODUCT REQUEST REVIEW =====================
@admin_requests_bp.route('/product-requests', methods=['GET'])
@admin_token_required
def admin_get_product_requests(current_admin):
    try:
        page, limit, offset = get_pagination(default_limit=20)
        where = ['1 = 1']
        params = []
        for arg, column in (('status', 'r.status'), ('vendorId', 'r.vendor_id'), ('provider', 'r.provider')):
            value = request.args.get(arg)
            if value:
                where.append(f'{column} = %s')
                params.append(value)
        search = (request.args.get('search') or '').strip()
        if search:
            where.append('r.title LIKE %s')
            params.append(f'%{search}%')
        clause = ' AND '.join(where)

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(f'''
                SELECT r.*, v.company_name AS vendor_name, v.primary_email AS vendor_email
                FROM product_requests r
                JOIN vendors v ON v.id = r.vendor_id
                WHERE {clause}
                ORDER BY r.created_at DESC
                LIMIT %s OFFSET %s
            ''', (*params, limit, offset))
            requests_ = [serialize_product_request(r) for r in cursor.fetchall()]
            total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM product_requests r WHERE {clause}', tuple(params))
            counts = status_counts(cursor, 'product_requests', PRODUCT_REQUEST_STATUSES)
            return jsonify({
                'success': True,
                'message': 'Product requests fetched',
                'data': {'requests': requests_, 'total': total, 'page': page, 'limit': limit, 'counts': counts}
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_product_requests: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch product requests'}), 500


@admin_requests_bp.route('/product-requests/<request_id>', methods=['GET'])
@admin_token_required
def admin_get_product_request(current_admin, request_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('''
                SELECT r.*, v.company_name AS vendor_name, v.primary_email AS vendor_email
                FROM product_requests r
                JOIN vendors v ON v.id = r.vendor_id
                WHERE r.id = %s
            ''', (request_id,))
            row = cursor.fetchone()
            if not row:
                return jsonify({'success': False, 'message': 'Product request not found'}), 404
            data = serialize_product_request(row)
            data['auditLog'] = fetch_audit(cursor, 'product_request_audit', request_id)
            return jsonify({'success': True, 'message': 'Product request fetched', 'data': {'request': data}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_product_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch product request'}), 500


def _create_product_from_request(cursor, row, current_admin, reviewed_at):
    plans = load_json(row['plans'], []) or []
    first_plan = plans[0] if plans else {}
    product_id = new_id()
    cursor.execute('''
        INSERT INTO products
        (id, vendor_id, title, sku, service_type, provider, plan_duration_days, price_decimal, currency, stock,
         warranty_days, replacement_policy, rules, description, status, admin_review_status,
         reviewed_by, reviewed_at, product_request_id)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 0, %s, %s, %s, %s, 'active', 'approved', %s, %s, %s)
    ''', (
        product_id, row['vendor_id'], row['title'], generate_sku(), row['service_type'], row['provider'],
        int(first_plan.get('durationDays') or 30), first_plan.get('price') or 0, first_plan.get('currency') or 'USD',
        row['warranty_days'] or 0, row['replacement_policy'], row['rules'], row['description'],
        current_admin['email'], reviewed_at, row['id']
    ))
    return product_id


def _review_product_request(current_admin, request_id, action):
    """Apply approve / reject / request_changes to a pending product request."""
    try:
        data = request.get_json(silent=True) or {}
        try:
            check_review_comment(action, data.get('comment'))
        except WorkflowError as e:
            return jsonify({'success': False, 'message': e.message}), e.status_code

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT * FROM product_requests WHERE id = %s', (request_id,))
            row = cursor.fetchone()
            if not row:
                return jsonify({'success': False, 'message': 'Product request not found'}), 404
            try:
                new_status, comment = review_transition(row['status'], action, data.get('comment'))
            except WorkflowError as e:
                return jsonify({'success': False, 'message': e.message}), e.status_code

            reviewed_at = utcnow()
            product_id = None
            if new_status == APPROVED:
                product_id = _create_product_from_request(cursor, row, current_admin, reviewed_at)

            cursor.execute('''
                UPDATE product_requests
                SET status = %s, admin_comment = %s, reviewed_by = %s, reviewed_at = %s,
                    product_id = COALESCE(%s, product_id), version = version + 1
                WHERE id = %s AND status = %s AND version = %s
            ''', (new_status, comment, current_admin['email'], reviewed_at, product_id,
                  request_id, PENDING_REVIEW, row['version']))
            if cursor.rowcount == 0:
                conn.rollback()
                return _conflict()

            write_audit(cursor, 'product_request_audit', request_id=request_id, vendor_id=row['vendor_id'],
                        action=REVIEW_AUDIT_ACTIONS[action], actor_id=current_admin['email'], comment=comment,
                        previous_status=row['status'], new_status=new_status)
            conn.commit()
            cursor.execute('SELECT * FROM product_requests WHERE id = %s', (request_id,))
            updated = cursor.fetchone()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error reviewing product request {request_id}: {e}")
            return jsonify({'success': False, 'message': 'Failed to update product request'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Product request {request_id} {new_status} by {current_admin['email']}")
        body = {'request': serialize_product_request(updated)}
        if product_id:
            body['productId'] = product_id
        return jsonify({
            'success': True,
            'message': f"Product request {new_status.replace('_', ' ')}",
            'data': body
        }), 200

    except Exception as e:
        logger.error(f"Error in _review_product_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to update product request'}), 500


@admin_requests_bp.route('/product-requests/<request_id>/approve', methods=['POST'])
@admin_token_required
def admin_approve_product_request(current_admin, request_id):
    return _review_product_request(current_admin, request_id, 'approve')


@admin_requests_bp.route('/product-requests/<request_id>/reject', methods=['POST'])
@admin_token_required
def admin_reject_product_request(current_admin, request_id):
    return _review_product_request(current_admin, request_id, 'reject')


@admin_requests_bp.route('/product-requests/<request_id>/request-changes', methods=['POST'])
@admin_token_required
def admin_request_changes(current_admin, request_id):
    return _review_product_request(current_admin, request_id, 'request_changes')


# ===================== ADMIN STOCK REQUESTS =====================
@admin_requests_bp.route('/vendors/<vendor_id>/products', methods=['GET'])
@admin_token_required
def admin_get_vendor_products(current_admin, vendor_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT id FROM vendors WHERE id = %s', (vendor_id,))
            if not cursor.fetchone():
                return jsonify({'success': False, 'message': 'Vendor not found'}), 404
            cursor.execute(
                'SELECT * FROM products WHERE vendor_id = %s ORDER BY created_at DESC', (vendor_id,)
            )
            products = [serialize_product(p) for p in cursor.fetchall()]
            return jsonify({'success': True, 'message': 'Vendor products fetched', 'data': {'products': products}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_vendor_products: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch vendor products'}), 500


@admin_requests_bp.route('/vendors/<vendor_id>/stock-requests', methods=['POST'])
@admin_token_required
def admin_create_stock_request(current_admin, vendor_id):
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get('productId')
        try:
            quantity = int(data.get('quantity'))
        except (TypeError, ValueError):
            return jsonify({'success': False, 'message': 'quantity must be a whole number'}), 400
        if not product_id:
            return jsonify({'success': False, 'message': 'productId is required'}), 400
        if quantity < 1:
            return jsonify({'success': False, 'message': 'quantity must be at least 1'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT * FROM products WHERE id = %s AND vendor_id = %s', (product_id, vendor_id))
            product = cursor.fetchone()
            if not product:
                return jsonify({'success': False, 'message': 'Product not found for this vendor'}), 404
            if not is_product_approved(product):
                return jsonify({'success': False, 'message': 'Stock can only be requested for approved products'}), 400

            request_id = new_id()
            cursor.execute('''
                INSERT INTO admin_stock_requests
                (id, admin_id, vendor_id, product_id, quantity_requested, quantity_fulfilled, status, notes, deadline)
                VALUES (%s, %s, %s, %s, %s, 0, %s, %s, %s)
            ''', (
                request_id, current_admin['email'], vendor_id, product_id, quantity, REQUESTED,
                clean_comment(data.get('notes')), data.get('deadline') or None
            ))
            write_audit(cursor, 'stock_request_audit', request_id=request_id, vendor_id=vendor_id,
                        product_id=product_id, action='created', actor_id=current_admin['email'],
                        actor_type='admin', details={'quantity': quantity})
            conn.commit()
            created = fetch_stock_request(cursor, request_id)
        except Exception as e:
            conn.rollback()
            logger.error(f"Error creating stock request: {e}")
            return jsonify({'success': False, 'message': 'Failed to create stock request'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Stock request {request_id} for {quantity} unit(s) of product {product_id}")
        return jsonify({
            'success': True,
            'message': 'Stock request created',
            'data': {'request': serialize_stock_request(created)}
        }), 201

    except Exception as e:
        logger.error(f"Error in admin_create_stock_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to create stock request'}), 500


def _list_stock_requests(vendor_id=None):
    page, limit, offset = get_pagination(default_limit=20)
    where = ['1 = 1']
    params = []
    if vendor_id:
        where.append('r.vendor_id = %s')
        params.append(vendor_id)
    for arg, column in (('status', 'r.status'), ('vendorId', 'r.vendor_id'), ('productId', 'r.product_id')):
        value = request.args.get(arg)
        if value and not (arg == 'vendorId' and vendor_id):
            where.append(f'{column} = %s')
            params.append(value)
    clause = ' AND '.join(where)

    conn = get_db_connection()
    if conn is None:
        return db_unavailable()
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(f'''
            SELECT r.*, p.title AS product_title, p.provider AS product_provider, v.company_name AS vendor_name
            FROM admin_stock_requests r
            JOIN products p ON p.id = r.product_id
            JOIN vendors v ON v.id = r.vendor_id
            WHERE {clause}
            ORDER BY r.created_at DESC
            LIMIT %s OFFSET %s
        ''', (*params, limit, offset))
        requests_ = [serialize_stock_request(r) for r in cursor.fetchall()]
        total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM admin_stock_requests r WHERE {clause}', tuple(params))
        if vendor_id:
            counts = status_counts(cursor, 'admin_stock_requests', STOCK_REQUEST_STATUSES, 'vendor_id = %s', (vendor_id,))
        else:
            counts = status_counts(cursor, 'admin_stock_requests', STOCK_REQUEST_STATUSES)
        return jsonify({
            'success': True,
            'message': 'Stock requests fetched',
            'data': {'requests': requests_, 'total': total, 'page': page, 'limit': limit, 'counts': counts}
        }), 200
    finally:
        cursor.close()
        conn.close()


@admin_requests_bp.route('/vendors/<vendor_id>/stock-requests', methods=['GET'])
@admin_token_required
def admin_get_vendor_stock_requests(current_admin, vendor_id):
    try:
        return _list_stock_requests(vendor_id)
    except Exception as e:
        logger.error(f"Error in admin_get_vendor_stock_requests: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch stock requests'}), 500


@admin_requests_bp.route('/stock-requests', methods=['GET'])
@admin_token_required
def admin_get_stock_requests(current_admin):
    try:
        return _list_stock_requests()
    except Exception as e:
        logger.error(f"Error in admin_get_stock_requests: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch stock requests'}), 500


@admin_requests_bp.route('/stock-requests/<request_id>', methods=['GET'])
@admin_token_required
def admin_get_stock_request(current_admin, request_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            row = fetch_stock_request(cursor, request_id)
            if not row:
                return jsonify({'success': False, 'message': 'Stock request not found'}), 404
            data = serialize_stock_request(row)
            data['auditLog'] = fetch_audit(cursor, 'stock_request_audit', request_id)
            return jsonify({'success': True, 'message': 'Stock request fetched', 'data': {'request': data}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_stock_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch stock request'}), 500


@admin_requests_bp.route('/stock-requests/<request_id>/cancel', methods=['POST'])
@admin_token_required
def admin_cancel_stock_request(current_admin, request_id):
    try:
        data = request.get_json(silent=True) or {}
        reason = clean_comment(data.get('reason'))

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            row = fetch_stock_request(cursor, request_id)
            if not row:
                return jsonify({'success': False, 'message': 'Stock request not found'}), 404
            try:
                check_cancellable(row['status'])
            except WorkflowError as e:
                return jsonify({'success': False, 'message': e.message}), e.status_code

            cursor.execute('''
                UPDATE admin_stock_requests SET status = 'cancelled', version = version + 1
                WHERE id = %s AND version = %s
            ''', (request_id, row['version']))
            if cursor.rowcount == 0:
                conn.rollback()
                return _conflict()
            write_audit(cursor, 'stock_request_audit', request_id=request_id, vendor_id=row['vendor_id'],
                        product_id=row['product_id'], action='cancelled', actor_id=current_admin['email'],
                        actor_type='admin', details={'reason': reason, 'previousStatus': row['status']})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error cancelling stock request: {e}")
            return jsonify({'success': False, 'message': 'Failed to cancel stock request'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Stock request cancelled',
            'data': {'requestId': request_id, 'status': 'cancelled'}
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_cancel_stock_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to cancel stock request'}), 500


# ===================== ADMIN DELIVERED CREDENTIAL REVIEW =====================
@admin_requests_bp.route('/stock-requests/<request_id>/credentials', methods=['GET'])
@admin_token_required
def admin_get_request_credentials(current_admin, request_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT id FROM admin_stock_requests WHERE id = %s', (request_id,))
            if not cursor.fetchone():
                return jsonify({'success': False, 'message': 'Stock request not found'}), 404
            cursor.execute('''
                SELECT * FROM product_credentials
                WHERE admin_request_id = %s ORDER BY batch_number, created_at
            ''', (request_id,))
            credentials = [credential_summary(c) for c in cursor.fetchall()]
            return jsonify({'success': True, 'message': 'Credentials fetched', 'data': {'credentials': credentials}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in admin_get_request_credentials: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch credentials'}), 500


@admin_requests_bp.route('/stock-requests/<request_id>/credentials/<credential_id>/decrypt', methods=['POST'])
@admin_token_required
def admin_decrypt_credential(current_admin, request_id, credential_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            credential = fetch_request_credential(cursor, request_id, credential_id)
            if not credential:
                return jsonify({'success': False, 'message': 'Credential not found'}), 404
            try:
                payload = decrypt_json(credential['payload_encrypted'])
            except DecryptionError as e:
                logger.error(f"Could not decrypt credential {credential_id}: {e}")
                return jsonify({'success': False, 'message': 'Failed to decrypt credential'}), 500

            write_audit(cursor, 'credential_audit', credential_id=credential_id, product_id=credential['product_id'],
                        vendor_id=credential['vendor_id'], action='decrypted', actor_id=current_admin['email'],
                        actor_type='admin', details={'requestId': request_id})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error decrypting credential: {e}")
            return jsonify({'success': False, 'message': 'Failed to decrypt credential'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Credential decrypted',
            'data': {'credentialId': credential_id, 'credential': payload}
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_decrypt_credential: {e}")
        return jsonify({'success': False, 'message': 'Failed to decrypt credential'}), 500


@admin_requests_bp.route('/stock-requests/<request_id>/credentials/<credential_id>/approve', methods=['POST'])
@admin_token_required
def admin_approve_credential(current_admin, request_id, credential_id):
    """
    Accepts a delivered credential: its units are added to product stock and,
    for shared accounts, its profiles become purchasable.
    """
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            credential = fetch_request_credential(cursor, request_id, credential_id)
            if not credential:
                return jsonify({'success': False, 'message': 'Credential not found'}), 404
            if credential['review_status'] != 'pending' or not credential['is_valid']:
                return jsonify({
                    'success': False,
                    'message': f"Credential is already {credential['review_status']}"
                }), 409

            cursor.execute('''
                UPDATE product_credentials SET review_status = 'approved'
                WHERE id = %s AND review_status = 'pending' AND is_valid = TRUE
            ''', (credential_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                return _conflict()

            if credential['credential_type'] == 'account_share':
                try:
                    payload = decrypt_json(credential['payload_encrypted'])
                except DecryptionError as e:
                    conn.rollback()
                    logger.error(f"Could not decrypt credential {credential_id}: {e}")
                    return jsonify({'success': False, 'message': 'Failed to decrypt credential'}), 500
                add_profiles_to_product(cursor, credential['product_id'], payload.get('profiles') or [],
                                        credential_id=credential_id)

            cursor.execute(
                'UPDATE products SET stock = stock + %s, version = version + 1 WHERE id = %s',
                (credential['available_count'], credential['product_id'])
            )
            write_audit(cursor, 'credential_audit', credential_id=credential_id, product_id=credential['product_id'],
                        vendor_id=credential['vendor_id'], action='approved', actor_id=current_admin['email'],
                        actor_type='admin', details={'units': credential['available_count'], 'requestId': request_id})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error approving credential: {e}")
            return jsonify({'success': False, 'message': 'Failed to approve credential'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Credential approved',
            'data': {'credentialId': credential_id, 'unitsAdded': credential['available_count']}
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_approve_credential: {e}")
        return jsonify({'success': False, 'message': 'Failed to approve credential'}), 500


@admin_requests_bp.route('/stock-requests/<request_id>/credentials/<credential_id>/reject', methods=['POST'])
@admin_token_required
def admin_reject_credential(current_admin, request_id, credential_id):
    """
    Invalidates a delivered credential and takes its units back off the
    request counter, so the vendor can deliver replacements.
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = clean_comment(data.get('reason'))
        if not reason:
            return jsonify({'success': False, 'message': 'A rejection reason is required'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            credential = fetch_request_credential(cursor, request_id, credential_id)
            if not credential:
                return jsonify({'success': False, 'message': 'Credential not found'}), 404
            if credential['review_status'] != 'pending' or not credential['is_valid']:
                return jsonify({
                    'success': False,
                    'message': f"Credential is already {credential['review_status']}"
                }), 409

            cursor.execute('SELECT * FROM admin_stock_requests WHERE id = %s', (request_id,))
            stock_request = cursor.fetchone()
            if not stock_request:
                return jsonify({'success': False, 'message': 'Stock request not found'}), 404

            progress = revert_fulfillment(
                stock_request['quantity_requested'], stock_request['quantity_fulfilled'], credential['total_count']
            )
            # cancelled and rejected requests keep their status; only the counter moves
            if stock_request['status'] in OPEN_STOCK_STATUSES or stock_request['status'] == FULFILLED:
                new_status = progress['status']
            else:
                new_status = stock_request['status']

            cursor.execute('''
                UPDATE product_credentials
                SET is_valid = FALSE, review_status = 'rejected', notes = %s, available_count = 0
                WHERE id = %s AND review_status = 'pending'
            ''', (reason, credential_id))
            if cursor.rowcount == 0:
                conn.rollback()
                return _conflict()

            cursor.execute('''
                UPDATE admin_stock_requests
                SET quantity_fulfilled = %s, status = %s, version = version + 1,
                    fulfilled_at = IF(%s = 'fulfilled', fulfilled_at, NULL),
                    fulfilled_by = IF(%s = 'fulfilled', fulfilled_by, NULL)
                WHERE id = %s AND version = %s
            ''', (progress['quantityFulfilled'], new_status, new_status, new_status,
                  request_id, stock_request['version']))
            if cursor.rowcount == 0:
                conn.rollback()
                return _conflict()

            write_audit(cursor, 'credential_audit', credential_id=credential_id, product_id=credential['product_id'],
                        vendor_id=credential['vendor_id'], action='rejected', actor_id=current_admin['email'],
                        actor_type='admin', details={'reason': reason, 'requestId': request_id})
            write_audit(cursor, 'stock_request_audit', request_id=request_id, vendor_id=credential['vendor_id'],
                        product_id=credential['product_id'], action='credential_rejected',
                        actor_id=current_admin['email'], actor_type='admin',
                        details={
                            'credentialId': credential_id,
                            'withdrawn': credential['total_count'],
                            'quantityFulfilled': progress['quantityFulfilled'],
                            'reason': reason
                        })
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error rejecting credential: {e}")
            return jsonify({'success': False, 'message': 'Failed to reject credential'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Credential rejected',
            'data': {
                'credentialId': credential_id,
                'requestStatus': new_status,
                'quantityFulfilled': progress['quantityFulfilled'],
                'remainingQuantity': progress['remainingQuantity']
            }
        }), 200

    except Exception as e:
        logger.error(f"Error in admin_reject_credential: {e}")
        return jsonify({'success': False, 'message': 'Failed to reject credential'}), 500
