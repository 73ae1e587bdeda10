import json
import logging

from flask import Blueprint, jsonify, request

from credentials import unit_count
from encryption import EncryptionError
from utils import (
    get_db_connection, db_unavailable, vendor_token_required, get_pagination, count_rows, status_counts,
    serialize_product_request, serialize_stock_request, save_upload, remove_uploads, UploadError, new_id, utcnow,
    write_audit, fetch_audit
)
from vendor_products import (
    ValidationError, PROVIDERS, SERVICE_TYPES, fetch_vendor_product, is_product_approved,
    read_credential_upload, store_credential_batch, public_credential_summary
)
from workflow import (
    PRODUCT_REQUEST_STATUSES, STOCK_REQUEST_STATUSES, OPEN_STOCK_STATUSES, PENDING_REVIEW, FULFILLED,
    WorkflowError, InvalidTransition, resubmit_transition, apply_fulfillment, remaining_quantity,
    check_vendor_rejectable, clean_comment
)

logger = logging.getLogger(__name__)
vendor_requests_bp = Blueprint('vendor_requests', __name__)

ATTACHMENT_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp', 'pdf'}
ATTACHMENT_MAX_BYTES = 5 * 1024 * 1024
MAX_ATTACHMENTS = 5


def parse_plans(raw):
    """Plans arrive as a list (JSON body) or a JSON string (multipart form)."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError('Invalid plans format')
    if not isinstance(raw, list) or not raw:
        raise ValidationError('At least one plan is required')
    plans = []
    for plan in raw:
        if not isinstance(plan, dict):
            raise ValidationError('Invalid plans format')
        try:
            duration = int(plan.get('durationDays'))
            price = float(plan.get('price'))
        except (TypeError, ValueError):
            raise ValidationError('Each plan needs numeric durationDays and price')
        if duration < 1:
            raise ValidationError('Plan durationDays must be at least 1')
        if price < 0:
            raise ValidationError('Plan price cannot be negative')
        plans.append({'durationDays': duration, 'price': price, 'currency': plan.get('currency') or 'USD'})
    return plans


def _non_negative_int(value, field):
    if value in (None, ''):
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if number < 0:
        raise ValidationError(f'{field} cannot be negative')
    return number


def validate_product_request(body):
    title = (body.get('title') or '').strip()
    if not title:
        raise ValidationError('title is required')
    if body.get('provider') not in PROVIDERS:
        raise ValidationError('Invalid provider')
    if body.get('serviceType') not in SERVICE_TYPES:
        raise ValidationError('Invalid serviceType')
    return {
        'title': title,
        'provider': body['provider'],
        'service_type': body['serviceType'],
        'plans': json.dumps(parse_plans(body.get('plans'))),
        'stock': _non_negative_int(body.get('stock'), 'stock'),
        'warranty_days': _non_negative_int(body.get('warrantyDays'), 'warrantyDays'),
        'replacement_policy': (body.get('replacementPolicy') or '').strip(),
        'rules': (body.get('rules') or '').strip(),
        'description': (body.get('description') or '').strip(),
    }


def save_attachments(vendor_id, existing=0):
    """Save the request's attachments; all or nothing."""
    files = [f for f in request.files.getlist('attachments') if f and f.filename]
    if existing + len(files) > MAX_ATTACHMENTS:
        raise UploadError(f'At most {MAX_ATTACHMENTS} attachments are allowed')
    saved = []
    try:
        for f in files:
            saved.append(save_upload(f, 'product-requests', ATTACHMENT_EXTENSIONS, ATTACHMENT_MAX_BYTES, vendor_id))
    except Exception:
        remove_uploads(saved)
        raise
    return saved


def fetch_vendor_stock_request(cursor, request_id, vendor_id):
    cursor.execute('''
        SELECT r.*, p.title AS product_title, p.provider AS product_provider,
               p.service_type AS product_service_type
        FROM admin_stock_requests r
        JOIN products p ON p.id = r.product_id
        WHERE r.id = %s AND r.vendor_id = %s
    ''', (request_id, vendor_id))
    return cursor.fetchone()


# ===================== VENDOR PRODUCT REQUESTS =====================
@vendor_requests_bp.route('/products/requests', methods=['POST'])
@vendor_token_required
def create_product_request(current_vendor):
    try:
        body = request.form.to_dict() if request.form else (request.get_json(silent=True) or {})
        try:
            values = validate_product_request(body)
            attachments = save_attachments(current_vendor['id'])
        except (ValidationError, UploadError) as e:
            return jsonify({'success': False, 'message': str(e)}), 400

        request_id = new_id()
        conn = get_db_connection()
        if conn is None:
            remove_uploads(attachments)
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('''
                INSERT INTO product_requests
                (id, vendor_id, title, provider, service_type, plans, stock, warranty_days,
                 replacement_policy, rules, description, attachments, status)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ''', (
                request_id, current_vendor['id'], values['title'], values['provider'], values['service_type'],
                values['plans'], values['stock'], values['warranty_days'], values['replacement_policy'],
                values['rules'], values['description'], json.dumps(attachments), PENDING_REVIEW
            ))
            write_audit(cursor, 'product_request_audit', request_id=request_id, vendor_id=current_vendor['id'],
                        action='submitted', actor_id=current_vendor['primary_email'], new_status=PENDING_REVIEW)
            cursor.execute('SELECT * FROM product_requests WHERE id = %s', (request_id,))
            created = cursor.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            remove_uploads(attachments)
            logger.error(f"Error creating product request: {e}")
            return jsonify({'success': False, 'message': 'Failed to submit product request'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Product request {request_id} submitted by vendor {current_vendor['id']}")
        return jsonify({
            'success': True,
            'message': 'Product request submitted successfully',
            'data': {'request': serialize_product_request(created)}
        }), 201

    except Exception as e:
        logger.error(f"Error in create_product_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to submit product request'}), 500


@vendor_requests_bp.route('/products/requests', methods=['GET'])
@vendor_token_required
def get_product_requests(current_vendor):
    try:
        page, limit, offset = get_pagination(default_limit=20)
        where = 'vendor_id = %s'
        params = [current_vendor['id']]
        status = request.args.get('status')
        if status:
            where += ' AND status = %s'
            params.append(status)

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                f'SELECT * FROM product_requests WHERE {where} ORDER BY created_at DESC LIMIT %s OFFSET %s',
                (*params, limit, offset)
            )
            requests_ = [serialize_product_request(r) for r in cursor.fetchall()]
            total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM product_requests WHERE {where}', tuple(params))
            counts = status_counts(cursor, 'product_requests', PRODUCT_REQUEST_STATUSES,
                                   'vendor_id = %s', (current_vendor['id'],))
            return jsonify({
                'success': True,
                'message': 'Product requests fetched',
                'data': {'requests': requests_, 'total': total, 'page': page, 'limit': limit, 'counts': counts}
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_product_requests: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch product requests'}), 500


@vendor_requests_bp.route('/products/requests/<request_id>', methods=['GET'])
@vendor_token_required
def get_product_request(current_vendor, request_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT * FROM product_requests WHERE id = %s AND vendor_id = %s',
                           (request_id, current_vendor['id']))
            row = cursor.fetchone()
            if not row:
                return jsonify({'success': False, 'message': 'Product request not found'}), 404
            return jsonify({
                'success': True,
                'message': 'Product request fetched',
                'data': {'request': serialize_product_request(row)}
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_product_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch product request'}), 500


@vendor_requests_bp.route('/products/requests/<request_id>/resubmit', methods=['PUT'])
@vendor_token_required
def resubmit_product_request(current_vendor, request_id):
    """
    Sends a request back to review after the admin asked for changes.
    Any product fields supplied replace the stored ones.
    """
    try:
        body = request.form.to_dict() if request.form else (request.get_json(silent=True) or {})

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        added = []
        try:
            cursor.execute('SELECT * FROM product_requests WHERE id = %s AND vendor_id = %s',
                           (request_id, current_vendor['id']))
            row = cursor.fetchone()
            if not row:
                return jsonify({'success': False, 'message': 'Product request not found'}), 404

            try:
                new_status = resubmit_transition(row['status'])
                merged = {
                    'title': row['title'], 'provider': row['provider'], 'serviceType': row['service_type'],
                    'plans': row['plans'], 'stock': row['stock'], 'warrantyDays': row['warranty_days'],
                    'replacementPolicy': row['replacement_policy'], 'rules': row['rules'],
                    'description': row['description'],
                }
                merged.update({k: v for k, v in body.items() if k in merged})
                values = validate_product_request(merged)
                existing = json.loads(row['attachments'] or '[]')
                added = save_attachments(current_vendor['id'], existing=len(existing))
                attachments = existing + added
            except WorkflowError as e:
                return jsonify({'success': False, 'message': e.message}), e.status_code
            except (ValidationError, UploadError) as e:
                return jsonify({'success': False, 'message': str(e)}), 400

            cursor.execute('''
                UPDATE product_requests
                SET title = %s, provider = %s, service_type = %s, plans = %s, stock = %s, warranty_days = %s,
                    replacement_policy = %s, rules = %s, description = %s, attachments = %s,
                    status = %s, version = version + 1
                WHERE id = %s AND status = %s AND version = %s
            ''', (
                values['title'], values['provider'], values['service_type'], values['plans'], values['stock'],
                values['warranty_days'], values['replacement_policy'], values['rules'], values['description'],
                json.dumps(attachments), new_status, request_id, row['status'], row['version']
            ))
            if cursor.rowcount == 0:
                conn.rollback()
                remove_uploads(added)
                return jsonify({'success': False, 'message': 'Request was modified concurrently, please retry'}), 409

            write_audit(cursor, 'product_request_audit', request_id=request_id, vendor_id=current_vendor['id'],
                        action='resubmitted', actor_id=current_vendor['primary_email'],
                        previous_status=row['status'], new_status=new_status)
            cursor.execute('SELECT * FROM product_requests WHERE id = %s', (request_id,))
            updated = cursor.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            remove_uploads(added)
            logger.error(f"Error resubmitting product request: {e}")
            return jsonify({'success': False, 'message': 'Failed to resubmit product request'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Product request resubmitted for review',
            'data': {'request': serialize_product_request(updated)}
        }), 200

    except Exception as e:
        logger.error(f"Error in resubmit_product_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to resubmit product request'}), 500


# ===================== VENDOR ADMIN STOCK REQUESTS =====================
@vendor_requests_bp.route('/admin-requests', methods=['GET'])
@vendor_token_required
def get_admin_requests(current_vendor):
    try:
        page, limit, offset = get_pagination(default_limit=20)
        where = 'r.vendor_id = %s'
        params = [current_vendor['id']]
        status = request.args.get('status')
        if status:
            where += ' AND r.status = %s'
            params.append(status)

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(f'''
                SELECT r.*, p.title AS product_title, p.provider AS product_provider
                FROM admin_stock_requests r
                JOIN products p ON p.id = r.product_id
                WHERE {where}
                ORDER BY r.created_at DESC
                LIMIT %s OFFSET %s
            ''', (*params, limit, offset))
            requests_ = [serialize_stock_request(r) for r in cursor.fetchall()]
            total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM admin_stock_requests r WHERE {where}',
                               tuple(params))
            counts = status_counts(cursor, 'admin_stock_requests', STOCK_REQUEST_STATUSES,
                                   'vendor_id = %s', (current_vendor['id'],))
            return jsonify({
                'success': True,
                'message': 'Admin requests fetched',
                'data': {'requests': requests_, 'total': total, 'page': page, 'limit': limit, 'counts': counts}
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_admin_requests: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch admin requests'}), 500


@vendor_requests_bp.route('/admin-requests/<request_id>', methods=['GET'])
@vendor_token_required
def get_admin_request(current_vendor, request_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            row = fetch_vendor_stock_request(cursor, request_id, current_vendor['id'])
            if not row:
                return jsonify({'success': False, 'message': 'Request not found'}), 404
            data = serialize_stock_request(row)
            data['auditLog'] = fetch_audit(cursor, 'stock_request_audit', request_id)
            return jsonify({'success': True, 'message': 'Admin request fetched', 'data': {'request': data}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_admin_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch admin request'}), 500


@vendor_requests_bp.route('/admin-requests/<request_id>/fulfill', methods=['GET'])
@vendor_token_required
def get_fulfill_info(current_vendor, request_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            row = fetch_vendor_stock_request(cursor, request_id, current_vendor['id'])
            if not row or row['status'] not in OPEN_STOCK_STATUSES:
                return jsonify({'success': False, 'message': 'Request not found or already fulfilled'}), 404
            product = fetch_vendor_product(cursor, row['product_id'], current_vendor['id'])
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            if not is_product_approved(product):
                return jsonify({'success': False, 'message': 'Product must be approved before fulfilling requests'}), 403

            remaining = remaining_quantity(row['quantity_requested'], row['quantity_fulfilled'])
            if remaining <= 0:
                return jsonify({'success': False, 'message': 'Request is already fully fulfilled'}), 400

            return jsonify({
                'success': True,
                'message': 'Fulfilment details',
                'data': {
                    'request': serialize_stock_request(row),
                    'product': {
                        'id': product['id'],
                        'title': product['title'],
                        'serviceType': product['service_type'],
                        'provider': product['provider']
                    },
                    'remainingQuantity': remaining
                }
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_fulfill_info: {e}")
        return jsonify({'success': False, 'message': 'Failed to get request details'}), 500


@vendor_requests_bp.route('/admin-requests/<request_id>/fulfill', methods=['POST'])
@vendor_requests_bp.route('/requests/<request_id>/fulfill', methods=['POST'])
@vendor_token_required
def fulfill_admin_request(current_vendor, request_id):
    """
    Upload credentials against a stock request.

    The credential rows and the counter update share one transaction; the
    counter update only applies if the request version is unchanged.
    """
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            row = fetch_vendor_stock_request(cursor, request_id, current_vendor['id'])
            if not row:
                return jsonify({'success': False, 'message': 'Request not found'}), 404
            if row['status'] not in OPEN_STOCK_STATUSES:
                return jsonify({'success': False, 'message': f"Request is already {row['status']}"}), 409

            product = fetch_vendor_product(cursor, row['product_id'], current_vendor['id'])
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            if not is_product_approved(product):
                return jsonify({'success': False, 'message': 'Product must be approved before fulfilling requests'}), 403

            try:
                parsed, errors = read_credential_upload(product)
            except UploadError as e:
                return jsonify({'success': False, 'message': str(e)}), 400
            if not parsed:
                return jsonify({'success': False, 'message': 'No valid credentials to upload', 'errors': errors}), 400

            delivered = sum(unit_count(c, product['service_type']) for c in parsed)
            try:
                progress = apply_fulfillment(row['quantity_requested'], row['quantity_fulfilled'], delivered)
            except WorkflowError as e:
                return jsonify({'success': False, 'message': e.message}), e.status_code

            saved, _ = store_credential_batch(cursor, product, current_vendor, parsed, admin_request_id=request_id)

            done = progress['status'] == FULFILLED
            cursor.execute('''
                UPDATE admin_stock_requests
                SET quantity_fulfilled = %s, status = %s, version = version + 1,
                    fulfilled_at = %s, fulfilled_by = %s
                WHERE id = %s AND version = %s
            ''', (
                progress['quantityFulfilled'], progress['status'],
                utcnow() if done else None, current_vendor['primary_email'] if done else None,
                request_id, row['version']
            ))
            if cursor.rowcount == 0:
                conn.rollback()
                return jsonify({
                    'success': False,
                    'message': 'Request was updated by another submission, please reload and retry'
                }), 409

            write_audit(cursor, 'stock_request_audit', request_id=request_id, vendor_id=current_vendor['id'],
                        product_id=product['id'], action=progress['status'],
                        actor_id=current_vendor['primary_email'], actor_type='vendor',
                        details={
                            'delivered': delivered,
                            'quantityFulfilled': progress['quantityFulfilled'],
                            'batchNumber': saved[0]['batchNumber'],
                            'credentialIds': [c['id'] for c in saved]
                        })
            conn.commit()
        except EncryptionError as e:
            conn.rollback()
            logger.error(f"Error encrypting credentials for request {request_id}: {e}")
            return jsonify({'success': False, 'message': 'Failed to secure credentials'}), 500
        except Exception as e:
            conn.rollback()
            logger.error(f"Error fulfilling admin request: {e}")
            return jsonify({'success': False, 'message': 'Failed to fulfill request'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Stock request {request_id}: {delivered} unit(s) delivered, now {progress['status']}")
        body = {
            'success': True,
            'message': f'Delivered {delivered} unit(s)',
            'data': {
                'requestId': request_id,
                'status': progress['status'],
                'quantityFulfilled': progress['quantityFulfilled'],
                'remainingQuantity': progress['remainingQuantity'],
                'credentials': public_credential_summary(saved)
            }
        }
        if errors:
            body['errors'] = errors
        return jsonify(body), 200

    except Exception as e:
        logger.error(f"Error in fulfill_admin_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to fulfill request'}), 500


@vendor_requests_bp.route('/admin-requests/<request_id>/reject', methods=['POST'])
@vendor_token_required
def reject_admin_request(current_vendor, request_id):
    try:
        data = request.get_json(silent=True) or {}
        reason = clean_comment(data.get('reason'))

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            row = fetch_vendor_stock_request(cursor, request_id, current_vendor['id'])
            if not row:
                return jsonify({'success': False, 'message': 'Request not found'}), 404
            try:
                check_vendor_rejectable(row['status'])
            except InvalidTransition as e:
                return jsonify({'success': False, 'message': e.message}), e.status_code

            notes = row['notes'] or ''
            if reason:
                notes = f"{notes}\nRejected by vendor: {reason}".strip()
            cursor.execute('''
                UPDATE admin_stock_requests
                SET status = 'rejected', notes = %s, version = version + 1
                WHERE id = %s AND status = 'requested' AND version = %s
            ''', (notes, request_id, row['version']))
            if cursor.rowcount == 0:
                conn.rollback()
                return jsonify({'success': False, 'message': 'Request was modified concurrently, please retry'}), 409

            write_audit(cursor, 'stock_request_audit', request_id=request_id, vendor_id=current_vendor['id'],
                        product_id=row['product_id'], action='rejected', actor_id=current_vendor['primary_email'],
                        actor_type='vendor', details={'reason': reason})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error rejecting admin request: {e}")
            return jsonify({'success': False, 'message': 'Failed to reject request'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Request rejected',
            'data': {'requestId': request_id, 'status': 'rejected'}
        }), 200

    except Exception as e:
        logger.error(f"Error in reject_admin_request: {e}")
        return jsonify({'success': False, 'message': 'Failed to reject request'}), 500
