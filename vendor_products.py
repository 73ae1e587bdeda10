import json
import logging
import time
import uuid

from flask import Blueprint, jsonify, request

from credentials import parse_credentials_csv, validate_manual_credentials, unit_count, mask_email
from encryption import encrypt_value, encrypt_json, EncryptionError
from utils import (
    get_db_connection, db_unavailable, vendor_token_required, get_pagination, count_rows,
    serialize_product, serialize_row, load_json, new_id, utcnow, write_audit, UploadError
)

logger = logging.getLogger(__name__)
vendor_products_bp = Blueprint('vendor_products', __name__)

SERVICE_TYPES = ('account_share', 'email_invite', 'license_key', 'other')
PROVIDERS = ('netflix', 'spotify', 'adobe', 'disney', 'hulu', 'amazon', 'apple', 'microsoft', 'other')
PRODUCT_STATUSES = ('draft', 'pending', 'active', 'inactive', 'archived')
WARRANTY_TYPES = ('full', 'limited', 'none')
CSV_MIMETYPES = ('text/csv', 'application/vnd.ms-excel', 'text/plain', 'application/csv')

# request field -> (column, kind)
PRODUCT_FIELDS = {
    'title': ('title', 'text'),
    'sku': ('sku', 'text'),
    'serviceType': ('service_type', SERVICE_TYPES),
    'provider': ('provider', PROVIDERS),
    'planDurationDays': ('plan_duration_days', 'positive_int'),
    'priceDecimal': ('price_decimal', 'amount'),
    'currency': ('currency', 'text'),
    'stock': ('stock', 'count'),
    'accountEmail': ('account_email', 'text'),
    'warrantyDays': ('warranty_days', 'count'),
    'warrantyType': ('warranty_type', WARRANTY_TYPES),
    'replacementPolicy': ('replacement_policy', 'text'),
    'rules': ('rules', 'text'),
    'status': ('status', PRODUCT_STATUSES),
    'description': ('description', 'text'),
}
REQUIRED_ON_CREATE = ('title', 'provider', 'planDurationDays', 'priceDecimal')


class ValidationError(ValueError):
    pass


def _coerce(field, kind, value):
    if isinstance(kind, tuple):
        if value not in kind:
            raise ValidationError(f'Invalid {field}: must be one of {", ".join(kind)}')
        return value
    if kind == 'text':
        return str(value).strip() if value is not None else None
    try:
        number = float(value) if kind == 'amount' else int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if kind == 'positive_int' and number < 1:
        raise ValidationError(f'{field} must be at least 1')
    if number < 0:
        raise ValidationError(f'{field} cannot be negative')
    return number


def validate_product_fields(data, creating):
    """Map a request body onto product columns. Unknown keys are ignored."""
    values = {}
    if creating:
        for field in REQUIRED_ON_CREATE:
            if data.get(field) in (None, ''):
                raise ValidationError(f'{field} is required')
    for field, (column, kind) in PRODUCT_FIELDS.items():
        if field in data:
            values[column] = _coerce(field, kind, data[field])
    if creating and not values.get('title'):
        raise ValidationError('title is required')
    return values


def generate_sku():
    return f"PRD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def is_product_approved(product):
    return product['status'] == 'active' or product['admin_review_status'] == 'approved'


def fetch_vendor_product(cursor, product_id, vendor_id, for_update=False):
    sql = 'SELECT * FROM products WHERE id = %s AND vendor_id = %s'
    if for_update:
        sql += ' FOR UPDATE'
    cursor.execute(sql, (product_id, vendor_id))
    return cursor.fetchone()


def fetch_product_profiles(cursor, product_id):
    cursor.execute('''
        SELECT id, profile_name, is_assigned, assigned_at
        FROM product_profiles WHERE product_id = %s ORDER BY created_at
    ''', (product_id,))
    return [serialize_row(p, bool_fields=('is_assigned',)) for p in cursor.fetchall()]


def add_profiles_to_product(cursor, product_id, profiles, credential_id=None):
    for p in profiles:
        cursor.execute('''
            INSERT INTO product_profiles (id, product_id, credential_id, profile_name, pin, is_assigned)
            VALUES (%s, %s, %s, %s, %s, FALSE)
        ''', (new_id(), product_id, credential_id, p['profileName'], p.get('pin')))


def read_credential_upload(product):
    """Parse credentials from a CSV upload (``csvFile``) or a manual JSON body.

    Returns (credentials, errors); raises UploadError for an unusable request.
    """
    csv_file = request.files.get('csvFile')
    if csv_file is not None and csv_file.filename:
        if not csv_file.filename.lower().endswith('.csv') and csv_file.mimetype not in CSV_MIMETYPES:
            raise UploadError('Invalid file type. Only CSV files are allowed.')
        try:
            text = csv_file.read().decode('utf-8-sig')
        except UnicodeDecodeError:
            raise UploadError('CSV file must be UTF-8 encoded')
        return parse_credentials_csv(text, product['service_type'], product['provider'])

    data = request.get_json(silent=True) or {}
    mode = data.get('mode', 'manual')
    credentials = data.get('credentials')
    if mode != 'manual' or credentials is None:
        raise UploadError('Invalid upload mode or missing credentials')
    if not isinstance(credentials, list):
        raise UploadError('Credentials must be an array')
    return validate_manual_credentials(credentials, product['service_type'], product['provider'])


def store_credential_batch(cursor, product, vendor, credentials, admin_request_id=None, review_status='pending'):
    """Encrypt and insert one batch of credentials for a product.

    Runs on the caller's cursor so the batch commits or rolls back with it.
    Returns (saved credential summaries, total units).
    """
    service_type = product['service_type']
    cursor.execute(
        'SELECT COALESCE(MAX(batch_number), 0) AS total FROM product_credentials WHERE product_id = %s',
        (product['id'],)
    )
    row = cursor.fetchone()
    batch_number = int(row['total'] if row else 0) + 1

    saved = []
    total_units = 0
    for cred in credentials:
        units = unit_count(cred, service_type)
        credential_id = new_id()
        profiles_meta = [{'profileName': p['profileName'], 'isAssigned': False} for p in cred.get('profiles', [])]
        account_email = cred.get('accountEmail')
        cursor.execute('''
            INSERT INTO product_credentials
            (id, product_id, vendor_id, credential_type, payload_encrypted, profiles, account_email,
             total_count, assigned_count, available_count, created_by, batch_number, admin_request_id, review_status)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 0, %s, %s, %s, %s, %s)
        ''', (
            credential_id, product['id'], vendor['id'], service_type, encrypt_json(cred),
            json.dumps(profiles_meta), account_email, units, units,
            vendor['primary_email'], batch_number, admin_request_id, review_status
        ))
        write_audit(cursor, 'credential_audit', credential_id=credential_id, product_id=product['id'],
                    vendor_id=vendor['id'], action='uploaded', actor_id=vendor['primary_email'],
                    actor_type='vendor', details={
                        'batchNumber': batch_number,
                        'units': units,
                        'accountEmail': mask_email(account_email),
                        'adminRequestId': admin_request_id
                    })
        total_units += units
        saved.append({
            'id': credential_id,
            'credentialType': service_type,
            'totalCount': units,
            'availableCount': units,
            'batchNumber': batch_number,
            'accountEmail': mask_email(account_email),
            'profiles': cred.get('profiles', [])
        })
    return saved, total_units


def public_credential_summary(saved):
    return [{k: v for k, v in c.items() if k != 'profiles'} for c in saved]


# ===================== VENDOR PRODUCTS =====================
@vendor_products_bp.route('/products', methods=['GET'])
@vendor_token_required
def get_products(current_vendor):
    try:
        page, limit, offset = get_pagination()
        where = ['vendor_id = %s']
        params = [current_vendor['id']]
        status = request.args.get('status')
        provider = request.args.get('provider')
        if status:
            where.append('status = %s')
            params.append(status)
        if provider:
            where.append('provider = %s')
            params.append(provider)
        clause = ' AND '.join(where)

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                f'SELECT * FROM products WHERE {clause} ORDER BY created_at DESC LIMIT %s OFFSET %s',
                (*params, limit, offset)
            )
            products = [serialize_product(p) for p in cursor.fetchall()]
            total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM products WHERE {clause}', tuple(params))
            active = count_rows(
                cursor,
                "SELECT COUNT(*) AS total FROM products WHERE vendor_id = %s AND status = 'active'",
                (current_vendor['id'],)
            )
            return jsonify({
                'success': True,
                'message': 'Products fetched',
                'data': {'products': products, 'total': total, 'active': active, 'page': page, 'limit': limit}
            }), 200
        except Exception as e:
            logger.error(f"Error fetching products: {e}")
            return jsonify({'success': False, 'message': 'Failed to fetch products'}), 500
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_products: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch products'}), 500


@vendor_products_bp.route('/products/<product_id>', methods=['GET'])
@vendor_token_required
def get_product_by_id(current_vendor, product_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            product = fetch_vendor_product(cursor, product_id, current_vendor['id'])
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            data = serialize_product(product)
            data['profiles'] = fetch_product_profiles(cursor, product_id)
            return jsonify({'success': True, 'message': 'Product fetched', 'data': {'product': data}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_product_by_id: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch product'}), 500


@vendor_products_bp.route('/products', methods=['POST'])
@vendor_token_required
def create_product(current_vendor):
    try:
        data = request.get_json(silent=True) or {}
        try:
            values = validate_product_fields(data, creating=True)
        except ValidationError as e:
            return jsonify({'success': False, 'message': str(e)}), 400

        # New products still need admin review, so they cannot go live directly
        values.setdefault('status', 'pending')
        if values['status'] == 'active':
            return jsonify({'success': False, 'message': 'Product must be approved before it can be activated'}), 403
        values.setdefault('service_type', 'account_share')
        values.setdefault('currency', 'USD')
        values['sku'] = values.get('sku') or generate_sku()
        values['account_password'] = encrypt_value(data.get('accountPassword'))

        product_id = new_id()
        columns = ['id', 'vendor_id', 'admin_review_status', *values.keys()]
        params = [product_id, current_vendor['id'], 'pending', *values.values()]

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                f"INSERT INTO products ({', '.join(columns)}) VALUES ({', '.join(['%s'] * len(columns))})",
                tuple(params)
            )
            conn.commit()
            cursor.execute('SELECT * FROM products WHERE id = %s', (product_id,))
            product = cursor.fetchone()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error creating product: {e}")
            return jsonify({'success': False, 'message': 'Failed to create product'}), 400
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Product created successfully',
            'data': {'product': serialize_product(product)}
        }), 201

    except EncryptionError as e:
        logger.error(f"Error encrypting product credentials: {e}")
        return jsonify({'success': False, 'message': 'Failed to secure account credentials'}), 500
    except Exception as e:
        logger.error(f"Error in create_product: {e}")
        return jsonify({'success': False, 'message': 'Failed to create product'}), 500


@vendor_products_bp.route('/products/<product_id>', methods=['PUT'])
@vendor_token_required
def update_product(current_vendor, product_id):
    try:
        data = request.get_json(silent=True) or {}
        try:
            values = validate_product_fields(data, creating=False)
        except ValidationError as e:
            return jsonify({'success': False, 'message': str(e)}), 400
        if data.get('accountPassword'):
            values['account_password'] = encrypt_value(data['accountPassword'])

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            product = fetch_vendor_product(cursor, product_id, current_vendor['id'])
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            if values.get('status') == 'active' and product['admin_review_status'] != 'approved':
                return jsonify({
                    'success': False,
                    'message': 'Product must be approved before it can be activated'
                }), 403

            if values:
                assignments = ', '.join(f'{column} = %s' for column in values)
                cursor.execute(
                    f'UPDATE products SET {assignments}, version = version + 1 WHERE id = %s AND vendor_id = %s',
                    (*values.values(), product_id, current_vendor['id'])
                )
                conn.commit()
            cursor.execute('SELECT * FROM products WHERE id = %s', (product_id,))
            product = cursor.fetchone()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error updating product: {e}")
            return jsonify({'success': False, 'message': 'Failed to update product'}), 400
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Product updated successfully',
            'data': {'product': serialize_product(product)}
        }), 200

    except EncryptionError as e:
        logger.error(f"Error encrypting product credentials: {e}")
        return jsonify({'success': False, 'message': 'Failed to secure account credentials'}), 500
    except Exception as e:
        logger.error(f"Error in update_product: {e}")
        return jsonify({'success': False, 'message': 'Failed to update product'}), 500


@vendor_products_bp.route('/products/<product_id>', methods=['DELETE'])
@vendor_token_required
def delete_product(current_vendor, product_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor()
        try:
            cursor.execute('DELETE FROM products WHERE id = %s AND vendor_id = %s', (product_id, current_vendor['id']))
            if cursor.rowcount == 0:
                conn.rollback()
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            conn.commit()
            return jsonify({'success': True, 'message': 'Product deleted successfully'}), 200
        except Exception as e:
            conn.rollback()
            logger.error(f"Error deleting product: {e}")
            return jsonify({'success': False, 'message': 'Failed to delete product'}), 500
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in delete_product: {e}")
        return jsonify({'success': False, 'message': 'Failed to delete product'}), 500


@vendor_products_bp.route('/products/<product_id>/upload-accounts', methods=['POST'])
@vendor_token_required
def upload_accounts(current_vendor, product_id):
    """
    Sets the shared account login and replaces the free profile slots.
    Profiles already sold to a customer are kept.
    """
    try:
        data = request.get_json(silent=True) or {}
        accounts = data.get('accounts') or []
        profiles = data.get('profiles') or []

        clean_profiles = []
        for p in profiles:
            name = (p.get('profileName') or '').strip() if isinstance(p, dict) else ''
            if not name:
                return jsonify({'success': False, 'message': 'Each profile needs a profileName'}), 400
            clean_profiles.append({'profileName': name, 'pin': (p.get('pin') or None)})

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            product = fetch_vendor_product(cursor, product_id, current_vendor['id'], for_update=True)
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            if product['service_type'] != 'account_share':
                return jsonify({'success': False, 'message': 'This endpoint is only for account_share products'}), 400

            account = accounts[0] if accounts else None
            if account and account.get('email') and account.get('password'):
                cursor.execute(
                    'UPDATE products SET account_email = %s, account_password = %s WHERE id = %s',
                    (account['email'].strip(), encrypt_value(account['password']), product_id)
                )

            if clean_profiles:
                cursor.execute(
                    'DELETE FROM product_profiles WHERE product_id = %s AND is_assigned = FALSE', (product_id,)
                )
                add_profiles_to_product(cursor, product_id, clean_profiles)
                cursor.execute(
                    'UPDATE products SET stock = %s, version = version + 1 WHERE id = %s',
                    (len(clean_profiles), product_id)
                )
            conn.commit()

            cursor.execute('SELECT * FROM products WHERE id = %s', (product_id,))
            result = serialize_product(cursor.fetchone())
            result['profiles'] = fetch_product_profiles(cursor, product_id)
        except Exception as e:
            conn.rollback()
            logger.error(f"Error uploading accounts: {e}")
            return jsonify({'success': False, 'message': 'Failed to upload accounts'}), 400
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Accounts uploaded successfully',
            'data': {'product': result}
        }), 200

    except Exception as e:
        logger.error(f"Error in upload_accounts: {e}")
        return jsonify({'success': False, 'message': 'Failed to upload accounts'}), 500


# ===================== VENDOR CREDENTIALS =====================
@vendor_products_bp.route('/products/<product_id>/credentials', methods=['POST'])
@vendor_token_required
def upload_credentials(current_vendor, product_id):
    """
    Stock upload outside an admin request: units go straight into product stock.
    """
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            product = fetch_vendor_product(cursor, product_id, current_vendor['id'], for_update=True)
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404
            if not is_product_approved(product):
                return jsonify({
                    'success': False,
                    'message': 'Product must be approved before loading credentials'
                }), 403

            try:
                parsed, errors = read_credential_upload(product)
            except UploadError as e:
                return jsonify({'success': False, 'message': str(e)}), 400
            if not parsed:
                return jsonify({'success': False, 'message': 'No valid credentials to upload', 'errors': errors}), 400

            saved, total_units = store_credential_batch(
                cursor, product, current_vendor, parsed, review_status='approved'
            )
            for cred in saved:
                if cred['profiles']:
                    add_profiles_to_product(cursor, product_id, cred['profiles'], credential_id=cred['id'])
            cursor.execute(
                'UPDATE products SET stock = stock + %s, version = version + 1 WHERE id = %s',
                (total_units, product_id)
            )
            conn.commit()
        except EncryptionError as e:
            conn.rollback()
            logger.error(f"Error encrypting credentials: {e}")
            return jsonify({'success': False, 'message': 'Failed to secure credentials'}), 500
        except Exception as e:
            conn.rollback()
            logger.error(f"Error uploading credentials: {e}")
            return jsonify({'success': False, 'message': 'Failed to upload credentials'}), 500
        finally:
            cursor.close()
            conn.close()

        body = {
            'success': True,
            'message': f'Successfully uploaded {len(saved)} credential(s)',
            'data': {
                'imported': len(saved),
                'totalCredentials': total_units,
                'credentials': public_credential_summary(saved)
            }
        }
        if errors:
            body['errors'] = errors
        return jsonify(body), 201

    except Exception as e:
        logger.error(f"Error in upload_credentials: {e}")
        return jsonify({'success': False, 'message': 'Failed to upload credentials'}), 500


@vendor_products_bp.route('/products/<product_id>/credentials', methods=['GET'])
@vendor_token_required
def get_credentials(current_vendor, product_id):
    """Batch metadata only; nothing is decrypted for the vendor."""
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            product = fetch_vendor_product(cursor, product_id, current_vendor['id'])
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404

            cursor.execute('''
                SELECT id, credential_type, total_count, assigned_count, available_count, batch_number,
                       account_email, profiles, review_status, admin_request_id, created_at
                FROM product_credentials
                WHERE product_id = %s AND vendor_id = %s AND is_valid = TRUE
                ORDER BY created_at DESC
            ''', (product_id, current_vendor['id']))
            credentials = []
            for row in cursor.fetchall():
                item = serialize_row(row, exclude=('profiles', 'account_email'))
                item['accountEmail'] = mask_email(row['account_email'])
                item['profiles'] = [
                    {'profileName': p.get('profileName'), 'isAssigned': bool(p.get('isAssigned'))}
                    for p in load_json(row['profiles'], []) or []
                ]
                credentials.append(item)
            return jsonify({'success': True, 'message': 'Credentials fetched', 'data': {'credentials': credentials}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_credentials: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch credentials'}), 500
