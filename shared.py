# shared.py
import logging
import os
import time
import uuid
from datetime import datetime, timezone

import psutil
from flask import Blueprint, jsonify, request

from utils import get_db_connection, db_unavailable, get_pagination, count_rows, serialize_row, new_id, utcnow

logger = logging.getLogger(__name__)
shared_bp = Blueprint('shared', __name__)

STOREFRONT_COLUMNS = '''
    p.id, p.title, p.sku, p.service_type, p.provider, p.plan_duration_days, p.price_decimal,
    p.currency, p.stock, p.warranty_days, p.warranty_type, p.replacement_policy, p.rules,
    p.description, p.vendor_id, v.display_name AS vendor_name
'''
STARTED_AT = time.time()


def generate_order_number():
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def database_status():
    """Round-trip to the database; returns (ok, latency in ms)."""
    started = time.perf_counter()
    conn = get_db_connection()
    if conn is None:
        return False, None
    cursor = conn.cursor()
    try:
        cursor.execute('SELECT 1')
        cursor.fetchall()
        return True, round((time.perf_counter() - started) * 1000, 2)
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False, None
    finally:
        cursor.close()
        conn.close()


def system_metrics():
    try:
        memory = psutil.virtual_memory()
        process = psutil.Process(os.getpid())
        return {
            'cpuUsage': psutil.cpu_percent(interval=None),
            'memoryUsage': memory.percent,
            'diskUsage': psutil.disk_usage('/').percent,
            'processMemoryMb': round(process.memory_info().rss / 1024 / 1024, 2),
            'uptimeSeconds': int(time.time() - STARTED_AT)
        }
    except Exception as e:
        logger.warning(f"Error getting system metrics: {e}")
        return {}


# ===================== STOREFRONT =====================
@shared_bp.route('/products', methods=['GET'])
def get_storefront_products():
    try:
        page, limit, offset = get_pagination(default_limit=24)
        where = ["p.status = 'active'", 'p.stock > 0', "v.status = 'active'"]
        params = []
        provider = request.args.get('provider')
        service_type = request.args.get('serviceType')
        search = (request.args.get('search') or '').strip()
        if provider:
            where.append('p.provider = %s')
            params.append(provider)
        if service_type:
            where.append('p.service_type = %s')
            params.append(service_type)
        if search:
            where.append('(p.title LIKE %s OR p.description LIKE %s)')
            params.extend([f'%{search}%'] * 2)
        clause = ' AND '.join(where)

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(f'''
                SELECT {STOREFRONT_COLUMNS}
                FROM products p
                JOIN vendors v ON v.id = p.vendor_id
                WHERE {clause}
                ORDER BY p.created_at DESC
                LIMIT %s OFFSET %s
            ''', (*params, limit, offset))
            products = [serialize_row(p) for p in cursor.fetchall()]
            total = count_rows(
                cursor,
                f'SELECT COUNT(*) AS total FROM products p JOIN vendors v ON v.id = p.vendor_id WHERE {clause}',
                tuple(params)
            )
            return jsonify({
                'success': True,
                'message': 'Products fetched',
                'data': {'products': products, 'total': total, 'page': page, 'limit': limit}
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_storefront_products: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch products'}), 500


@shared_bp.route('/orders', methods=['POST'])
def create_order():
    """
    Buy one unit of a product.

    Stock is taken with a conditional decrement, and for shared accounts a free
    profile is claimed the same way, so two buyers never get the same unit.
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get('productId')
        customer_email = (data.get('customerEmail') or '').strip().lower()
        if not product_id or not customer_email:
            return jsonify({'success': False, 'message': 'productId and customerEmail are required'}), 400
        if '@' not in customer_email:
            return jsonify({'success': False, 'message': 'Invalid email address'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('''
                SELECT p.* FROM products p JOIN vendors v ON v.id = p.vendor_id
                WHERE p.id = %s AND p.status = 'active' AND v.status = 'active'
            ''', (product_id,))
            product = cursor.fetchone()
            if not product:
                return jsonify({'success': False, 'message': 'Product not found'}), 404

            cursor.execute('UPDATE products SET stock = stock - 1 WHERE id = %s AND stock > 0', (product_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                return jsonify({'success': False, 'message': 'Product is out of stock'}), 409

            profile_id = None
            if product['service_type'] == 'account_share':
                cursor.execute('''
                    SELECT id FROM product_profiles
                    WHERE product_id = %s AND is_assigned = FALSE
                    ORDER BY created_at LIMIT 1
                ''', (product_id,))
                profile = cursor.fetchone()
                if profile:
                    cursor.execute('''
                        UPDATE product_profiles SET is_assigned = TRUE, assigned_to = %s, assigned_at = %s
                        WHERE id = %s AND is_assigned = FALSE
                    ''', (customer_email, utcnow(), profile['id']))
                if not profile or cursor.rowcount == 0:
                    conn.rollback()
                    return jsonify({'success': False, 'message': 'Product is out of stock'}), 409
                profile_id = profile['id']

            order_id = new_id()
            order_number = generate_order_number()
            cursor.execute('''
                INSERT INTO orders
                (id, order_number, customer_email, vendor_id, product_id, product_title, quantity,
                 total_amount, currency, payment_method, profile_id, customer_notes)
                VALUES (%s, %s, %s, %s, %s, %s, 1, %s, %s, %s, %s, %s)
            ''', (
                order_id, order_number, customer_email, product['vendor_id'], product_id, product['title'],
                product['price_decimal'], product['currency'], data.get('paymentMethod'), profile_id,
                data.get('notes')
            ))
            conn.commit()
            cursor.execute('SELECT * FROM orders WHERE id = %s', (order_id,))
            order = cursor.fetchone()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error creating order: {e}")
            return jsonify({'success': False, 'message': 'Failed to place order'}), 500
        finally:
            cursor.close()
            conn.close()

        logger.info(f"Order {order_number} placed for product {product_id}")
        return jsonify({
            'success': True,
            'message': 'Order placed successfully',
            'data': {'order': serialize_row(order)}
        }), 201

    except Exception as e:
        logger.error(f"Error in create_order: {e}")
        return jsonify({'success': False, 'message': 'Failed to place order'}), 500


# ===================== SYSTEM =====================
@shared_bp.route('/system/health', methods=['GET'])
def system_health():
    db_ok, latency = database_status()
    return jsonify({
        'success': db_ok,
        'message': 'healthy' if db_ok else 'degraded',
        'data': {
            'status': 'healthy' if db_ok else 'degraded',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'database': {'connected': db_ok, 'latencyMs': latency},
            'system': system_metrics()
        }
    }), 200 if db_ok else 503
