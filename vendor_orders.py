import logging

from flask import Blueprint, jsonify, request

from utils import (
    get_db_connection, db_unavailable, vendor_token_required, get_pagination, count_rows,
    serialize_row, utcnow
)

logger = logging.getLogger(__name__)
vendor_orders_bp = Blueprint('vendor_orders', __name__)

ORDER_STATUSES = ('pending', 'in_progress', 'fulfilled', 'disputed', 'refunded', 'cancelled')
FULFILLMENT_STATUSES = ('pending', 'processing', 'completed', 'failed')


@vendor_orders_bp.route('/orders', methods=['GET'])
@vendor_token_required
def get_orders(current_vendor):
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
                f'SELECT * FROM orders WHERE {where} ORDER BY created_at DESC LIMIT %s OFFSET %s',
                (*params, limit, offset)
            )
            orders = [serialize_row(o) for o in cursor.fetchall()]
            total = count_rows(cursor, f'SELECT COUNT(*) AS total FROM orders WHERE {where}', tuple(params))
            pending = count_rows(
                cursor, "SELECT COUNT(*) AS total FROM orders WHERE vendor_id = %s AND status = 'pending'",
                (current_vendor['id'],)
            )
            cursor.execute(
                "SELECT COALESCE(SUM(total_amount), 0) AS revenue FROM orders "
                "WHERE vendor_id = %s AND payment_status = 'paid'",
                (current_vendor['id'],)
            )
            revenue_row = cursor.fetchone() or {}
            return jsonify({
                'success': True,
                'message': 'Orders fetched',
                'data': {
                    'orders': orders,
                    'total': total,
                    'page': page,
                    'limit': limit,
                    'pending': pending,
                    'revenue': float(revenue_row.get('revenue') or 0)
                }
            }), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_orders: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch orders'}), 500


@vendor_orders_bp.route('/orders/<order_id>', methods=['GET'])
@vendor_token_required
def get_order(current_vendor, order_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT * FROM orders WHERE id = %s AND vendor_id = %s', (order_id, current_vendor['id']))
            order = cursor.fetchone()
            if not order:
                return jsonify({'success': False, 'message': 'Order not found'}), 404
            return jsonify({'success': True, 'message': 'Order fetched', 'data': {'order': serialize_row(order)}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_order: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch order'}), 500


@vendor_orders_bp.route('/orders/<order_id>/fulfill', methods=['PUT'])
@vendor_token_required
def fulfill_order(current_vendor, order_id):
    try:
        data = request.get_json(silent=True) or {}
        status = data.get('status', 'fulfilled')
        fulfillment_status = data.get('fulfillmentStatus', 'completed' if status == 'fulfilled' else 'processing')
        if status not in ORDER_STATUSES:
            return jsonify({'success': False, 'message': 'Invalid order status'}), 400
        if fulfillment_status not in FULFILLMENT_STATUSES:
            return jsonify({'success': False, 'message': 'Invalid fulfillment status'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('''
                UPDATE orders
                SET status = %s, fulfillment_status = %s,
                    fulfillment_notes = COALESCE(%s, fulfillment_notes),
                    tracking_info = COALESCE(%s, tracking_info),
                    fulfilled_at = %s
                WHERE id = %s AND vendor_id = %s
            ''', (
                status, fulfillment_status, data.get('fulfillmentNotes'), data.get('trackingInfo'),
                utcnow() if status == 'fulfilled' else None, order_id, current_vendor['id']
            ))
            # A repeated update changes no rows, so existence comes from the re-read
            cursor.execute('SELECT * FROM orders WHERE id = %s AND vendor_id = %s', (order_id, current_vendor['id']))
            order = cursor.fetchone()
            if not order:
                conn.rollback()
                return jsonify({'success': False, 'message': 'Order not found'}), 404
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error fulfilling order: {e}")
            return jsonify({'success': False, 'message': 'Failed to update order'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({'success': True, 'message': 'Order updated', 'data': {'order': serialize_row(order)}}), 200

    except Exception as e:
        logger.error(f"Error in fulfill_order: {e}")
        return jsonify({'success': False, 'message': 'Failed to update order'}), 500
