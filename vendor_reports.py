import csv
import io
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from flask import Blueprint, jsonify, request, send_file

from utils import get_db_connection, db_unavailable, vendor_token_required, utcnow

logger = logging.getLogger(__name__)
vendor_reports_bp = Blueprint('vendor_reports', __name__)

PLATFORM_FEE_RATE = Decimal('0.15')
RANGE_DAYS = {'7d': 7, '30d': 30, '90d': 90}
DEFAULT_RANGE_DAYS = 365
PAYOUT_INTERVAL_DAYS = 7
EXPORT_COLUMNS = ('Order Number', 'Date', 'Product', 'Quantity', 'Amount', 'Status')


class ReportRangeError(ValueError):
    pass


def money(value):
    return float(Decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def _parse_date(value, name):
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ReportRangeError(f'{name} must be an ISO date')


def report_window(args, now=None):
    """
    (start, end) for the report; ``end`` is exclusive and may be None.

    ``startDate``/``endDate`` win over ``range``. A date-only ``endDate`` covers
    that whole day. Unknown ``range`` values fall back to the last 365 days.
    """
    now = now or utcnow()
    start_value = args.get('startDate')
    end_value = args.get('endDate')
    if start_value or end_value:
        start = _parse_date(start_value, 'startDate') if start_value else None
        end = _parse_date(end_value, 'endDate') if end_value else None
        if end is not None and len(end_value) == 10:
            end += timedelta(days=1)
        if start and end and start >= end:
            raise ReportRangeError('startDate must be before endDate')
        return start, end
    days = RANGE_DAYS.get(args.get('range', '30d'), DEFAULT_RANGE_DAYS)
    return now - timedelta(days=days), None


def fetch_paid_orders(cursor, vendor_id, start=None, end=None):
    where = "vendor_id = %s AND payment_status = 'paid'"
    params = [vendor_id]
    if start is not None:
        where += ' AND created_at >= %s'
        params.append(start)
    if end is not None:
        where += ' AND created_at < %s'
        params.append(end)
    cursor.execute(
        'SELECT order_number, product_id, product_title, quantity, total_amount, status, created_at '
        f'FROM orders WHERE {where} ORDER BY created_at DESC',
        tuple(params)
    )
    return cursor.fetchall()


def summarize_sales(orders):
    total = sum((Decimal(str(o['total_amount'])) for o in orders), Decimal('0'))
    fee = total * PLATFORM_FEE_RATE

    by_product = {}
    for o in orders:
        entry = by_product.setdefault(o['product_id'], {
            'product': o['product_title'], 'quantity': 0, 'revenue': Decimal('0')
        })
        entry['quantity'] += int(o['quantity'] or 1)
        entry['revenue'] += Decimal(str(o['total_amount']))
    product_sales = sorted(by_product.values(), key=lambda p: p['revenue'], reverse=True)

    return {
        'totalSales': money(total),
        'totalOrders': len(orders),
        'platformFee': money(fee),
        'netPayout': money(total - fee),
        'productSales': [{**p, 'revenue': money(p['revenue'])} for p in product_sales],
        'orders': [{
            'orderNumber': o['order_number'],
            'date': o['created_at'].isoformat() if o['created_at'] else None,
            'amount': money(str(o['total_amount'])),
            'status': o['status'],
        } for o in orders],
    }


@vendor_reports_bp.route('/reports/sales', methods=['GET'])
@vendor_token_required
def sales_report(current_vendor):
    try:
        try:
            start, end = report_window(request.args)
        except ReportRangeError as e:
            return jsonify({'success': False, 'message': str(e)}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            orders = fetch_paid_orders(cursor, current_vendor['id'], start, end)
        finally:
            cursor.close()
            conn.close()

        report = summarize_sales(orders)
        report['startDate'] = start.isoformat() if start else None
        report['endDate'] = end.isoformat() if end else None
        return jsonify({'success': True, 'message': 'Sales report', 'data': report}), 200

    except Exception as e:
        logger.error(f"Error in sales_report: {e}")
        return jsonify({'success': False, 'message': 'Failed to build sales report'}), 500


@vendor_reports_bp.route('/reports/payouts', methods=['GET'])
@vendor_token_required
def payout_report(current_vendor):
    """Lifetime earnings; nothing is paid out yet, so the whole net amount is pending."""
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                "SELECT COALESCE(SUM(total_amount), 0) AS earnings FROM orders "
                "WHERE vendor_id = %s AND payment_status = 'paid'",
                (current_vendor['id'],)
            )
            row = cursor.fetchone() or {}
        finally:
            cursor.close()
            conn.close()

        earnings = Decimal(str(row.get('earnings') or 0))
        fees = earnings * PLATFORM_FEE_RATE
        return jsonify({
            'success': True,
            'message': 'Payout report',
            'data': {
                'totalEarnings': money(earnings),
                'platformFees': money(fees),
                'totalPayouts': 0,
                'pendingPayout': money(earnings - fees),
                'payoutSchedule': 'weekly',
                'nextPayoutDate': (utcnow() + timedelta(days=PAYOUT_INTERVAL_DAYS)).isoformat(),
                'payoutHistory': []
            }
        }), 200

    except Exception as e:
        logger.error(f"Error in payout_report: {e}")
        return jsonify({'success': False, 'message': 'Failed to build payout report'}), 500


@vendor_reports_bp.route('/reports/export', methods=['GET'])
@vendor_token_required
def export_report(current_vendor):
    try:
        if request.args.get('format', 'csv') != 'csv':
            return jsonify({'success': False, 'message': 'Only csv export is supported'}), 400
        try:
            start, end = report_window(request.args)
        except ReportRangeError as e:
            return jsonify({'success': False, 'message': str(e)}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            orders = fetch_paid_orders(cursor, current_vendor['id'], start, end)
        finally:
            cursor.close()
            conn.close()

        text = io.StringIO()
        writer = csv.writer(text)
        writer.writerow(EXPORT_COLUMNS)
        for o in orders:
            writer.writerow([
                o['order_number'],
                o['created_at'].strftime('%Y-%m-%d') if o['created_at'] else '',
                o['product_title'],
                o['quantity'],
                f"{Decimal(str(o['total_amount'])):.2f}",
                o['status'],
            ])

        buffer = io.BytesIO(text.getvalue().encode('utf-8'))
        return send_file(
            buffer,
            as_attachment=True,
            download_name=f"sales-report-{utcnow():%Y-%m-%d}.csv",
            mimetype='text/csv'
        )

    except Exception as e:
        logger.error(f"Error in export_report: {e}")
        return jsonify({'success': False, 'message': 'Failed to export report'}), 500
