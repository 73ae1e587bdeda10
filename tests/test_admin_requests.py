import json

import pytest

from conftest import ADMIN_EMAIL, make_product, make_stock_request
from encryption import encrypt_json

PRODUCT_REQUEST = 'SELECT * FROM product_requests WHERE id = %s'
PLANS = [{'durationDays': 90, 'price': 12.5, 'currency': 'USD'}, {'durationDays': 30, 'price': 5}]


def product_request(**overrides):
    row = {
        'id': 'pr-1', 'vendor_id': 'vendor-1', 'title': 'HBO Max', 'provider': 'other',
        'service_type': 'account_share', 'plans': json.dumps(PLANS), 'stock': 0, 'warranty_days': 7,
        'replacement_policy': 'Swap within 7 days', 'rules': '', 'description': '', 'attachments': '[]',
        'status': 'pending_review', 'version': 4
    }
    row.update(overrides)
    return row


def test_admin_login(client, db):
    bad = client.post('/api/admin/login', json={'username': 'admin', 'password': 'guess'})
    assert bad.status_code == 401

    resp = client.post('/api/admin/login', json={'username': 'admin', 'password': 'correct-admin-pass'})
    assert resp.status_code == 200
    assert resp.get_json()['data']['admin']['email'] == ADMIN_EMAIL
    assert any(c.startswith('adminToken=') for c in resp.headers.getlist('Set-Cookie'))


def test_admin_routes_need_admin_token(client, db, vendor_headers):
    assert client.get('/api/admin/product-requests').status_code == 401
    assert client.get('/api/admin/product-requests', headers=vendor_headers).status_code == 403


@pytest.mark.parametrize('action', ['reject', 'request-changes'])
@pytest.mark.parametrize('body', [{}, {'comment': '   '}])
def test_comment_required(client, db, admin_headers, action, body):
    db.when(PRODUCT_REQUEST, rows=[product_request()])
    resp = client.post(f'/api/admin/product-requests/pr-1/{action}', headers=admin_headers, json=body)
    assert resp.status_code == 400
    assert not db.statements('UPDATE product_requests')


def test_review_of_finished_request_conflicts(client, db, admin_headers):
    db.when(PRODUCT_REQUEST, rows=[product_request(status='approved')])
    resp = client.post('/api/admin/product-requests/pr-1/approve', headers=admin_headers, json={})
    assert resp.status_code == 409
    assert not db.statements('INSERT INTO products')


def test_review_lost_race(client, db, admin_headers):
    db.when(PRODUCT_REQUEST, rows=[product_request()])
    db.when('UPDATE product_requests', rowcount=0)
    resp = client.post('/api/admin/product-requests/pr-1/reject', headers=admin_headers,
                       json={'comment': 'Duplicate listing'})
    assert resp.status_code == 409
    assert db.rollbacks == 1
    assert db.commits == 0

    sql, params = db.statements('UPDATE product_requests')[0]
    assert 'WHERE id = %s AND status = %s AND version = %s' in sql
    assert params[-3:] == ('pr-1', 'pending_review', 4)


def test_request_changes(client, db, admin_headers):
    db.when(PRODUCT_REQUEST, rows=[product_request()])
    resp = client.post('/api/admin/product-requests/pr-1/request-changes', headers=admin_headers,
                       json={'comment': 'Add a clearer description'})
    assert resp.status_code == 200
    _, params = db.statements('UPDATE product_requests')[0]
    assert params[:3] == ('changes_requested', 'Add a clearer description', ADMIN_EMAIL)
    _, audit = db.statements('INSERT INTO product_request_audit')[0]
    assert 'changes_requested' in audit
    assert 'pending_review' in audit


def test_approve_creates_active_product(client, db, admin_headers):
    db.when(PRODUCT_REQUEST, rows=[product_request()])
    resp = client.post('/api/admin/product-requests/pr-1/approve', headers=admin_headers, json={})

    assert resp.status_code == 200
    product_id = resp.get_json()['data']['productId']
    sql, params = db.statements('INSERT INTO products')[0]
    assert "'active', 'approved'" in sql
    assert params[0] == product_id
    # first plan supplies duration, price and currency
    assert params[6:9] == (90, 12.5, 'USD')
    _, update = db.statements('UPDATE product_requests')[0]
    assert product_id in update
    assert db.commits == 1


def test_queue_filters(client, db, admin_headers):
    resp = client.get('/api/admin/product-requests?status=pending_review&provider=netflix&search=prem',
                      headers=admin_headers)
    assert resp.status_code == 200
    sql, params = db.statements('FROM product_requests r JOIN vendors v')[0]
    assert 'r.title LIKE %s' in sql
    assert params[:3] == ('pending_review', 'netflix', '%prem%')
    assert resp.get_json()['data']['counts']['pending_review'] == 0


def test_create_stock_request_validation(client, db, admin_headers):
    resp = client.post('/api/admin/vendors/vendor-1/stock-requests', headers=admin_headers,
                       json={'productId': 'prod-1', 'quantity': 0})
    assert resp.status_code == 400

    db.when('SELECT * FROM products WHERE id = %s AND vendor_id = %s',
            rows=[make_product(status='pending', admin_review_status='pending')])
    resp = client.post('/api/admin/vendors/vendor-1/stock-requests', headers=admin_headers,
                       json={'productId': 'prod-1', 'quantity': 5})
    assert resp.status_code == 400
    assert not db.statements('INSERT INTO admin_stock_requests')


def test_create_stock_request(client, db, admin_headers):
    db.when('SELECT * FROM products WHERE id = %s AND vendor_id = %s', rows=[make_product()])
    db.when('FROM admin_stock_requests r', rows=[make_stock_request(quantity_requested=5)])
    resp = client.post('/api/admin/vendors/vendor-1/stock-requests', headers=admin_headers,
                       json={'productId': 'prod-1', 'quantity': '5', 'notes': 'For the weekend'})

    assert resp.status_code == 201
    assert resp.get_json()['data']['request']['remainingQuantity'] == 5
    _, params = db.statements('INSERT INTO admin_stock_requests')[0]
    assert params[1:6] == (ADMIN_EMAIL, 'vendor-1', 'prod-1', 5, 'requested')


@pytest.mark.parametrize('status', ['fulfilled', 'cancelled'])
def test_cannot_cancel_closed_request(client, db, admin_headers, status):
    db.when('FROM admin_stock_requests r', rows=[make_stock_request(status=status)])
    resp = client.post('/api/admin/stock-requests/req-1/cancel', headers=admin_headers, json={})
    assert resp.status_code == 409


def test_cancel_partially_fulfilled_request(client, db, admin_headers):
    db.when('FROM admin_stock_requests r', rows=[make_stock_request(status='partially_fulfilled',
                                                                     quantity_fulfilled=1)])
    resp = client.post('/api/admin/stock-requests/req-1/cancel', headers=admin_headers, json={'reason': 'No longer needed'})
    assert resp.status_code == 200
    assert db.commits == 1


def credential_row(**overrides):
    row = {
        'id': 'cred-1', 'product_id': 'prod-1', 'vendor_id': 'vendor-1', 'credential_type': 'account_share',
        'payload_encrypted': None, 'profiles': '[{"profileName": "Main", "isAssigned": false}]',
        'account_email': 'shared@acct.test', 'total_count': 2, 'assigned_count': 0, 'available_count': 2,
        'batch_number': 1, 'admin_request_id': 'req-1', 'is_valid': True, 'review_status': 'pending'
    }
    row.update(overrides)
    return row


PAYLOAD = {
    'accountEmail': 'shared@acct.test', 'accountPassword': 'pw',
    'profiles': [{'profileName': 'Main', 'pin': '1111'}, {'profileName': 'Kids', 'pin': '2222'}]
}


def test_list_credentials_hides_payload(client, db, admin_headers):
    db.when('SELECT id FROM admin_stock_requests', rows=[{'id': 'req-1'}])
    db.when('FROM product_credentials WHERE admin_request_id', rows=[credential_row(payload_encrypted='aa:bb')])
    resp = client.get('/api/admin/stock-requests/req-1/credentials', headers=admin_headers)
    assert resp.status_code == 200
    cred = resp.get_json()['data']['credentials'][0]
    assert 'payloadEncrypted' not in cred
    assert cred['accountEmail'] == 'sh****@acct.test'


def test_decrypt_credential_is_audited(app, client, db, admin_headers):
    with app.app_context():
        token = encrypt_json(PAYLOAD)
    db.when('SELECT * FROM product_credentials WHERE id', rows=[credential_row(payload_encrypted=token)])
    resp = client.post('/api/admin/stock-requests/req-1/credentials/cred-1/decrypt', headers=admin_headers)

    assert resp.status_code == 200
    assert resp.get_json()['data']['credential'] == PAYLOAD
    _, audit = db.statements('INSERT INTO credential_audit')[0]
    assert 'decrypted' in audit


def test_approve_credential_adds_stock_and_profiles(app, client, db, admin_headers):
    with app.app_context():
        token = encrypt_json(PAYLOAD)
    db.when('SELECT * FROM product_credentials WHERE id', rows=[credential_row(payload_encrypted=token)])
    resp = client.post('/api/admin/stock-requests/req-1/credentials/cred-1/approve', headers=admin_headers)

    assert resp.status_code == 200
    assert len(db.statements('INSERT INTO product_profiles')) == 2
    _, params = db.statements('UPDATE products SET stock = stock + %s')[0]
    assert params == (2, 'prod-1')
    assert db.commits == 1


def test_approve_credential_twice(client, db, admin_headers):
    db.when('SELECT * FROM product_credentials WHERE id', rows=[credential_row(review_status='approved')])
    resp = client.post('/api/admin/stock-requests/req-1/credentials/cred-1/approve', headers=admin_headers)
    assert resp.status_code == 409


def test_reject_credential_needs_reason(client, db, admin_headers):
    resp = client.post('/api/admin/stock-requests/req-1/credentials/cred-1/reject', headers=admin_headers, json={})
    assert resp.status_code == 400


def test_reject_credential_rolls_counter_back(client, db, admin_headers):
    db.when('SELECT * FROM product_credentials WHERE id', rows=[credential_row()])
    db.when('SELECT * FROM admin_stock_requests WHERE id', rows=[
        make_stock_request(quantity_requested=3, quantity_fulfilled=3, status='fulfilled', version=6)
    ])
    resp = client.post('/api/admin/stock-requests/req-1/credentials/cred-1/reject', headers=admin_headers,
                       json={'reason': 'Password does not work'})

    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data['requestStatus'] == 'partially_fulfilled'
    assert data['quantityFulfilled'] == 1
    _, params = db.statements('UPDATE admin_stock_requests')[0]
    assert params[:2] == (1, 'partially_fulfilled')
    assert params[-2:] == ('req-1', 6)
    assert db.commits == 1


def test_reject_credential_version_conflict(client, db, admin_headers):
    db.when('SELECT * FROM product_credentials WHERE id', rows=[credential_row()])
    db.when('SELECT * FROM admin_stock_requests WHERE id', rows=[make_stock_request(quantity_fulfilled=2,
                                                                                    status='partially_fulfilled')])
    db.when('UPDATE admin_stock_requests', rowcount=0)
    resp = client.post('/api/admin/stock-requests/req-1/credentials/cred-1/reject', headers=admin_headers,
                       json={'reason': 'Expired'})
    assert resp.status_code == 409
    assert db.commits == 0
