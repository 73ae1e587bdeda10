import json
from datetime import datetime

import bcrypt
import pytest

from conftest import ADMIN_EMAIL, make_vendor
from encryption import decrypt_value


def audit_details(db, action):
    for _, params in db.statements('INSERT INTO vendor_audit'):
        if params[2] == action:
            return json.loads(params[4])
    return None


@pytest.mark.parametrize('username', ['admín', 'admin'])
def test_admin_login_non_ascii_is_rejected(client, db, username):
    resp = client.post('/api/admin/login', json={'username': username, 'password': 'pässwörd'})
    assert resp.status_code == 401


def test_dashboard_counts(client, db, admin_headers):
    db.when('SELECT status, COUNT(*) AS total FROM vendors', rows=[
        {'status': 'active', 'total': 3}, {'status': 'pending', 'total': 1}
    ])
    db.when('FROM admin_stock_requests WHERE status IN', rows=[{'total': 2}])
    db.when('SELECT COUNT(*) AS total FROM orders', rows=[{'total': 7}])
    resp = client.get('/api/admin/dashboard', headers=admin_headers)

    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data['vendors'] == {'total': 4, 'active': 3, 'pending': 1, 'suspended': 0, 'rejected': 0}
    assert data['productRequests']['total'] == 0
    assert data['openStockRequests'] == 2
    assert data['orders'] == 7


def test_create_vendor(app, client, db, admin_headers):
    db.when('SELECT * FROM vendors WHERE id', rows=[make_vendor(status='pending', initial_password_set=False,
                                                                 notes='Referred by partner')])
    resp = client.post('/api/admin/vendors', headers=admin_headers, json={
        'companyName': 'Stream Co', 'primaryEmail': ' Owner@StreamCo.test ', 'notes': 'Referred by partner'
    })

    assert resp.status_code == 201
    data = resp.get_json()['data']
    temp_password = data['temporaryPassword']
    assert len(temp_password) >= 12
    assert data['vendor']['notes'] == 'Referred by partner'
    assert 'passwordHash' not in data['vendor']

    _, params = db.statements('INSERT INTO vendors')[0]
    assert params[3] == 'owner@streamco.test'
    assert params[9] == 'pending'
    assert bcrypt.checkpw(temp_password.encode(), params[8].encode())

    assert audit_details(db, 'created')['email'] == 'owner@streamco.test'
    generated = audit_details(db, 'password_generated')
    assert temp_password not in json.dumps(generated)
    with app.app_context():
        assert decrypt_value(generated['passwordEncrypted']) == temp_password
    assert db.commits == 1


def test_create_vendor_duplicate_email(client, db, admin_headers):
    db.when('SELECT id FROM vendors WHERE primary_email', rows=[{'id': 'vendor-1'}])
    resp = client.post('/api/admin/vendors', headers=admin_headers,
                       json={'companyName': 'Stream Co', 'primaryEmail': 'owner@streamco.test'})
    assert resp.status_code == 409
    assert not db.statements('INSERT INTO vendors')


@pytest.mark.parametrize('body', [
    {'primaryEmail': 'a@b.test'},
    {'companyName': 'X', 'primaryEmail': 'not-an-email'},
    {'companyName': 'X', 'primaryEmail': 'a@b.test', 'status': 'deleted'},
])
def test_create_vendor_validation(client, db, admin_headers, body):
    resp = client.post('/api/admin/vendors', headers=admin_headers, json=body)
    assert resp.status_code == 400


def test_list_vendors_with_search(client, db, admin_headers):
    db.when('SELECT * FROM vendors WHERE', rows=[make_vendor(password_hash='$2b$secret')])
    db.when('SELECT COUNT(*) AS total FROM vendors', rows=[{'total': 1}])
    resp = client.get('/api/admin/vendors?status=active&search=stream', headers=admin_headers)

    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data['total'] == 1
    assert 'passwordHash' not in data['vendors'][0]
    sql, params = db.statements('SELECT * FROM vendors WHERE')[0]
    assert 'status = %s' in sql and 'company_name LIKE %s' in sql
    assert params[:4] == ('active', '%stream%', '%stream%', '%stream%')


def test_vendor_detail_hides_encrypted_passwords(client, db, admin_headers):
    db.when('SELECT * FROM vendors WHERE id', rows=[make_vendor()])
    db.when('SELECT COUNT(*) AS total FROM products WHERE vendor_id', rows=[{'total': 4}])
    db.when('FROM vendor_audit', rows=[
        {'id': 'a2', 'action': 'password_reset', 'actor_id': ADMIN_EMAIL,
         'details': json.dumps({'passwordEncrypted': 'aa:bb'}), 'created_at': datetime(2024, 1, 5)},
        {'id': 'a1', 'action': 'created', 'actor_id': ADMIN_EMAIL,
         'details': json.dumps({'status': 'pending'}), 'created_at': datetime(2024, 1, 1)},
    ])
    resp = client.get('/api/admin/vendors/vendor-1', headers=admin_headers)

    assert resp.status_code == 200
    vendor = resp.get_json()['data']['vendor']
    assert vendor['productCount'] == 4
    assert vendor['auditLog'][0]['details'] == {}
    assert vendor['auditLog'][1]['details'] == {'status': 'pending'}
    assert 'aa:bb' not in resp.get_data(as_text=True)


def test_vendor_detail_not_found(client, db, admin_headers):
    resp = client.get('/api/admin/vendors/vendor-9', headers=admin_headers)
    assert resp.status_code == 404


def test_change_vendor_status(client, db, admin_headers):
    db.when('SELECT status FROM vendors WHERE id', rows=[{'status': 'pending'}])
    resp = client.put('/api/admin/vendors/vendor-1/status', headers=admin_headers,
                      json={'status': 'suspended', 'reason': 'Chargebacks'})

    assert resp.status_code == 200
    assert resp.get_json()['data']['status'] == 'suspended'
    _, params = db.statements('UPDATE vendors SET status')[0]
    assert params == ('suspended', 'vendor-1')
    assert audit_details(db, 'status_changed') == {'from': 'pending', 'to': 'suspended', 'reason': 'Chargebacks'}


def test_change_vendor_status_validation(client, db, admin_headers):
    resp = client.put('/api/admin/vendors/vendor-1/status', headers=admin_headers, json={'status': 'gone'})
    assert resp.status_code == 400
    resp = client.put('/api/admin/vendors/vendor-9/status', headers=admin_headers, json={'status': 'active'})
    assert resp.status_code == 404


def test_reset_vendor_password(app, client, db, admin_headers):
    resp = client.post('/api/admin/vendors/vendor-1/reset-password', headers=admin_headers)

    assert resp.status_code == 200
    temp_password = resp.get_json()['data']['temporaryPassword']
    sql, params = db.statements('UPDATE vendors SET password_hash')[0]
    assert 'initial_password_set = FALSE' in sql
    assert bcrypt.checkpw(temp_password.encode(), params[0].encode())
    with app.app_context():
        assert decrypt_value(audit_details(db, 'password_reset')['passwordEncrypted']) == temp_password


def test_reset_password_unknown_vendor(client, db, admin_headers):
    db.when('UPDATE vendors SET password_hash', rowcount=0)
    resp = client.post('/api/admin/vendors/vendor-9/reset-password', headers=admin_headers)
    assert resp.status_code == 404
    assert not db.statements('INSERT INTO vendor_audit')


def test_update_vendor_without_changes(client, db, admin_headers):
    db.when('UPDATE vendors SET', rowcount=0)
    db.when('SELECT id FROM vendors WHERE id', rows=[{'id': 'vendor-1'}])
    db.when('SELECT * FROM vendors WHERE id', rows=[make_vendor()])
    resp = client.put('/api/admin/vendors/vendor-1', headers=admin_headers, json={'displayName': 'Stream Co'})
    assert resp.status_code == 200
    assert db.commits == 1
