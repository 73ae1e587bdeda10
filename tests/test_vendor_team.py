import json
from datetime import datetime

import bcrypt
import pytest

OWN_MEMBER = 'SELECT * FROM vendor_team WHERE id = %s AND vendor_id'


def make_member(**overrides):
    row = {
        'id': 'm-1', 'vendor_id': 'vendor-1', 'email': 'loader@streamco.test', 'display_name': 'Stock Loader',
        'role': 'loader', 'status': 'active', 'password_hash': '$2b$10$hash',
        'permissions': json.dumps({'canAddStock': True, 'canViewOrders': False}),
        'invited_by': 'owner@streamco.test', 'last_login': None, 'created_at': datetime(2024, 3, 1)
    }
    row.update(overrides)
    return row


def audit_actions(db):
    return [params[2] for _, params in db.statements('INSERT INTO vendor_audit')]


def test_list_team(client, db, vendor_headers):
    db.when('SELECT * FROM vendor_team WHERE vendor_id', rows=[make_member()])
    resp = client.get('/api/vendor/team', headers=vendor_headers)

    assert resp.status_code == 200
    member = resp.get_json()['data']['members'][0]
    assert member['displayName'] == 'Stock Loader'
    assert member['permissions']['canAddStock'] is True
    assert 'passwordHash' not in member
    _, params = db.statements('FROM vendor_team WHERE vendor_id')[0]
    assert params == ('vendor-1',)


def test_add_member_with_role_defaults(client, db, vendor_headers):
    db.when('SELECT * FROM vendor_team WHERE id', rows=[make_member(role='support')])
    resp = client.post('/api/vendor/team', headers=vendor_headers, json={
        'email': ' Support@StreamCo.test ', 'displayName': 'Support Desk', 'role': 'support',
        'permissions': {'canViewReports': True, 'canLaunchRockets': True}
    })

    assert resp.status_code == 201
    temp_password = resp.get_json()['data']['temporaryPassword']
    _, params = db.statements('INSERT INTO vendor_team')[0]
    assert params[1:5] == ('vendor-1', 'support@streamco.test', 'Support Desk', 'support')
    assert json.loads(params[5]) == {
        'canAddStock': False, 'canViewOrders': True, 'canFulfillOrders': True,
        'canManageProducts': False, 'canManageTeam': False, 'canViewReports': True
    }
    assert bcrypt.checkpw(temp_password.encode(), params[6].encode())
    assert params[7] == 'owner@streamco.test'
    assert audit_actions(db) == ['team_member_added']
    assert db.commits == 1


def test_add_member_duplicate_email(client, db, vendor_headers):
    db.when('SELECT id FROM vendor_team WHERE email', rows=[{'id': 'm-9'}])
    resp = client.post('/api/vendor/team', headers=vendor_headers,
                       json={'email': 'loader@streamco.test', 'displayName': 'Loader'})
    assert resp.status_code == 409
    assert not db.statements('INSERT INTO vendor_team')


@pytest.mark.parametrize('body', [
    {'email': 'a@b.test'},
    {'email': 'nope', 'displayName': 'X'},
    {'email': 'a@b.test', 'displayName': 'X', 'role': 'janitor'},
    {'email': 'a@b.test', 'displayName': 'X', 'permissions': ['canAddStock']},
])
def test_add_member_validation(client, db, vendor_headers, body):
    resp = client.post('/api/vendor/team', headers=vendor_headers, json=body)
    assert resp.status_code == 400


def test_role_change_resets_permissions(client, db, vendor_headers):
    db.when(OWN_MEMBER, rows=[make_member()])
    db.when('SELECT * FROM vendor_team WHERE id', rows=[make_member(role='manager')])
    resp = client.put('/api/vendor/team/m-1', headers=vendor_headers,
                      json={'role': 'manager', 'permissions': {'canManageTeam': False}})

    assert resp.status_code == 200
    _, params = db.statements('UPDATE vendor_team')[0]
    assert params[:3] == ('Stock Loader', 'manager', 'active')
    permissions = json.loads(params[3])
    assert permissions['canViewReports'] is True
    assert permissions['canManageTeam'] is False
    assert params[-2:] == ('m-1', 'vendor-1')
    assert audit_actions(db) == ['team_member_updated']


def test_update_keeps_stored_permissions(client, db, vendor_headers):
    db.when(OWN_MEMBER, rows=[make_member()])
    resp = client.put('/api/vendor/team/m-1', headers=vendor_headers, json={'status': 'suspended'})

    assert resp.status_code == 200
    _, params = db.statements('UPDATE vendor_team')[0]
    assert params[2] == 'suspended'
    assert json.loads(params[3]) == {'canAddStock': True, 'canViewOrders': False}


def test_update_other_vendors_member(client, db, vendor_headers):
    resp = client.put('/api/vendor/team/m-9', headers=vendor_headers, json={'status': 'inactive'})
    assert resp.status_code == 404
    _, params = db.statements(OWN_MEMBER)[0]
    assert params == ('m-9', 'vendor-1')
    assert not db.statements('UPDATE vendor_team')


def test_update_rejects_unknown_status(client, db, vendor_headers):
    resp = client.put('/api/vendor/team/m-1', headers=vendor_headers, json={'status': 'deleted'})
    assert resp.status_code == 400


def test_remove_member(client, db, vendor_headers):
    resp = client.delete('/api/vendor/team/m-1', headers=vendor_headers)
    assert resp.status_code == 200
    _, params = db.statements('DELETE FROM vendor_team')[0]
    assert params == ('m-1', 'vendor-1')
    assert audit_actions(db) == ['team_member_removed']
    assert db.commits == 1


def test_remove_missing_member(client, db, vendor_headers):
    db.when('DELETE FROM vendor_team', rowcount=0)
    resp = client.delete('/api/vendor/team/m-9', headers=vendor_headers)
    assert resp.status_code == 404
    assert db.rollbacks == 1
    assert not db.statements('INSERT INTO vendor_audit')


def test_team_needs_vendor_token(client, db):
    assert client.get('/api/vendor/team').status_code == 401
