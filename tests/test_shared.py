import shared
from conftest import make_product

PRODUCT = 'SELECT p.* FROM products p JOIN vendors v'


def test_storefront_lists_live_products(client, db):
    db.when('FROM products p JOIN vendors v ON v.id = p.vendor_id WHERE', rows=[{
        'id': 'prod-1', 'title': 'Netflix Premium', 'price_decimal': 9.99, 'stock': 2, 'vendor_name': 'Stream Co'
    }])
    resp = client.get('/api/products?provider=netflix&search=premium')

    assert resp.status_code == 200
    assert resp.get_json()['data']['products'][0]['vendorName'] == 'Stream Co'
    sql, params = db.statements('SELECT p.id, p.title')[0]
    assert "p.status = 'active'" in sql and 'p.stock > 0' in sql
    assert 'account_password' not in sql
    assert params[:3] == ('netflix', '%premium%', '%premium%')


def test_order_requires_email(client, db):
    resp = client.post('/api/orders', json={'productId': 'prod-1'})
    assert resp.status_code == 400


def test_order_unknown_product(client, db):
    resp = client.post('/api/orders', json={'productId': 'prod-1', 'customerEmail': 'buyer@x.test'})
    assert resp.status_code == 404


def test_order_out_of_stock(client, db):
    db.when(PRODUCT, rows=[make_product(stock=0)])
    db.when('UPDATE products SET stock = stock - 1', rowcount=0)
    resp = client.post('/api/orders', json={'productId': 'prod-1', 'customerEmail': 'buyer@x.test'})

    assert resp.status_code == 409
    assert not db.statements('INSERT INTO orders')
    assert db.rollbacks == 1


def test_order_without_free_profile(client, db):
    db.when(PRODUCT, rows=[make_product(stock=1)])
    resp = client.post('/api/orders', json={'productId': 'prod-1', 'customerEmail': 'buyer@x.test'})

    assert resp.status_code == 409
    assert db.rollbacks == 1
    assert db.commits == 0


def test_order_claims_a_profile(client, db):
    db.when(PRODUCT, rows=[make_product(stock=1)])
    db.when('FROM product_profiles WHERE product_id = %s AND is_assigned = FALSE', rows=[{'id': 'profile-7'}])
    db.when('SELECT * FROM orders WHERE id', rows=[{'id': 'o-1', 'order_number': 'ORD-1-ABC', 'profile_id': 'profile-7'}])
    resp = client.post('/api/orders', json={'productId': 'prod-1', 'customerEmail': 'Buyer@X.test'})

    assert resp.status_code == 201
    assert resp.get_json()['data']['order']['profileId'] == 'profile-7'
    sql, params = db.statements('UPDATE product_profiles SET is_assigned = TRUE')[0]
    assert sql.endswith('WHERE id = %s AND is_assigned = FALSE')
    assert params[0] == 'buyer@x.test'
    _, order = db.statements('INSERT INTO orders')[0]
    assert order[1].startswith('ORD-')
    assert db.commits == 1


def test_license_key_order_needs_no_profile(client, db):
    db.when(PRODUCT, rows=[make_product(service_type='license_key', stock=5)])
    resp = client.post('/api/orders', json={'productId': 'prod-1', 'customerEmail': 'buyer@x.test'})
    assert resp.status_code == 201
    assert not db.statements('product_profiles')


def test_system_health(client, db):
    resp = client.get('/api/system/health')
    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data['database']['connected'] is True
    assert 'cpuUsage' in data['system']


def test_health_reports_database_outage(client, monkeypatch):
    monkeypatch.setattr(shared, 'get_db_connection', lambda: None)
    resp = client.get('/health')
    assert resp.status_code == 503
    assert resp.get_json()['database'] == 'unavailable'


def test_unknown_route_is_json(client):
    resp = client.get('/api/nope')
    assert resp.status_code == 404
    assert resp.get_json() == {'success': False, 'message': 'Resource not found'}
