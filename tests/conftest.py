import base64
import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest

import admin
import admin_requests
import shared
import users
import utils
import vendor_orders
import vendor_products
import vendor_reports
import vendor_requests
import vendor_team
import vendors
from app import create_app

TEST_SECRET = 'test-secret'
TEST_KEY = base64.b64encode(b'k' * 32).decode()
ADMIN_EMAIL = 'admin@example.com'

DB_MODULES = (utils, vendors, vendor_products, vendor_requests, vendor_orders, vendor_team, vendor_reports,
              users, admin, admin_requests, shared)


class Rule:
    def __init__(self, fragment, rows, rowcount, error=None):
        self.fragment = fragment
        self.rows = rows
        self.rowcount = rowcount
        self.error = error


class FakeDB:
    """Scripted stand-in for a MySQL pool.

    ``when(fragment, rows=..., rowcount=...)`` answers every statement whose
    whitespace-normalised SQL contains ``fragment``; when several rules match,
    the longest fragment wins; ``error`` makes the statement raise instead.
    Statements run are recorded in ``executed``.
    """

    def __init__(self):
        self.rules = []
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def when(self, fragment, rows=None, rowcount=None, error=None):
        self.rules.append(Rule(' '.join(fragment.split()), rows or [], rowcount, error))
        return self

    def match(self, sql):
        matches = [r for r in self.rules if r.fragment in sql]
        if not matches:
            return None
        return max(matches, key=lambda r: len(r.fragment))

    def statements(self, fragment):
        """(sql, params) pairs of executed statements containing ``fragment``."""
        fragment = ' '.join(fragment.split())
        return [(sql, params) for sql, params in self.executed if fragment in sql]

    def connect(self):
        return FakeConnection(self)


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self.rowcount = -1
        self._rows = []

    def execute(self, sql, params=()):
        normalized = ' '.join(sql.split())
        self.db.executed.append((normalized, tuple(params or ())))
        rule = self.db.match(normalized)
        if rule is not None and rule.error is not None:
            raise rule.error
        rows = rule.rows if rule else []
        self._rows = [dict(r) for r in rows]
        if rule is not None and rule.rowcount is not None:
            self.rowcount = rule.rowcount
        elif normalized.upper().startswith('SELECT'):
            self.rowcount = len(self._rows)
        else:
            self.rowcount = 1

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        pass


class FakeConnection:
    def __init__(self, db):
        self.db = db

    def cursor(self, dictionary=False):
        return FakeCursor(self.db)

    def commit(self):
        self.db.commits += 1

    def rollback(self):
        self.db.rollbacks += 1

    def close(self):
        pass


def make_vendor(**overrides):
    vendor = {
        'id': 'vendor-1',
        'company_name': 'Stream Co',
        'display_name': 'Stream Co',
        'primary_email': 'owner@streamco.test',
        'additional_emails': '[]',
        'contact_phone': None,
        'country': 'NG',
        'currency': 'USD',
        'initial_password_set': True,
        'status': 'active',
        'created_by': ADMIN_EMAIL,
        'vendor_manager': None,
        'metadata': '{}',
        'created_at': datetime(2024, 1, 1, 12, 0, 0),
        'updated_at': datetime(2024, 1, 1, 12, 0, 0),
    }
    vendor.update(overrides)
    return vendor


def make_product(**overrides):
    product = {
        'id': 'prod-1',
        'vendor_id': 'vendor-1',
        'title': 'Netflix Premium',
        'sku': 'PRD-1-ABC',
        'service_type': 'account_share',
        'provider': 'netflix',
        'plan_duration_days': 30,
        'price_decimal': 9.99,
        'currency': 'USD',
        'stock': 0,
        'account_email': None,
        'account_password': None,
        'status': 'active',
        'admin_review_status': 'approved',
        'version': 0,
        'created_at': datetime(2024, 1, 2),
    }
    product.update(overrides)
    return product


def make_stock_request(**overrides):
    row = {
        'id': 'req-1',
        'admin_id': ADMIN_EMAIL,
        'vendor_id': 'vendor-1',
        'product_id': 'prod-1',
        'quantity_requested': 3,
        'quantity_fulfilled': 0,
        'status': 'requested',
        'notes': None,
        'deadline': None,
        'version': 2,
        'product_title': 'Netflix Premium',
        'product_provider': 'netflix',
        'created_at': datetime(2024, 1, 3),
    }
    row.update(overrides)
    return row


@pytest.fixture
def db(monkeypatch):
    fake = FakeDB()
    for module in DB_MODULES:
        monkeypatch.setattr(module, 'get_db_connection', fake.connect)
    return fake


@pytest.fixture
def app(tmp_path):
    return create_app({
        'TESTING': True,
        'INIT_DB': False,
        'SECRET_KEY': TEST_SECRET,
        'ENCRYPTION_KEY': TEST_KEY,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'ADMIN_USERNAME': 'admin',
        'ADMIN_PASSWORD': 'correct-admin-pass',
        'ADMIN_EMAIL': ADMIN_EMAIL,
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def vendor():
    return make_vendor()


@pytest.fixture
def vendor_headers(monkeypatch, vendor):
    """Bearer token for ``vendor``; the auth lookup returns the fixture row."""
    monkeypatch.setattr(utils, 'get_vendor_by_id', lambda vendor_id: vendor if vendor_id == vendor['id'] else None)
    token = jwt.encode({
        'vendor_id': vendor['id'],
        'email': vendor['primary_email'],
        'role': 'vendor',
        'exp': datetime.now(timezone.utc) + timedelta(hours=1)
    }, TEST_SECRET, algorithm='HS256')
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers():
    token = jwt.encode({
        'username': 'admin',
        'email': ADMIN_EMAIL,
        'role': 'admin',
        'exp': datetime.now(timezone.utc) + timedelta(hours=1)
    }, TEST_SECRET, algorithm='HS256')
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def key():
    return os.urandom(32)
