"""Fixtures de teste: banco SQLite temporário, gateway roteirizado e cliente Flask."""

import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.config import DEFAULT_CONFIG
from core.gateway import GatewayResult
from core.rules import generate_transaction_id
from core.web_server import WebServer


class FakeClock:
    """Relógio controlável (UTC)"""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ScriptedGateway:
    """Gateway determinístico: sucesso por padrão, falhas enfileiradas sob demanda."""

    def __init__(self):
        self.charge_outcomes = []
        self.refund_outcomes = []
        self.calls = []

    def fail_next_charge(self, reason='Saldo insuficiente'):
        self.charge_outcomes.append(GatewayResult(success=False, error=reason))

    def fail_next_refund(self, reason='Sistema bancário ocupado, tente novamente mais tarde'):
        self.refund_outcomes.append(GatewayResult(success=False, error=reason))

    def attempt_charge(self, amount, method):
        self.calls.append(('charge', Decimal(amount), method))
        if self.charge_outcomes:
            return self.charge_outcomes.pop(0)
        return GatewayResult(success=True, transaction_id=generate_transaction_id('TXN'))

    def attempt_refund(self, amount, transaction_id):
        self.calls.append(('refund', Decimal(amount), transaction_id))
        if self.refund_outcomes:
            return self.refund_outcomes.pop(0)
        return GatewayResult(success=True, transaction_id=generate_transaction_id('REF'))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def make_server(tmp_path, gateway, clock):
    """Cria um WebServer sobre um banco temporário; kwargs sobrescrevem seções do config."""
    def factory(**sections):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['database_path'] = str(tmp_path / 'erp_test.db')
        config['security']['secret_key'] = 'chave-de-teste'
        config['payments'].update({'charge_delay': 0, 'refund_delay': 0})
        for section, values in sections.items():
            config[section].update(values)
        return WebServer(config, gateway=gateway, clock=clock)
    return factory


@pytest.fixture
def server(make_server):
    return make_server()


@pytest.fixture
def client(server):
    server.app.config['TESTING'] = True
    return server.app.test_client()


@pytest.fixture
def db(server):
    return server.db


@pytest.fixture
def create_user(server):
    counter = {'n': 0}

    def factory(name='Usuário Teste', email=None, password='senha123', role='employee', active=True):
        counter['n'] += 1
        email = email or f'usuario{counter["n"]}@teste.com'
        user = server.auth.create_user(name, email, password, role)
        if not active:
            server.db.execute("UPDATE users SET is_active=0 WHERE id=?", (user.id,))
            user = server.auth.get_user(user.id)
        return user
    return factory


@pytest.fixture
def create_product(server):
    counter = {'n': 0}

    def factory(name=None, price='10.00', stock=100, active=True):
        counter['n'] += 1
        product = server.products.create_product({
            'name': name or f'Produto {counter["n"]}',
            'price': price,
            'stock_quantity': stock,
            'sku': f'SKU-{counter["n"]:04d}',
        })
        if not active:
            server.db.execute("UPDATE products SET is_active=0 WHERE id=?", (product.id,))
        return product
    return factory


@pytest.fixture
def user(create_user):
    return create_user(name='Ana Souza', email='ana@teste.com')


@pytest.fixture
def auth_headers(server):
    def factory(user):
        return {'Authorization': f'Bearer {server.auth.issue_token(user)}'}
    return factory


@pytest.fixture
def stock_of(db):
    def lookup(product_id):
        return db.query_one("SELECT stock_quantity FROM products WHERE id=?", (product_id,))[0]
    return lookup
