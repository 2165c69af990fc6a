"""
Pytest configuration and fixtures for the Trade Journal.

This module provides:
- An application built from TestingConfig (in-memory SQLite)
- A Flask test client
- Capital pool helpers that read state through a fresh session
- Reusable trade payloads
"""

import pytest

from journal_app import create_app
from journal_app.models import db, CapitalPool, CapitalTransaction, Trade
from journal_app.services import CapitalLedger


# ============================================================
# APPLICATION FIXTURES
# ============================================================

@pytest.fixture(scope="function")
def app():
    """
    Fresh application and empty in-memory database per test.
    """
    app = create_app('testing')

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


@pytest.fixture
def trust_client_charges(app):
    """Store client-supplied charges instead of recomputing them"""
    app.config['TRUST_CLIENT_CHARGES'] = True
    return app


# ============================================================
# CAPITAL HELPERS
# ============================================================

def make_pool(app, amount, name='Trading Pool', pool_type='CUSTOM'):
    """Create a pool funded by a single DEPOSIT; returns its id."""
    with app.app_context():
        pool = CapitalPool(name=name, pool_type=pool_type, initial_amount=amount,
                           current_amount=0.0)
        db.session.add(pool)
        db.session.commit()
        pool_id = pool.id
        if amount:
            CapitalLedger().apply_transaction(pool_id, 'DEPOSIT', amount, 'Opening balance')
        return pool_id


def pool_state(app, pool_id):
    """Current pool row as a dict, read through a new session."""
    with app.app_context():
        return db.session.get(CapitalPool, pool_id).to_dict()


def pool_transactions(app, pool_id):
    """(type, amount, balance_after) for every ledger row of a pool, oldest first."""
    with app.app_context():
        rows = CapitalTransaction.query.filter_by(pool_id=pool_id) \
            .order_by(CapitalTransaction.id).all()
        return [(row.transaction_type, row.amount, row.balance_after) for row in rows]


def trade_count(app):
    with app.app_context():
        return Trade.query.count()


@pytest.fixture
def funded_pool(app):
    """Pool holding 100,000"""
    return make_pool(app, 100000.0)


# ============================================================
# PAYLOAD FIXTURES
# ============================================================

@pytest.fixture
def closed_trade_payload():
    """Closed BUY: 10 @ 100 -> 110 with 5 of itemised charges"""
    return {
        'symbol': 'TEST',
        'instrument': 'FUTURES',
        'position': 'BUY',
        'quantity': 10,
        'entry_price': 100,
        'entry_date': '2025-01-06T09:30:00',
        'exit_price': 110,
        'exit_date': '2025-01-08T15:00:00',
        'charges': {'brokerage': 5, 'total': 5},
    }


@pytest.fixture
def open_trade_payload():
    return {
        'symbol': 'RELIANCE',
        'instrument': 'EQUITY',
        'position': 'BUY',
        'quantity': 10,
        'entry_price': 100,
        'entry_date': '2025-01-06T10:00:00',
    }


def post_trade(client, payload, **overrides):
    body = dict(payload, **overrides)
    return client.post('/api/trades', json=body)
