"""
Test the trades API end to end.

Tests:
- Closed and open trades settle against their capital pool
- Insufficient balance rolls the whole trade back
- Validation reports every field at once
- Duplicate submission window
- Server-computed vs trusted client charges
- Tag resolution, listing filters, exit, edit and delete
"""

from datetime import timedelta

import pytest

from charge_schedule import calculate_charges
from journal_app.errors import LedgerConflictError
from journal_app.models import db, utcnow, Trade
from journal_app.services import CapitalLedger, TradeService
from tests.conftest import make_pool, pool_state, pool_transactions, post_trade, trade_count


@pytest.mark.integration
class TestCreateClosedTrade:
    """A trade recorded already closed invests, returns and books P&L"""

    def test_long_trade_settles_pool(self, app, client, trust_client_charges, funded_pool,
                                     closed_trade_payload):
        response = post_trade(client, closed_trade_payload, capital_pool_id=funded_pool)

        assert response.status_code == 201
        trade = response.get_json()['trade']
        assert trade['status'] == 'closed'
        assert trade['trade_type'] == 'POSITIONAL'
        assert trade['gross_pnl'] == 100.0
        assert trade['net_pnl'] == 95.0
        assert trade['percentage_return'] == 9.5
        assert trade['holding_duration'] == 2 * 24 * 60 + 330
        assert trade['charges']['source'] == 'client'

        assert pool_transactions(app, funded_pool) == [
            ('DEPOSIT', 100000.0, 100000.0),
            ('INVESTMENT', 1000.0, 99000.0),
            ('RETURN', 1000.0, 100000.0),
            ('PROFIT', 95.0, 100095.0),
        ]
        state = pool_state(app, funded_pool)
        assert state['current_amount'] == 100095.0
        assert state['total_invested'] == 0.0
        assert state['total_pnl'] == 95.0

    def test_short_trade_profits_when_price_falls(self, client, trust_client_charges,
                                                  closed_trade_payload):
        response = post_trade(client, closed_trade_payload, position='SHORT', exit_price=90)

        trade = response.get_json()['trade']
        assert trade['position'] == 'SELL'
        assert trade['gross_pnl'] == 100.0
        assert trade['net_pnl'] == 95.0

    def test_losing_trade_books_loss(self, app, client, trust_client_charges, funded_pool,
                                     closed_trade_payload):
        post_trade(client, closed_trade_payload, capital_pool_id=funded_pool, exit_price=95)

        assert pool_transactions(app, funded_pool)[-1] == ('LOSS', 55.0, 99945.0)
        assert pool_state(app, funded_pool)['total_pnl'] == -55.0

    def test_intraday_option_books_only_pnl(self, app, client, trust_client_charges, funded_pool):
        response = post_trade(client, {
            'symbol': 'NIFTY25JAN22000CE',
            'instrument': 'OPTIONS',
            'position': 'BUY',
            'quantity': 50,
            'entry_price': 100,
            'entry_date': '2025-01-06T09:30:00',
            'exit_price': 120,
            'exit_date': '2025-01-06T14:00:00',
            'capital_pool_id': funded_pool,
            'charges': {'brokerage': 40, 'total': 40},
            'options': {
                'option_type': 'CE',
                'strike_price': 22000,
                'expiry_date': '2025-01-09',
                'lot_size': 50,
                'underlying': 'nifty',
            },
        })

        assert response.status_code == 201
        trade = response.get_json()['trade']
        assert trade['trade_type'] == 'INTRADAY'
        assert trade['net_pnl'] == 960.0
        assert trade['options']['option_type'] == 'CALL'
        assert trade['options']['underlying'] == 'NIFTY'
        assert pool_transactions(app, funded_pool) == [
            ('DEPOSIT', 100000.0, 100000.0),
            ('PROFIT', 960.0, 100960.0),
        ]

    def test_hedge_is_reported_but_not_booked(self, app, client, trust_client_charges,
                                              funded_pool, closed_trade_payload):
        response = post_trade(client, closed_trade_payload, capital_pool_id=funded_pool,
                              exit_price=90, charges={'brokerage': 0, 'total': 0},
                              hedge={'quantity': 10, 'entry_price': 50, 'exit_price': 42,
                                     'total_charges': 0})

        trade = response.get_json()['trade']
        assert trade['hedge']['position'] == 'SELL'
        assert trade['hedge']['net_pnl'] == 80.0
        assert trade['combined_pnl']['combined']['net_pnl'] == -20.0
        assert pool_transactions(app, funded_pool)[-1] == ('LOSS', 100.0, 99900.0)


@pytest.mark.integration
class TestCreateValidation:

    def test_insufficient_balance_rolls_back(self, app, client, trust_client_charges,
                                             closed_trade_payload):
        pool_id = make_pool(app, 500.0)

        response = post_trade(client, closed_trade_payload, capital_pool_id=pool_id)

        assert response.status_code == 422
        assert pool_state(app, pool_id)['current_amount'] == 500.0
        assert len(pool_transactions(app, pool_id)) == 1
        assert trade_count(app) == 0

    def test_every_invalid_field_is_reported(self, client):
        response = client.post('/api/trades', json={
            'instrument': 'EQUITY',
            'position': 'HOLD',
            'quantity': -5,
            'entry_price': 100,
            'entry_date': '2025-01-06T09:30:00',
            'exit_price': 110,
        })

        assert response.status_code == 400
        details = response.get_json()['details']
        assert {'symbol', 'position', 'quantity', 'exit_date'} <= set(details)

    def test_exit_before_entry_rejected(self, client, closed_trade_payload):
        response = post_trade(client, closed_trade_payload, exit_date='2025-01-05T09:30:00')

        assert response.status_code == 400
        assert 'exit_date' in response.get_json()['details']

    def test_options_details_require_options_instrument(self, client, closed_trade_payload):
        response = post_trade(client, closed_trade_payload, options={
            'option_type': 'PE', 'strike_price': 100, 'expiry_date': '2025-01-30',
            'lot_size': 1, 'underlying': 'TEST',
        })

        assert response.status_code == 400
        assert 'instrument' in response.get_json()['details']

    def test_unknown_pool_rejected(self, client, closed_trade_payload):
        response = post_trade(client, closed_trade_payload, capital_pool_id=999)

        assert response.status_code == 400
        assert 'capital_pool_id' in response.get_json()['details']

    def test_non_object_body_rejected(self, client):
        response = client.post('/api/trades', json=[1, 2, 3])
        assert response.status_code == 400


@pytest.mark.integration
class TestDuplicateWindow:

    def test_identical_trade_within_window_is_rejected(self, app, client, open_trade_payload):
        first = post_trade(client, open_trade_payload)
        first_id = first.get_json()['trade']['id']

        second = post_trade(client, open_trade_payload)

        assert second.status_code == 409
        assert second.get_json()['details']['existing_trade_id'] == first_id
        assert trade_count(app) == 1

    def test_identical_trade_after_window_is_accepted(self, app, client, open_trade_payload):
        first_id = post_trade(client, open_trade_payload).get_json()['trade']['id']

        with app.app_context():
            trade = db.session.get(Trade, first_id)
            trade.created_at = utcnow() - timedelta(minutes=6)
            db.session.commit()

        assert post_trade(client, open_trade_payload).status_code == 201
        assert trade_count(app) == 2

    def test_different_quantity_is_not_a_duplicate(self, client, open_trade_payload):
        post_trade(client, open_trade_payload)
        assert post_trade(client, open_trade_payload, quantity=11).status_code == 201


@pytest.mark.integration
class TestCharges:

    def test_server_charges_replace_client_values(self, client, closed_trade_payload):
        response = post_trade(client, closed_trade_payload, charges={'total': 1})

        trade = response.get_json()['trade']
        expected = calculate_charges(1000.0, 1100.0, 'FUTURES', 'BUY')
        assert trade['charges']['source'] == 'server'
        assert trade['total_charges'] == expected.total
        assert trade['net_pnl'] == round(100.0 - expected.total, 2)

    def test_trusted_charges_must_be_consistent(self, client, trust_client_charges,
                                                closed_trade_payload):
        response = post_trade(client, closed_trade_payload,
                              charges={'brokerage': 5, 'total': 50})

        assert response.status_code == 400
        assert 'total' in response.get_json()['details']['charges']

    def test_trusted_total_defaults_to_component_sum(self, client, trust_client_charges,
                                                     closed_trade_payload):
        response = post_trade(client, closed_trade_payload,
                              charges={'brokerage': 5, 'stt': 1.5})

        assert response.get_json()['trade']['charges']['total'] == 6.5


@pytest.mark.integration
class TestTags:

    def test_tags_deduplicated_and_reused(self, client, open_trade_payload):
        first = post_trade(client, open_trade_payload,
                           strategy_tags=['Breakout', 'breakout', 'Momentum'],
                           emotional_tags=['Calm']).get_json()['trade']

        names = {tag['name']: tag['id'] for tag in first['strategy_tags']}
        assert sorted(names) == ['Breakout', 'Momentum']
        breakout_id = names['Breakout']

        second = post_trade(client, open_trade_payload, symbol='INFY',
                            strategy_tags=['BREAKOUT']).get_json()['trade']
        assert second['strategy_tags'][0]['id'] == breakout_id

        third = post_trade(client, open_trade_payload, symbol='TCS',
                           strategy_tags=[breakout_id]).get_json()['trade']
        assert third['strategy_tags'][0]['name'] == 'Breakout'

        tags = client.get('/api/tags?category=strategy').get_json()['tags']
        assert sorted(tag['name'] for tag in tags) == ['Breakout', 'Momentum']

    def test_tag_id_from_wrong_category_rejected(self, app, client, open_trade_payload):
        strategy = post_trade(client, open_trade_payload,
                              strategy_tags=['Breakout']).get_json()['trade']['strategy_tags'][0]

        response = post_trade(client, open_trade_payload, symbol='INFY',
                              emotional_tags=[strategy['id']])

        assert response.status_code == 400
        assert trade_count(app) == 1


@pytest.mark.integration
class TestListTrades:

    @pytest.fixture
    def three_trades(self, client, trust_client_charges, open_trade_payload,
                     closed_trade_payload):
        post_trade(client, open_trade_payload, notes='Waiting for results')
        post_trade(client, closed_trade_payload)
        post_trade(client, closed_trade_payload, symbol='INFY', instrument='EQUITY',
                   position='SELL', entry_date='2025-01-07T09:30:00',
                   exit_date='2025-01-07T15:00:00')

    def test_status_filter(self, client, three_trades):
        data = client.get('/api/trades?status=open').get_json()
        assert [trade['symbol'] for trade in data['trades']] == ['RELIANCE']
        assert client.get('/api/trades?status=closed').get_json()['pagination']['total'] == 2

    def test_instrument_and_side_filters(self, client, three_trades):
        assert client.get('/api/trades?instrument_type=futures').get_json()['pagination']['total'] == 1
        assert client.get('/api/trades?side=LONG').get_json()['pagination']['total'] == 2
        assert client.get('/api/trades?side=short').get_json()['trades'][0]['symbol'] == 'INFY'

    def test_search_matches_symbol_and_notes(self, client, three_trades):
        assert client.get('/api/trades?search=infy').get_json()['pagination']['total'] == 1
        assert client.get('/api/trades?search=results').get_json()['pagination']['total'] == 1

    def test_date_range(self, client, three_trades):
        data = client.get('/api/trades?date_from=2025-01-07&date_to=2025-01-07').get_json()
        assert [trade['symbol'] for trade in data['trades']] == ['INFY']

    def test_sorting_and_pagination(self, client, three_trades):
        data = client.get('/api/trades?sort_by=symbol&sort_order=asc&limit=1&page=2').get_json()

        assert data['pagination'] == {'page': 2, 'limit': 1, 'total': 3, 'pages': 3}
        assert data['trades'][0]['symbol'] == 'RELIANCE'

    @pytest.mark.parametrize('query', ['sort_by=bogus', 'sort_order=sideways', 'status=pending',
                                       'date_from=yesterday'])
    def test_invalid_parameters_rejected(self, client, query):
        assert client.get(f'/api/trades?{query}').status_code == 400


@pytest.mark.integration
class TestExitTrade:

    def test_exit_settles_open_trade(self, app, client, funded_pool, open_trade_payload):
        created = post_trade(client, open_trade_payload, capital_pool_id=funded_pool)
        trade_id = created.get_json()['trade']['id']
        assert pool_state(app, funded_pool)['total_invested'] == 1000.0

        response = client.post(f'/api/trades/{trade_id}/exit', json={
            'exit_price': 110, 'exit_date': '2025-01-07T10:00:00',
        })

        assert response.status_code == 200
        trade = response.get_json()['trade']
        expected = calculate_charges(1000.0, 1100.0, 'EQUITY', 'BUY')
        assert trade['status'] == 'closed'
        assert trade['charges']['total'] == expected.total
        assert trade['net_pnl'] == round(100.0 - expected.total, 2)

        rows = pool_transactions(app, funded_pool)
        assert [row[0] for row in rows] == ['DEPOSIT', 'INVESTMENT', 'RETURN', 'PROFIT']
        assert rows[-1][1] == trade['net_pnl']
        assert pool_state(app, funded_pool)['current_amount'] == round(100000.0 + trade['net_pnl'], 2)
        assert pool_state(app, funded_pool)['total_invested'] == 0.0

    def test_closed_trade_cannot_exit_again(self, client, closed_trade_payload):
        trade_id = post_trade(client, closed_trade_payload).get_json()['trade']['id']

        response = client.post(f'/api/trades/{trade_id}/exit', json={
            'exit_price': 120, 'exit_date': '2025-01-09T10:00:00',
        })
        assert response.status_code == 400

    def test_exit_before_entry_rejected(self, client, open_trade_payload):
        trade_id = post_trade(client, open_trade_payload).get_json()['trade']['id']

        response = client.post(f'/api/trades/{trade_id}/exit', json={
            'exit_price': 120, 'exit_date': '2025-01-05T10:00:00',
        })
        assert response.status_code == 400
        assert client.get(f'/api/trades/{trade_id}').get_json()['trade']['status'] == 'open'

    def test_unknown_trade(self, client):
        response = client.post('/api/trades/999/exit', json={
            'exit_price': 120, 'exit_date': '2025-01-05T10:00:00',
        })
        assert response.status_code == 404


@pytest.mark.integration
class TestUpdateTrade:

    def test_journal_fields_and_tags_update(self, client, open_trade_payload):
        trade_id = post_trade(client, open_trade_payload, notes='Initial').get_json()['trade']['id']

        response = client.put(f'/api/trades/{trade_id}', json={
            'notes': 'Held through earnings',
            'followed_risk_reward': True,
            'stop_loss': 95,
            'target': 110,
            'strategy_tags': ['Breakout'],
        })

        assert response.status_code == 200
        trade = response.get_json()['trade']
        assert trade['notes'] == 'Held through earnings'
        assert trade['psychology']['followed_risk_reward'] is True
        assert trade['psychology']['showed_greed'] is None
        assert trade['risk_reward_ratio'] == 2.0
        assert trade['strategy_tags'][0]['name'] == 'Breakout'

    def test_untouched_fields_are_kept(self, client, open_trade_payload):
        trade_id = post_trade(client, open_trade_payload, notes='Keep me',
                              emotional_tags=['Calm']).get_json()['trade']['id']

        trade = client.put(f'/api/trades/{trade_id}', json={'confidence_level': 7}) \
            .get_json()['trade']

        assert trade['notes'] == 'Keep me'
        assert trade['confidence_level'] == 7
        assert trade['emotional_tags'][0]['name'] == 'Calm'

    def test_price_fields_are_locked(self, client, open_trade_payload):
        trade_id = post_trade(client, open_trade_payload).get_json()['trade']['id']

        response = client.put(f'/api/trades/{trade_id}', json={'quantity': 5, 'notes': 'x'})

        assert response.status_code == 400
        assert 'quantity' in response.get_json()['details']
        assert client.get(f'/api/trades/{trade_id}').get_json()['trade']['quantity'] == 10.0


@pytest.mark.integration
class TestDeleteTrade:

    def test_delete_reverses_ledger_entries(self, app, client, trust_client_charges, funded_pool,
                                            closed_trade_payload):
        trade_id = post_trade(client, closed_trade_payload,
                              capital_pool_id=funded_pool).get_json()['trade']['id']

        response = client.delete(f'/api/trades/{trade_id}')

        assert response.status_code == 200
        assert len(response.get_json()['data']['reversed_transactions']) == 3
        assert pool_state(app, funded_pool)['current_amount'] == 100000.0
        assert pool_state(app, funded_pool)['total_pnl'] == 0.0
        assert [row[0] for row in pool_transactions(app, funded_pool)][-3:] == ['REVERSAL'] * 3

        reconciliation = client.get(f'/api/capital/pools/{funded_pool}/reconcile').get_json()
        assert reconciliation['reconciliation']['consistent'] is True

        assert client.get(f'/api/trades/{trade_id}').status_code == 404
        assert client.delete(f'/api/trades/{trade_id}').status_code == 404

    def test_trade_entries_cannot_be_reversed_directly(self, app, client, funded_pool,
                                                       open_trade_payload):
        post_trade(client, open_trade_payload, capital_pool_id=funded_pool)
        listing = client.get(f'/api/capital/transactions?pool_id={funded_pool}&type=INVESTMENT')
        investment_id = listing.get_json()['transactions'][0]['id']

        response = client.delete(f'/api/capital/transactions/{investment_id}')

        assert response.status_code == 400
        assert pool_state(app, funded_pool)['current_amount'] == 99000.0


@pytest.mark.integration
class TestPortfolioAndHealth:

    def test_open_positions(self, client, trust_client_charges, funded_pool, open_trade_payload,
                            closed_trade_payload):
        post_trade(client, open_trade_payload, capital_pool_id=funded_pool,
                   strategy_tags=['Momentum'])
        post_trade(client, closed_trade_payload)

        data = client.get('/api/portfolio').get_json()['data']

        assert data['summary'] == {
            'open_positions': 1,
            'total_invested': 1000.0,
            'realized_pnl': 95.0,
            'concentration_risk': 100.0,
        }
        assert data['positions'][0]['strategy'] == 'Momentum'
        assert data['allocation']['EQUITY']['percentage'] == 100.0

    def test_health(self, client):
        data = client.get('/api/health').get_json()
        assert data['status'] == 'healthy'


@pytest.mark.integration
class TestLedgerConflicts:
    """Retry exhaustion reports the trade's capital pool"""

    def test_exit_conflict_names_the_pool(self, app, client, funded_pool, open_trade_payload):
        trade_id = post_trade(client, open_trade_payload,
                              capital_pool_id=funded_pool).get_json()['trade']['id']

        exit_payload = {'exit_price': 110, 'exit_date': '2025-01-07T10:00:00'}
        with app.test_request_context():
            service = TradeService(ledger=CapitalLedger(max_retries=0))
            with pytest.raises(LedgerConflictError) as excinfo:
                service.exit_trade(trade_id, exit_payload)

        assert excinfo.value.details['pool_id'] == funded_pool

    def test_delete_conflict_names_the_pool(self, app, client, funded_pool, open_trade_payload):
        trade_id = post_trade(client, open_trade_payload,
                              capital_pool_id=funded_pool).get_json()['trade']['id']

        with app.test_request_context():
            service = TradeService(ledger=CapitalLedger(max_retries=0))
            with pytest.raises(LedgerConflictError) as excinfo:
                service.delete_trade(trade_id)

        assert excinfo.value.details['pool_id'] == funded_pool
        assert trade_count(app) == 1


@pytest.mark.integration
class TestRequiredStrategyTag:

    def test_trade_without_strategy_rejected_when_required(self, app, client, open_trade_payload):
        client.put('/api/settings', json={
            'category': 'GENERAL', 'settings': {'require_strategy_tag': True},
        })

        response = post_trade(client, open_trade_payload)

        assert response.status_code == 400
        assert 'strategy_tags' in response.get_json()['details']
        assert trade_count(app) == 0

        tagged = post_trade(client, open_trade_payload, strategy_tags=['Breakout'])
        assert tagged.status_code == 201

    def test_strategy_optional_by_default(self, client, open_trade_payload):
        assert post_trade(client, open_trade_payload).status_code == 201
