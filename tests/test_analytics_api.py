"""
Test performance analytics.

Three closed trades with zero charges:
    A  Mon 2025-01-06  +100  Breakout
    B  Tue 2025-01-07   -50  Breakout
    C  Wed 2025-01-08  +200  Reversal
"""

import pandas as pd
import pytest

from journal_app.services.analytics_service import max_drawdown, time_slot
from tests.conftest import post_trade

ZERO_CHARGES = {'brokerage': 0, 'total': 0}


@pytest.fixture
def sample_trades(client, trust_client_charges):
    trades = [
        {'symbol': 'AAA', 'position': 'BUY', 'entry_price': 100, 'exit_price': 110,
         'entry_date': '2025-01-06T09:30:00', 'exit_date': '2025-01-06T11:00:00',
         'strategy_tags': ['Breakout']},
        {'symbol': 'BBB', 'position': 'BUY', 'entry_price': 100, 'exit_price': 95,
         'entry_date': '2025-01-07T10:30:00', 'exit_date': '2025-01-07T14:00:00',
         'strategy_tags': ['Breakout']},
        {'symbol': 'CCC', 'position': 'SELL', 'entry_price': 100, 'exit_price': 80,
         'entry_date': '2025-01-08T13:00:00', 'exit_date': '2025-01-08T15:20:00',
         'strategy_tags': ['Reversal']},
    ]
    for trade in trades:
        response = post_trade(client, trade, instrument='EQUITY', quantity=10,
                              charges=ZERO_CHARGES)
        assert response.status_code == 201


@pytest.mark.integration
class TestPerformanceOverview:

    def test_overview_figures(self, client, sample_trades):
        overview = client.get('/api/analytics').get_json()['data']['overview']

        assert overview['total_trades'] == 3
        assert overview['closed_trades'] == 3
        assert overview['winning_trades'] == 2
        assert overview['losing_trades'] == 1
        assert overview['win_rate'] == 66.67
        assert overview['net_pnl'] == 250.0
        assert overview['avg_win'] == 150.0
        assert overview['avg_loss'] == -50.0
        assert overview['profit_factor'] == 6.0
        assert overview['best_trade'] == 200.0
        assert overview['worst_trade'] == -50.0
        assert overview['expectancy'] == 83.33
        assert overview['max_drawdown'] == 50.0

    def test_open_trades_counted_but_not_scored(self, client, sample_trades):
        post_trade(client, {'symbol': 'DDD', 'instrument': 'EQUITY', 'position': 'BUY',
                            'quantity': 1, 'entry_price': 10,
                            'entry_date': '2025-01-09T10:00:00'})

        overview = client.get('/api/analytics').get_json()['data']['overview']

        assert overview['total_trades'] == 4
        assert overview['open_trades'] == 1
        assert overview['net_pnl'] == 250.0

    def test_empty_journal(self, client):
        data = client.get('/api/analytics').get_json()['data']

        assert data['overview']['total_trades'] == 0
        assert data['overview']['win_rate'] == 0.0
        assert data['overview']['profit_factor'] is None
        assert data['strategy_performance'] == []
        assert data['daily_pnl'] == []


@pytest.mark.integration
class TestBreakdowns:

    def test_daily_curve_is_cumulative(self, client, sample_trades):
        daily = client.get('/api/analytics').get_json()['data']['daily_pnl']

        assert [day['date'] for day in daily] == ['2025-01-06', '2025-01-07', '2025-01-08']
        assert [day['cumulative_pnl'] for day in daily] == [100.0, 50.0, 250.0]

    def test_strategy_performance_sorted_by_pnl(self, client, sample_trades):
        strategies = client.get('/api/analytics').get_json()['data']['strategy_performance']

        assert [row['strategies'] for row in strategies] == ['Reversal', 'Breakout']
        assert strategies[1]['trades'] == 2
        assert strategies[1]['win_rate'] == 50.0
        assert strategies[1]['net_pnl'] == 50.0

    def test_time_based(self, client, sample_trades):
        time_based = client.get('/api/analytics').get_json()['data']['time_based']

        assert time_based['by_weekday'] == {'Monday': 100.0, 'Tuesday': -50.0, 'Wednesday': 200.0}
        assert time_based['by_time_of_day'] == {'Opening': 100.0, 'Morning': -50.0,
                                                'Afternoon': 200.0}

    def test_strategy_filter(self, client, sample_trades):
        data = client.get('/api/analytics?strategy=Breakout').get_json()['data']

        assert data['overview']['total_trades'] == 2
        assert data['overview']['net_pnl'] == 50.0
        assert data['filters']['strategy'] == 'Breakout'

    def test_date_filter(self, client, sample_trades):
        data = client.get('/api/analytics?date_from=2025-01-07').get_json()['data']
        assert data['overview']['total_trades'] == 2

    def test_invalid_date(self, client):
        assert client.get('/api/analytics?date_to=13/01/2025').status_code == 400


@pytest.mark.unit
class TestHelpers:

    def test_drawdown_measured_from_zero_equity(self):
        assert max_drawdown(pd.Series([-30.0, 10.0])) == 30.0
        assert max_drawdown(pd.Series([50.0, 50.0])) == 0.0
        assert max_drawdown(pd.Series([], dtype=float)) == 0.0

    @pytest.mark.parametrize('hour,minute,slot', [
        (9, 0, 'Pre-Market'),
        (9, 15, 'Opening'),
        (11, 59, 'Morning'),
        (14, 0, 'Afternoon'),
        (15, 0, 'Closing'),
    ])
    def test_time_slots(self, hour, minute, slot):
        assert time_slot(pd.Timestamp(2025, 1, 6, hour, minute)) == slot
