"""
Test P&L calculations.

Tests:
- Sign conventions for long and short positions
- Open positions have no P&L
- Divide-by-zero guard on percentage return
- Net vs gross return basis
- Hedge / combined P&L, risk-reward and holding duration
"""

from datetime import datetime

import pytest

from pnl_calculator import (PositionValues, calculate_combined_pnl, calculate_holding_duration,
                            calculate_pnl, calculate_risk_reward, inverse_position,
                            normalize_position)


@pytest.mark.unit
class TestSignConvention:
    """BUY profits when price rises, SELL profits when it falls."""

    @pytest.mark.parametrize('entry_value,exit_value', [
        (1000.0, 1100.0),
        (1000.0, 900.0),
        (50.0, 50.0),
        (123456.78, 123999.99),
    ])
    def test_long_and_short_mirror_each_other(self, entry_value, exit_value):
        long = calculate_pnl(entry_value, exit_value, 0.0, 'BUY')
        short = calculate_pnl(entry_value, exit_value, 0.0, 'SELL')

        assert long.gross_pnl == pytest.approx(exit_value - entry_value, abs=0.01)
        assert short.gross_pnl == pytest.approx(entry_value - exit_value, abs=0.01)
        assert long.gross_pnl == pytest.approx(-short.gross_pnl, abs=0.01)

    def test_closed_long_scenario(self):
        result = calculate_pnl(1000.0, 1100.0, 5.0, 'BUY')

        assert result.gross_pnl == 100.0
        assert result.net_pnl == 95.0
        assert result.percentage_return == 9.5

    def test_closed_short_scenario(self):
        result = calculate_pnl(1000.0, 900.0, 5.0, 'SELL')

        assert result.gross_pnl == 100.0
        assert result.net_pnl == 95.0

    def test_long_short_aliases(self):
        assert calculate_pnl(1000.0, 1100.0, 0.0, 'LONG').gross_pnl == 100.0
        assert calculate_pnl(1000.0, 1100.0, 0.0, 'short').gross_pnl == -100.0

    def test_unknown_position_rejected(self):
        with pytest.raises(ValueError):
            normalize_position('HOLD')


@pytest.mark.unit
class TestOpenAndEdgeCases:

    def test_open_position_has_no_pnl(self):
        result = calculate_pnl(1000.0, None, 5.0, 'BUY')

        assert result.gross_pnl is None
        assert result.net_pnl is None
        assert result.percentage_return is None
        assert not result.is_realized

    def test_zero_entry_value_does_not_divide(self):
        result = calculate_pnl(0.0, 100.0, 0.0, 'BUY')

        assert result.gross_pnl == 100.0
        assert result.percentage_return is None

    def test_gross_return_basis(self):
        result = calculate_pnl(1000.0, 1100.0, 5.0, 'BUY', basis='gross')
        assert result.percentage_return == 10.0

    def test_unknown_basis_rejected(self):
        with pytest.raises(ValueError):
            calculate_pnl(1000.0, 1100.0, 5.0, 'BUY', basis='total')


@pytest.mark.unit
class TestCombinedPnl:
    """Main trade plus hedge."""

    def test_hedge_offsets_main_trade(self):
        main = PositionValues(1000.0, 900.0, 10.0, 'BUY')
        hedge = PositionValues(500.0, 420.0, 4.0, inverse_position('BUY'))

        result = calculate_combined_pnl(main, hedge)

        assert result['main_trade']['net_pnl'] == -110.0
        assert result['hedge_trade']['net_pnl'] == 76.0
        assert result['combined']['net_pnl'] == -34.0
        assert result['combined']['gross_pnl'] == -20.0
        assert result['combined']['total_charges'] == 14.0
        assert result['combined']['percentage_return'] == -3.4

    def test_open_hedge_leaves_combined_at_main_figures(self):
        main = PositionValues(1000.0, 1100.0, 0.0, 'BUY')
        hedge = PositionValues(500.0, None, 4.0, 'SELL')

        result = calculate_combined_pnl(main, hedge)

        assert result['hedge_trade']['net_pnl'] is None
        assert result['combined']['net_pnl'] == 100.0
        assert result['combined']['total_charges'] == 4.0

    def test_without_hedge(self):
        result = calculate_combined_pnl(PositionValues(1000.0, 1100.0, 5.0, 'BUY'))
        assert result['hedge_trade'] is None
        assert result['combined']['net_pnl'] == 95.0


@pytest.mark.unit
class TestTradeMetrics:

    def test_risk_reward(self):
        assert calculate_risk_reward(100.0, 95.0, 110.0) == 2.0

    def test_risk_reward_needs_both_levels(self):
        assert calculate_risk_reward(100.0, None, 110.0) is None
        assert calculate_risk_reward(100.0, 100.0, 110.0) is None

    def test_holding_duration_in_minutes(self):
        entry = datetime(2025, 1, 6, 9, 30)
        assert calculate_holding_duration(entry, datetime(2025, 1, 6, 11, 0)) == 90
        assert calculate_holding_duration(entry, None) is None
