#!/usr/bin/env python3
"""
P&L calculations for journal trades.

Pure functions: gross/net P&L and percentage return for a position, hedge
and combined P&L, risk-reward ratio and holding duration.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Optional

RETURN_BASES = ('net', 'gross')

POSITION_ALIASES = {
    'BUY': 'BUY',
    'LONG': 'BUY',
    'SELL': 'SELL',
    'SHORT': 'SELL',
}


@dataclass
class PnLResult:
    """P&L of one position; every field is None while the position is open."""

    gross_pnl: Optional[float] = None
    net_pnl: Optional[float] = None
    percentage_return: Optional[float] = None

    @property
    def is_realized(self) -> bool:
        return self.gross_pnl is not None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)


@dataclass
class PositionValues:
    """Inputs for combined P&L of a main trade and its hedge."""

    entry_value: float
    exit_value: Optional[float]
    charges_total: float
    position: str


def normalize_position(position: str) -> str:
    """Map LONG/SHORT aliases onto BUY/SELL."""
    try:
        return POSITION_ALIASES[position.upper()]
    except KeyError:
        raise ValueError(f"Unknown position side: {position}")


def inverse_position(position: str) -> str:
    return 'SELL' if normalize_position(position) == 'BUY' else 'BUY'


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


def calculate_pnl(entry_value: float,
                  exit_value: Optional[float],
                  charges_total: float,
                  position: str,
                  basis: str = 'net') -> PnLResult:
    """
    Calculate gross P&L, net P&L and percentage return.

    Args:
        entry_value: quantity x entry price
        exit_value: quantity x exit price, None while open
        charges_total: total charges for the trade
        position: BUY/LONG or SELL/SHORT
        basis: 'net' measures return on net P&L, 'gross' on gross P&L

    Returns:
        PnLResult, all None for an open position
    """
    if basis not in RETURN_BASES:
        raise ValueError(f"basis must be one of {RETURN_BASES}")

    if exit_value is None:
        return PnLResult()

    if normalize_position(position) == 'BUY':
        gross_pnl = exit_value - entry_value
    else:
        gross_pnl = entry_value - exit_value

    net_pnl = gross_pnl - (charges_total or 0.0)

    percentage_return = None
    if entry_value:
        pnl = net_pnl if basis == 'net' else gross_pnl
        percentage_return = pnl / entry_value * 100

    return PnLResult(
        gross_pnl=_round(gross_pnl),
        net_pnl=_round(net_pnl),
        percentage_return=_round(percentage_return),
    )


def calculate_combined_pnl(main: PositionValues,
                           hedge: Optional[PositionValues] = None,
                           basis: str = 'net') -> Dict[str, Optional[Dict]]:
    """
    P&L of a main trade, its hedge and the two together.

    The combined percentage return is measured against the main trade's
    entry value, since the hedge only offsets risk on that capital.
    """
    main_pnl = calculate_pnl(main.entry_value, main.exit_value,
                             main.charges_total, main.position, basis)
    result = {
        'main_trade': main_pnl.to_dict(),
        'hedge_trade': None,
        'combined': {
            'gross_pnl': main_pnl.gross_pnl,
            'net_pnl': main_pnl.net_pnl,
            'total_charges': _round(main.charges_total),
            'percentage_return': main_pnl.percentage_return,
        },
    }

    if hedge is None:
        return result

    hedge_pnl = calculate_pnl(hedge.entry_value, hedge.exit_value,
                              hedge.charges_total, hedge.position, basis)
    result['hedge_trade'] = hedge_pnl.to_dict()

    if not (main_pnl.is_realized and hedge_pnl.is_realized):
        # Combined figures only make sense once both legs are closed
        result['combined']['total_charges'] = _round(main.charges_total + hedge.charges_total)
        return result

    gross = main_pnl.gross_pnl + hedge_pnl.gross_pnl
    net = main_pnl.net_pnl + hedge_pnl.net_pnl
    pnl = net if basis == 'net' else gross
    result['combined'] = {
        'gross_pnl': _round(gross),
        'net_pnl': _round(net),
        'total_charges': _round(main.charges_total + hedge.charges_total),
        'percentage_return': _round(pnl / main.entry_value * 100) if main.entry_value else None,
    }
    return result


def calculate_risk_reward(entry_price: float,
                          stop_loss: Optional[float],
                          target: Optional[float]) -> Optional[float]:
    """Reward-to-risk ratio; None without both levels or with zero risk."""
    if not stop_loss or not target:
        return None

    risk = abs(entry_price - stop_loss)
    reward = abs(target - entry_price)

    if risk == 0:
        return None

    return round(reward / risk, 2)


def calculate_holding_duration(entry_date: datetime,
                               exit_date: Optional[datetime]) -> Optional[int]:
    """Holding period in whole minutes."""
    if exit_date is None:
        return None
    return round((exit_date - entry_date).total_seconds() / 60)
