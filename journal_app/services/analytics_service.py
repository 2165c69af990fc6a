"""
Analytics Service

Performance analytics over closed trades: overview statistics, strategy and
instrument breakdowns, the daily P&L curve with drawdown, and time-based
performance. Aggregation is done with pandas.
"""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..models import Trade
from .trade_service import filter_trades

logger = logging.getLogger(__name__)

TRADE_COLUMNS = ['id', 'symbol', 'instrument', 'position', 'trade_type', 'entry_date',
                 'exit_date', 'entry_value', 'gross_pnl', 'net_pnl', 'total_charges',
                 'percentage_return', 'holding_duration', 'strategies']

WEEKDAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']

# Session slots by minute of day: (upper bound exclusive, label)
TIME_SLOTS = [
    (9 * 60 + 15, 'Pre-Market'),
    (10 * 60, 'Opening'),
    (12 * 60, 'Morning'),
    (15 * 60, 'Afternoon'),
    (24 * 60, 'Closing'),
]


def _num(value, digits: int = 2) -> Optional[float]:
    """Round a pandas/numpy scalar to a JSON-safe float"""
    if value is None or pd.isna(value):
        return None
    return round(float(value), digits)


def time_slot(moment) -> str:
    minute = moment.hour * 60 + moment.minute
    for upper, label in TIME_SLOTS:
        if minute < upper:
            return label
    return TIME_SLOTS[-1][1]


def trades_frame(trades: List[Trade]) -> pd.DataFrame:
    rows = [{
        'id': trade.id,
        'symbol': trade.symbol,
        'instrument': trade.instrument,
        'position': trade.position,
        'trade_type': trade.trade_type,
        'entry_date': trade.entry_date,
        'exit_date': trade.exit_date,
        'entry_value': trade.entry_value,
        'gross_pnl': trade.gross_pnl,
        'net_pnl': trade.net_pnl,
        'total_charges': trade.total_charges or 0.0,
        'percentage_return': trade.percentage_return,
        'holding_duration': trade.holding_duration,
        'strategies': [tag.name for tag in trade.tags_in('STRATEGY')] or ['Untagged'],
    } for trade in trades]
    return pd.DataFrame(rows, columns=TRADE_COLUMNS)


def max_drawdown(net_pnl: pd.Series) -> float:
    """Largest peak-to-trough fall of cumulative P&L, starting from zero equity"""
    if net_pnl.empty:
        return 0.0
    equity = np.concatenate([[0.0], net_pnl.cumsum().to_numpy(dtype=float)])
    peaks = np.maximum.accumulate(equity)
    return round(float((peaks - equity).max()), 2)


def group_performance(df: pd.DataFrame, key: str) -> List[Dict]:
    """Trades, win rate and P&L per value of key"""
    if df.empty:
        return []

    grouped = df.groupby(key)['net_pnl']
    summary = pd.DataFrame({
        'trades': grouped.size(),
        'winning_trades': grouped.apply(lambda s: int((s > 0).sum())),
        'net_pnl': grouped.sum(),
        'avg_pnl': grouped.mean(),
        'best_trade': grouped.max(),
        'worst_trade': grouped.min(),
    }).sort_values('net_pnl', ascending=False)

    return [{
        key: name,
        'trades': int(row.trades),
        'winning_trades': int(row.winning_trades),
        'win_rate': _num(row.winning_trades / row.trades * 100),
        'net_pnl': _num(row.net_pnl),
        'avg_pnl': _num(row.avg_pnl),
        'best_trade': _num(row.best_trade),
        'worst_trade': _num(row.worst_trade),
    } for name, row in summary.iterrows()]


class AnalyticsService:
    """Performance analytics for the journal"""

    def get_performance(self, date_from: Optional[str] = None, date_to: Optional[str] = None,
                        strategy: Optional[str] = None) -> Dict:
        query = filter_trades(Trade.query, date_from, date_to, strategy)
        trades = query.order_by(Trade.entry_date, Trade.id).all()
        closed = [trade for trade in trades if trade.is_closed]

        df = trades_frame(closed)
        if not df.empty:
            df = df.sort_values(['exit_date', 'id']).reset_index(drop=True)

        logger.debug(f"Analytics over {len(trades)} trades ({len(closed)} closed)")

        return {
            'overview': self._overview(df, total_trades=len(trades)),
            'strategy_performance': group_performance(df.explode('strategies'), 'strategies')
            if not df.empty else [],
            'instrument_performance': group_performance(df, 'instrument'),
            'daily_pnl': self._daily_pnl(df),
            'time_based': self._time_based(df),
            'filters': {'date_from': date_from, 'date_to': date_to, 'strategy': strategy},
        }

    def _overview(self, df: pd.DataFrame, total_trades: int) -> Dict:
        overview = {
            'total_trades': total_trades,
            'closed_trades': int(len(df)),
            'open_trades': total_trades - int(len(df)),
            'winning_trades': 0,
            'losing_trades': 0,
            'win_rate': 0.0,
            'gross_pnl': 0.0,
            'total_charges': 0.0,
            'net_pnl': 0.0,
            'avg_win': None,
            'avg_loss': None,
            'profit_factor': None,
            'best_trade': None,
            'worst_trade': None,
            'expectancy': None,
            'max_drawdown': 0.0,
            'avg_holding_minutes': None,
        }
        if df.empty:
            return overview

        net = df['net_pnl'].astype(float)
        wins = net[net > 0]
        losses = net[net < 0]

        overview.update({
            'winning_trades': int(len(wins)),
            'losing_trades': int(len(losses)),
            'win_rate': _num(len(wins) / len(df) * 100),
            'gross_pnl': _num(df['gross_pnl'].sum()),
            'total_charges': _num(df['total_charges'].sum()),
            'net_pnl': _num(net.sum()),
            'avg_win': _num(wins.mean()) if not wins.empty else None,
            'avg_loss': _num(losses.mean()) if not losses.empty else None,
            'profit_factor': _num(wins.sum() / abs(losses.sum())) if not losses.empty else None,
            'best_trade': _num(net.max()),
            'worst_trade': _num(net.min()),
            'expectancy': _num(net.mean()),
            'max_drawdown': max_drawdown(net),
            'avg_holding_minutes': _num(df['holding_duration'].dropna().mean(), 1)
            if df['holding_duration'].notna().any() else None,
        })
        return overview

    def _daily_pnl(self, df: pd.DataFrame) -> List[Dict]:
        if df.empty:
            return []

        daily = df.assign(day=pd.to_datetime(df['exit_date']).dt.date) \
            .groupby('day')['net_pnl'].agg(['sum', 'count'])
        daily['cumulative'] = daily['sum'].cumsum()

        return [{
            'date': day.isoformat(),
            'net_pnl': _num(row['sum']),
            'trades': int(row['count']),
            'cumulative_pnl': _num(row['cumulative']),
        } for day, row in daily.iterrows()]

    def _time_based(self, df: pd.DataFrame) -> Dict:
        if df.empty:
            return {'by_weekday': {}, 'by_time_of_day': {}, 'by_month': {}}

        entry = pd.to_datetime(df['entry_date'])
        frame = df.assign(
            weekday=entry.dt.dayofweek.map(lambda d: WEEKDAYS[d]),
            slot=[time_slot(moment) for moment in entry],
            month=entry.dt.strftime('%Y-%m'),
        )

        def totals(key, order=None):
            grouped = frame.groupby(key)['net_pnl'].sum()
            labels = [label for label in (order or sorted(grouped.index)) if label in grouped.index]
            return {label: _num(grouped[label]) for label in labels}

        return {
            'by_weekday': totals('weekday', WEEKDAYS),
            'by_time_of_day': totals('slot', [label for _, label in TIME_SLOTS]),
            'by_month': totals('month'),
        }
