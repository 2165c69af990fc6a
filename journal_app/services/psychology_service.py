"""
Psychology Service

Turns the behavioural self-assessment flags recorded on trades into scores,
behaviour pattern counts, mood versus performance figures and rule-based
insights.
"""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..models import Trade
from .trade_service import filter_trades

logger = logging.getLogger(__name__)

FLAG_COLUMNS = ['followed_risk_reward', 'followed_intraday_hunter', 'overtrading',
                'waited_for_retracement', 'showed_greed', 'showed_fear',
                'had_patience_while_exiting']

# Score thresholds below which an insight is raised
DISCIPLINE_THRESHOLD = 60
RISK_MANAGEMENT_THRESHOLD = 70
EMOTIONAL_CONTROL_THRESHOLD = 50
PATIENCE_THRESHOLD = 60

MIN_CORRELATION_SAMPLES = 3


def _count(series: pd.Series, value: bool) -> int:
    return int((series == value).sum())


def _round(value, digits: int = 2) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return round(float(value), digits)


def pearson(x: pd.Series, y: pd.Series) -> Optional[float]:
    """Pearson correlation; None with too few samples or no variance"""
    pairs = pd.DataFrame({'x': x, 'y': y}).dropna()
    if len(pairs) < MIN_CORRELATION_SAMPLES:
        return None
    xs = pairs['x'].to_numpy(dtype=float)
    ys = pairs['y'].to_numpy(dtype=float)
    if np.std(xs) == 0 or np.std(ys) == 0:
        return None
    return round(float(np.corrcoef(xs, ys)[0, 1]), 3)


def psychology_frame(trades: List[Trade]) -> pd.DataFrame:
    rows = []
    for trade in trades:
        row = {name: getattr(trade, name) for name in FLAG_COLUMNS}
        row.update({
            'id': trade.id,
            'entry_date': trade.entry_date,
            'net_pnl': trade.net_pnl,
            'confidence_level': trade.confidence_level,
            'emotional_state': trade.emotional_state,
            'holding_duration': trade.holding_duration,
        })
        rows.append(row)
    columns = FLAG_COLUMNS + ['id', 'entry_date', 'net_pnl', 'confidence_level',
                              'emotional_state', 'holding_duration']
    return pd.DataFrame(rows, columns=columns).astype({name: object for name in FLAG_COLUMNS})


class PsychologyService:
    """Behavioural analytics over journal trades"""

    def get_analysis(self, date_from: Optional[str] = None, date_to: Optional[str] = None,
                     strategy: Optional[str] = None) -> Dict:
        trades = filter_trades(Trade.query, date_from, date_to, strategy) \
            .order_by(Trade.entry_date).all()
        df = psychology_frame(trades)

        scores = self._scores(df)
        patterns = self._behaviour_patterns(df)
        emotional = self._emotional_analysis(df)
        mood = self._mood_performance(df)

        closed = df[df['net_pnl'].notna()]
        win_rate = round(float((closed['net_pnl'] > 0).mean() * 100), 2) if len(closed) else 0.0

        logger.debug(f"Psychology analysis over {len(df)} trades")

        return {
            'overview': dict(scores,
                             total_trades=int(len(df)),
                             average_pnl=_round(closed['net_pnl'].mean()) if len(closed) else 0.0,
                             win_rate=win_rate),
            'behaviour_patterns': patterns,
            'emotional_analysis': emotional,
            'mood_performance': mood,
            'discipline_trend': self._discipline_trend(df),
            'insights': self._insights(scores, emotional),
            'recommendations': self._recommendations(scores, patterns),
        }

    def _scores(self, df: pd.DataFrame) -> Dict[str, int]:
        total = len(df)
        if total == 0:
            return {'discipline_score': 0, 'risk_management_score': 0,
                    'emotional_control_score': 0, 'patience_score': 0}

        discipline_flags = ['followed_risk_reward', 'followed_intraday_hunter',
                            'waited_for_retracement', 'had_patience_while_exiting']
        followed = sum(_count(df[name], True) for name in discipline_flags)
        controlled = _count(df['showed_greed'], False) + _count(df['showed_fear'], False)

        return {
            'discipline_score': round(followed / (len(discipline_flags) * total) * 100),
            'risk_management_score': round(_count(df['followed_risk_reward'], True) / total * 100),
            'emotional_control_score': round(controlled / (2 * total) * 100),
            'patience_score': round(_count(df['had_patience_while_exiting'], True) / total * 100),
        }

    def _behaviour_patterns(self, df: pd.DataFrame) -> Dict:
        trades_per_day = 0.0
        if len(df):
            trades_per_day = round(float(df.groupby(pd.to_datetime(df['entry_date']).dt.date).size().mean()), 2)

        return {
            'risk_reward_adherence': {
                'followed': _count(df['followed_risk_reward'], True),
                'deviated': _count(df['followed_risk_reward'], False),
            },
            'intraday_hunter': {
                'followed': _count(df['followed_intraday_hunter'], True),
                'deviated': _count(df['followed_intraday_hunter'], False),
            },
            'overtrading': {
                'controlled': _count(df['overtrading'], False),
                'excessive': _count(df['overtrading'], True),
                'average_trades_per_day': trades_per_day,
            },
            'retracement_patience': {
                'waited': _count(df['waited_for_retracement'], True),
                'premature': _count(df['waited_for_retracement'], False),
            },
        }

    def _flag_impact(self, df: pd.DataFrame, flag: str) -> Dict:
        """How often a flag was raised and its effect on average net P&L"""
        total = len(df)
        raised = df[df[flag] == True]  # noqa: E712
        clear = df[df[flag] == False]  # noqa: E712
        impact = None
        if raised['net_pnl'].notna().any() and clear['net_pnl'].notna().any():
            impact = _round(raised['net_pnl'].mean() - clear['net_pnl'].mean())
        return {
            'frequency': round(len(raised) / total * 100, 2) if total else 0.0,
            'impact': impact,
        }

    def _emotional_analysis(self, df: pd.DataFrame) -> Dict:
        return {
            'greed': self._flag_impact(df, 'showed_greed'),
            'fear': self._flag_impact(df, 'showed_fear'),
            'overtrading': self._flag_impact(df, 'overtrading'),
        }

    def _mood_performance(self, df: pd.DataFrame) -> Dict:
        closed = df[df['net_pnl'].notna()]

        by_state = []
        states = closed[closed['emotional_state'].notna()]
        for state, group in states.groupby('emotional_state'):
            by_state.append({
                'emotional_state': state,
                'trades': int(len(group)),
                'win_rate': round(float((group['net_pnl'] > 0).mean() * 100), 2),
                'avg_net_pnl': _round(group['net_pnl'].mean()),
            })
        by_state.sort(key=lambda item: item['avg_net_pnl'], reverse=True)

        return {
            'by_emotional_state': by_state,
            'confidence_vs_pnl': pearson(closed['confidence_level'], closed['net_pnl']),
        }

    def _discipline_trend(self, df: pd.DataFrame) -> List[Dict]:
        if df.empty:
            return []
        months = pd.to_datetime(df['entry_date']).dt.strftime('%Y-%m')
        trend = []
        for month, group in df.groupby(months):
            trend.append({'month': month, 'trades': int(len(group)), **self._scores(group)})
        return trend

    def _insights(self, scores: Dict, emotional: Dict) -> List[Dict]:
        insights = []
        if scores['discipline_score'] < DISCIPLINE_THRESHOLD:
            insights.append({
                'type': 'warning',
                'title': 'Low discipline',
                'message': f"Trading rules were followed in only {scores['discipline_score']}% of cases.",
            })
        if scores['risk_management_score'] < RISK_MANAGEMENT_THRESHOLD:
            insights.append({
                'type': 'warning',
                'title': 'Risk-reward not respected',
                'message': f"Risk-reward plan followed in {scores['risk_management_score']}% of trades.",
            })
        if scores['emotional_control_score'] < EMOTIONAL_CONTROL_THRESHOLD:
            insights.append({
                'type': 'warning',
                'title': 'Emotions driving trades',
                'message': 'Greed or fear showed up in most assessed trades.',
            })
        greed_impact = emotional['greed']['impact']
        if greed_impact is not None and greed_impact < 0:
            insights.append({
                'type': 'info',
                'title': 'Greed is costly',
                'message': f'Trades with greed averaged {abs(greed_impact):.2f} less net P&L.',
            })
        if scores['discipline_score'] >= 80:
            insights.append({
                'type': 'success',
                'title': 'Strong discipline',
                'message': 'Trading rules were followed consistently.',
            })
        return insights

    def _recommendations(self, scores: Dict, patterns: Dict) -> List[str]:
        recommendations = []
        if scores['risk_management_score'] < RISK_MANAGEMENT_THRESHOLD:
            recommendations.append('Define stop loss and target before entry and honour them.')
        if scores['patience_score'] < PATIENCE_THRESHOLD:
            recommendations.append('Let winners reach their target instead of exiting early.')
        if patterns['overtrading']['excessive'] > patterns['overtrading']['controlled']:
            recommendations.append('Cap the number of trades per day.')
        if patterns['retracement_patience']['premature'] > patterns['retracement_patience']['waited']:
            recommendations.append('Wait for a retracement before entering.')
        if scores['emotional_control_score'] < EMOTIONAL_CONTROL_THRESHOLD:
            recommendations.append('Pause after a strong win or loss before the next trade.')
        return recommendations
