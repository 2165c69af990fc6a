"""
Trade Service Layer

Creates, updates, exits and deletes journal trades. Each operation runs as a
single unit of work through CapitalLedger.atomic, so the trade row, its
sub-records, its tags and its ledger entries commit or roll back together.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from flask import current_app
from sqlalchemy import and_, or_

from charge_schedule import ChargeBreakdown, calculate_charges
from pnl_calculator import (POSITION_ALIASES, calculate_pnl, calculate_risk_reward,
                            calculate_holding_duration, inverse_position)
from ..errors import DuplicateTradeError, NotFoundError, ValidationError
from ..forms import (TradeForm, TradeUpdateForm, ExitTradeForm, validate_payload,
                     JOURNAL_FIELDS, TAG_FIELDS)
from ..models import (db, utcnow, Trade, TradeCharges, OptionsTrade, HedgePosition,
                      CapitalPool, Tag)
from .capital_service import CapitalLedger
from .settings_service import SettingsService
from .tag_service import TagService

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    'entry_date': Trade.entry_date,
    'exit_date': Trade.exit_date,
    'created_at': Trade.created_at,
    'symbol': Trade.symbol,
    'quantity': Trade.quantity,
    'entry_price': Trade.entry_price,
    'gross_pnl': Trade.gross_pnl,
    'net_pnl': Trade.net_pnl,
    'percentage_return': Trade.percentage_return,
    'total_charges': Trade.total_charges,
}


def parse_date_param(value: Optional[str], name: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a date or datetime query parameter.

    A bare date used as an upper bound covers the whole day, so the returned
    value is the exclusive start of the next day.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError({name: ['Not a valid ISO 8601 date']})
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    if end_of_day and len(value.strip()) == 10:
        parsed += timedelta(days=1)
    return parsed


def filter_trades(query, date_from=None, date_to=None, strategy=None):
    """Date-range and strategy-tag filters shared by listing and analytics"""
    start = parse_date_param(date_from, 'date_from')
    end = parse_date_param(date_to, 'date_to', end_of_day=True)
    if start:
        query = query.filter(Trade.entry_date >= start)
    if end:
        if date_to and len(date_to.strip()) == 10:
            query = query.filter(Trade.entry_date < end)
        else:
            query = query.filter(Trade.entry_date <= end)
    if strategy:
        match = Tag.name == strategy
        if strategy.isdigit():
            match = or_(match, Tag.id == int(strategy))
        query = query.filter(Trade.tags.any(and_(Tag.category == 'STRATEGY', match)))
    return query


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class TradeService:
    """Service for trade operations in Flask app"""

    def __init__(self, ledger: Optional[CapitalLedger] = None, tags: Optional[TagService] = None):
        self.ledger = ledger or CapitalLedger()
        self.tags = tags or TagService()

    @property
    def config(self):
        return current_app.config

    @property
    def basis(self) -> str:
        return self.config.get('RETURN_BASIS', 'net')

    # ---------- create ----------

    def create_trade(self, payload: Dict) -> Trade:
        """
        Validate and record a trade.

        Raises:
            ValidationError: payload violations, all fields reported at once
            DuplicateTradeError: identical trade inside the duplicate window
            InsufficientBalanceError: linked pool cannot fund the entry value
        """
        form = validate_payload(TradeForm, payload)
        general = SettingsService().get_category('GENERAL')
        if general.require_strategy_tag and not form.strategy_tags.data:
            raise ValidationError({'strategy_tags': ['At least one strategy tag is required']})

        def work():
            self._check_duplicate(form)
            trade = self._build_trade(form)
            db.session.add(trade)
            db.session.flush()

            self._attach_tags(trade, form)
            self.ledger.settle_trade_entry(trade)
            return trade
        work.pool_id = form.capital_pool_id.data

        trade = self.ledger.atomic(work)
        logger.info(f"Created trade {trade.id}: {trade.symbol} {trade.position} "
                    f"{trade.quantity} @ {trade.entry_price}")
        return trade

    def _check_duplicate(self, form: TradeForm):
        window = self.config.get('DUPLICATE_WINDOW_SECONDS', 300)
        cutoff = utcnow() - timedelta(seconds=window)

        existing = Trade.query.filter(
            Trade.symbol == form.symbol.data,
            Trade.position == form.position.data,
            Trade.instrument == form.instrument.data,
            Trade.quantity == form.quantity.data,
            Trade.entry_price == form.entry_price.data,
            Trade.created_at >= cutoff,
        ).order_by(Trade.id.desc()).first()

        if existing is not None:
            logger.warning(f"Rejected duplicate of trade {existing.id} ({existing.symbol})")
            raise DuplicateTradeError(existing.id, window)

    def _resolve_charges(self, submitted: Optional[Dict], entry_value: float,
                         exit_value: Optional[float], instrument: str,
                         position: str) -> Tuple[ChargeBreakdown, str]:
        """Server-computed charges, unless client charges are trusted and consistent"""
        if submitted and self.config.get('TRUST_CLIENT_CHARGES'):
            components = {name: submitted.get(name) or 0.0 for name in ChargeBreakdown.COMPONENTS}
            breakdown = ChargeBreakdown(**components)
            total = submitted.get('total')
            breakdown.total = breakdown.components_sum() if total is None else round(total, 2)
            if not breakdown.is_consistent():
                raise ValidationError({'charges': {'total': [
                    f'Total {breakdown.total:.2f} does not equal the sum of components '
                    f'{breakdown.components_sum():.2f}']}})
            return breakdown, 'client'

        breakdown = calculate_charges(entry_value, exit_value or 0.0, instrument, position,
                                      self.config.get('CHARGE_RATES'))
        if submitted and submitted.get('total') is not None \
                and abs(submitted['total'] - breakdown.total) > 0.01:
            logger.info(f"Client charges {submitted['total']:.2f} replaced by computed "
                        f"{breakdown.total:.2f}")
        return breakdown, 'server'

    def _build_trade(self, form: TradeForm) -> Trade:
        pool_id = form.capital_pool_id.data
        if pool_id is not None and db.session.get(CapitalPool, pool_id) is None:
            raise ValidationError({'capital_pool_id': [f'Capital pool {pool_id} not found']})

        quantity = form.quantity.data
        entry_value = round(quantity * form.entry_price.data, 2)
        exit_value = None
        if form.exit_price.data is not None:
            exit_value = round(quantity * form.exit_price.data, 2)

        charges, source = self._resolve_charges(form.charges.data, entry_value, exit_value,
                                                form.instrument.data, form.position.data)
        pnl = calculate_pnl(entry_value, exit_value, charges.total, form.position.data, self.basis)

        entry_date, exit_date = form.entry_date.data, form.exit_date.data
        trade_type = form.trade_type.data
        if not trade_type:
            same_day = exit_date is not None and exit_date.date() == entry_date.date()
            trade_type = 'INTRADAY' if same_day else 'POSITIONAL'

        trade = Trade(
            symbol=form.symbol.data,
            instrument=form.instrument.data,
            position=form.position.data,
            trade_type=trade_type,
            quantity=quantity,
            entry_price=form.entry_price.data,
            entry_date=entry_date,
            exit_price=form.exit_price.data,
            exit_date=exit_date,
            entry_value=entry_value,
            exit_value=exit_value,
            turnover=round(entry_value + (exit_value or 0.0), 2),
            gross_pnl=pnl.gross_pnl,
            net_pnl=pnl.net_pnl,
            total_charges=charges.total,
            percentage_return=pnl.percentage_return,
            holding_duration=calculate_holding_duration(entry_date, exit_date),
            risk_reward_ratio=calculate_risk_reward(form.entry_price.data, form.stop_loss.data,
                                                    form.target.data),
            capital_pool_id=pool_id,
        )
        for name in JOURNAL_FIELDS:
            setattr(trade, name, _blank_to_none(getattr(form, name).data))

        trade.charges = TradeCharges(source=source, **charges.to_dict())

        if form.options.data:
            trade.options_trade = OptionsTrade(**form.options.data)

        if form.hedge.data:
            trade.hedge_position = self._build_hedge(form.hedge.data, trade)

        return trade

    def _build_hedge(self, data: Dict, trade: Trade) -> HedgePosition:
        position = data.get('position') or inverse_position(trade.position)
        instrument = data.get('instrument') or trade.instrument
        entry_value = round(data['quantity'] * data['entry_price'], 2)
        exit_value = None
        if data.get('exit_price') is not None:
            exit_value = round(data['quantity'] * data['exit_price'], 2)

        if data.get('total_charges') is not None and self.config.get('TRUST_CLIENT_CHARGES'):
            charges_total = round(data['total_charges'], 2)
        else:
            charges_total = calculate_charges(entry_value, exit_value or 0.0, instrument, position,
                                              self.config.get('CHARGE_RATES')).total

        pnl = calculate_pnl(entry_value, exit_value, charges_total, position, self.basis)
        return HedgePosition(
            instrument=instrument,
            position=position,
            quantity=data['quantity'],
            entry_price=data['entry_price'],
            exit_price=data.get('exit_price'),
            entry_value=entry_value,
            exit_value=exit_value,
            total_charges=charges_total,
            gross_pnl=pnl.gross_pnl,
            net_pnl=pnl.net_pnl,
        )

    def _attach_tags(self, trade: Trade, form, categories=None):
        for field_name, category in TAG_FIELDS.items():
            if categories is not None and field_name not in categories:
                continue
            references = getattr(form, field_name).data
            resolved = self.tags.resolve_many(references, category)
            trade.tags = [tag for tag in trade.tags if tag.category != category] + resolved

    # ---------- read ----------

    def get_trade(self, trade_id: int) -> Trade:
        trade = db.session.get(Trade, trade_id)
        if trade is None:
            raise NotFoundError(f'Trade {trade_id} not found')
        return trade

    def list_trades(self, args) -> Dict:
        """Filtered, sorted and paginated trade list"""
        per_page = self.config.get('ITEMS_PER_PAGE', 50)
        max_page_size = self.config.get('MAX_PAGE_SIZE', 200)

        page = max(args.get('page', 1, type=int) or 1, 1)
        limit = min(max(args.get('limit', per_page, type=int) or per_page, 1), max_page_size)

        query = filter_trades(Trade.query, args.get('date_from'), args.get('date_to'),
                              args.get('strategy'))

        search = (args.get('search') or '').strip()
        if search:
            pattern = f'%{search}%'
            query = query.filter(or_(Trade.symbol.ilike(pattern), Trade.notes.ilike(pattern)))

        instrument = args.get('instrument_type') or args.get('instrument')
        if instrument:
            query = query.filter(Trade.instrument == instrument.upper())

        side = args.get('side') or args.get('position')
        if side:
            query = query.filter(Trade.position == POSITION_ALIASES.get(side.upper(), side.upper()))

        status = (args.get('status') or '').lower()
        if status == 'open':
            query = query.filter(Trade.exit_price.is_(None))
        elif status == 'closed':
            query = query.filter(Trade.exit_price.isnot(None))
        elif status:
            raise ValidationError({'status': ['Status must be open or closed']})

        sort_by = args.get('sort_by', 'entry_date')
        sort_order = (args.get('sort_order') or 'desc').lower()
        if sort_by not in SORT_FIELDS:
            raise ValidationError({'sort_by': [f'Sort field must be one of {", ".join(SORT_FIELDS)}']})
        if sort_order not in ('asc', 'desc'):
            raise ValidationError({'sort_order': ['Sort order must be asc or desc']})

        column = SORT_FIELDS[sort_by]
        ordering = column.asc() if sort_order == 'asc' else column.desc()

        total = query.count()
        trades = query.order_by(ordering, Trade.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            'trades': [trade.to_dict(self.basis) for trade in trades],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if total else 0,
            },
        }

    # ---------- update / exit / delete ----------

    def update_trade(self, trade_id: int, payload: Dict) -> Trade:
        """Edit journal, psychology and tag fields of a trade"""
        trade = self.get_trade(trade_id)
        form = validate_payload(TradeUpdateForm, payload)

        try:
            for name in JOURNAL_FIELDS:
                if name in form.submitted_keys:
                    setattr(trade, name, _blank_to_none(getattr(form, name).data))

            if {'stop_loss', 'target'} & form.submitted_keys:
                trade.risk_reward_ratio = calculate_risk_reward(trade.entry_price, trade.stop_loss,
                                                                trade.target)

            self._attach_tags(trade, form, categories=form.submitted_keys)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Updated trade {trade.id}")
        return trade

    def exit_trade(self, trade_id: int, payload: Dict) -> Trade:
        """Close an open trade, recompute charges and P&L, and settle the ledger"""
        form = validate_payload(ExitTradeForm, payload)

        def work():
            trade = self.get_trade(trade_id)
            if trade.is_closed:
                raise ValidationError({'exit_price': [f'Trade {trade.id} is already closed']})
            if form.exit_date.data < trade.entry_date:
                raise ValidationError({'exit_date': ['Exit date cannot be before entry date']})

            trade.exit_price = form.exit_price.data
            trade.exit_date = form.exit_date.data
            trade.exit_value = round(trade.quantity * trade.exit_price, 2)
            trade.turnover = round(trade.entry_value + trade.exit_value, 2)

            if trade.charges is None or trade.charges.source == 'server':
                breakdown = calculate_charges(trade.entry_value, trade.exit_value, trade.instrument,
                                              trade.position, self.config.get('CHARGE_RATES'))
                if trade.charges is None:
                    trade.charges = TradeCharges(source='server')
                for name, value in breakdown.to_dict().items():
                    setattr(trade.charges, name, value)
                trade.total_charges = breakdown.total

            pnl = calculate_pnl(trade.entry_value, trade.exit_value, trade.total_charges,
                                trade.position, self.basis)
            trade.gross_pnl = pnl.gross_pnl
            trade.net_pnl = pnl.net_pnl
            trade.percentage_return = pnl.percentage_return
            trade.holding_duration = calculate_holding_duration(trade.entry_date, trade.exit_date)

            hedge = trade.hedge_position
            if hedge is not None and hedge.exit_price is None and form.hedge_exit_price.data:
                self._close_hedge(hedge, form.hedge_exit_price.data)

            db.session.flush()
            self.ledger.settle_trade_exit(trade)
            return trade
        work.pool_id = self.get_trade(trade_id).capital_pool_id

        trade = self.ledger.atomic(work)
        logger.info(f"Closed trade {trade.id} at {trade.exit_price}: net P&L {trade.net_pnl}")
        return trade

    def _close_hedge(self, hedge: HedgePosition, exit_price: float):
        hedge.exit_price = exit_price
        hedge.exit_value = round(hedge.quantity * exit_price, 2)
        if not self.config.get('TRUST_CLIENT_CHARGES'):
            hedge.total_charges = calculate_charges(hedge.entry_value, hedge.exit_value,
                                                    hedge.instrument, hedge.position,
                                                    self.config.get('CHARGE_RATES')).total
        pnl = calculate_pnl(hedge.entry_value, hedge.exit_value, hedge.total_charges,
                            hedge.position, self.basis)
        hedge.gross_pnl = pnl.gross_pnl
        hedge.net_pnl = pnl.net_pnl

    def delete_trade(self, trade_id: int) -> Dict:
        """Delete a trade after compensating every ledger entry it produced"""
        def work():
            trade = self.get_trade(trade_id)
            reversals = self.ledger.reverse_trade_transactions(trade)
            db.session.delete(trade)
            return {'id': trade_id, 'reversed_transactions': [txn.id for txn in reversals]}
        work.pool_id = self.get_trade(trade_id).capital_pool_id

        result = self.ledger.atomic(work)
        logger.info(f"Deleted trade {trade_id} ({len(result['reversed_transactions'])} ledger reversals)")
        return result

    # ---------- portfolio ----------

    def get_open_positions(self) -> Dict:
        """Open positions with exposure by instrument and concentration risk"""
        open_trades = Trade.query.filter(Trade.exit_price.is_(None)) \
            .order_by(Trade.entry_date.desc()).all()

        positions = []
        allocation = {}
        total_invested = 0.0
        for trade in open_trades:
            strategy = trade.tags_in('STRATEGY')
            positions.append({
                'id': trade.id,
                'symbol': trade.symbol,
                'instrument': trade.instrument,
                'position': trade.position,
                'quantity': trade.quantity,
                'entry_price': trade.entry_price,
                'entry_date': trade.entry_date.isoformat(),
                'invested': trade.entry_value,
                'strategy': strategy[0].name if strategy else None,
                'capital_pool_id': trade.capital_pool_id,
            })
            total_invested += trade.entry_value
            bucket = allocation.setdefault(trade.instrument, {'count': 0, 'value': 0.0})
            bucket['count'] += 1
            bucket['value'] = round(bucket['value'] + trade.entry_value, 2)

        for bucket in allocation.values():
            bucket['percentage'] = round(bucket['value'] / total_invested * 100, 2) if total_invested else 0.0

        largest = max((p['invested'] for p in positions), default=0.0)
        realized = db.session.query(db.func.coalesce(db.func.sum(Trade.net_pnl), 0.0)) \
            .filter(Trade.exit_price.isnot(None)).scalar()

        return {
            'positions': positions,
            'summary': {
                'open_positions': len(positions),
                'total_invested': round(total_invested, 2),
                'realized_pnl': round(realized or 0.0, 2),
                'concentration_risk': round(largest / total_invested * 100, 2) if total_invested else 0.0,
            },
            'allocation': allocation,
        }
