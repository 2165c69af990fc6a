"""
SQLAlchemy Models for the Trade Journal

Trades with their charges, options and hedge sub-records, tags, capital
pools with their append-only transaction ledger, predictions and settings.
"""

from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, UniqueConstraint

from pnl_calculator import PositionValues, calculate_combined_pnl

db = SQLAlchemy()

INSTRUMENT_TYPES = ('EQUITY', 'FUTURES', 'OPTIONS')
POSITION_TYPES = ('BUY', 'SELL')
TRADE_TYPES = ('INTRADAY', 'POSITIONAL')
OPTION_TYPES = ('CALL', 'PUT')
TAG_CATEGORIES = ('STRATEGY', 'EMOTIONAL', 'MARKET')
POOL_TYPES = ('TOTAL', 'EQUITY', 'FNO', 'CUSTOM')
TRANSACTION_TYPES = ('DEPOSIT', 'WITHDRAWAL', 'PROFIT', 'LOSS', 'TRANSFER_IN',
                     'TRANSFER_OUT', 'INVESTMENT', 'RETURN', 'REVERSAL')
PREDICTION_DIRECTIONS = ('BULLISH', 'BEARISH', 'NEUTRAL')
PREDICTION_STATUSES = ('PENDING', 'PASSED', 'FAILED')
PREDICTION_RESULTS = ('CORRECT', 'PARTIALLY_CORRECT', 'INCORRECT')
CSV_IMPORT_STATUSES = ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')


def utcnow():
    """Naive UTC timestamp, matching what SQLite round-trips"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def _in(column, values):
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


trade_tags = db.Table(
    'trade_tags',
    db.Column('trade_id', db.Integer, db.ForeignKey('trades.id', ondelete='CASCADE'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
)


class Tag(db.Model):
    """Strategy, emotional and market tags attached to trades"""
    __tablename__ = 'tags'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(20), nullable=False, index=True)
    color = db.Column(db.String(20), default='#6b7280')
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('category', 'name', name='unique_tag_per_category'),
        CheckConstraint(_in('category', TAG_CATEGORIES), name='check_tag_category'),
    )

    def __repr__(self):
        return f'<Tag {self.category}:{self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'color': self.color,
            'description': self.description,
            'is_active': self.is_active,
        }


class Trade(db.Model):
    """Trades table"""
    __tablename__ = 'trades'

    id = db.Column(db.Integer, primary_key=True)
    symbol = db.Column(db.String(50), nullable=False, index=True)
    instrument = db.Column(db.String(10), nullable=False, index=True)
    position = db.Column(db.String(4), nullable=False)
    trade_type = db.Column(db.String(10), nullable=False, default='POSITIONAL')
    quantity = db.Column(db.Float, nullable=False)
    entry_price = db.Column(db.Float, nullable=False)
    entry_date = db.Column(db.DateTime, nullable=False, index=True)
    exit_price = db.Column(db.Float)
    exit_date = db.Column(db.DateTime)

    # Derived values, all P&L fields stay NULL while the trade is open
    entry_value = db.Column(db.Float, nullable=False)
    exit_value = db.Column(db.Float)
    turnover = db.Column(db.Float, nullable=False)
    gross_pnl = db.Column(db.Float)
    net_pnl = db.Column(db.Float)
    total_charges = db.Column(db.Float, default=0.0)
    percentage_return = db.Column(db.Float)
    holding_duration = db.Column(db.Integer)  # minutes

    # Risk plan
    stop_loss = db.Column(db.Float)
    target = db.Column(db.Float)
    risk_reward_ratio = db.Column(db.Float)

    # Journal
    confidence_level = db.Column(db.Integer)
    emotional_state = db.Column(db.String(50))
    market_condition = db.Column(db.String(50))
    notes = db.Column(db.Text)

    # Behavioural self-assessment
    followed_risk_reward = db.Column(db.Boolean)
    followed_intraday_hunter = db.Column(db.Boolean)
    overtrading = db.Column(db.Boolean)
    waited_for_retracement = db.Column(db.Boolean)
    showed_greed = db.Column(db.Boolean)
    showed_fear = db.Column(db.Boolean)
    had_patience_while_exiting = db.Column(db.Boolean)

    capital_pool_id = db.Column(db.Integer, db.ForeignKey('capital_pools.id'), index=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    charges = db.relationship('TradeCharges', uselist=False, backref='trade',
                              cascade='all, delete-orphan')
    options_trade = db.relationship('OptionsTrade', uselist=False, backref='trade',
                                    cascade='all, delete-orphan')
    hedge_position = db.relationship('HedgePosition', uselist=False, backref='trade',
                                     cascade='all, delete-orphan')
    tags = db.relationship('Tag', secondary=trade_tags, lazy='selectin',
                           backref=db.backref('trades', lazy='dynamic'))
    capital_pool = db.relationship('CapitalPool', backref=db.backref('trades', lazy='dynamic'))

    __table_args__ = (
        CheckConstraint(_in('instrument', INSTRUMENT_TYPES), name='check_trade_instrument'),
        CheckConstraint(_in('position', POSITION_TYPES), name='check_trade_position'),
        CheckConstraint(_in('trade_type', TRADE_TYPES), name='check_trade_type'),
        CheckConstraint('quantity > 0', name='check_trade_quantity'),
        CheckConstraint('entry_price > 0', name='check_trade_entry_price'),
        CheckConstraint('exit_price IS NULL OR exit_price > 0', name='check_trade_exit_price'),
    )

    def __repr__(self):
        return f'<Trade {self.id}: {self.symbol} {self.position} {self.status}>'

    @property
    def is_closed(self):
        return self.exit_price is not None

    @property
    def status(self):
        return 'closed' if self.is_closed else 'open'

    @property
    def is_intraday_option(self):
        """Options trade opened and closed within the same day"""
        return (self.instrument == 'OPTIONS' and self.is_closed and self.exit_date is not None
                and self.exit_date.date() == self.entry_date.date())

    def tags_in(self, category):
        return [tag for tag in self.tags if tag.category == category]

    def combined_pnl(self, basis='net'):
        main = PositionValues(self.entry_value, self.exit_value,
                              self.total_charges or 0.0, self.position)
        hedge = None
        if self.hedge_position:
            hp = self.hedge_position
            hedge = PositionValues(hp.entry_value, hp.exit_value,
                                   hp.total_charges or 0.0, hp.position)
        return calculate_combined_pnl(main, hedge, basis)

    def to_dict(self, basis='net'):
        return {
            'id': self.id,
            'symbol': self.symbol,
            'instrument': self.instrument,
            'position': self.position,
            'trade_type': self.trade_type,
            'status': self.status,
            'quantity': self.quantity,
            'entry_price': self.entry_price,
            'entry_date': _iso(self.entry_date),
            'exit_price': self.exit_price,
            'exit_date': _iso(self.exit_date),
            'entry_value': self.entry_value,
            'exit_value': self.exit_value,
            'turnover': self.turnover,
            'gross_pnl': self.gross_pnl,
            'net_pnl': self.net_pnl,
            'total_charges': self.total_charges,
            'percentage_return': self.percentage_return,
            'holding_duration': self.holding_duration,
            'stop_loss': self.stop_loss,
            'target': self.target,
            'risk_reward_ratio': self.risk_reward_ratio,
            'confidence_level': self.confidence_level,
            'emotional_state': self.emotional_state,
            'market_condition': self.market_condition,
            'notes': self.notes,
            'psychology': {
                'followed_risk_reward': self.followed_risk_reward,
                'followed_intraday_hunter': self.followed_intraday_hunter,
                'overtrading': self.overtrading,
                'waited_for_retracement': self.waited_for_retracement,
                'showed_greed': self.showed_greed,
                'showed_fear': self.showed_fear,
                'had_patience_while_exiting': self.had_patience_while_exiting,
            },
            'capital_pool_id': self.capital_pool_id,
            'charges': self.charges.to_dict() if self.charges else None,
            'options': self.options_trade.to_dict() if self.options_trade else None,
            'hedge': self.hedge_position.to_dict() if self.hedge_position else None,
            'combined_pnl': self.combined_pnl(basis) if self.hedge_position else None,
            'strategy_tags': [tag.to_dict() for tag in self.tags_in('STRATEGY')],
            'emotional_tags': [tag.to_dict() for tag in self.tags_in('EMOTIONAL')],
            'market_tags': [tag.to_dict() for tag in self.tags_in('MARKET')],
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class TradeCharges(db.Model):
    """Itemised charges owned by a trade"""
    __tablename__ = 'trade_charges'

    id = db.Column(db.Integer, primary_key=True)
    trade_id = db.Column(db.Integer, db.ForeignKey('trades.id', ondelete='CASCADE'),
                         nullable=False, unique=True)
    brokerage = db.Column(db.Float, nullable=False, default=0.0)
    stt = db.Column(db.Float, nullable=False, default=0.0)
    exchange = db.Column(db.Float, nullable=False, default=0.0)
    sebi = db.Column(db.Float, nullable=False, default=0.0)
    stamp_duty = db.Column(db.Float, nullable=False, default=0.0)
    gst = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False, default=0.0)
    source = db.Column(db.String(10), nullable=False, default='server')  # server, client

    def __repr__(self):
        return f'<TradeCharges trade={self.trade_id} total={self.total:.2f}>'

    def to_dict(self):
        return {
            'brokerage': self.brokerage,
            'stt': self.stt,
            'exchange': self.exchange,
            'sebi': self.sebi,
            'stamp_duty': self.stamp_duty,
            'gst': self.gst,
            'total': self.total,
            'source': self.source,
        }


class OptionsTrade(db.Model):
    """Option contract details for OPTIONS trades"""
    __tablename__ = 'options_trades'

    id = db.Column(db.Integer, primary_key=True)
    trade_id = db.Column(db.Integer, db.ForeignKey('trades.id', ondelete='CASCADE'),
                         nullable=False, unique=True)
    option_type = db.Column(db.String(4), nullable=False)
    strike_price = db.Column(db.Float, nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)
    lot_size = db.Column(db.Integer, nullable=False)
    underlying = db.Column(db.String(50), nullable=False)

    __table_args__ = (
        CheckConstraint(_in('option_type', OPTION_TYPES), name='check_option_type'),
    )

    def to_dict(self):
        return {
            'option_type': self.option_type,
            'strike_price': self.strike_price,
            'expiry_date': _iso(self.expiry_date),
            'lot_size': self.lot_size,
            'underlying': self.underlying,
        }


class HedgePosition(db.Model):
    """Offsetting position taken alongside a trade"""
    __tablename__ = 'hedge_positions'

    id = db.Column(db.Integer, primary_key=True)
    trade_id = db.Column(db.Integer, db.ForeignKey('trades.id', ondelete='CASCADE'),
                         nullable=False, unique=True)
    instrument = db.Column(db.String(10), nullable=False)
    position = db.Column(db.String(4), nullable=False)
    quantity = db.Column(db.Float, nullable=False)
    entry_price = db.Column(db.Float, nullable=False)
    exit_price = db.Column(db.Float)
    entry_value = db.Column(db.Float, nullable=False)
    exit_value = db.Column(db.Float)
    total_charges = db.Column(db.Float, default=0.0)
    gross_pnl = db.Column(db.Float)
    net_pnl = db.Column(db.Float)

    def to_dict(self):
        return {
            'instrument': self.instrument,
            'position': self.position,
            'quantity': self.quantity,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'entry_value': self.entry_value,
            'exit_value': self.exit_value,
            'total_charges': self.total_charges,
            'gross_pnl': self.gross_pnl,
            'net_pnl': self.net_pnl,
        }


class CapitalPool(db.Model):
    """Capital pool; current_amount always equals the replay of its transactions"""
    __tablename__ = 'capital_pools'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    pool_type = db.Column(db.String(10), nullable=False, default='CUSTOM', index=True)
    initial_amount = db.Column(db.Float, nullable=False, default=0.0)
    current_amount = db.Column(db.Float, nullable=False, default=0.0)
    total_invested = db.Column(db.Float, nullable=False, default=0.0)
    total_withdrawn = db.Column(db.Float, nullable=False, default=0.0)
    total_pnl = db.Column(db.Float, nullable=False, default=0.0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    description = db.Column(db.Text)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    transactions = db.relationship('CapitalTransaction', backref='pool', lazy='dynamic',
                                   order_by='CapitalTransaction.id')

    # Compare-and-swap on every pool update; a concurrent writer raises StaleDataError
    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        CheckConstraint(_in('pool_type', POOL_TYPES), name='check_pool_type'),
    )

    def __repr__(self):
        return f'<CapitalPool {self.name}: {self.current_amount:.2f}>'

    @property
    def total_return(self):
        if not self.initial_amount:
            return 0.0
        return round(self.total_pnl / self.initial_amount * 100, 2)

    def to_dict(self, recent_transactions=0):
        data = {
            'id': self.id,
            'name': self.name,
            'pool_type': self.pool_type,
            'initial_amount': self.initial_amount,
            'current_amount': self.current_amount,
            'total_invested': self.total_invested,
            'total_withdrawn': self.total_withdrawn,
            'total_pnl': self.total_pnl,
            'total_return': self.total_return,
            'is_active': self.is_active,
            'description': self.description,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if recent_transactions:
            recent = self.transactions.order_by(None).order_by(
                CapitalTransaction.id.desc()).limit(recent_transactions).all()
            data['transactions'] = [txn.to_dict() for txn in recent]
        return data


class CapitalTransaction(db.Model):
    """Append-only ledger entry; balance_after snapshots the pool after this row"""
    __tablename__ = 'capital_transactions'

    id = db.Column(db.Integer, primary_key=True)
    pool_id = db.Column(db.Integer, db.ForeignKey('capital_pools.id'), nullable=False, index=True)
    transaction_type = db.Column(db.String(15), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.Text)
    reference_id = db.Column(db.String(50), index=True)
    reference_type = db.Column(db.String(20))
    balance_after = db.Column(db.Float, nullable=False)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey('capital_transactions.id'),
                               unique=True)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    reversal_of = db.relationship('CapitalTransaction', remote_side=[id],
                                  backref=db.backref('reversed_by', uselist=False))

    __table_args__ = (
        CheckConstraint(_in('transaction_type', TRANSACTION_TYPES), name='check_transaction_type'),
        CheckConstraint('amount > 0', name='check_transaction_amount'),
    )

    def __repr__(self):
        return f'<CapitalTransaction {self.id}: {self.transaction_type} {self.amount:.2f}>'

    @property
    def is_reversed(self):
        return self.reversed_by is not None

    def to_dict(self):
        return {
            'id': self.id,
            'pool_id': self.pool_id,
            'transaction_type': self.transaction_type,
            'amount': self.amount,
            'description': self.description,
            'reference_id': self.reference_id,
            'reference_type': self.reference_type,
            'balance_after': self.balance_after,
            'reversal_of_id': self.reversal_of_id,
            'is_reversed': self.is_reversed,
            'created_at': _iso(self.created_at),
        }


class Prediction(db.Model):
    """Market direction predictions, tracked independently of trades"""
    __tablename__ = 'predictions'

    id = db.Column(db.Integer, primary_key=True)
    prediction_date = db.Column(db.DateTime, nullable=False, index=True)
    strategy = db.Column(db.String(100), nullable=False, index=True)
    direction = db.Column(db.String(10), nullable=False)
    confidence = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(10), nullable=False, default='PENDING', index=True)
    result = db.Column(db.String(20))
    strategy_notes = db.Column(db.Text)
    failure_reason = db.Column(db.Text)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(_in('direction', PREDICTION_DIRECTIONS), name='check_prediction_direction'),
        CheckConstraint(_in('status', PREDICTION_STATUSES), name='check_prediction_status'),
        CheckConstraint('confidence BETWEEN 1 AND 10', name='check_prediction_confidence'),
    )

    def __repr__(self):
        return f'<Prediction {self.id}: {self.strategy} {self.direction} {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'prediction_date': _iso(self.prediction_date),
            'strategy': self.strategy,
            'direction': self.direction,
            'confidence': self.confidence,
            'status': self.status,
            'result': self.result,
            'strategy_notes': self.strategy_notes,
            'failure_reason': self.failure_reason,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class AppSettings(db.Model):
    """Single-row application settings, grouped into categories by SettingsService"""
    __tablename__ = 'app_settings'

    id = db.Column(db.Integer, primary_key=True)

    # GENERAL
    default_instrument = db.Column(db.String(10), nullable=False, default='EQUITY')
    default_position = db.Column(db.String(4), nullable=False, default='BUY')
    default_lot_size = db.Column(db.Integer)
    auto_calculate_charges = db.Column(db.Boolean, nullable=False, default=True)
    require_strategy_tag = db.Column(db.Boolean, nullable=False, default=False)

    # DISPLAY
    currency_symbol = db.Column(db.String(5), nullable=False, default='₹')
    decimal_places = db.Column(db.Integer, nullable=False, default=2)
    thousands_separator = db.Column(db.String(10), nullable=False, default='comma')
    date_format = db.Column(db.String(20), nullable=False, default='DD/MM/YYYY')
    time_format = db.Column(db.String(5), nullable=False, default='24')
    theme = db.Column(db.String(10), nullable=False, default='light')

    # TABLE
    default_page_size = db.Column(db.Integer, nullable=False, default=50)
    dense_mode = db.Column(db.Boolean, nullable=False, default=False)
    zebra_striping = db.Column(db.Boolean, nullable=False, default=True)
    sticky_headers = db.Column(db.Boolean, nullable=False, default=True)
    auto_refresh = db.Column(db.Boolean, nullable=False, default=True)

    # EXPORT
    default_export_format = db.Column(db.String(10), nullable=False, default='excel')
    include_filters = db.Column(db.Boolean, nullable=False, default=True)
    include_charts = db.Column(db.Boolean, nullable=False, default=True)
    file_naming_template = db.Column(db.String(100), nullable=False,
                                     default='TradeJournal_YYYY-MM-DD')

    # BACKUP
    keep_trade_history = db.Column(db.String(20), nullable=False, default='forever')
    auto_backup_frequency = db.Column(db.String(20), nullable=False, default='weekly')

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class CsvImport(db.Model):
    """History of symbol CSV imports"""
    __tablename__ = 'csv_imports'

    id = db.Column(db.Integer, primary_key=True)
    file_name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(12), nullable=False, default='PENDING', index=True)
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    imported_rows = db.Column(db.Integer, nullable=False, default=0)
    failed_rows = db.Column(db.Integer, nullable=False, default=0)
    duplicate_rows = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime)

    __table_args__ = (
        CheckConstraint(_in('status', CSV_IMPORT_STATUSES), name='check_csv_import_status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'file_name': self.file_name,
            'status': self.status,
            'total_rows': self.total_rows,
            'imported_rows': self.imported_rows,
            'failed_rows': self.failed_rows,
            'duplicate_rows': self.duplicate_rows,
            'error_message': self.error_message,
            'created_at': _iso(self.created_at),
            'completed_at': _iso(self.completed_at),
        }
