"""
Request validation forms

JSON payloads are flattened into a MultiDict ("charges-brokerage",
"strategy_tags-0", ...) so nested FormField / FieldList structures validate
in a single pass and form.errors lists every violation at once.
"""

from datetime import datetime, timezone

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import (Form, Field, FormField, FieldList, StringField, FloatField,
                     IntegerField, SelectField, DateField)
from wtforms.utils import unset_value
from wtforms.validators import InputRequired, Optional, NumberRange, Length
from wtforms.validators import ValidationError as FieldError

from pnl_calculator import POSITION_ALIASES
from .errors import ValidationError
from .models import (INSTRUMENT_TYPES, POSITION_TYPES, TRADE_TYPES, OPTION_TYPES,
                     PREDICTION_DIRECTIONS, PREDICTION_STATUSES, PREDICTION_RESULTS)

MANUAL_TRANSACTION_TYPES = ('DEPOSIT', 'WITHDRAWAL', 'PROFIT', 'LOSS',
                            'TRANSFER_IN', 'TRANSFER_OUT')
# Written only by trade settlement and transfers
RESERVED_REFERENCE_TYPES = ('TRADE', 'TRANSFER')
OPTION_ALIASES = {'CE': 'CALL', 'PE': 'PUT'}


def flatten_payload(payload, prefix=''):
    """Flatten nested JSON into (key, str) pairs using WTForms naming"""
    items = []
    for key, value in payload.items():
        name = f'{prefix}{key}'
        if value is None:
            continue
        if isinstance(value, dict):
            items.extend(flatten_payload(value, f'{name}-'))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                if isinstance(item, dict):
                    items.extend(flatten_payload(item, f'{name}-{index}-'))
                elif item is not None:
                    items.append((f'{name}-{index}', _scalar(item)))
        else:
            items.append((name, _scalar(value)))
    return items


def _scalar(value):
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _upper(value):
    return str(value).strip().upper()


def _position(value):
    value = _upper(value)
    return POSITION_ALIASES.get(value, value)


def _option_type(value):
    value = _upper(value)
    return OPTION_ALIASES.get(value, value)


def _strip_upper(value):
    return value.strip().upper() if isinstance(value, str) else value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def positive(form, field):
    if field.data is not None and field.data <= 0:
        raise FieldError(f'{field.label.text} must be positive')


def unreserved_reference(form, field):
    if field.data and field.data.strip().upper() in RESERVED_REFERENCE_TYPES:
        raise FieldError(f'Reference type {field.data.strip().upper()} is reserved')


class IsoDateTimeField(Field):
    """ISO 8601 datetime; aware values are normalised to naive UTC"""

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        raw = valuelist[0].strip()
        try:
            value = datetime.fromisoformat(raw.replace('Z', '+00:00'))
        except ValueError:
            self.data = None
            raise ValueError('Not a valid ISO 8601 datetime.')
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        self.data = value


class OptionalBooleanField(Field):
    """Boolean that stays None when the key is absent (not assessed)"""
    TRUE_VALUES = ('true', '1', 'yes')
    FALSE_VALUES = ('false', '0', 'no')

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        value = valuelist[0].strip().lower()
        if value in self.TRUE_VALUES:
            self.data = True
        elif value in self.FALSE_VALUES:
            self.data = False
        else:
            self.data = None
            raise ValueError('Not a valid boolean value.')


class OptionalFormField(FormField):
    """FormField skipped entirely when none of its keys were submitted"""

    submitted = False

    def process(self, formdata, data=unset_value, extra_filters=None):
        prefix = self.name + self.separator
        self.submitted = formdata is not None and any(key.startswith(prefix) for key in formdata)
        super().process(formdata, data, extra_filters)

    def validate(self, form, extra_validators=()):
        if not self.submitted:
            return True
        return super().validate(form, extra_validators)

    @property
    def data(self):
        return self.form.data if self.submitted else None


class JSONForm(FlaskForm):
    """Base form for JSON request bodies"""

    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, payload):
        if not isinstance(payload, dict):
            raise ValidationError({'body': ['Expected a JSON object']})
        form = cls(formdata=MultiDict(flatten_payload(payload)))
        form.submitted_keys = set(payload)
        return form

    def field_error(self, field, message):
        if not isinstance(field.errors, list):
            field.errors = list(field.errors)
        field.errors.append(message)


def validate_payload(form_cls, payload):
    """Validate a JSON payload, raising ValidationError with every field issue"""
    form = form_cls.from_json(payload)
    if not form.validate():
        raise ValidationError(form.errors)
    return form


# ---------- trade sub-forms ----------

class ChargesForm(Form):
    brokerage = FloatField('Brokerage', [Optional(), NumberRange(min=0)])
    stt = FloatField('STT', [Optional(), NumberRange(min=0)])
    exchange = FloatField('Exchange charges', [Optional(), NumberRange(min=0)])
    sebi = FloatField('SEBI fee', [Optional(), NumberRange(min=0)])
    stamp_duty = FloatField('Stamp duty', [Optional(), NumberRange(min=0)])
    gst = FloatField('GST', [Optional(), NumberRange(min=0)])
    total = FloatField('Total charges', [Optional(), NumberRange(min=0)])


class OptionsForm(Form):
    option_type = SelectField('Option type', choices=OPTION_TYPES, coerce=_option_type,
                              validators=[InputRequired()])
    strike_price = FloatField('Strike price', [InputRequired(), positive])
    expiry_date = DateField('Expiry date', [InputRequired()])
    lot_size = IntegerField('Lot size', [InputRequired(), NumberRange(min=1)])
    underlying = StringField('Underlying', [InputRequired(), Length(min=1, max=50)],
                             filters=[_strip_upper])


class HedgeForm(Form):
    instrument = SelectField('Hedge instrument', choices=INSTRUMENT_TYPES, coerce=_upper,
                             validators=[Optional()])
    position = SelectField('Hedge position', choices=POSITION_TYPES, coerce=_position,
                           validators=[Optional()])
    quantity = FloatField('Hedge quantity', [InputRequired(), positive])
    entry_price = FloatField('Hedge entry price', [InputRequired(), positive])
    exit_price = FloatField('Hedge exit price', [Optional(), positive])
    total_charges = FloatField('Hedge charges', [Optional(), NumberRange(min=0)])


class TagListMixin:
    strategy_tags = FieldList(StringField('Strategy tag', [Length(min=1, max=100)],
                                          filters=[_strip]))
    emotional_tags = FieldList(StringField('Emotional tag', [Length(min=1, max=100)],
                                           filters=[_strip]))
    market_tags = FieldList(StringField('Market tag', [Length(min=1, max=100)],
                                        filters=[_strip]))


class JournalFieldsMixin:
    stop_loss = FloatField('Stop loss', [Optional(), positive])
    target = FloatField('Target', [Optional(), positive])
    confidence_level = IntegerField('Confidence level', [Optional(), NumberRange(min=1, max=10)])
    emotional_state = StringField('Emotional state', [Optional(), Length(max=50)], filters=[_strip])
    market_condition = StringField('Market condition', [Optional(), Length(max=50)], filters=[_strip])
    notes = StringField('Notes', [Optional()])

    followed_risk_reward = OptionalBooleanField('Followed risk-reward')
    followed_intraday_hunter = OptionalBooleanField('Followed intraday hunter')
    overtrading = OptionalBooleanField('Overtrading')
    waited_for_retracement = OptionalBooleanField('Waited for retracement')
    showed_greed = OptionalBooleanField('Showed greed')
    showed_fear = OptionalBooleanField('Showed fear')
    had_patience_while_exiting = OptionalBooleanField('Patience while exiting')


JOURNAL_FIELDS = ('stop_loss', 'target', 'confidence_level', 'emotional_state',
                  'market_condition', 'notes', 'followed_risk_reward',
                  'followed_intraday_hunter', 'overtrading', 'waited_for_retracement',
                  'showed_greed', 'showed_fear', 'had_patience_while_exiting')
TAG_FIELDS = {'strategy_tags': 'STRATEGY', 'emotional_tags': 'EMOTIONAL', 'market_tags': 'MARKET'}


class TradeForm(JSONForm, JournalFieldsMixin, TagListMixin):
    """New trade payload"""
    symbol = StringField('Symbol', [InputRequired(), Length(min=1, max=50)],
                         filters=[_strip_upper])
    instrument = SelectField('Instrument', choices=INSTRUMENT_TYPES, coerce=_upper,
                             validators=[InputRequired()])
    position = SelectField('Position', choices=POSITION_TYPES, coerce=_position,
                           validators=[InputRequired()])
    trade_type = SelectField('Trade type', choices=TRADE_TYPES, coerce=_upper,
                             validators=[Optional()])
    quantity = FloatField('Quantity', [InputRequired(), positive])
    entry_price = FloatField('Entry price', [InputRequired(), positive])
    entry_date = IsoDateTimeField('Entry date', [InputRequired()])
    exit_price = FloatField('Exit price', [Optional(), positive])
    exit_date = IsoDateTimeField('Exit date', [Optional()])
    capital_pool_id = IntegerField('Capital pool', [Optional()])

    charges = OptionalFormField(ChargesForm)
    options = OptionalFormField(OptionsForm)
    hedge = OptionalFormField(HedgeForm)

    def validate(self, extra_validators=None):
        valid = super().validate(extra_validators)

        if self.exit_price.data is not None and self.exit_date.data is None:
            self.field_error(self.exit_date, 'Exit date is required when exit price is given')
            valid = False
        if self.exit_date.data is not None and self.exit_price.data is None:
            self.field_error(self.exit_price, 'Exit price is required when exit date is given')
            valid = False
        if (self.exit_date.data is not None and self.entry_date.data is not None
                and self.exit_date.data < self.entry_date.data):
            self.field_error(self.exit_date, 'Exit date cannot be before entry date')
            valid = False
        if self.options.submitted and self.instrument.data != 'OPTIONS':
            self.field_error(self.instrument, 'Options details are only valid for OPTIONS trades')
            valid = False

        return valid


class TradeUpdateForm(JSONForm, JournalFieldsMixin, TagListMixin):
    """Journal-only edits; prices, quantity and dates are settled through the ledger"""
    LOCKED_FIELDS = ('symbol', 'instrument', 'position', 'quantity', 'entry_price',
                     'entry_date', 'exit_price', 'exit_date', 'capital_pool_id',
                     'charges', 'options', 'hedge', 'trade_type')

    def validate(self, extra_validators=None):
        valid = super().validate(extra_validators)
        locked = sorted(self.submitted_keys.intersection(self.LOCKED_FIELDS))
        if locked:
            valid = False
            self.locked_errors = {
                name: ['Field cannot be edited; use the exit endpoint or delete and re-create the trade']
                for name in locked
            }
        return valid

    @property
    def errors(self):
        errors = dict(super().errors)
        errors.update(getattr(self, 'locked_errors', {}))
        return errors


class ExitTradeForm(JSONForm):
    exit_price = FloatField('Exit price', [InputRequired(), positive])
    exit_date = IsoDateTimeField('Exit date', [InputRequired()])
    hedge_exit_price = FloatField('Hedge exit price', [Optional(), positive])


# ---------- capital ----------

class CapitalSetupForm(JSONForm):
    total_amount = FloatField('Total amount', [InputRequired(), positive])
    equity_amount = FloatField('Equity amount', [InputRequired(), positive])
    fno_amount = FloatField('F&O amount', [InputRequired(), positive])
    description = StringField('Description', [Optional()])

    def validate(self, extra_validators=None):
        valid = super().validate(extra_validators)
        if valid and self.equity_amount.data + self.fno_amount.data > self.total_amount.data:
            self.field_error(self.total_amount,
                             'Equity and F&O amounts cannot exceed total capital')
            valid = False
        return valid


class CapitalTransactionForm(JSONForm):
    pool_id = IntegerField('Pool', [InputRequired()])
    transaction_type = SelectField('Transaction type', choices=MANUAL_TRANSACTION_TYPES,
                                   coerce=_upper, validators=[InputRequired()])
    amount = FloatField('Amount', [InputRequired(), positive])
    description = StringField('Description', [Optional()])
    reference_id = StringField('Reference', [Optional(), Length(max=50)])
    reference_type = StringField('Reference type', [Optional(), Length(max=20), unreserved_reference])


class TransferForm(JSONForm):
    from_pool_id = IntegerField('Source pool', [InputRequired()])
    to_pool_id = IntegerField('Destination pool', [InputRequired()])
    amount = FloatField('Amount', [InputRequired(), positive])
    description = StringField('Description', [Optional()])

    def validate(self, extra_validators=None):
        valid = super().validate(extra_validators)
        if valid and self.from_pool_id.data == self.to_pool_id.data:
            self.field_error(self.to_pool_id, 'Cannot transfer to the same pool')
            valid = False
        return valid


# ---------- predictions ----------

class PredictionForm(JSONForm):
    prediction_date = IsoDateTimeField('Prediction date', [InputRequired()])
    strategy = StringField('Strategy', [InputRequired(), Length(min=1, max=100)], filters=[_strip])
    direction = SelectField('Direction', choices=PREDICTION_DIRECTIONS, coerce=_upper,
                            validators=[InputRequired()])
    confidence = IntegerField('Confidence', [InputRequired(), NumberRange(min=1, max=10)])
    strategy_notes = StringField('Strategy notes', [Optional()])
    notes = StringField('Notes', [Optional()])


class PredictionUpdateForm(JSONForm):
    status = SelectField('Status', choices=PREDICTION_STATUSES, coerce=_upper,
                         validators=[Optional()])
    result = SelectField('Result', choices=PREDICTION_RESULTS, coerce=_upper,
                         validators=[Optional()])
    confidence = IntegerField('Confidence', [Optional(), NumberRange(min=1, max=10)])
    strategy_notes = StringField('Strategy notes', [Optional()])
    failure_reason = StringField('Failure reason', [Optional()])
    notes = StringField('Notes', [Optional()])

