#!/usr/bin/env python3
"""
Charge Schedule

Statutory and broker charges for a single trade, computed from the value of
each leg. Rates are configurable through ChargeRates so the journal can follow
broker or regulatory changes without code edits.

Usage:
    # Default (Indian market) rates
    charges = calculate_charges(1000.0, 1100.0, 'FUTURES', 'BUY')
    charges.total

    # Custom rates
    rates = ChargeRates.from_dict({'brokerage': {'type': 'percentage', 'value': 0.03}})
    charges = calculate_charges(1000.0, 0.0, 'EQUITY', 'SELL', rates)
"""

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional

INSTRUMENT_TYPES = ('EQUITY', 'FUTURES', 'OPTIONS')
POSITION_SIDES = ('BUY', 'SELL')


@dataclass
class BrokerageRate:
    """Brokerage is either a flat fee per executed leg or a percentage of leg value."""

    type: str = "flat"  # flat, percentage
    value: float = 20.0  # Rs per leg, or percent of leg value

    def validate(self) -> List[str]:
        errors = []

        if self.type not in ("flat", "percentage"):
            errors.append("brokerage type must be 'flat' or 'percentage'")

        if self.value < 0:
            errors.append("brokerage value cannot be negative")

        if self.type == "percentage" and self.value > 5:
            errors.append("percentage brokerage must not exceed 5%")

        return errors


@dataclass
class SttRate:
    """Securities Transaction Tax, charged on the sell leg only."""

    equity: float = 0.001  # 0.1% on sell value
    futures: float = 0.0001  # 0.01% on sell value
    options: float = 0.0005  # 0.05% on premium on sell

    def for_instrument(self, instrument: str) -> float:
        return getattr(self, instrument.lower())

    def validate(self) -> List[str]:
        errors = []
        for name in ("equity", "futures", "options"):
            if not 0 <= getattr(self, name) <= 0.01:
                errors.append(f"stt.{name} must be between 0 and 1%")
        return errors


@dataclass
class ChargeRates:
    """Complete rate card used by calculate_charges."""

    brokerage: BrokerageRate = field(default_factory=BrokerageRate)
    stt: SttRate = field(default_factory=SttRate)
    exchange: float = 0.0000173  # 0.00173% on turnover
    sebi: float = 0.000001  # 0.0001% on turnover
    stamp_duty: float = 0.00003  # 0.003% on buy value
    gst: float = 0.18  # 18% on brokerage + exchange charges

    def validate(self) -> List[str]:
        errors = self.brokerage.validate() + self.stt.validate()

        for name in ("exchange", "sebi", "stamp_duty"):
            if not 0 <= getattr(self, name) <= 0.001:
                errors.append(f"{name} rate must be between 0 and 0.1%")

        if not 0 <= self.gst <= 0.5:
            errors.append("gst rate must be between 0 and 50%")

        return errors

    @classmethod
    def from_dict(cls, rates: Optional[Dict[str, Any]]) -> 'ChargeRates':
        """Build a rate card, falling back to defaults for any missing key."""
        rates = dict(rates or {})
        brokerage = BrokerageRate(**rates.pop('brokerage', {}))
        stt = SttRate(**rates.pop('stt', {}))
        return cls(brokerage=brokerage, stt=stt, **rates)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChargeBreakdown:
    """Itemised charges for a trade; total is the sum of the components."""

    brokerage: float = 0.0
    stt: float = 0.0
    exchange: float = 0.0
    sebi: float = 0.0
    stamp_duty: float = 0.0
    gst: float = 0.0
    total: float = 0.0

    COMPONENTS = ('brokerage', 'stt', 'exchange', 'sebi', 'stamp_duty', 'gst')

    def components_sum(self) -> float:
        return round(sum(getattr(self, name) for name in self.COMPONENTS), 2)

    def is_consistent(self, tolerance: float = 0.01) -> bool:
        """Check that total matches the itemised components."""
        return abs(self.total - self.components_sum()) <= tolerance

    @classmethod
    def from_components(cls, **components: float) -> 'ChargeBreakdown':
        breakdown = cls(**{name: round(float(components.get(name) or 0.0), 2)
                           for name in cls.COMPONENTS})
        breakdown.total = breakdown.components_sum()
        return breakdown

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def calculate_charges(entry_value: float,
                      exit_value: float,
                      instrument: str,
                      position: str,
                      rates: Optional[ChargeRates] = None) -> ChargeBreakdown:
    """
    Calculate the charge breakdown for a trade.

    Args:
        entry_value: quantity x entry price
        exit_value: quantity x exit price, 0 while the position is open
        instrument: EQUITY, FUTURES or OPTIONS
        position: BUY (long) or SELL (short)
        rates: rate card, defaults to ChargeRates()

    Returns:
        ChargeBreakdown with every component rounded to 2 decimals
    """
    if entry_value < 0 or exit_value < 0:
        raise ValueError("Trade values cannot be negative")
    if instrument not in INSTRUMENT_TYPES:
        raise ValueError(f"Unknown instrument type: {instrument}")
    if position not in POSITION_SIDES:
        raise ValueError(f"Unknown position side: {position}")

    rates = rates or ChargeRates()
    turnover = entry_value + exit_value

    # A long opens with a buy and closes with a sell; a short the other way round
    if position == 'BUY':
        buy_value, sell_value = entry_value, exit_value
    else:
        buy_value, sell_value = exit_value, entry_value

    legs = [value for value in (entry_value, exit_value) if value > 0]
    if rates.brokerage.type == "flat":
        brokerage = rates.brokerage.value * len(legs)
    else:
        brokerage = sum(value * rates.brokerage.value / 100 for value in legs)

    stt = sell_value * rates.stt.for_instrument(instrument)
    exchange = turnover * rates.exchange
    sebi = turnover * rates.sebi
    stamp_duty = buy_value * rates.stamp_duty
    gst = (round(brokerage, 2) + round(exchange, 2)) * rates.gst

    return ChargeBreakdown.from_components(
        brokerage=brokerage,
        stt=stt,
        exchange=exchange,
        sebi=sebi,
        stamp_duty=stamp_duty,
        gst=gst,
    )
