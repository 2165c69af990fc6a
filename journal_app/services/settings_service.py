"""
Settings Service

Application settings are stored as a single AppSettings row and exposed as
five typed categories. Each category is a dataclass with its own validation,
in the same shape as the rate card in charge_schedule.
"""

import logging
from dataclasses import dataclass, asdict, fields, replace
from typing import Any, Dict, List, Optional, Union, get_args, get_origin, get_type_hints

from ..errors import ValidationError
from ..models import db, AppSettings, INSTRUMENT_TYPES, POSITION_TYPES

logger = logging.getLogger(__name__)


@dataclass
class GeneralSettings:
    default_instrument: str = 'EQUITY'
    default_position: str = 'BUY'
    default_lot_size: Optional[int] = None
    auto_calculate_charges: bool = True  # client form default only
    require_strategy_tag: bool = False

    def validate(self) -> List[str]:
        errors = []
        if self.default_instrument not in INSTRUMENT_TYPES:
            errors.append(f"default_instrument must be one of {', '.join(INSTRUMENT_TYPES)}")
        if self.default_position not in POSITION_TYPES:
            errors.append(f"default_position must be one of {', '.join(POSITION_TYPES)}")
        if self.default_lot_size is not None and self.default_lot_size < 1:
            errors.append("default_lot_size must be at least 1")
        return errors


@dataclass
class DisplaySettings:
    currency_symbol: str = '₹'
    decimal_places: int = 2
    thousands_separator: str = 'comma'  # comma, space, none
    date_format: str = 'DD/MM/YYYY'
    time_format: str = '24'  # 12, 24
    theme: str = 'light'  # light, dark, system

    def validate(self) -> List[str]:
        errors = []
        if not 1 <= len(self.currency_symbol) <= 5:
            errors.append("currency_symbol must be 1-5 characters")
        if not 0 <= self.decimal_places <= 4:
            errors.append("decimal_places must be between 0 and 4")
        if self.thousands_separator not in ('comma', 'space', 'none'):
            errors.append("thousands_separator must be comma, space or none")
        if self.date_format not in ('DD/MM/YYYY', 'MM/DD/YYYY', 'YYYY-MM-DD'):
            errors.append("date_format must be DD/MM/YYYY, MM/DD/YYYY or YYYY-MM-DD")
        if self.time_format not in ('12', '24'):
            errors.append("time_format must be 12 or 24")
        if self.theme not in ('light', 'dark', 'system'):
            errors.append("theme must be light, dark or system")
        return errors


@dataclass
class TableSettings:
    default_page_size: int = 50
    dense_mode: bool = False
    zebra_striping: bool = True
    sticky_headers: bool = True
    auto_refresh: bool = True

    def validate(self) -> List[str]:
        if self.default_page_size not in (10, 25, 50, 100, 200):
            return ["default_page_size must be one of 10, 25, 50, 100, 200"]
        return []


@dataclass
class ExportSettings:
    default_export_format: str = 'excel'  # excel, csv, pdf
    include_filters: bool = True
    include_charts: bool = True
    file_naming_template: str = 'TradeJournal_YYYY-MM-DD'

    def validate(self) -> List[str]:
        errors = []
        if self.default_export_format not in ('excel', 'csv', 'pdf'):
            errors.append("default_export_format must be excel, csv or pdf")
        if not self.file_naming_template.strip():
            errors.append("file_naming_template cannot be empty")
        return errors


@dataclass
class BackupSettings:
    keep_trade_history: str = 'forever'  # forever, 1year, 2years, 5years
    auto_backup_frequency: str = 'weekly'  # daily, weekly, monthly, never

    def validate(self) -> List[str]:
        errors = []
        if self.keep_trade_history not in ('forever', '1year', '2years', '5years'):
            errors.append("keep_trade_history must be forever, 1year, 2years or 5years")
        if self.auto_backup_frequency not in ('daily', 'weekly', 'monthly', 'never'):
            errors.append("auto_backup_frequency must be daily, weekly, monthly or never")
        return errors


CATEGORIES = {
    'GENERAL': GeneralSettings,
    'DISPLAY': DisplaySettings,
    'TABLE': TableSettings,
    'EXPORT': ExportSettings,
    'BACKUP': BackupSettings,
}


def _matches(value: Any, annotation) -> bool:
    if get_origin(annotation) is Union:
        return any(_matches(value, arg) for arg in get_args(annotation))
    if annotation is type(None):
        return value is None
    if annotation is bool:
        return isinstance(value, bool)
    if annotation is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, annotation)


class SettingsService:
    """Read and update categorised application settings"""

    def _row(self) -> AppSettings:
        row = AppSettings.query.order_by(AppSettings.id).first()
        if row is None:
            row = AppSettings()
            db.session.add(row)
            db.session.commit()
            logger.info("Created default application settings")
        return row

    def _category(self, row: AppSettings, category: str):
        settings_cls = CATEGORIES[category]
        return settings_cls(**{f.name: getattr(row, f.name) for f in fields(settings_cls)})

    def get_settings(self) -> Dict[str, Dict]:
        row = self._row()
        return {category: asdict(self._category(row, category)) for category in CATEGORIES}

    def get_category(self, category: str):
        category = (category or '').upper()
        if category not in CATEGORIES:
            raise ValidationError({'category': [f'Unknown settings category: {category}']})
        return self._category(self._row(), category)

    def update_settings(self, category: str, data: Dict) -> Dict[str, Dict]:
        """Validate a partial update of one category and persist it"""
        category = (category or '').upper()
        if category not in CATEGORIES:
            raise ValidationError({'category': [
                f"Category must be one of {', '.join(CATEGORIES)}"]})
        if not isinstance(data, dict):
            raise ValidationError({'settings': ['Expected an object of settings']})

        settings_cls = CATEGORIES[category]
        hints = get_type_hints(settings_cls)

        errors = {}
        for name, value in data.items():
            if name not in hints:
                errors[name] = [f'Unknown {category} setting']
            elif not _matches(value, hints[name]):
                errors[name] = [f'Invalid type for {name}']
        if errors:
            raise ValidationError(errors)

        row = self._row()
        updated = replace(self._category(row, category), **data)
        problems = updated.validate()
        if problems:
            raise ValidationError({category: problems})

        try:
            for name, value in asdict(updated).items():
                setattr(row, name, value)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Updated {category} settings: {', '.join(sorted(data))}")
        return self.get_settings()
