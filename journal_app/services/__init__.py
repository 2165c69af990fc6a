"""
Service Layer for the Trade Journal

Business operations behind the API blueprints: trade recording, the capital
ledger, tags, analytics, psychology, predictions, settings and symbol imports.
"""

from .capital_service import CapitalLedger
from .tag_service import TagService
from .trade_service import TradeService
from .analytics_service import AnalyticsService
from .psychology_service import PsychologyService
from .prediction_service import PredictionService
from .settings_service import SettingsService
from .symbol_service import SymbolService

__all__ = ['CapitalLedger', 'TagService', 'TradeService', 'AnalyticsService',
           'PsychologyService', 'PredictionService', 'SettingsService', 'SymbolService']
