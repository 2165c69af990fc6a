"""
Portfolio Blueprint

Open positions and exposure.
"""

from flask import Blueprint, jsonify

from journal_app.services import TradeService

portfolio_bp = Blueprint('portfolio', __name__)

# Initialize services
trade_service = TradeService()


@portfolio_bp.route('', methods=['GET'])
def open_positions():
    return jsonify({'success': True, 'data': trade_service.get_open_positions()})
