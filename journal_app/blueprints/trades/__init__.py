"""
Trades Blueprint

Trade journal API: record, list, edit, exit and delete trades.
"""

from flask import Blueprint, jsonify, request

from journal_app.services import TradeService

trades_bp = Blueprint('trades', __name__)

# Initialize services
trade_service = TradeService()


@trades_bp.route('', methods=['GET'])
def list_trades():
    """List trades with filters, sorting and pagination"""
    result = trade_service.list_trades(request.args)
    return jsonify({'success': True, **result})


@trades_bp.route('', methods=['POST'])
def create_trade():
    """Record a new trade and settle it against its capital pool"""
    trade = trade_service.create_trade(request.get_json(silent=True))
    return jsonify({
        'success': True,
        'trade': trade.to_dict(trade_service.basis),
    }), 201


@trades_bp.route('/<int:trade_id>', methods=['GET'])
def get_trade(trade_id):
    trade = trade_service.get_trade(trade_id)
    return jsonify({'success': True, 'trade': trade.to_dict(trade_service.basis)})


@trades_bp.route('/<int:trade_id>', methods=['PUT'])
def update_trade(trade_id):
    """Edit journal, psychology and tag fields"""
    trade = trade_service.update_trade(trade_id, request.get_json(silent=True))
    return jsonify({'success': True, 'trade': trade.to_dict(trade_service.basis)})


@trades_bp.route('/<int:trade_id>', methods=['DELETE'])
def delete_trade(trade_id):
    """Delete a trade, reversing its ledger entries"""
    result = trade_service.delete_trade(trade_id)
    return jsonify({'success': True, 'data': result})


@trades_bp.route('/<int:trade_id>/exit', methods=['POST'])
def exit_trade(trade_id):
    """Close an open trade"""
    trade = trade_service.exit_trade(trade_id, request.get_json(silent=True))
    return jsonify({'success': True, 'trade': trade.to_dict(trade_service.basis)})
