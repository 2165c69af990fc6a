"""
Symbols Blueprint

Symbol import history.
"""

from flask import Blueprint, jsonify, request

from journal_app.services import SymbolService

symbols_bp = Blueprint('symbols', __name__)

# Initialize services
symbol_service = SymbolService()


@symbols_bp.route('/csv-history', methods=['GET'])
def csv_history():
    """Paginated CSV import jobs, optionally filtered by status"""
    return jsonify({'success': True, **symbol_service.get_csv_history(request.args)})
