"""
Analytics Blueprint

Performance analytics over closed trades.
"""

from flask import Blueprint, jsonify, request

from journal_app.services import AnalyticsService

analytics_bp = Blueprint('analytics', __name__)

# Initialize services
analytics_service = AnalyticsService()


@analytics_bp.route('', methods=['GET'])
def performance():
    """Overview, strategy, instrument, daily and time-based performance"""
    result = analytics_service.get_performance(
        date_from=request.args.get('date_from'),
        date_to=request.args.get('date_to'),
        strategy=request.args.get('strategy'),
    )
    return jsonify({'success': True, 'data': result})
