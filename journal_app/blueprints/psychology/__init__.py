"""
Psychology Blueprint

Behavioural scores and insights from trade self-assessments.
"""

from flask import Blueprint, jsonify, request

from journal_app.services import PsychologyService

psychology_bp = Blueprint('psychology', __name__)

# Initialize services
psychology_service = PsychologyService()


@psychology_bp.route('/analytics', methods=['GET'])
def analytics():
    result = psychology_service.get_analysis(
        date_from=request.args.get('date_from'),
        date_to=request.args.get('date_to'),
        strategy=request.args.get('strategy'),
    )
    return jsonify({'success': True, 'data': result})
