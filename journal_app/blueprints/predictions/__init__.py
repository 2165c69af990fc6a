"""
Predictions Blueprint

Market direction predictions and their accuracy analytics.
"""

from flask import Blueprint, current_app, jsonify, request

from journal_app.services import PredictionService

predictions_bp = Blueprint('predictions', __name__)

# Initialize services
prediction_service = PredictionService()


@predictions_bp.route('', methods=['GET'])
def list_predictions():
    result = prediction_service.list_predictions(
        request.args,
        per_page=current_app.config.get('ITEMS_PER_PAGE', 50),
        max_page_size=current_app.config.get('MAX_PAGE_SIZE', 200),
    )
    return jsonify({'success': True, **result})


@predictions_bp.route('', methods=['POST'])
def create_prediction():
    prediction = prediction_service.create_prediction(request.get_json(silent=True))
    return jsonify({'success': True, 'prediction': prediction.to_dict()}), 201


@predictions_bp.route('/analytics', methods=['GET'])
def analytics():
    """Prediction accuracy overall, per strategy, per confidence level and per month"""
    result = prediction_service.get_analytics(request.args.get('date_from'),
                                              request.args.get('date_to'))
    return jsonify({'success': True, 'analytics': result})


@predictions_bp.route('/<int:prediction_id>', methods=['GET'])
def get_prediction(prediction_id):
    prediction = prediction_service.get_prediction(prediction_id)
    return jsonify({'success': True, 'prediction': prediction.to_dict()})


@predictions_bp.route('/<int:prediction_id>', methods=['PUT'])
def update_prediction(prediction_id):
    prediction = prediction_service.update_prediction(prediction_id, request.get_json(silent=True))
    return jsonify({'success': True, 'prediction': prediction.to_dict()})


@predictions_bp.route('/<int:prediction_id>', methods=['DELETE'])
def delete_prediction(prediction_id):
    prediction_service.delete_prediction(prediction_id)
    return jsonify({'success': True, 'message': f'Prediction {prediction_id} deleted'})
