"""
Settings Blueprint

Categorised application settings.
"""

from flask import Blueprint, jsonify, request

from journal_app.errors import ValidationError
from journal_app.services import SettingsService

settings_bp = Blueprint('settings', __name__)

# Initialize services
settings_service = SettingsService()


@settings_bp.route('', methods=['GET'])
def get_settings():
    return jsonify({'success': True, 'settings': settings_service.get_settings()})


@settings_bp.route('', methods=['PUT'])
def update_settings():
    """Update one category: {"category": "DISPLAY", "settings": {...}}"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError({'body': ['Expected a JSON object']})

    settings = settings_service.update_settings(data.get('category'), data.get('settings'))
    return jsonify({'success': True, 'settings': settings})
