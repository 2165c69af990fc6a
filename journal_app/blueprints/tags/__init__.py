"""
Tags Blueprint

Strategy, emotional and market tags available to trades.
"""

from flask import Blueprint, jsonify, request

from journal_app.services import TagService

tags_bp = Blueprint('tags', __name__)

# Initialize services
tag_service = TagService()


@tags_bp.route('', methods=['GET'])
def list_tags():
    tags = tag_service.list_tags(
        category=request.args.get('category'),
        active_only=request.args.get('include_inactive', 'false').lower() != 'true',
    )
    return jsonify({'success': True, 'tags': tags})
