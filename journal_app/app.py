#!/usr/bin/env python3
"""
Flask Web Application for the Trade Journal

Application factory wiring configuration, the database, the API blueprints
and JSON error handling.
"""

import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from journal_app.config import get_config
from journal_app.errors import JournalError
from journal_app.models import db


def create_app(config_name=None):
    """Application factory pattern for Flask app creation"""
    app = Flask(__name__)

    # Load configuration
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)
    app.json.sort_keys = False

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from journal_app.blueprints.trades import trades_bp
    from journal_app.blueprints.capital import capital_bp
    from journal_app.blueprints.portfolio import portfolio_bp
    from journal_app.blueprints.predictions import predictions_bp
    from journal_app.blueprints.analytics import analytics_bp
    from journal_app.blueprints.psychology import psychology_bp
    from journal_app.blueprints.settings import settings_bp
    from journal_app.blueprints.symbols import symbols_bp
    from journal_app.blueprints.tags import tags_bp

    app.register_blueprint(trades_bp, url_prefix='/api/trades')
    app.register_blueprint(capital_bp, url_prefix='/api/capital')
    app.register_blueprint(portfolio_bp, url_prefix='/api/portfolio')
    app.register_blueprint(predictions_bp, url_prefix='/api/predictions')
    app.register_blueprint(analytics_bp, url_prefix='/api/analytics')
    app.register_blueprint(psychology_bp, url_prefix='/api/psychology')
    app.register_blueprint(settings_bp, url_prefix='/api/settings')
    app.register_blueprint(symbols_bp, url_prefix='/api/symbols')
    app.register_blueprint(tags_bp, url_prefix='/api/tags')

    # Global error handlers
    @app.errorhandler(JournalError)
    def journal_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error(f"{error.__class__.__name__}: {error.message}")
        else:
            app.logger.info(f"{error.__class__.__name__} ({error.status_code}): {error.message}")
        return jsonify({'success': False, **error.to_dict()}), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'success': False, 'error': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        db.session.rollback()
        app.logger.exception(f"Unhandled error: {error}")
        return jsonify({
            'success': False,
            'error': 'Internal server error',
            'details': str(error),
        }), 500

    # API health check
    @app.route('/api/health')
    def health_check():
        """Health check endpoint for monitoring"""
        return jsonify({
            'status': 'healthy',
            'app': 'Trade Journal',
            'version': '1.0.0'
        })

    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    app = create_app()

    # Development server
    debug_mode = app.config.get('FLASK_DEBUG', False)
    port = app.config.get('FLASK_PORT', 5000)

    print("\n" + "=" * 60)
    print("Trade Journal - Flask API")
    print("=" * 60)
    print(f"Trades:     http://localhost:{port}/api/trades")
    print(f"Capital:    http://localhost:{port}/api/capital")
    print(f"Analytics:  http://localhost:{port}/api/analytics")
    print(f"Health:     http://localhost:{port}/api/health")
    print("=" * 60)

    app.run(
        host=os.getenv('FLASK_HOST', '0.0.0.0'),
        port=port,
        debug=debug_mode,
        use_reloader=debug_mode
    )
