#!/usr/bin/env python3
"""
Flask application for kubeprep
Exposes the workflows over a small REST API
"""

import logging
from flask import Flask, Blueprint, jsonify
from flask_cors import CORS

from kubeprep.config.settings import settings
from kubeprep.api.routes.workflows import workflows_bp
from kubeprep.utils.logger import get_logger
from kubeprep.utils.helpers import ensure_directory

logger = get_logger(__name__)

VERSION = "0.1.0"

def create_app() -> Flask:
    """Create and configure Flask application"""
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = settings.flask.secret_key
    app.config['DEBUG'] = settings.flask.debug
    app.config['TESTING'] = settings.flask.testing
    app.config['MAX_CONTENT_LENGTH'] = settings.flask.max_content_length

    # Enable CORS for API endpoints
    CORS(app, origins=['http://localhost:3000', 'http://127.0.0.1:3000'])

    register_blueprints(app)
    register_error_handlers(app)

    if not app.debug:
        app.logger.setLevel(logging.WARNING)

    ensure_directory(settings.storage.logs_directory)
    ensure_directory(settings.storage.runs_directory)

    logger.info(f"Flask app created in {settings.environment.value} mode")
    return app

def register_blueprints(app: Flask):
    """Register Flask blueprints"""
    app.register_blueprint(workflows_bp)

    health_bp = Blueprint('health', __name__, url_prefix='/api')

    @health_bp.route('/health', methods=['GET'])
    def health_check():
        return jsonify({
            'status': 'healthy',
            'version': VERSION,
            'environment': settings.environment.value,
            'kubernetes_version': settings.k8s.version
        })

    app.register_blueprint(health_bp)

def register_error_handlers(app: Flask):
    """Register error handlers"""

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'Bad Request',
            'message': 'The request was invalid or cannot be served',
            'status_code': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'Not Found',
            'message': 'The requested resource was not found',
            'status_code': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'Method Not Allowed',
            'message': 'The method is not allowed for this endpoint',
            'status_code': 405
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        return jsonify({
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'status_code': 500
        }), 500

def serve(host: str = None, port: int = None):
    """Run the development server"""
    app = create_app()
    host = host or settings.flask.host
    port = port or settings.flask.port

    logger.info(f"Starting API server on {host}:{port}")
    app.run(host=host, port=port, debug=app.config['DEBUG'], use_reloader=False, threaded=True)

__all__ = ['create_app', 'serve']
