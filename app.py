# app.py - application factory
import logging
import os
from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_cors import CORS

import config

logger = logging.getLogger(__name__)


def create_app(test_config=None):
    """Create and configure the Flask application."""
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))

    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=config.SECRET_KEY,
        ENCRYPTION_KEY=config.ENCRYPTION_KEY,
        ADMIN_USERNAME=config.ADMIN_USERNAME,
        ADMIN_PASSWORD=config.ADMIN_PASSWORD,
        ADMIN_EMAIL=config.ADMIN_EMAIL,
        UPLOAD_FOLDER=config.UPLOAD_FOLDER,
        MAX_CONTENT_LENGTH=config.MAX_CONTENT_LENGTH,
        VENDOR_TOKEN_DAYS=config.VENDOR_TOKEN_DAYS,
        ADMIN_TOKEN_HOURS=config.ADMIN_TOKEN_HOURS,
        USER_TOKEN_DAYS=config.USER_TOKEN_DAYS,
        COOKIE_SECURE=config.ENVIRONMENT == 'production',
        INIT_DB=True,
    )
    if test_config:
        app.config.update(test_config)

    # Cookies carry the session, so the frontend origin must be explicit
    origins = [o.strip() for o in config.CORS_ORIGIN.split(',') if o.strip()]
    CORS(app, resources={r"/api/*": {"origins": origins}}, supports_credentials=True)

    for problem in config.validate_config(app.config):
        logger.warning(f"Configuration: {problem}")

    try:
        os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not create upload directory: {e}")

    if app.config['INIT_DB']:
        from utils import init_db_pool, init_db
        with app.app_context():
            init_db_pool()
            init_db()

    # Import blueprints AFTER app creation
    from admin import admin_bp
    from admin_requests import admin_requests_bp
    from vendors import vendors_bp
    from vendor_products import vendor_products_bp
    from vendor_requests import vendor_requests_bp
    from vendor_orders import vendor_orders_bp
    from vendor_team import vendor_team_bp
    from vendor_reports import vendor_reports_bp
    from users import users_bp
    from shared import shared_bp, database_status, system_metrics

    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(admin_requests_bp, url_prefix='/api/admin')
    app.register_blueprint(vendors_bp, url_prefix='/api/vendor')
    app.register_blueprint(vendor_products_bp, url_prefix='/api/vendor')
    app.register_blueprint(vendor_requests_bp, url_prefix='/api/vendor')
    app.register_blueprint(vendor_orders_bp, url_prefix='/api/vendor')
    app.register_blueprint(vendor_team_bp, url_prefix='/api/vendor')
    app.register_blueprint(vendor_reports_bp, url_prefix='/api/vendor')
    app.register_blueprint(users_bp, url_prefix='/api/users')
    app.register_blueprint(shared_bp, url_prefix='/api')

    @app.route('/health', methods=['GET'])
    def health_check():
        db_ok, _ = database_status()
        return jsonify({
            'status': 'healthy' if db_ok else 'degraded',
            'database': 'connected' if db_ok else 'unavailable',
            'system': system_metrics(),
            'timestamp': datetime.now(timezone.utc).isoformat()
        }), 200 if db_ok else 503

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'success': False, 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({'success': False, 'message': 'Uploaded file is too large'}), 413

    return app
