"""
Outreach backend - Flask application factory
"""
import os

from dotenv import load_dotenv
from flask import Flask, jsonify

from outreach.config import config
from outreach.extensions import db, init_redis, jwt, mail, migrate

load_dotenv()


def create_app(config_name=None):
    """Flask application factory"""
    app = Flask(__name__)

    _configure_app(app, config_name)
    configure_proxy(app)

    from outreach.utils.logging import setup_logging
    setup_logging(app)

    _init_extensions(app)
    _register_jwt_handlers()

    from outreach.utils.error_handlers import register_error_handlers
    register_error_handlers(app)

    _register_blueprints(app)

    from outreach.cli import register_commands
    register_commands(app)

    app.logger.info("Outreach backend startup complete")
    return app


def _configure_app(app, config_name):
    config_name = config_name or os.environ.get('FLASK_ENV', 'default')
    app.config.from_object(config.get(config_name, config['default']))


def configure_proxy(app):
    """Trust X-Forwarded-* headers only for the configured proxy hops"""
    x_for = app.config.get('PROXY_FIX_X_FOR', 0)
    x_proto = app.config.get('PROXY_FIX_X_PROTO', 0)
    x_host = app.config.get('PROXY_FIX_X_HOST', 0)
    if not (x_for or x_proto or x_host):
        return

    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=x_for, x_proto=x_proto, x_host=x_host)


def _init_extensions(app):
    """Initialize Flask extensions"""
    from flask_cors import CORS

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)
    CORS(app, origins=app.config.get('CORS_ORIGINS', '*'))
    init_redis(app)

    # Register models with the metadata
    from outreach import models  # noqa: F401


def _register_jwt_handlers():
    """Render JWT failures in the standard error envelope"""

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'success': False, 'error': 'Authentication required'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({'success': False, 'error': 'Invalid token'}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({'success': False, 'error': 'Token has expired'}), 401


def _register_blueprints(app):
    from outreach.api import register_blueprints
    register_blueprints(app)
