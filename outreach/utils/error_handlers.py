from flask import jsonify, current_app, request
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from marshmallow import ValidationError

from outreach.exceptions import OutreachError
from outreach.extensions import db


def _error_response(message, status_code, **extra):
    body = {'success': False, 'error': message}
    body.update(extra)
    return jsonify(body), status_code


def register_error_handlers(app):
    """Render every failure in the {'success': False, 'error': ...} envelope"""

    @app.errorhandler(OutreachError)
    def handle_outreach_error(e):
        if e.status_code >= 500:
            current_app.logger.error(f"{e.__class__.__name__} on {request.method} {request.path}: {e.message}")
        else:
            current_app.logger.info(f"{e.__class__.__name__} on {request.method} {request.path}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        current_app.logger.warning(f"Validation error on {request.path}: {e.messages}")
        return _error_response('Validation failed', 400, errors=e.messages)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        current_app.logger.error(f"Database error on {request.method} {request.path}: {e}")
        return _error_response('Database operation failed', 500)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return _error_response(e.description, e.code, code=e.code)

    @app.errorhandler(Exception)
    def handle_generic_error(e):
        db.session.rollback()
        current_app.logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return _error_response('An unexpected error occurred', 500)
