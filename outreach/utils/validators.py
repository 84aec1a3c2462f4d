import re
from functools import wraps
from flask import request, jsonify
from marshmallow import ValidationError, validate

PHONE_PATTERN = r'^\+?[1-9]\d{1,14}$'
CUSTOM_FIELD_KEY_PATTERN = r'^[a-z][a-z0-9_]{0,63}$'

phone_validator = validate.Regexp(PHONE_PATTERN, error='Valid phone number is required')
custom_field_key_validator = validate.Regexp(
    CUSTOM_FIELD_KEY_PATTERN,
    error='Custom field keys must be lowercase identifiers of at most 64 characters'
)


def validate_phone_number(phone):
    """Validate E.164-style phone number"""
    if not phone:
        return False
    return re.match(PHONE_PATTERN, phone) is not None


def normalize_phone_number(phone):
    """Normalize phone number to a leading '+' form"""
    if not phone:
        return None
    phone = phone.strip()
    return phone if phone.startswith('+') else f'+{phone}'


def validate_request_json(schema):
    """Decorator to validate JSON request data"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not request.is_json:
                return jsonify({
                    'success': False,
                    'error': 'Content-Type must be application/json'
                }), 400

            json_data = request.get_json(silent=True)
            if json_data is None:
                return jsonify({
                    'success': False,
                    'error': 'Invalid JSON'
                }), 400

            try:
                request.validated_data = schema.load(json_data)
            except ValidationError as e:
                return jsonify({
                    'success': False,
                    'error': 'Validation failed',
                    'errors': e.messages
                }), 400

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def validate_query_args(schema):
    """Decorator to validate query string arguments"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                request.validated_args = schema.load(request.args.to_dict())
            except ValidationError as e:
                return jsonify({
                    'success': False,
                    'error': 'Validation failed',
                    'errors': e.messages
                }), 400

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def paginate_query(query, page, per_page):
    """Paginate a query and build the pagination block used in list responses"""
    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    return pagination.items, {
        'current': pagination.page,
        'per_page': pagination.per_page,
        'pages': pagination.pages,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }
