from flask import Blueprint, g, jsonify, request
from marshmallow import Schema, fields, validate

from outreach.models.quota import PLANS
from outreach.services import get_user_service
from outreach.utils.auth import login_required
from outreach.utils.validators import validate_request_json

auth_bp = Blueprint('auth', __name__)


# Request Schemas
class RegisterSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=validate.Length(min=8))
    plan = fields.Str(load_default='free', validate=validate.OneOf(PLANS))


class LoginSchema(Schema):
    email = fields.Email(required=True)
    password = fields.Str(required=True)


@auth_bp.route('/register', methods=['POST'])
@validate_request_json(RegisterSchema())
def register():
    """Register new user"""
    result = get_user_service().register_user(request.validated_data)
    return jsonify({
        'success': True,
        'user': result['user'],
        'tokens': result['tokens'],
        'message': 'Registration successful'
    }), 201


@auth_bp.route('/login', methods=['POST'])
@validate_request_json(LoginSchema())
def login():
    """User login"""
    data = request.validated_data
    result = get_user_service().authenticate(data['email'], data['password'])
    return jsonify({
        'success': True,
        'user': result['user'],
        'tokens': result['tokens']
    }), 200


@auth_bp.route('/me', methods=['GET'])
@login_required()
def me():
    """Current user with quota summary"""
    user = g.current_user
    data = user.to_dict()
    data['quota'] = user.quota.get_summary() if user.quota else None
    return jsonify({'success': True, 'user': data}), 200
