from flask import Blueprint, g, jsonify, request
from marshmallow import Schema, fields, post_load, validate

from outreach.api.schemas import naive_utc
from outreach.exceptions import AuthenticationError
from outreach.models import ApiKey
from outreach.models.api_key import API_KEY_PERMISSIONS
from outreach.services import get_api_key_service
from outreach.utils.auth import login_required
from outreach.utils.validators import paginate_query, validate_query_args, validate_request_json

api_keys_bp = Blueprint('api_keys', __name__)

_permissions = fields.List(
    fields.Str(validate=validate.OneOf(API_KEY_PERMISSIONS)),
    validate=validate.Length(min=1)
)


class CreateApiKeySchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    permissions = fields.List(
        fields.Str(validate=validate.OneOf(API_KEY_PERMISSIONS)),
        load_default=lambda: ['read'],
        validate=validate.Length(min=1)
    )
    ip_whitelist = fields.List(fields.Str(), load_default=None)
    expires_at = fields.DateTime(load_default=None)
    usage_limit = fields.Int(load_default=None, validate=validate.Range(min=1))
    rate_limit_requests = fields.Int(load_default=None, validate=validate.Range(min=1))
    rate_limit_window = fields.Int(load_default=None, validate=validate.Range(min=1))

    @post_load
    def normalize_expiry(self, data, **kwargs):
        data['expires_at'] = naive_utc(data.get('expires_at'))
        return data


class UpdateApiKeySchema(Schema):
    name = fields.Str(validate=validate.Length(min=1, max=50))
    permissions = _permissions
    is_active = fields.Bool()
    ip_whitelist = fields.List(fields.Str())


class PageQuerySchema(Schema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=10, validate=validate.Range(min=1, max=100))


@api_keys_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(PageQuerySchema())
def list_api_keys():
    args = request.validated_args
    query = ApiKey.query.filter_by(user_id=g.current_user.id).order_by(ApiKey.created_at.desc())
    keys, pagination = paginate_query(query, args['page'], args['limit'])
    return jsonify({
        'success': True,
        'api_keys': [key.to_dict() for key in keys],
        'pagination': pagination
    }), 200


@api_keys_bp.route('', methods=['POST'])
@login_required('write')
@validate_request_json(CreateApiKeySchema())
def create_api_key():
    """Issue a key; the plaintext secret is only returned here"""
    api_key, secret = get_api_key_service().create(g.current_user, request.validated_data)
    data = api_key.to_dict()
    data['key'] = secret
    return jsonify({
        'success': True,
        'message': 'API key created successfully',
        'api_key': data
    }), 201


@api_keys_bp.route('/stats/overview', methods=['GET'])
@login_required('read')
def api_key_stats():
    return jsonify({
        'success': True,
        'system': ApiKey.get_stats(),
        'user': ApiKey.get_stats(g.current_user.id)
    }), 200


@api_keys_bp.route('/validate', methods=['GET'])
@login_required()
def validate_api_key():
    if g.api_key is None:
        raise AuthenticationError('API key required')

    return jsonify({
        'success': True,
        'message': 'API key is valid',
        'user': {
            'id': g.current_user.id,
            'email': g.current_user.email,
            'plan': g.current_user.plan
        },
        'api_key': g.api_key.to_dict()
    }), 200


@api_keys_bp.route('/<key_id>', methods=['GET'])
@login_required('read')
def get_api_key(key_id):
    api_key = get_api_key_service().get_owned(key_id, g.current_user)
    return jsonify({'success': True, 'api_key': api_key.to_dict()}), 200


@api_keys_bp.route('/<key_id>', methods=['PUT'])
@login_required('write')
@validate_request_json(UpdateApiKeySchema())
def update_api_key(key_id):
    service = get_api_key_service()
    api_key = service.update(service.get_owned(key_id, g.current_user), request.validated_data)
    return jsonify({
        'success': True,
        'message': 'API key updated successfully',
        'api_key': api_key.to_dict()
    }), 200


@api_keys_bp.route('/<key_id>', methods=['DELETE'])
@login_required('write')
def delete_api_key(key_id):
    service = get_api_key_service()
    service.delete(service.get_owned(key_id, g.current_user))
    return jsonify({'success': True, 'message': 'API key deleted successfully'}), 200


@api_keys_bp.route('/<key_id>/regenerate', methods=['POST'])
@login_required('write')
def regenerate_api_key(key_id):
    service = get_api_key_service()
    api_key = service.get_owned(key_id, g.current_user)
    secret = service.regenerate(api_key)

    data = api_key.to_dict()
    data['key'] = secret
    return jsonify({
        'success': True,
        'message': 'API key regenerated successfully',
        'api_key': data
    }), 200


@api_keys_bp.route('/<key_id>/reset-usage', methods=['POST'])
@login_required('write')
def reset_api_key_usage(key_id):
    service = get_api_key_service()
    api_key = service.reset_usage(service.get_owned(key_id, g.current_user))
    return jsonify({
        'success': True,
        'message': 'API key usage reset successfully',
        'api_key': api_key.to_dict()
    }), 200
