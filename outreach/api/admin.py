from flask import Blueprint, current_app, g, jsonify, request
from marshmallow import fields, validate

from outreach.api.schemas import DateRangeSchema
from outreach.exceptions import InvalidArgumentError, NotFoundError
from outreach.extensions import db
from outreach.models import User
from outreach.models.quota import PLANS
from outreach.services import get_analytics_service
from outreach.utils.auth import admin_required
from outreach.utils.validators import paginate_query, validate_query_args

admin_bp = Blueprint('admin', __name__)


class UserQuerySchema(DateRangeSchema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))
    plan = fields.Str(load_default=None, validate=validate.OneOf(PLANS))
    role = fields.Str(load_default=None, validate=validate.OneOf(('user', 'admin')))
    search = fields.Str(load_default=None, validate=validate.Length(min=1, max=100))


@admin_bp.route('/stats', methods=['GET'])
@admin_required
@validate_query_args(DateRangeSchema())
def system_stats():
    args = request.validated_args
    stats = get_analytics_service().get_system_stats(args['start_date'], args['end_date'])
    return jsonify({'success': True, 'stats': stats}), 200


@admin_bp.route('/users', methods=['GET'])
@admin_required
@validate_query_args(UserQuerySchema())
def list_users():
    args = request.validated_args
    query = User.query

    if args['plan']:
        query = query.filter(User.plan == args['plan'])
    if args['role']:
        query = query.filter(User.role == args['role'])
    if args['search']:
        pattern = f"%{args['search']}%"
        query = query.filter(db.or_(User.email.ilike(pattern), User.name.ilike(pattern)))

    users, pagination = paginate_query(query.order_by(User.created_at.desc()), args['page'], args['limit'])

    results = []
    for user in users:
        data = user.to_dict()
        data['quota'] = user.quota.get_summary() if user.quota else None
        results.append(data)

    return jsonify({'success': True, 'users': results, 'pagination': pagination}), 200


def _set_active(user_id, is_active):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    if user.id == g.current_user.id and not is_active:
        raise InvalidArgumentError('Admins cannot suspend their own account')

    user.is_active = is_active
    db.session.commit()
    current_app.logger.info(
        f"User {user.email} {'activated' if is_active else 'suspended'} by admin {g.current_user.email}"
    )
    return user


@admin_bp.route('/users/<user_id>/suspend', methods=['POST'])
@admin_required
def suspend_user(user_id):
    user = _set_active(user_id, False)
    return jsonify({'success': True, 'message': 'User suspended', 'user': user.to_dict()}), 200


@admin_bp.route('/users/<user_id>/activate', methods=['POST'])
@admin_required
def activate_user(user_id):
    user = _set_active(user_id, True)
    return jsonify({'success': True, 'message': 'User activated', 'user': user.to_dict()}), 200
