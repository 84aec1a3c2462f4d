from flask import Blueprint, current_app, g, jsonify, request
from marshmallow import Schema, fields, validate

from outreach.api.schemas import DateRangeSchema
from outreach.exceptions import NotFoundError
from outreach.extensions import db
from outreach.models import ApiKey, Email, QuotaLedger, SMSMessage, User
from outreach.models.quota import PLANS, RESOURCE_TYPES
from outreach.services import get_user_service
from outreach.utils.auth import admin_required, login_required
from outreach.utils.validators import validate_query_args, validate_request_json

quotas_bp = Blueprint('quotas', __name__)


class QuotaCheckSchema(Schema):
    type = fields.Str(required=True, validate=validate.OneOf(RESOURCE_TYPES))
    amount = fields.Int(load_default=1, validate=validate.Range(min=1))


class QuotaUsageSchema(DateRangeSchema):
    type = fields.Str(load_default=None, validate=validate.OneOf(RESOURCE_TYPES))


class QuotaResetSchema(Schema):
    user_id = fields.Str(required=True)
    type = fields.Str(load_default=None, validate=validate.OneOf(RESOURCE_TYPES))


class PlanLimitsSchema(Schema):
    email = fields.Int(required=True, validate=validate.Range(min=0))
    sms = fields.Int(required=True, validate=validate.Range(min=0))
    api = fields.Int(required=True, validate=validate.Range(min=0))


class PlanUpdateSchema(Schema):
    plan = fields.Str(required=True, validate=validate.OneOf(PLANS))
    limits = fields.Nested(PlanLimitsSchema, load_default=None)


class AlertsQuerySchema(Schema):
    threshold = fields.Int(load_default=None, validate=validate.Range(min=1, max=100))


def _ledger_for(user_id):
    ledger = QuotaLedger.get_for_user(user_id)
    if ledger is None:
        raise NotFoundError('Quota not found')
    return ledger


@quotas_bp.route('', methods=['GET'])
@login_required('read')
def get_quota():
    """Current user's ledger, created on first access"""
    ledger = QuotaLedger.get_or_create_for_user(g.current_user)
    ledger.reset_expired()
    return jsonify({'success': True, 'quota': ledger.get_summary()}), 200


@quotas_bp.route('/check', methods=['GET'])
@login_required('read')
@validate_query_args(QuotaCheckSchema())
def check_quota():
    args = request.validated_args
    resource_type, amount = args['type'], args['amount']
    ledger = _ledger_for(g.current_user.id)

    return jsonify({
        'success': True,
        'has_quota': ledger.has_available(resource_type, amount),
        'status': ledger.get_quota_status(resource_type),
        'percentage': round(ledger.usage_percentage(resource_type), 2),
        'used': ledger.used(resource_type),
        'limit': ledger.limit(resource_type),
        'remaining': ledger.remaining(resource_type)
    }), 200


@quotas_bp.route('/usage', methods=['GET'])
@login_required('read')
@validate_query_args(QuotaUsageSchema())
def quota_usage():
    args = request.validated_args
    user_id = g.current_user.id
    ledger = _ledger_for(user_id)
    resource_type = args['type']

    usage = {}
    if resource_type in (None, 'email'):
        usage['email'] = Email.get_stats(user_id, args['start_date'], args['end_date'])
    if resource_type in (None, 'sms'):
        usage['sms'] = SMSMessage.get_stats(user_id, args['start_date'], args['end_date'])
    if resource_type in (None, 'api'):
        usage['api'] = ApiKey.get_stats(user_id)

    return jsonify({'success': True, 'quota': ledger.get_summary(), 'usage': usage}), 200


@quotas_bp.route('/reset', methods=['POST'])
@admin_required
@validate_request_json(QuotaResetSchema())
def reset_quota():
    data = request.validated_data
    ledger = _ledger_for(data['user_id'])

    if data['type']:
        ledger.reset(data['type'])
    else:
        ledger.reset_all()

    current_app.logger.info(
        f"Quota reset for user {data['user_id']} ({data['type'] or 'all'}) by admin {g.current_user.email}"
    )
    return jsonify({
        'success': True,
        'message': f"{data['type'] or 'All'} quota reset successfully",
        'quota': ledger.get_summary()
    }), 200


@quotas_bp.route('/<user_id>/plan', methods=['PUT'])
@admin_required
@validate_request_json(PlanUpdateSchema())
def update_plan(user_id):
    data = request.validated_data
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')

    ledger = get_user_service().change_plan(user, data['plan'], data['limits'])
    return jsonify({
        'success': True,
        'message': f"Plan updated to {data['plan']}",
        'quota': ledger.get_summary()
    }), 200


@quotas_bp.route('/alerts', methods=['GET'])
@admin_required
@validate_query_args(AlertsQuerySchema())
def quota_alerts():
    threshold = request.validated_args['threshold'] or current_app.config.get('QUOTA_ALERT_THRESHOLD', 90)

    alerts = []
    for ledger in QuotaLedger.get_alerts(threshold):
        alerts.append({
            'user': ledger.user.to_dict() if ledger.user else None,
            'quota': ledger.get_summary()
        })
    return jsonify({'success': True, 'threshold': threshold, 'alerts': alerts}), 200


@quotas_bp.route('/system', methods=['GET'])
@admin_required
def system_quota_stats():
    return jsonify({
        'success': True,
        'system': QuotaLedger.get_system_stats(),
        'plans': QuotaLedger.get_plan_distribution(),
        'statuses': QuotaLedger.get_status_distribution()
    }), 200
