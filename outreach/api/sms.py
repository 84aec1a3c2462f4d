from flask import Blueprint, current_app, g, jsonify, request
from marshmallow import Schema, fields

from outreach.api.schemas import BulkSMSSchema, DateRangeSchema, SMSListQuerySchema, SendSMSSchema
from outreach.exceptions import NotFoundError
from outreach.extensions import db
from outreach.models import SMSMessage
from outreach.services import get_send_service, get_sms_service
from outreach.utils.auth import login_required
from outreach.utils.validators import (
    paginate_query, phone_validator, validate_query_args, validate_request_json
)

sms_bp = Blueprint('sms', __name__)


class ValidatePhoneSchema(Schema):
    phone = fields.Str(required=True, validate=phone_validator)


def _owned_sms(sms_id):
    sms = SMSMessage.get_for_user(sms_id, g.current_user.id)
    if sms is None:
        raise NotFoundError('SMS not found')
    return sms


@sms_bp.route('/send', methods=['POST'])
@login_required('write')
@validate_request_json(SendSMSSchema())
def send_sms():
    """Send or schedule a single SMS"""
    sms = get_send_service().send_sms(g.current_user.id, request.validated_data)
    return jsonify({
        'success': True,
        'message': 'SMS scheduled' if sms.status == 'pending' else 'SMS sent',
        'sms': sms.to_dict()
    }), 201


@sms_bp.route('/bulk', methods=['POST'])
@login_required('write')
@validate_request_json(BulkSMSSchema())
def send_bulk_sms():
    data = dict(request.validated_data)
    recipients = data.pop('recipients')
    results = get_send_service().send_bulk_sms(g.current_user.id, recipients, data)

    sent = sum(1 for result in results if result['success'])
    return jsonify({
        'success': True,
        'results': results,
        'summary': {'total': len(results), 'successful': sent, 'failed': len(results) - sent}
    }), 200


@sms_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(SMSListQuerySchema())
def list_sms():
    args = request.validated_args
    query = SMSMessage.query.filter_by(user_id=g.current_user.id)

    if args['status']:
        query = query.filter(SMSMessage.status == args['status'])
    if args['campaign_id']:
        query = query.filter(SMSMessage.campaign_id == args['campaign_id'])
    if args['start_date']:
        query = query.filter(SMSMessage.created_at >= args['start_date'])
    if args['end_date']:
        query = query.filter(SMSMessage.created_at <= args['end_date'])

    messages, pagination = paginate_query(query.order_by(SMSMessage.created_at.desc()),
                                          args['page'], args['limit'])
    return jsonify({
        'success': True,
        'sms': [sms.to_dict() for sms in messages],
        'pagination': pagination
    }), 200


@sms_bp.route('/validate', methods=['GET'])
@login_required('read')
@validate_query_args(ValidatePhoneSchema())
def validate_phone():
    result = get_sms_service().validate_number(request.validated_args['phone'])
    return jsonify({'success': True, 'message': 'Phone number is valid', **result}), 200


@sms_bp.route('/<sms_id>', methods=['GET'])
@login_required('read')
def get_sms(sms_id):
    return jsonify({'success': True, 'sms': _owned_sms(sms_id).to_dict()}), 200


@sms_bp.route('/<sms_id>', methods=['DELETE'])
@login_required('write')
def delete_sms(sms_id):
    sms = _owned_sms(sms_id)
    db.session.delete(sms)
    db.session.commit()

    current_app.logger.info(f"SMS deleted: {sms_id} by user: {g.current_user.email}")
    return jsonify({'success': True, 'message': 'SMS deleted successfully'}), 200


@sms_bp.route('/stats/overview', methods=['GET'])
@login_required('read')
@validate_query_args(DateRangeSchema())
def sms_stats():
    args = request.validated_args
    user_id = g.current_user.id
    return jsonify({
        'success': True,
        'overview': SMSMessage.get_stats(user_id, args['start_date'], args['end_date']),
        'status_breakdown': SMSMessage.get_status_counts(user_id, args['start_date'], args['end_date']),
        'costs': SMSMessage.get_cost_analysis(user_id, args['start_date'], args['end_date']),
        'daily': SMSMessage.get_daily_stats(user_id)
    }), 200
