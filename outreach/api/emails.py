import base64
from urllib.parse import urlparse

from flask import Blueprint, Response, current_app, g, jsonify, redirect, request

from outreach.api.schemas import BulkEmailSchema, DateRangeSchema, EmailListQuerySchema, SendEmailSchema
from outreach.exceptions import NotFoundError, ValidationFailedError
from outreach.extensions import db
from outreach.models import Email
from outreach.services import get_delivery_service, get_send_service
from outreach.utils.auth import login_required, verify_tracking_link
from outreach.utils.validators import paginate_query, validate_query_args, validate_request_json

emails_bp = Blueprint('emails', __name__)

# 1x1 transparent PNG
TRACKING_PIXEL = base64.b64decode(
    'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=='
)


def _owned_email(email_id):
    email = Email.get_for_user(email_id, g.current_user.id)
    if email is None:
        raise NotFoundError('Email not found')
    return email


@emails_bp.route('/send', methods=['POST'])
@login_required('write')
@validate_request_json(SendEmailSchema())
def send_email():
    """Send or schedule a single email"""
    email = get_send_service().send_email(g.current_user.id, request.validated_data)
    return jsonify({
        'success': True,
        'message': 'Email scheduled' if email.status == 'pending' else 'Email sent',
        'email': email.to_dict()
    }), 201


@emails_bp.route('/bulk', methods=['POST'])
@login_required('write')
@validate_request_json(BulkEmailSchema())
def send_bulk_email():
    """Send the same email to several recipients"""
    data = dict(request.validated_data)
    recipients = data.pop('recipients')
    results = get_send_service().send_bulk_email(g.current_user.id, recipients, data)

    sent = sum(1 for result in results if result['success'])
    return jsonify({
        'success': True,
        'results': results,
        'summary': {'total': len(results), 'successful': sent, 'failed': len(results) - sent}
    }), 200


@emails_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(EmailListQuerySchema())
def list_emails():
    args = request.validated_args
    query = Email.query.filter_by(user_id=g.current_user.id)

    if args['status']:
        query = query.filter(Email.status == args['status'])
    if args['campaign_id']:
        query = query.filter(Email.campaign_id == args['campaign_id'])
    if args['start_date']:
        query = query.filter(Email.created_at >= args['start_date'])
    if args['end_date']:
        query = query.filter(Email.created_at <= args['end_date'])

    emails, pagination = paginate_query(query.order_by(Email.created_at.desc()),
                                        args['page'], args['limit'])
    return jsonify({
        'success': True,
        'emails': [email.to_dict() for email in emails],
        'pagination': pagination
    }), 200


@emails_bp.route('/<email_id>', methods=['GET'])
@login_required('read')
def get_email(email_id):
    return jsonify({'success': True, 'email': _owned_email(email_id).to_dict(include_content=True)}), 200


@emails_bp.route('/<email_id>', methods=['DELETE'])
@login_required('write')
def delete_email(email_id):
    email = _owned_email(email_id)
    db.session.delete(email)
    db.session.commit()

    current_app.logger.info(f"Email deleted: {email_id} by user: {g.current_user.email}")
    return jsonify({'success': True, 'message': 'Email deleted successfully'}), 200


@emails_bp.route('/stats/overview', methods=['GET'])
@login_required('read')
@validate_query_args(DateRangeSchema())
def email_stats():
    args = request.validated_args
    overview = Email.get_stats(g.current_user.id, args['start_date'], args['end_date'])
    return jsonify({
        'success': True,
        'overview': overview,
        'status_breakdown': Email.get_status_counts(g.current_user.id, args['start_date'], args['end_date']),
        'daily': Email.get_daily_stats(g.current_user.id)
    }), 200


@emails_bp.route('/<email_id>/track/open', methods=['GET', 'POST'])
def track_open(email_id):
    """Tracking pixel; refused transitions and unknown emails still serve the image"""
    get_delivery_service().track_open(email_id)
    return Response(TRACKING_PIXEL, mimetype='image/png', headers={
        'Cache-Control': 'no-cache, no-store, must-revalidate',
        'Pragma': 'no-cache',
        'Expires': '0'
    })


@emails_bp.route('/<email_id>/track/click', methods=['GET', 'POST'])
def track_click(email_id):
    """Click redirect to a target signed for this email when its link was rewritten"""
    values = request.values.to_dict()
    if not values.get('url') and request.is_json:
        values.update(request.get_json(silent=True) or {})

    url = values.get('url')
    if not url:
        raise ValidationFailedError('URL is required')
    if urlparse(url).scheme not in ('http', 'https'):
        raise ValidationFailedError('URL must use http or https')
    if not verify_tracking_link(email_id, url, values.get('sig'), current_app.config['SECRET_KEY']):
        raise ValidationFailedError('Invalid tracking link')

    get_delivery_service().track_click(email_id)
    return redirect(url, code=302)
