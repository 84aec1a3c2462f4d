from flask import Blueprint, current_app, jsonify, request

from outreach.exceptions import ValidationFailedError
from outreach.services import get_delivery_service
from outreach.utils.auth import require_webhook_signature

webhooks_bp = Blueprint('webhooks', __name__)


@webhooks_bp.route('/sms/delivery', methods=['POST'])
@require_webhook_signature('signalwire')
def sms_delivery_status():
    """
    SignalWire status callback.

    Refused transitions are acknowledged with 200 so the provider stops retrying.
    """
    data = request.form.to_dict()
    current_app.logger.info(f"SMS webhook received: {data.get('MessageSid')} - {data.get('MessageStatus')}")

    result = get_delivery_service().process_sms_status(data)
    return jsonify({'message': 'Webhook processed successfully', **result}), 200


@webhooks_bp.route('/email/events', methods=['POST'])
def email_events():
    """
    Email provider event batch; accepts a single event object or a list.

    Every item gets its own result so the provider never retries a batch
    whose earlier events were already applied.
    """
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationFailedError('Invalid JSON')

    events = payload if isinstance(payload, list) else [payload]
    service = get_delivery_service()
    results = [service.process_email_event(event) for event in events]

    return jsonify({'success': True, 'processed': len(results), 'results': results}), 200
