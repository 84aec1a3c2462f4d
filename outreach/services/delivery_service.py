"""
Delivery event processing - maps provider callbacks and recipient tracking
hits onto message state transitions
"""
import logging
from typing import Any, Dict, Optional

from outreach.exceptions import InvalidTransitionError, NotFoundError, ValidationFailedError
from outreach.extensions import db
from outreach.models import Email, SMSMessage

logger = logging.getLogger(__name__)

# Provider statuses that carry no transition for us
SMS_INTERIM_STATUSES = ('queued', 'accepted', 'sending', 'scheduled')

EMAIL_EVENTS = ('sent', 'delivered', 'open', 'click', 'bounce', 'blocked', 'spam', 'failed')


class DeliveryService:
    """Applies delivery and engagement events to stored messages"""

    def _apply(self, message, event, transition):
        """Run a transition, acknowledging ones the state machine refuses"""
        previous = message.status
        try:
            transition()
        except InvalidTransitionError as e:
            db.session.rollback()
            logger.warning(f"Ignored {event} for {type(message).__name__} {message.id}: {e.message}")
            return {'success': True, 'ignored': True, 'id': message.id,
                    'status': message.status, 'reason': e.message}

        db.session.commit()
        logger.info(f"{type(message).__name__} {message.id}: {event} ({previous} -> {message.status})")
        return {'success': True, 'ignored': False, 'id': message.id, 'status': message.status}

    # ------------------------------------------------------------------
    # SMS status callbacks
    # ------------------------------------------------------------------

    def process_sms_status(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        sid = payload.get('MessageSid')
        status = (payload.get('MessageStatus') or '').lower()
        error_code = payload.get('ErrorCode')
        error_message = payload.get('ErrorMessage')

        if not sid:
            raise ValidationFailedError('MessageSid is required')

        sms = SMSMessage.find_by_provider_id(sid)
        if sms is None:
            logger.warning(f"SMS status callback for unknown SID {sid}")
            raise NotFoundError('SMS not found')

        if status == 'sent':
            if sms.status != 'pending':
                return {'success': True, 'ignored': True, 'id': sms.id, 'status': sms.status}
            return self._apply(sms, status, lambda: sms.mark_sent(sid))
        if status == 'delivered':
            return self._apply(sms, status, sms.mark_delivered)
        if status == 'failed':
            return self._apply(sms, status,
                               lambda: sms.mark_failed(error_message or 'Delivery failed', error_code))
        if status == 'undelivered':
            return self._apply(sms, status,
                               lambda: sms.mark_undelivered(error_message, error_code))

        if status not in SMS_INTERIM_STATUSES:
            logger.info(f"Unhandled SMS status '{status}' for SID {sid}")
        return {'success': True, 'ignored': True, 'id': sms.id, 'status': sms.status}

    # ------------------------------------------------------------------
    # Email provider events
    # ------------------------------------------------------------------

    def _find_email(self, event: Dict[str, Any]) -> Optional[Email]:
        custom_id = event.get('CustomID')
        if custom_id:
            email = db.session.get(Email, str(custom_id))
            if email is not None:
                return email

        message_id = event.get('MessageID')
        if message_id:
            return Email.find_by_provider_id(str(message_id).strip('<>'))
        return None

    def process_email_event(self, event: Any) -> Dict[str, Any]:
        """
        Apply one provider event.

        Malformed items and event types we do not track are acknowledged as
        ignored, so a batch is never refused after earlier items were applied.
        """
        if not isinstance(event, dict):
            logger.warning(f"Ignored malformed email event: {event!r}")
            return {'success': True, 'ignored': True, 'reason': 'Event must be an object'}

        name = str(event.get('event') or '').lower()
        if name not in EMAIL_EVENTS:
            logger.info(f"Ignored unsupported email event '{name}'")
            return {'success': True, 'ignored': True, 'event': name,
                    'reason': f"Unsupported email event '{name}'"}

        email = self._find_email(event)
        if email is None:
            logger.warning(f"Email event '{name}' for unknown message")
            return {'success': True, 'ignored': True, 'reason': 'Email not found'}

        if name == 'sent':
            if email.status != 'pending':
                return {'success': True, 'ignored': True, 'id': email.id, 'status': email.status}
            return self._apply(email, name, lambda: email.mark_sent(event.get('MessageID')))
        if name == 'delivered':
            return self._apply(email, name, email.mark_delivered)
        if name == 'open':
            return self._apply(email, name, email.mark_opened)
        if name == 'click':
            return self._apply(email, name, email.mark_clicked)
        if name in ('bounce', 'blocked'):
            reason = event.get('error') or event.get('comment') or name
            return self._apply(email, name, lambda: email.mark_bounced(reason))
        if name == 'failed':
            return self._apply(email, name, lambda: email.mark_failed(event.get('error') or 'Delivery failed'))

        # spam complaints are recorded in the log only
        logger.warning(f"Spam complaint for email {email.id} to {email.to_email}")
        return {'success': True, 'ignored': True, 'id': email.id, 'status': email.status}

    # ------------------------------------------------------------------
    # Recipient tracking
    # ------------------------------------------------------------------

    def _track(self, email_id, event):
        """Recipient hits on deleted or unknown emails are recorded in the log only"""
        email = db.session.get(Email, email_id)
        if email is None:
            logger.info(f"Tracking {event} for unknown email {email_id}")
            return {'success': True, 'ignored': True, 'reason': 'Email not found'}

        transition = email.mark_opened if event == 'open' else email.mark_clicked
        return self._apply(email, event, transition)

    def track_open(self, email_id):
        return self._track(email_id, 'open')

    def track_click(self, email_id):
        return self._track(email_id, 'click')
