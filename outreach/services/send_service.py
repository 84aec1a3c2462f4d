"""
Send pipeline - admission control, record creation, quota consumption and
provider hand-off for single, bulk and scheduled sends
"""
import logging
from typing import Any, Dict, List

from flask import current_app

from outreach.exceptions import (
    OutreachError, ProviderError, QuotaExceededError, ValidationFailedError
)
from outreach.extensions import db
from outreach.models import Email, QuotaLedger, SMSMessage

logger = logging.getLogger(__name__)

_METADATA_FIELDS = ('priority', 'scheduled_at', 'campaign_id', 'template_id', 'tags', 'custom_fields')


class SendService:
    """Email and SMS send orchestration"""

    def __init__(self, email_service=None, sms_service=None):
        self._email_service = email_service
        self._sms_service = sms_service

    @property
    def email_service(self):
        if self._email_service is None:
            from outreach.services import get_email_service
            self._email_service = get_email_service()
        return self._email_service

    @property
    def sms_service(self):
        if self._sms_service is None:
            from outreach.services import get_sms_service
            self._sms_service = get_sms_service()
        return self._sms_service

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _admit(self, user_id, resource_type):
        ledger = QuotaLedger.require_for_user(user_id)
        ledger.reset_expired(commit=False)
        if not ledger.has_available(resource_type):
            raise QuotaExceededError(resource_type)
        return ledger

    def _persist_and_consume(self, ledger, message, resource_type):
        """Flush the message and consume quota in one transaction"""
        db.session.add(message)
        db.session.flush()
        try:
            ledger.consume(resource_type, commit=False)
        except QuotaExceededError:
            db.session.rollback()
            raise
        db.session.commit()
        logger.info(f"Accepted {resource_type} {message.id} for user {ledger.user_id}")
        return message

    @staticmethod
    def _metadata(data):
        return {field: data[field] for field in _METADATA_FIELDS if data.get(field) is not None}

    def _release_on_failure(self, user_id, resource_type):
        if not current_app.config.get('QUOTA_REFUND_ON_PROVIDER_FAILURE', False):
            return
        ledger = QuotaLedger.get_for_user(user_id)
        if ledger is not None:
            ledger.release(resource_type, commit=False)
            logger.info(f"Released one {resource_type} unit for user {user_id} after provider failure")

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def send_email(self, user_id, data: Dict[str, Any]) -> Email:
        ledger = self._admit(user_id, 'email')

        email = Email(
            user_id=user_id,
            to_email=data['to'],
            from_email=data.get('from_email') or current_app.config.get('DEFAULT_FROM_EMAIL'),
            from_name=data.get('from_name') or current_app.config.get('DEFAULT_FROM_NAME'),
            subject=data['subject'],
            html=data.get('html'),
            text=data.get('text'),
            **self._metadata(data)
        )
        self._persist_and_consume(ledger, email, 'email')

        if email.is_due:
            self.deliver_email(email)
        return email

    def deliver_email(self, email):
        """Hand a pending email to the provider and record the outcome"""
        try:
            provider_id = self.email_service.send(email)
        except ProviderError as e:
            email.mark_failed(e.message)
            self._release_on_failure(email.user_id, 'email')
            db.session.commit()
            raise

        email.mark_sent(provider_id)
        db.session.commit()
        return email

    def send_bulk_email(self, user_id, recipients: List[str], data: Dict[str, Any]) -> List[Dict]:
        return self._send_bulk(self.send_email, user_id, recipients, data)

    # ------------------------------------------------------------------
    # SMS
    # ------------------------------------------------------------------

    def send_sms(self, user_id, data: Dict[str, Any]) -> SMSMessage:
        from_number = data.get('from') or current_app.config.get('SMS_FROM_NUMBER')
        if not from_number:
            raise ValidationFailedError('No sender number configured')

        ledger = self._admit(user_id, 'sms')

        sms = SMSMessage(
            user_id=user_id,
            to_number=data['to'],
            from_number=from_number,
            body=data['body'],
            currency=current_app.config.get('SMS_CURRENCY', 'USD'),
            **self._metadata(data)
        )
        self._persist_and_consume(ledger, sms, 'sms')

        if sms.is_due:
            self.deliver_sms(sms)
        return sms

    def deliver_sms(self, sms):
        try:
            sid = self.sms_service.send(sms)
        except ProviderError as e:
            sms.mark_failed(e.message, e.code)
            self._release_on_failure(sms.user_id, 'sms')
            db.session.commit()
            raise

        sms.mark_sent(sid)
        sms.cost = self.sms_service.calculate_cost(sms.estimated_segments)
        sms.currency = self.sms_service.currency
        db.session.commit()
        return sms

    def send_bulk_sms(self, user_id, recipients: List[str], data: Dict[str, Any]) -> List[Dict]:
        return self._send_bulk(self.send_sms, user_id, recipients, data)

    # ------------------------------------------------------------------
    # Bulk and scheduled
    # ------------------------------------------------------------------

    def _send_bulk(self, send, user_id, recipients, data):
        """Send per recipient; a failure never undoes earlier successes"""
        max_recipients = current_app.config.get('BULK_SEND_MAX_RECIPIENTS', 100)
        if len(recipients) > max_recipients:
            raise ValidationFailedError(f'At most {max_recipients} recipients per bulk send')

        results = []
        for recipient in recipients:
            try:
                message = send(user_id, dict(data, to=recipient))
                results.append({
                    'to': recipient,
                    'success': True,
                    'id': message.id,
                    'status': message.status
                })
            except OutreachError as e:
                logger.warning(f"Bulk send to {recipient} failed for user {user_id}: {e.message}")
                results.append({'to': recipient, 'success': False, 'error': e.message})
        return results

    def send_scheduled_messages(self, batch_size=None) -> List[Dict]:
        """Deliver pending messages whose scheduled time has passed; quota was spent at creation"""
        batch_size = batch_size or current_app.config.get('SCHEDULED_BATCH_SIZE', 100)

        results = []
        for email in Email.get_due_scheduled(limit=batch_size):
            results.append(self._deliver_scheduled(email, 'email', self.deliver_email))
        for sms in SMSMessage.get_due_scheduled(limit=batch_size):
            results.append(self._deliver_scheduled(sms, 'sms', self.deliver_sms))

        if results:
            sent = sum(1 for result in results if result['success'])
            logger.info(f"Scheduled sweep delivered {sent}/{len(results)} messages")
        return results

    def _deliver_scheduled(self, message, message_type, deliver):
        try:
            deliver(message)
            return {'id': message.id, 'type': message_type, 'success': True, 'status': message.status}
        except ProviderError as e:
            return {'id': message.id, 'type': message_type, 'success': False,
                    'status': message.status, 'error': e.message}
