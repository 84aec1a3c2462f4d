"""
SMS provider adapter for SignalWire
"""
import logging
from decimal import Decimal

from flask import current_app
from signalwire.rest import Client as SignalWireClient

from outreach.exceptions import SMSProviderError
from outreach.utils.validators import normalize_phone_number, validate_phone_number

logger = logging.getLogger(__name__)


class SMSService:
    """SMS sending and number checks through the SignalWire REST API"""

    def __init__(self, config=None):
        config = config if config is not None else current_app.config
        self.provider = 'signalwire'
        self.project_id = config.get('SIGNALWIRE_PROJECT_ID')
        self.api_token = config.get('SIGNALWIRE_API_TOKEN')
        self.space_url = config.get('SIGNALWIRE_SPACE_URL')
        self.from_number = config.get('SMS_FROM_NUMBER')
        self.cost_per_segment = Decimal(str(config.get('SMS_COST_PER_SEGMENT', 0.0075)))
        self.currency = config.get('SMS_CURRENCY', 'USD')
        self.public_base_url = (config.get('PUBLIC_BASE_URL') or '').rstrip('/')
        self._client = None

    @property
    def client(self):
        """Lazy load SignalWire client"""
        if self._client is None:
            if not all([self.project_id, self.api_token, self.space_url]):
                logger.error("Missing SignalWire configuration")
                raise SMSProviderError('SMS service unavailable')
            self._client = SignalWireClient(
                self.project_id,
                self.api_token,
                signalwire_space_url=self.space_url
            )
        return self._client

    @property
    def status_callback_url(self):
        return f"{self.public_base_url}/api/webhooks/sms/delivery"

    def calculate_cost(self, segments):
        return self.cost_per_segment * segments

    def send(self, sms):
        """
        Send an SMSMessage record.

        Returns:
            The SignalWire message SID
        """
        try:
            message = self.client.messages.create(
                from_=sms.from_number,
                to=sms.to_number,
                body=sms.body,
                status_callback=self.status_callback_url
            )
        except SMSProviderError:
            raise
        except Exception as e:
            logger.error(f"Failed to send SMS {sms.id} to {sms.to_number}: {e}")
            raise SMSProviderError(f"Failed to send SMS: {e}", code=getattr(e, 'code', None))

        logger.info(f"SMS {sms.id} sent successfully: {message.sid}")
        return message.sid

    def validate_number(self, phone):
        is_valid = validate_phone_number(phone)
        return {
            'phone': phone,
            'is_valid': is_valid,
            'formatted': normalize_phone_number(phone) if is_valid else None
        }
