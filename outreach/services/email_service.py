"""
Email provider adapter - hands messages to the SMTP relay through Flask-Mail
and injects open/click tracking into HTML bodies
"""
import logging
import re
from html import unescape
from urllib.parse import quote

from flask import current_app
from flask_mail import Message

from outreach.exceptions import EmailProviderError
from outreach.extensions import mail
from outreach.utils.auth import sign_tracking_link

logger = logging.getLogger(__name__)

DEFAULT_CUSTOM_ID_HEADER = 'X-MJ-CustomID'
_HREF_PATTERN = re.compile(r'href="(https?://[^"]+)"', re.IGNORECASE)


class EmailService:
    """Outbound email through the configured SMTP relay"""

    def __init__(self, config=None):
        config = config if config is not None else current_app.config
        self.default_from_email = config.get('DEFAULT_FROM_EMAIL')
        self.default_from_name = config.get('DEFAULT_FROM_NAME')
        self.public_base_url = (config.get('PUBLIC_BASE_URL') or '').rstrip('/')
        self.custom_id_header = config.get('EMAIL_CUSTOM_ID_HEADER') or DEFAULT_CUSTOM_ID_HEADER
        self.tracking_secret = config.get('SECRET_KEY')

    def tracking_url(self, email_id, action):
        return f"{self.public_base_url}/api/emails/{email_id}/track/{action}"

    def add_tracking(self, html, email_id):
        """Route links through the click tracker and append the open pixel"""
        if not html:
            return html

        click_url = self.tracking_url(email_id, 'click')

        def rewrite(match):
            url = unescape(match.group(1))
            signature = sign_tracking_link(email_id, url, self.tracking_secret)
            return f'href="{click_url}?url={quote(url, safe="")}&amp;sig={signature}"'

        html = _HREF_PATTERN.sub(rewrite, html)

        pixel = (f'<img src="{self.tracking_url(email_id, "open")}" width="1" height="1" '
                 f'alt="" style="display:none" />')
        if '</body>' in html:
            return html.replace('</body>', f'{pixel}</body>', 1)
        return html + pixel

    def build_message(self, email):
        sender = (email.from_name or self.default_from_name, email.from_email or self.default_from_email)
        return Message(
            subject=email.subject,
            recipients=[email.to_email],
            body=email.text,
            html=self.add_tracking(email.html, email.id),
            sender=sender,
            extra_headers={self.custom_id_header: email.id}
        )

    def send(self, email):
        """
        Send an Email record.

        Returns:
            The provider message id used to correlate delivery events
        """
        message = self.build_message(email)
        try:
            mail.send(message)
        except Exception as e:
            logger.error(f"Failed to send email {email.id} to {email.to_email}: {e}")
            raise EmailProviderError(f"Failed to send email: {e}")

        provider_id = message.msgId.strip('<>')
        logger.info(f"Email {email.id} handed to SMTP relay as {provider_id}")
        return provider_id
