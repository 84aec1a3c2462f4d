"""
Campaigns - content assembly from templates, recipient resolution and
fan-out through the send pipeline
"""
import logging
from datetime import datetime
from typing import Any, Dict, List

from flask import current_app

from outreach.exceptions import NotFoundError, OutreachError, ValidationFailedError
from outreach.extensions import db
from outreach.models import Campaign, Contact, ContactGroup, Email, EmailTemplate, SMSMessage

logger = logging.getLogger(__name__)

CONTENT_FIELDS = ('name', 'subject', 'html', 'text', 'scheduled_at')


class CampaignService:
    """Campaign lifecycle for a single owner"""

    def __init__(self, send_service=None):
        self._send_service = send_service

    @property
    def send_service(self):
        if self._send_service is None:
            from outreach.services import get_send_service
            self._send_service = get_send_service()
        return self._send_service

    def get_owned(self, campaign_id, user_id) -> Campaign:
        campaign = Campaign.query.filter_by(id=campaign_id, user_id=user_id).first()
        if campaign is None:
            raise NotFoundError('Campaign not found')
        return campaign

    # ------------------------------------------------------------------
    # Addressing
    # ------------------------------------------------------------------

    @staticmethod
    def _owned_groups(user_id, group_ids):
        groups = ContactGroup.query.filter(
            ContactGroup.user_id == user_id, ContactGroup.id.in_(group_ids)
        ).all()
        missing = set(group_ids) - {group.id for group in groups}
        if missing:
            raise ValidationFailedError(f"Unknown contact group: {sorted(missing)[0]}")
        return groups

    @staticmethod
    def _owned_contacts(user_id, contact_ids):
        contacts = Contact.query.filter(
            Contact.user_id == user_id, Contact.id.in_(contact_ids)
        ).all()
        missing = set(contact_ids) - {contact.id for contact in contacts}
        if missing:
            raise ValidationFailedError(f"Unknown contact: {sorted(missing)[0]}")
        return contacts

    def _apply_addressing(self, campaign, data):
        if data.get('contact_group_ids') is not None:
            campaign.contact_groups = self._owned_groups(campaign.user_id, data['contact_group_ids'])
        if data.get('contact_ids') is not None:
            campaign.recipients = self._owned_contacts(campaign.user_id, data['contact_ids'])

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, user_id, data: Dict[str, Any]) -> Campaign:
        campaign = Campaign(user_id=user_id, name=data['name'])

        template_id = data.get('template_id')
        if template_id:
            template = EmailTemplate.get_visible(template_id, user_id)
            if template is None:
                raise NotFoundError('Template not found')
            rendered = template.render(data.get('variables'))
            campaign.template_id = template.id
            for part in ('subject', 'html', 'text'):
                setattr(campaign, part, data.get(part) or rendered[part])
            template.increment_usage()
        else:
            campaign.subject = data.get('subject')
            campaign.html = data.get('html')
            campaign.text = data.get('text')

        if not campaign.subject:
            raise ValidationFailedError('Subject is required')
        if not campaign.html and not campaign.text:
            raise ValidationFailedError('Either html or text content is required')

        campaign.scheduled_at = data.get('scheduled_at')
        campaign.status = 'scheduled' if campaign.scheduled_at else 'draft'
        self._apply_addressing(campaign, data)

        db.session.add(campaign)
        db.session.commit()
        logger.info(f"Created campaign {campaign.id} '{campaign.name}' for user {user_id}")
        return campaign

    def update(self, campaign, data: Dict[str, Any]) -> Campaign:
        if not campaign.is_editable:
            raise ValidationFailedError(f"Cannot update a {campaign.status} campaign")

        for field in CONTENT_FIELDS:
            if field in data:
                setattr(campaign, field, data[field])
        if not campaign.html and not campaign.text:
            raise ValidationFailedError('Either html or text content is required')

        # status 'draft' resumes a paused campaign
        status = data.get('status')
        if status in ('paused', 'cancelled'):
            campaign.status = status
        elif status == 'draft' or (campaign.status != 'paused' and 'scheduled_at' in data):
            campaign.status = 'scheduled' if campaign.scheduled_at else 'draft'

        self._apply_addressing(campaign, data)
        db.session.commit()
        return campaign

    def delete(self, campaign):
        if campaign.status == 'sending':
            raise ValidationFailedError('Cannot delete a campaign that is currently sending')
        db.session.delete(campaign)
        db.session.commit()
        logger.info(f"Deleted campaign {campaign.id} for user {campaign.user_id}")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, campaign) -> List[Dict]:
        """Send one email per resolved recipient; a failure never undoes earlier successes"""
        recipients = campaign.resolve_recipients()
        if not recipients:
            raise ValidationFailedError('No valid recipients found')

        campaign.claim_for_sending()
        logger.info(f"Sending campaign {campaign.id} to {len(recipients)} recipients")

        content = {
            'subject': campaign.subject,
            'html': campaign.html,
            'text': campaign.text,
            'campaign_id': campaign.id,
            'template_id': campaign.template_id
        }
        results = []
        for contact in recipients:
            try:
                email = self.send_service.send_email(campaign.user_id, dict(content, to=contact.email))
                results.append({'to': contact.email, 'success': True, 'id': email.id,
                                'status': email.status})
            except OutreachError as e:
                logger.warning(f"Campaign {campaign.id} send to {contact.email} failed: {e.message}")
                results.append({'to': contact.email, 'success': False, 'error': e.message})

        campaign.mark_sent(len(recipients))
        db.session.commit()
        return results

    def send_due_campaigns(self, now=None) -> List[Dict]:
        """Send scheduled campaigns whose time has come"""
        now = now or datetime.utcnow()
        batch_size = current_app.config.get('SCHEDULED_BATCH_SIZE', 100)
        due = Campaign.query.filter(
            Campaign.status == 'scheduled',
            Campaign.scheduled_at.isnot(None),
            Campaign.scheduled_at <= now
        ).order_by(Campaign.scheduled_at.asc()).limit(batch_size).all()

        summaries = []
        for campaign in due:
            try:
                results = self.send(campaign)
            except OutreachError as e:
                logger.warning(f"Scheduled campaign {campaign.id} not sent: {e.message}")
                summaries.append({'id': campaign.id, 'success': False, 'error': e.message})
                continue
            summaries.append({
                'id': campaign.id,
                'success': True,
                'sent': sum(1 for result in results if result['success'])
            })
        return summaries

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(self, campaign) -> Dict[str, Any]:
        return {
            'campaign_id': campaign.id,
            'status': campaign.status,
            'total_recipients': campaign.total_recipients,
            'email': Email.get_stats(campaign.user_id, campaign_id=campaign.id),
            'sms': SMSMessage.get_stats(campaign.user_id, campaign_id=campaign.id)
        }
