"""
Email campaigns addressed to contacts and contact groups.

    draft -> scheduled -> sending -> sent

paused and cancelled are set by the owner; content may only change while a
campaign is draft, scheduled or paused.
"""
import uuid
from datetime import datetime

from sqlalchemy import update

from outreach.exceptions import InvalidTransitionError
from outreach.extensions import db

CAMPAIGN_STATUSES = ('draft', 'scheduled', 'sending', 'sent', 'paused', 'cancelled')
EDITABLE_STATUSES = ('draft', 'scheduled', 'paused')
SENDABLE_STATUSES = ('draft', 'scheduled')

campaign_contact_groups = db.Table(
    'campaign_contact_groups',
    db.Column('campaign_id', db.String(36), db.ForeignKey('campaigns.id', ondelete='CASCADE'),
              primary_key=True),
    db.Column('group_id', db.String(36), db.ForeignKey('contact_groups.id', ondelete='CASCADE'),
              primary_key=True)
)

campaign_recipients = db.Table(
    'campaign_recipients',
    db.Column('campaign_id', db.String(36), db.ForeignKey('campaigns.id', ondelete='CASCADE'),
              primary_key=True),
    db.Column('contact_id', db.String(36), db.ForeignKey('contacts.id', ondelete='CASCADE'),
              primary_key=True)
)


class Campaign(db.Model):
    __tablename__ = 'campaigns'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    template_id = db.Column(db.String(36), db.ForeignKey('email_templates.id', ondelete='SET NULL'))

    name = db.Column(db.String(100), nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    html = db.Column(db.Text)
    text = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='draft', index=True)

    scheduled_at = db.Column(db.DateTime)
    sent_at = db.Column(db.DateTime)
    total_recipients = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='campaigns')
    template = db.relationship('EmailTemplate')
    contact_groups = db.relationship('ContactGroup', secondary=campaign_contact_groups,
                                     lazy='selectin', order_by='ContactGroup.name')
    recipients = db.relationship('Contact', secondary=campaign_recipients, lazy='selectin',
                                 order_by='Contact.created_at')

    @property
    def is_editable(self):
        return self.status in EDITABLE_STATUSES

    def resolve_recipients(self):
        """Subscribed contacts from direct recipients and groups, first occurrence wins"""
        seen = set()
        resolved = []
        candidates = list(self.recipients)
        for group in self.contact_groups:
            candidates.extend(group.contacts)

        for contact in candidates:
            if contact.id in seen or contact.status != 'subscribed':
                continue
            seen.add(contact.id)
            resolved.append(contact)
        return resolved

    def claim_for_sending(self):
        """Move to sending with a conditional UPDATE so only one sender wins"""
        result = db.session.execute(
            update(Campaign)
            .where(Campaign.id == self.id, Campaign.status.in_(SENDABLE_STATUSES))
            .values(status='sending', updated_at=datetime.utcnow())
        )
        if result.rowcount != 1:
            db.session.rollback()
            db.session.refresh(self)
            raise InvalidTransitionError(self.status, 'sending',
                                         f"Campaign cannot be sent while {self.status}")
        db.session.commit()
        db.session.refresh(self)
        return self

    def mark_sent(self, total_recipients):
        self.status = 'sent'
        self.sent_at = datetime.utcnow()
        self.total_recipients = total_recipients
        return self

    def to_dict(self, include_content=False):
        data = {
            'id': self.id,
            'name': self.name,
            'subject': self.subject,
            'status': self.status,
            'template_id': self.template_id,
            'contact_group_ids': [group.id for group in self.contact_groups],
            'contact_ids': [contact.id for contact in self.recipients],
            'total_recipients': self.total_recipients,
            'scheduled_at': self.scheduled_at.isoformat() if self.scheduled_at else None,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_content:
            data['html'] = self.html
            data['text'] = self.text
        return data

    def __repr__(self):
        return f'<Campaign {self.name}: {self.status}>'
