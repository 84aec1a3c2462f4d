"""
Outbound messages - emails and SMS sharing one delivery state machine.

    pending -> sent -> delivered -> opened -> clicked

bounced, failed and undelivered are terminal and only reachable from
pending or sent.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta

from sqlalchemy import case, func
from sqlalchemy.orm import declared_attr

from outreach.exceptions import InvalidTransitionError
from outreach.extensions import db

logger = logging.getLogger(__name__)

PRIORITIES = ('low', 'normal', 'high')
EMAIL_STATUSES = ('pending', 'sent', 'delivered', 'opened', 'clicked', 'bounced', 'failed')
SMS_STATUSES = ('pending', 'sent', 'delivered', 'failed', 'undelivered')
SMS_SEGMENT_LENGTH = 160
SMS_MAX_LENGTH = 1600


def _rate(numerator, denominator):
    if not denominator:
        return 0
    return round(numerator / denominator * 100, 2)


def _iso(value):
    return value.isoformat() if value else None


class DeliveryStateMixin:
    """
    Columns and transitions shared by every outbound message table.

    Concrete tables declare their status sets and PROVIDER_ID_COLUMN, the
    column holding the id the provider reports delivery events against.
    """

    STATUSES = ()
    TERMINAL_STATUSES = ()
    ENGAGED_STATUSES = ()
    PROVIDER_ID_COLUMN = None

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    @declared_attr
    def user_id(cls):
        return db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                         nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    priority = db.Column(db.String(10), nullable=False, default='normal')

    # Lifecycle
    scheduled_at = db.Column(db.DateTime, index=True)
    sent_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    failed_at = db.Column(db.DateTime)
    error_message = db.Column(db.Text)

    # Metadata
    campaign_id = db.Column(db.String(64), index=True)
    template_id = db.Column(db.String(64))
    tags = db.Column(db.JSON, default=list)
    custom_fields = db.Column(db.JSON, default=dict)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def age_in_hours(self):
        if not self.created_at:
            return 0
        return int((datetime.utcnow() - self.created_at).total_seconds() // 3600)

    @property
    def delivery_time(self):
        """Seconds between creation and provider hand-off"""
        if not self.sent_at or not self.created_at:
            return None
        return (self.sent_at - self.created_at).total_seconds()

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_due(self):
        return self.scheduled_at is None or self.scheduled_at <= datetime.utcnow()

    @property
    def provider_id(self):
        return getattr(self, self.PROVIDER_ID_COLUMN)

    def _set_provider_id(self, provider_id):
        setattr(self, self.PROVIDER_ID_COLUMN, provider_id)

    # ------------------------------------------------------------------
    # Transitions. These mutate only; callers own the commit.
    # ------------------------------------------------------------------

    def _reject(self, target):
        raise InvalidTransitionError(self.status, target)

    def mark_sent(self, provider_id=None):
        if self.status not in ('pending', 'sent'):
            self._reject('sent')

        self.status = 'sent'
        self.sent_at = datetime.utcnow()
        if provider_id:
            self._set_provider_id(provider_id)
        return self

    def mark_delivered(self):
        if self.status in self.ENGAGED_STATUSES:
            # Late delivery report after engagement: backfill only
            if not self.delivered_at:
                self.delivered_at = datetime.utcnow()
            return self

        if self.status not in ('sent', 'delivered'):
            self._reject('delivered')

        self.status = 'delivered'
        if not self.delivered_at:
            self.delivered_at = datetime.utcnow()
        return self

    def _mark_terminal(self, target, error=None):
        """Move to a terminal failure state; repeating the same one is a no-op"""
        if self.status == target:
            return False
        if self.status not in ('pending', 'sent'):
            self._reject(target)

        self.status = target
        self.failed_at = datetime.utcnow()
        if error:
            self.error_message = error
        return True

    def mark_failed(self, error=None, code=None):
        self._mark_terminal('failed', error)
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _base_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'status': self.status,
            'priority': self.priority,
            'scheduled_at': _iso(self.scheduled_at),
            'sent_at': _iso(self.sent_at),
            'delivered_at': _iso(self.delivered_at),
            'failed_at': _iso(self.failed_at),
            'error_message': self.error_message,
            'campaign_id': self.campaign_id,
            'template_id': self.template_id,
            'tags': self.tags or [],
            'custom_fields': self.custom_fields or {},
            'age_in_hours': self.age_in_hours,
            'delivery_time': self.delivery_time,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @classmethod
    def get_for_user(cls, message_id, user_id):
        return cls.query.filter_by(id=message_id, user_id=user_id).first()

    @classmethod
    def find_by_provider_id(cls, provider_id):
        return cls.query.filter_by(**{cls.PROVIDER_ID_COLUMN: provider_id}).first()

    @classmethod
    def get_due_scheduled(cls, now=None, limit=100):
        """Pending messages whose scheduled time has passed, oldest first"""
        now = now or datetime.utcnow()
        return cls.query.filter(
            cls.status == 'pending',
            cls.scheduled_at.isnot(None),
            cls.scheduled_at <= now
        ).order_by(cls.scheduled_at.asc()).limit(limit).all()

    @classmethod
    def _count_where(cls, condition):
        return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

    @classmethod
    def get_daily_stats(cls, user_id=None, days=30):
        """Per-day totals for the trailing window"""
        since = datetime.utcnow() - timedelta(days=days)
        day = func.date(cls.created_at)

        query = db.session.query(
            day.label('date'),
            func.count(cls.id),
            cls._count_where(cls.sent_at.isnot(None)),
            cls._count_where(cls.delivered_at.isnot(None)),
            cls._count_where(cls.status.in_(cls.TERMINAL_STATUSES))
        ).filter(cls.created_at >= since)

        if user_id:
            query = query.filter(cls.user_id == user_id)

        rows = query.group_by(day).order_by(day).all()
        return [{
            'date': str(date),
            'total': total,
            'sent': int(sent),
            'delivered': int(delivered),
            'failed': int(failed)
        } for date, total, sent, delivered, failed in rows]

    @classmethod
    def get_status_counts(cls, user_id=None, start_date=None, end_date=None):
        query = db.session.query(cls.status, func.count(cls.id))
        if user_id:
            query = query.filter(cls.user_id == user_id)
        if start_date:
            query = query.filter(cls.created_at >= start_date)
        if end_date:
            query = query.filter(cls.created_at <= end_date)

        counts = {status: 0 for status in cls.STATUSES}
        counts.update(dict(query.group_by(cls.status).all()))
        return counts


class Email(DeliveryStateMixin, db.Model):
    """Outbound email with open and click tracking"""
    __tablename__ = 'emails'

    STATUSES = EMAIL_STATUSES
    TERMINAL_STATUSES = ('bounced', 'failed')
    ENGAGED_STATUSES = ('opened', 'clicked')
    PROVIDER_ID_COLUMN = 'provider_message_id'

    # Addressing
    to_email = db.Column(db.String(255), nullable=False, index=True)
    from_email = db.Column(db.String(255), nullable=False)
    from_name = db.Column(db.String(100))

    # Content
    subject = db.Column(db.String(200), nullable=False)
    html = db.Column(db.Text)
    text = db.Column(db.Text)

    # Tracking
    provider_message_id = db.Column(db.String(255), index=True)
    open_count = db.Column(db.Integer, nullable=False, default=0)
    click_count = db.Column(db.Integer, nullable=False, default=0)
    opened_at = db.Column(db.DateTime)
    clicked_at = db.Column(db.DateTime)
    last_opened = db.Column(db.DateTime)
    last_clicked = db.Column(db.DateTime)
    bounced_at = db.Column(db.DateTime)
    bounce_reason = db.Column(db.Text)

    user = db.relationship('User', back_populates='emails')

    @property
    def opened(self):
        return (self.open_count or 0) > 0

    @property
    def clicked(self):
        return (self.click_count or 0) > 0

    def mark_opened(self):
        if self.status not in ('sent', 'delivered', 'opened', 'clicked'):
            self._reject('opened')

        now = datetime.utcnow()
        if not self.delivered_at:
            self.delivered_at = now
        if self.status != 'clicked':
            self.status = 'opened'
        if not self.opened_at:
            self.opened_at = now
        self.last_opened = now
        self.open_count = (self.open_count or 0) + 1
        return self

    def mark_clicked(self):
        if self.status not in ('sent', 'delivered', 'opened', 'clicked'):
            self._reject('clicked')

        now = datetime.utcnow()
        if not self.delivered_at:
            self.delivered_at = now
        self.status = 'clicked'
        if not self.clicked_at:
            self.clicked_at = now
        self.last_clicked = now
        self.click_count = (self.click_count or 0) + 1
        return self

    def mark_bounced(self, reason=None):
        if self._mark_terminal('bounced', reason):
            self.bounced_at = self.failed_at
            self.bounce_reason = reason
        return self

    def to_dict(self, include_content=False):
        data = self._base_dict()
        data.update({
            'to': self.to_email,
            'from_email': self.from_email,
            'from_name': self.from_name,
            'subject': self.subject,
            'provider_message_id': self.provider_message_id,
            'opened': self.opened,
            'clicked': self.clicked,
            'open_count': self.open_count or 0,
            'click_count': self.click_count or 0,
            'opened_at': _iso(self.opened_at),
            'clicked_at': _iso(self.clicked_at),
            'last_opened': _iso(self.last_opened),
            'last_clicked': _iso(self.last_clicked),
            'bounced_at': _iso(self.bounced_at),
            'bounce_reason': self.bounce_reason
        })
        if include_content:
            data['html'] = self.html
            data['text'] = self.text
        return data

    @classmethod
    def get_stats(cls, user_id=None, start_date=None, end_date=None, campaign_id=None):
        """Aggregate delivery and engagement figures"""
        query = db.session.query(
            func.count(cls.id),
            cls._count_where(cls.sent_at.isnot(None)),
            cls._count_where(cls.status.in_(('delivered', 'opened', 'clicked'))),
            cls._count_where(cls.open_count > 0),
            cls._count_where(cls.click_count > 0),
            cls._count_where(cls.status == 'bounced'),
            cls._count_where(cls.status == 'failed'),
            cls._count_where(cls.status == 'pending')
        )
        if user_id:
            query = query.filter(cls.user_id == user_id)
        if start_date:
            query = query.filter(cls.created_at >= start_date)
        if end_date:
            query = query.filter(cls.created_at <= end_date)
        if campaign_id:
            query = query.filter(cls.campaign_id == campaign_id)

        total, sent, delivered, opened, clicked, bounced, failed, pending = (
            int(value) for value in query.one()
        )
        return {
            'total': total,
            'sent': sent,
            'delivered': delivered,
            'opened': opened,
            'clicked': clicked,
            'bounced': bounced,
            'failed': failed,
            'pending': pending,
            'delivery_rate': _rate(delivered, sent),
            'open_rate': _rate(opened, delivered),
            'click_rate': _rate(clicked, delivered)
        }

    def __repr__(self):
        return f'<Email {self.id}: {self.status} -> {self.to_email}>'


class SMSMessage(DeliveryStateMixin, db.Model):
    """Outbound SMS sent through SignalWire"""
    __tablename__ = 'sms_messages'

    STATUSES = SMS_STATUSES
    TERMINAL_STATUSES = ('failed', 'undelivered')
    PROVIDER_ID_COLUMN = 'provider_sid'

    # Addressing
    to_number = db.Column(db.String(20), nullable=False, index=True)
    from_number = db.Column(db.String(20), nullable=False)

    # Content
    body = db.Column(db.String(SMS_MAX_LENGTH), nullable=False)

    # Tracking
    provider_sid = db.Column(db.String(100), index=True)  # SignalWire message SID
    cost = db.Column(db.Numeric(10, 4))
    currency = db.Column(db.String(3), default='USD')
    error_code = db.Column(db.String(20))

    user = db.relationship('User', back_populates='sms_messages')

    @property
    def message_length(self):
        return len(self.body or '')

    @property
    def estimated_segments(self):
        return math.ceil(self.message_length / SMS_SEGMENT_LENGTH)

    def mark_failed(self, error=None, code=None):
        if self._mark_terminal('failed', error) and code:
            self.error_code = str(code)
        return self

    def mark_undelivered(self, error=None, code=None):
        if self._mark_terminal('undelivered', error) and code:
            self.error_code = str(code)
        return self

    def to_dict(self):
        data = self._base_dict()
        data.update({
            'to': self.to_number,
            'from_number': self.from_number,
            'body': self.body,
            'message_length': self.message_length,
            'estimated_segments': self.estimated_segments,
            'provider_sid': self.provider_sid,
            'cost': float(self.cost) if self.cost is not None else None,
            'currency': self.currency,
            'error_code': self.error_code
        })
        return data

    @classmethod
    def get_stats(cls, user_id=None, start_date=None, end_date=None, campaign_id=None):
        query = db.session.query(
            func.count(cls.id),
            cls._count_where(cls.sent_at.isnot(None)),
            cls._count_where(cls.status == 'delivered'),
            cls._count_where(cls.status == 'failed'),
            cls._count_where(cls.status == 'undelivered'),
            cls._count_where(cls.status == 'pending'),
            func.coalesce(func.sum(cls.cost), 0)
        )
        if user_id:
            query = query.filter(cls.user_id == user_id)
        if start_date:
            query = query.filter(cls.created_at >= start_date)
        if end_date:
            query = query.filter(cls.created_at <= end_date)
        if campaign_id:
            query = query.filter(cls.campaign_id == campaign_id)

        total, sent, delivered, failed, undelivered, pending, total_cost = query.one()
        sent, delivered = int(sent), int(delivered)
        return {
            'total': total,
            'sent': sent,
            'delivered': delivered,
            'failed': int(failed),
            'undelivered': int(undelivered),
            'pending': int(pending),
            'total_cost': round(float(total_cost), 4),
            'delivery_rate': _rate(delivered, sent)
        }

    @classmethod
    def get_cost_analysis(cls, user_id=None, start_date=None, end_date=None):
        """Spend grouped by currency"""
        query = db.session.query(
            cls.currency,
            func.count(cls.id),
            func.coalesce(func.sum(cls.cost), 0),
            func.coalesce(func.avg(cls.cost), 0)
        ).filter(cls.cost.isnot(None))
        if user_id:
            query = query.filter(cls.user_id == user_id)
        if start_date:
            query = query.filter(cls.created_at >= start_date)
        if end_date:
            query = query.filter(cls.created_at <= end_date)

        return [{
            'currency': currency,
            'messages': count,
            'total_cost': round(float(total), 4),
            'average_cost': round(float(average), 4)
        } for currency, count, total, average in query.group_by(cls.currency).all()]

    def __repr__(self):
        return f'<SMSMessage {self.id}: {self.status} -> {self.to_number}>'
