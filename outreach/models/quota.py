"""
Quota ledger - per-user usage accounting for the email, sms and api buckets.

Every mutation of a bucket counter goes through a single UPDATE statement so
that concurrent request handlers cannot both pass the capacity check and
jointly overspend the ledger.
"""
import logging
import uuid
from datetime import datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy import and_, case, func, or_, update

from outreach.exceptions import InvalidArgumentError, NotFoundError, QuotaExceededError
from outreach.extensions import db

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ('email', 'sms', 'api')
PLANS = ('free', 'starter', 'professional')
QUOTA_STATUSES = ('normal', 'warning', 'critical', 'exceeded')
STATUS_SEVERITY = {status: rank for rank, status in enumerate(QUOTA_STATUSES)}

DEFAULT_PLAN_LIMITS = {
    'free': {'email': 2000, 'sms': 0, 'api': 10000},
    'starter': {'email': 5000, 'sms': 1000, 'api': 50000},
    'professional': {'email': 25000, 'sms': 5000, 'api': 200000},
}
DEFAULT_RESET_DAYS = 30


def usage_percentage(used, limit):
    """Percentage of a bucket consumed; an unlimited-zero bucket reports 0"""
    if not limit or limit <= 0:
        return 0
    return (used / limit) * 100


def classify_percentage(percentage):
    """Map a usage percentage onto a quota status"""
    if percentage >= 100:
        return 'exceeded'
    if percentage >= 90:
        return 'critical'
    if percentage >= 75:
        return 'warning'
    return 'normal'


def classify(used, limit):
    return classify_percentage(usage_percentage(used, limit))


def worst_status(statuses):
    """Highest-severity status of the given ones"""
    return max(statuses, key=STATUS_SEVERITY.__getitem__, default='normal')


def get_plan_limits(plan):
    """Limits for a plan, taken from app config when available"""
    plan_limits = DEFAULT_PLAN_LIMITS
    if has_app_context():
        plan_limits = current_app.config.get('PLAN_LIMITS', DEFAULT_PLAN_LIMITS)

    if plan not in PLANS or plan not in plan_limits:
        raise InvalidArgumentError(f"Unknown plan '{plan}' (expected one of: {', '.join(PLANS)})")
    return dict(plan_limits[plan])


def next_reset_date(now=None):
    days = DEFAULT_RESET_DAYS
    if has_app_context():
        days = current_app.config.get('QUOTA_RESET_DAYS', DEFAULT_RESET_DAYS)
    return (now or datetime.utcnow()) + timedelta(days=days)


def _check_resource_type(resource_type):
    if resource_type not in RESOURCE_TYPES:
        raise InvalidArgumentError(
            f"Unknown quota type '{resource_type}' (expected one of: {', '.join(RESOURCE_TYPES)})"
        )


class QuotaLedger(db.Model):
    """Per-user quota ledger with email, sms and api buckets"""
    __tablename__ = 'quota_ledgers'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, unique=True, index=True)
    plan = db.Column(db.String(20), nullable=False, index=True)

    # Buckets
    email_used = db.Column(db.Integer, nullable=False, default=0)
    email_limit = db.Column(db.Integer, nullable=False)
    email_reset_date = db.Column(db.DateTime, nullable=False, default=lambda: next_reset_date())

    sms_used = db.Column(db.Integer, nullable=False, default=0)
    sms_limit = db.Column(db.Integer, nullable=False)
    sms_reset_date = db.Column(db.DateTime, nullable=False, default=lambda: next_reset_date())

    api_used = db.Column(db.Integer, nullable=False, default=0)
    api_limit = db.Column(db.Integer, nullable=False)
    api_reset_date = db.Column(db.DateTime, nullable=False, default=lambda: next_reset_date())

    # Cached classification, recomputed after every mutation
    status = db.Column(db.String(20), nullable=False, default='normal', index=True)
    last_updated = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = db.relationship('User', back_populates='quota')

    __table_args__ = (
        db.CheckConstraint('email_used >= 0', name='ck_quota_email_used_non_negative'),
        db.CheckConstraint('sms_used >= 0', name='ck_quota_sms_used_non_negative'),
        db.CheckConstraint('api_used >= 0', name='ck_quota_api_used_non_negative'),
    )

    # ------------------------------------------------------------------
    # Bucket access
    # ------------------------------------------------------------------

    def used(self, resource_type):
        _check_resource_type(resource_type)
        return getattr(self, f'{resource_type}_used') or 0

    def limit(self, resource_type):
        _check_resource_type(resource_type)
        return getattr(self, f'{resource_type}_limit') or 0

    def reset_date(self, resource_type):
        _check_resource_type(resource_type)
        return getattr(self, f'{resource_type}_reset_date')

    def remaining(self, resource_type):
        return max(0, self.limit(resource_type) - self.used(resource_type))

    def usage_percentage(self, resource_type):
        return usage_percentage(self.used(resource_type), self.limit(resource_type))

    def get_quota_status(self, resource_type):
        return classify(self.used(resource_type), self.limit(resource_type))

    @property
    def overall_status(self):
        return worst_status(self.get_quota_status(t) for t in RESOURCE_TYPES)

    # ------------------------------------------------------------------
    # Admission control
    # ------------------------------------------------------------------

    def has_available(self, resource_type, amount=1):
        """True iff consuming `amount` would keep the bucket within its limit"""
        return self.used(resource_type) + amount <= self.limit(resource_type)

    def consume(self, resource_type, amount=1, commit=True):
        """
        Atomically consume `amount` units of a bucket.

        The capacity check and the increment are one conditional UPDATE; when
        no row matches, nothing was changed and QuotaExceededError is raised.
        """
        _check_resource_type(resource_type)
        if amount < 1:
            raise InvalidArgumentError('Amount must be a positive integer')

        self.reset_expired(commit=False)

        cls = type(self)
        used_col = getattr(cls, f'{resource_type}_used')
        limit_col = getattr(cls, f'{resource_type}_limit')

        result = db.session.execute(
            update(cls)
            .where(cls.id == self.id, used_col + amount <= limit_col)
            .values({used_col: used_col + amount, cls.last_updated: datetime.utcnow()})
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.info(f"Quota exceeded for user {self.user_id}: {resource_type} +{amount}")
            db.session.refresh(self)
            raise QuotaExceededError(resource_type)

        db.session.refresh(self)
        self.status = self.overall_status

        if commit:
            db.session.commit()
        return self

    def release(self, resource_type, amount=1, commit=True):
        """Atomically give back `amount` units, never dropping below zero"""
        _check_resource_type(resource_type)

        cls = type(self)
        used_col = getattr(cls, f'{resource_type}_used')

        db.session.execute(
            update(cls)
            .where(cls.id == self.id)
            .values({
                used_col: case((used_col >= amount, used_col - amount), else_=0),
                cls.last_updated: datetime.utcnow()
            })
            .execution_options(synchronize_session=False)
        )

        db.session.refresh(self)
        self.status = self.overall_status

        if commit:
            db.session.commit()
        return self

    # ------------------------------------------------------------------
    # Resets and plan changes
    # ------------------------------------------------------------------

    def _zero_bucket(self, resource_type, now):
        setattr(self, f'{resource_type}_used', 0)
        setattr(self, f'{resource_type}_reset_date', next_reset_date(now))

    def reset(self, resource_type, commit=True):
        """Zero one bucket and start a new rolling window"""
        _check_resource_type(resource_type)
        now = datetime.utcnow()
        self._zero_bucket(resource_type, now)
        self.status = self.overall_status
        self.last_updated = now

        if commit:
            db.session.commit()
        return self

    def reset_all(self, commit=True):
        """Zero every bucket and start new rolling windows"""
        now = datetime.utcnow()
        for resource_type in RESOURCE_TYPES:
            self._zero_bucket(resource_type, now)
        self.status = 'normal'
        self.last_updated = now

        if commit:
            db.session.commit()
        return self

    def reset_expired(self, now=None, commit=True):
        """
        Reset every bucket whose window has passed.

        Each reset is conditional on the stored reset date so two concurrent
        callers cannot both roll the same window.
        """
        now = now or datetime.utcnow()
        cls = type(self)
        reset_types = []

        for resource_type in RESOURCE_TYPES:
            reset_date = self.reset_date(resource_type)
            if reset_date is None or reset_date > now:
                continue

            used_col = getattr(cls, f'{resource_type}_used')
            reset_col = getattr(cls, f'{resource_type}_reset_date')
            result = db.session.execute(
                update(cls)
                .where(cls.id == self.id, reset_col <= now)
                .values({used_col: 0, reset_col: next_reset_date(now), cls.last_updated: now})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                reset_types.append(resource_type)

        if reset_types:
            db.session.refresh(self)
            self.status = self.overall_status
            logger.info(f"Rolled quota window for user {self.user_id}: {', '.join(reset_types)}")
            if commit:
                db.session.commit()

        return reset_types

    def update_plan(self, new_plan, new_limits=None, commit=True):
        """
        Switch plan and overwrite all limits, then reset every bucket.

        Usage does not carry over across a plan change.
        """
        limits = get_plan_limits(new_plan)
        if new_limits:
            missing = [t for t in RESOURCE_TYPES if t not in new_limits]
            if missing:
                raise InvalidArgumentError(f"Missing limits for: {', '.join(missing)}")
            limits = {t: int(new_limits[t]) for t in RESOURCE_TYPES}

        self.plan = new_plan
        self.email_limit = limits['email']
        self.sms_limit = limits['sms']
        self.api_limit = limits['api']
        return self.reset_all(commit=commit)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def bucket_summary(self, resource_type):
        reset_date = self.reset_date(resource_type)
        return {
            'used': self.used(resource_type),
            'limit': self.limit(resource_type),
            'remaining': self.remaining(resource_type),
            'percentage': round(self.usage_percentage(resource_type), 2),
            'status': self.get_quota_status(resource_type),
            'reset_date': reset_date.isoformat() if reset_date else None
        }

    def get_summary(self):
        summary = {'plan': self.plan}
        for resource_type in RESOURCE_TYPES:
            summary[resource_type] = self.bucket_summary(resource_type)
        summary['overall_status'] = self.overall_status
        summary['last_updated'] = self.last_updated.isoformat() if self.last_updated else None
        return summary

    # ------------------------------------------------------------------
    # Lookups and aggregates
    # ------------------------------------------------------------------

    @classmethod
    def create_for_user(cls, user_id, plan='free', commit=True):
        limits = get_plan_limits(plan)
        ledger = cls(
            user_id=user_id,
            plan=plan,
            email_limit=limits['email'],
            sms_limit=limits['sms'],
            api_limit=limits['api'],
            status='normal'
        )
        db.session.add(ledger)
        if commit:
            db.session.commit()
        logger.info(f"Created {plan} quota ledger for user {user_id}")
        return ledger

    @classmethod
    def get_for_user(cls, user_id):
        return cls.query.filter_by(user_id=user_id).first()

    @classmethod
    def require_for_user(cls, user_id):
        ledger = cls.get_for_user(user_id)
        if ledger is None:
            raise NotFoundError('Quota not found')
        return ledger

    @classmethod
    def get_or_create_for_user(cls, user):
        ledger = cls.get_for_user(user.id)
        if ledger is None:
            ledger = cls.create_for_user(user.id, user.plan or 'free')
        return ledger

    @classmethod
    def consume_for_user(cls, user_id, resource_type, amount=1, commit=True):
        return cls.require_for_user(user_id).consume(resource_type, amount, commit=commit)

    @classmethod
    def reset_all_expired(cls, now=None, batch_size=500):
        """Roll every ledger that has at least one expired window"""
        now = now or datetime.utcnow()
        due = cls.query.filter(or_(
            cls.email_reset_date <= now,
            cls.sms_reset_date <= now,
            cls.api_reset_date <= now
        )).limit(batch_size).all()

        results = []
        for ledger in due:
            reset_types = ledger.reset_expired(now=now, commit=False)
            if reset_types:
                results.append({'user_id': ledger.user_id, 'reset': reset_types})
        db.session.commit()
        return results

    @classmethod
    def get_system_stats(cls):
        row = db.session.query(
            func.count(cls.id),
            func.coalesce(func.sum(cls.email_used), 0),
            func.coalesce(func.sum(cls.email_limit), 0),
            func.coalesce(func.sum(cls.sms_used), 0),
            func.coalesce(func.sum(cls.sms_limit), 0),
            func.coalesce(func.sum(cls.api_used), 0),
            func.coalesce(func.sum(cls.api_limit), 0),
        ).one()
        return {
            'total_users': row[0],
            'total_email_used': int(row[1]),
            'total_email_limit': int(row[2]),
            'total_sms_used': int(row[3]),
            'total_sms_limit': int(row[4]),
            'total_api_used': int(row[5]),
            'total_api_limit': int(row[6])
        }

    @classmethod
    def get_plan_distribution(cls):
        rows = db.session.query(
            cls.plan,
            func.count(cls.id),
            func.coalesce(func.sum(cls.email_used), 0),
            func.coalesce(func.sum(cls.sms_used), 0),
            func.coalesce(func.sum(cls.api_used), 0),
        ).group_by(cls.plan).all()
        return [{
            'plan': plan,
            'count': count,
            'total_email_used': int(email_used),
            'total_sms_used': int(sms_used),
            'total_api_used': int(api_used)
        } for plan, count, email_used, sms_used, api_used in rows]

    @classmethod
    def get_status_distribution(cls):
        rows = db.session.query(cls.status, func.count(cls.id)).group_by(cls.status).all()
        return [{'status': status, 'count': count} for status, count in rows]

    @classmethod
    def get_alerts(cls, threshold=90):
        """Ledgers with any limited bucket at or above `threshold` percent"""
        conditions = []
        for resource_type in RESOURCE_TYPES:
            used_col = getattr(cls, f'{resource_type}_used')
            limit_col = getattr(cls, f'{resource_type}_limit')
            conditions.append(and_(limit_col > 0, used_col * 100 >= limit_col * threshold))
        return cls.query.filter(or_(*conditions)).order_by(cls.last_updated.desc()).all()

    def __repr__(self):
        return f'<QuotaLedger {self.user_id} {self.plan} {self.status}>'
