import ipaddress
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, update

from outreach.exceptions import QuotaExceededError
from outreach.extensions import db
from outreach.utils.auth import generate_api_key, hash_api_key

API_KEY_PERMISSIONS = ('read', 'write', 'admin')
DEFAULT_USAGE_LIMIT = 100000
DEFAULT_RATE_LIMIT_REQUESTS = 1000
DEFAULT_RATE_LIMIT_WINDOW = 3600  # seconds
USAGE_RESET_DAYS = 30


def _usage_reset_date(now=None):
    return (now or datetime.utcnow()) + timedelta(days=USAGE_RESET_DAYS)


class ApiKey(db.Model):
    """API key issued to a user; only the sha256 hash of the secret is stored"""
    __tablename__ = 'api_keys'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    name = db.Column(db.String(50), nullable=False)

    # Secret
    key_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    key_prefix = db.Column(db.String(10), nullable=False)
    key_last_four = db.Column(db.String(4), nullable=False)

    # Access control
    permissions = db.Column(db.JSON, nullable=False, default=lambda: ['read'])
    ip_whitelist = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime)

    # Usage
    last_used = db.Column(db.DateTime)
    usage_requests = db.Column(db.Integer, nullable=False, default=0)
    usage_limit = db.Column(db.Integer, nullable=False, default=DEFAULT_USAGE_LIMIT)
    usage_reset_date = db.Column(db.DateTime, nullable=False, default=lambda: _usage_reset_date())
    rate_limit_requests = db.Column(db.Integer, nullable=False, default=DEFAULT_RATE_LIMIT_REQUESTS)
    rate_limit_window = db.Column(db.Integer, nullable=False, default=DEFAULT_RATE_LIMIT_WINDOW)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='api_keys')

    @classmethod
    def issue(cls, user_id, name, **fields):
        """Create a key and return it together with the one-time plaintext secret"""
        api_key = cls(user_id=user_id, name=name, **fields)
        secret = api_key._assign_secret()
        return api_key, secret

    def _assign_secret(self):
        secret, key_hash = generate_api_key()
        self.key_hash = key_hash
        self.key_prefix = secret[:7]
        self.key_last_four = secret[-4:]
        return secret

    def regenerate(self):
        """Rotate the secret and clear usage"""
        secret = self._assign_secret()
        self.usage_requests = 0
        self.usage_reset_date = _usage_reset_date()
        self.last_used = None
        return secret

    def reset_usage(self):
        self.usage_requests = 0
        self.usage_reset_date = _usage_reset_date()
        return self

    @property
    def masked_key(self):
        return f"{self.key_prefix}...{self.key_last_four}"

    @property
    def is_expired(self):
        return self.expires_at is not None and self.expires_at <= datetime.utcnow()

    @property
    def is_over_limit(self):
        return self.usage_requests >= self.usage_limit

    def has_permission(self, permission):
        permissions = self.permissions or []
        return 'admin' in permissions or permission in permissions

    def ip_allowed(self, ip):
        """An empty allow-list admits every address; entries may be CIDR blocks"""
        if not self.ip_whitelist:
            return True
        if not ip:
            return False

        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False

        for entry in self.ip_whitelist:
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                continue
        return False

    def record_usage(self, commit=True):
        """
        Count one request against the key, rolling the usage window when due.

        The limit check and the increment are one conditional UPDATE, so
        concurrent requests can never push usage past the limit.
        """
        now = datetime.utcnow()
        if self.usage_reset_date and self.usage_reset_date <= now:
            self.reset_usage()
            db.session.flush()

        cls = type(self)
        result = db.session.execute(
            update(cls)
            .where(cls.id == self.id, cls.usage_requests < cls.usage_limit)
            .values(usage_requests=cls.usage_requests + 1, last_used=now)
            .execution_options(synchronize_session=False)
        )
        db.session.refresh(self)

        if result.rowcount != 1:
            raise QuotaExceededError('api', 'API key usage limit exceeded')

        if commit:
            db.session.commit()
        return self

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'key': self.masked_key,
            'permissions': self.permissions or [],
            'ip_whitelist': self.ip_whitelist or [],
            'is_active': self.is_active,
            'is_expired': self.is_expired,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'last_used': self.last_used.isoformat() if self.last_used else None,
            'usage': {
                'requests': self.usage_requests,
                'limit': self.usage_limit,
                'reset_date': self.usage_reset_date.isoformat() if self.usage_reset_date else None
            },
            'rate_limit': {
                'requests': self.rate_limit_requests,
                'window': self.rate_limit_window
            },
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    @classmethod
    def find_by_secret(cls, secret):
        if not secret or not secret.startswith('sk_'):
            return None
        return cls.query.filter_by(key_hash=hash_api_key(secret)).first()

    @classmethod
    def count_for_user(cls, user_id):
        return cls.query.filter_by(user_id=user_id).count()

    @classmethod
    def get_stats(cls, user_id=None):
        now = datetime.utcnow()
        query = db.session.query(
            func.count(cls.id),
            func.coalesce(func.sum(db.case((cls.is_active.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(db.case((cls.expires_at <= now, 1), else_=0)), 0),
            func.coalesce(func.sum(cls.usage_requests), 0)
        )
        if user_id:
            query = query.filter(cls.user_id == user_id)

        total, active, expired, requests = query.one()
        return {
            'total_keys': total,
            'active_keys': int(active),
            'expired_keys': int(expired),
            'total_requests': int(requests)
        }

    def __repr__(self):
        return f'<ApiKey {self.name} {self.masked_key}>'
