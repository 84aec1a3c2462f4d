import uuid
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from outreach.extensions import db


class User(db.Model):
    """Account owning contacts, messages, API keys and a quota ledger"""
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Authentication
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100), nullable=False)

    # Account
    role = db.Column(db.String(20), nullable=False, default='user')  # 'user', 'admin'
    plan = db.Column(db.String(20), nullable=False, default='free')  # 'free', 'starter', 'professional'
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    quota = db.relationship('QuotaLedger', back_populates='user', uselist=False,
                            cascade='all, delete-orphan')
    api_keys = db.relationship('ApiKey', back_populates='user', lazy='dynamic',
                               cascade='all, delete-orphan')
    emails = db.relationship('Email', back_populates='user', lazy='dynamic',
                             cascade='all, delete-orphan')
    sms_messages = db.relationship('SMSMessage', back_populates='user', lazy='dynamic',
                                   cascade='all, delete-orphan')
    contacts = db.relationship('Contact', back_populates='user', lazy='dynamic',
                               cascade='all, delete-orphan')
    contact_groups = db.relationship('ContactGroup', back_populates='user', lazy='dynamic',
                                     cascade='all, delete-orphan')
    templates = db.relationship('EmailTemplate', back_populates='user', lazy='dynamic',
                                cascade='all, delete-orphan')
    campaigns = db.relationship('Campaign', back_populates='user', lazy='dynamic',
                                cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'plan': self.plan,
            'is_active': self.is_active,
            'last_login': self.last_login.isoformat() if self.last_login else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<User {self.email}>'
