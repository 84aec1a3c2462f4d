import uuid
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from outreach.exceptions import DuplicateKeyError
from outreach.extensions import db

CONTACT_STATUSES = ('subscribed', 'unsubscribed', 'bounced')


class Contact(db.Model):
    """Address book entry owned by a user"""
    __tablename__ = 'contacts'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)

    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    phone = db.Column(db.String(20))
    status = db.Column(db.String(20), nullable=False, default='subscribed', index=True)
    tags = db.Column(db.JSON, default=list)
    custom_fields = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='contacts')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'email', name='uq_contacts_user_email'),
    )

    @property
    def full_name(self):
        return ' '.join(part for part in (self.first_name, self.last_name) if part) or None

    def save(self):
        """Commit, translating the per-user email constraint into a domain error"""
        db.session.add(self)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateKeyError(f"Contact with email '{self.email}' already exists")
        return self

    @classmethod
    def search(cls, user_id, status=None, search=None):
        query = cls.query.filter_by(user_id=user_id)
        if status:
            query = query.filter(cls.status == status)
        if search:
            pattern = f'%{search}%'
            query = query.filter(or_(
                cls.email.ilike(pattern),
                cls.first_name.ilike(pattern),
                cls.last_name.ilike(pattern)
            ))
        return query.order_by(cls.created_at.desc())

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'phone': self.phone,
            'status': self.status,
            'tags': self.tags or [],
            'custom_fields': self.custom_fields or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<Contact {self.email}>'
