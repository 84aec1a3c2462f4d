import uuid
from datetime import datetime

from sqlalchemy import or_

from outreach.extensions import db

TEMPLATE_CATEGORIES = ('welcome', 'newsletter', 'promotion', 'transactional', 'custom')


class EmailTemplate(db.Model):
    """
    Reusable email content with {{variable}} placeholders.

    `variables` documents the placeholders as a list of
    {name, description, default_value}; defaults fill in whatever the caller
    does not supply at render time. Public templates are readable by every
    user but only editable by their owner.
    """
    __tablename__ = 'email_templates'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    html = db.Column(db.Text, nullable=False)
    text = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(20), nullable=False, default='custom', index=True)
    tags = db.Column(db.JSON, default=list)
    variables = db.Column(db.JSON, default=list)
    is_public = db.Column(db.Boolean, nullable=False, default=False, index=True)

    usage_count = db.Column(db.Integer, nullable=False, default=0)
    last_used = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='templates')

    def render(self, values=None):
        """Substitute {{name}} placeholders in subject, html and text"""
        merged = {
            variable['name']: variable.get('default_value', '')
            for variable in self.variables or []
        }
        merged.update(values or {})

        rendered = {'subject': self.subject, 'html': self.html, 'text': self.text}
        for name, value in merged.items():
            placeholder = '{{%s}}' % name
            replacement = '' if value is None else str(value)
            for part in rendered:
                rendered[part] = rendered[part].replace(placeholder, replacement)
        return rendered

    def increment_usage(self):
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used = datetime.utcnow()

    @classmethod
    def visible_to(cls, user_id, category=None, include_public=True):
        if include_public:
            query = cls.query.filter(or_(cls.user_id == user_id, cls.is_public.is_(True)))
        else:
            query = cls.query.filter(cls.user_id == user_id)
        if category:
            query = query.filter(cls.category == category)
        return query

    @classmethod
    def get_visible(cls, template_id, user_id):
        return cls.visible_to(user_id).filter(cls.id == template_id).first()

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'subject': self.subject,
            'html': self.html,
            'text': self.text,
            'category': self.category,
            'tags': self.tags or [],
            'variables': self.variables or [],
            'is_public': self.is_public,
            'usage_count': self.usage_count or 0,
            'last_used': self.last_used.isoformat() if self.last_used else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<EmailTemplate {self.name}>'
