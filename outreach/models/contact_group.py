import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from outreach.exceptions import DuplicateKeyError
from outreach.extensions import db

contact_group_members = db.Table(
    'contact_group_members',
    db.Column('group_id', db.String(36), db.ForeignKey('contact_groups.id', ondelete='CASCADE'),
              primary_key=True),
    db.Column('contact_id', db.String(36), db.ForeignKey('contacts.id', ondelete='CASCADE'),
              primary_key=True)
)


class ContactGroup(db.Model):
    """Named list of a user's contacts, used to address campaigns"""
    __tablename__ = 'contact_groups'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='contact_groups')
    contacts = db.relationship('Contact', secondary=contact_group_members, lazy='selectin',
                               order_by='Contact.created_at')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'name', name='uq_contact_groups_user_name'),
    )

    @property
    def contact_count(self):
        return len(self.contacts)

    def add_contacts(self, contacts):
        """Add contacts not already in the group; returns how many were new"""
        present = {contact.id for contact in self.contacts}
        added = 0
        for contact in contacts:
            if contact.user_id != self.user_id or contact.id in present:
                continue
            self.contacts.append(contact)
            present.add(contact.id)
            added += 1
        return added

    def remove_contact(self, contact_id):
        for contact in self.contacts:
            if contact.id == contact_id:
                self.contacts.remove(contact)
                return True
        return False

    def save(self):
        """Commit, translating the per-user name constraint into a domain error"""
        db.session.add(self)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateKeyError(f"Contact group '{self.name}' already exists")
        return self

    def to_dict(self, include_contacts=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'contact_count': self.contact_count,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
        if include_contacts:
            data['contacts'] = [contact.to_dict() for contact in self.contacts]
        return data

    def __repr__(self):
        return f'<ContactGroup {self.name}>'
