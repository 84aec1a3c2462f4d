"""
Testing utilities for the outreach backend
Provides factories for users, ledgers, messages, API keys, contacts and campaigns
"""
import uuid
from datetime import datetime
from typing import Dict, Tuple

from flask_jwt_extended import create_access_token

from outreach.extensions import db
from outreach.models import (
    ApiKey, Campaign, Contact, ContactGroup, Email, EmailTemplate, QuotaLedger, SMSMessage, User
)

TEST_PASSWORD = 'correct-horse-battery'


class OutreachTestUtils:
    """Utilities for testing the outreach backend"""

    @staticmethod
    def create_test_user(email: str = None, plan: str = 'free', role: str = 'user',
                         with_ledger: bool = True, **kwargs) -> User:
        """Create a test user, with its quota ledger unless told otherwise"""
        user = User(
            email=email or f'test_{uuid.uuid4().hex[:8]}@example.com',
            name=kwargs.pop('name', 'Test User'),
            plan=plan,
            role=role,
            **kwargs
        )
        user.set_password(TEST_PASSWORD)
        db.session.add(user)
        db.session.commit()

        if with_ledger:
            QuotaLedger.create_for_user(user.id, plan)
        return user

    @staticmethod
    def create_test_admin(**kwargs) -> User:
        return OutreachTestUtils.create_test_user(role='admin', plan='professional', **kwargs)

    @staticmethod
    def set_usage(user: User, **used) -> QuotaLedger:
        """Overwrite bucket usage, e.g. set_usage(user, email=1999)"""
        ledger = QuotaLedger.get_for_user(user.id)
        for resource_type, amount in used.items():
            setattr(ledger, f'{resource_type}_used', amount)
        ledger.status = ledger.overall_status
        db.session.commit()
        return ledger

    @staticmethod
    def create_test_email(user: User, status: str = 'pending', **kwargs) -> Email:
        email_data = {
            'user_id': user.id,
            'to_email': 'recipient@example.com',
            'from_email': 'sender@example.com',
            'subject': 'Test subject',
            'html': '<p>Hello</p>',
            'status': status,
            **kwargs
        }
        if status != 'pending':
            email_data.setdefault('sent_at', datetime.utcnow())
            email_data.setdefault('provider_message_id', f'msg-{uuid.uuid4().hex[:12]}@example.com')

        email = Email(**email_data)
        db.session.add(email)
        db.session.commit()
        return email

    @staticmethod
    def create_test_sms(user: User, status: str = 'pending', **kwargs) -> SMSMessage:
        sms_data = {
            'user_id': user.id,
            'to_number': '+15551234567',
            'from_number': '+15550001111',
            'body': 'Test message',
            'status': status,
            **kwargs
        }
        if status != 'pending':
            sms_data.setdefault('sent_at', datetime.utcnow())
            sms_data.setdefault('provider_sid', f'SM{uuid.uuid4().hex}')

        sms = SMSMessage(**sms_data)
        db.session.add(sms)
        db.session.commit()
        return sms

    @staticmethod
    def create_test_api_key(user: User, name: str = 'Test key', **kwargs) -> Tuple[ApiKey, str]:
        """Create an API key and return it with its plaintext secret"""
        kwargs.setdefault('permissions', ['read', 'write'])
        api_key, secret = ApiKey.issue(user.id, name, **kwargs)
        db.session.add(api_key)
        db.session.commit()
        return api_key, secret

    @staticmethod
    def create_test_contact(user: User, **kwargs) -> Contact:
        contact_data = {
            'user_id': user.id,
            'email': f'contact_{uuid.uuid4().hex[:8]}@example.com',
            'first_name': 'Ada',
            'last_name': 'Lovelace',
            **kwargs
        }
        contact = Contact(**contact_data)
        db.session.add(contact)
        db.session.commit()
        return contact

    @staticmethod
    def create_test_group(user: User, name: str = None, contacts=(), **kwargs) -> ContactGroup:
        group = ContactGroup(user_id=user.id, name=name or f'Group {uuid.uuid4().hex[:6]}', **kwargs)
        group.add_contacts(contacts)
        db.session.add(group)
        db.session.commit()
        return group

    @staticmethod
    def create_test_template(user: User, **kwargs) -> EmailTemplate:
        template_data = {
            'user_id': user.id,
            'name': 'Welcome',
            'subject': 'Welcome, {{first_name}}',
            'html': '<p>Hi {{first_name}}, welcome to {{company}}</p>',
            'text': 'Hi {{first_name}}, welcome to {{company}}',
            'category': 'welcome',
            'variables': [
                {'name': 'first_name', 'description': 'Recipient first name', 'default_value': 'there'},
                {'name': 'company', 'description': 'Sender company', 'default_value': 'Outreach'}
            ],
            **kwargs
        }
        template = EmailTemplate(**template_data)
        db.session.add(template)
        db.session.commit()
        return template

    @staticmethod
    def create_test_campaign(user: User, contacts=(), groups=(), **kwargs) -> Campaign:
        campaign_data = {
            'user_id': user.id,
            'name': 'Spring launch',
            'subject': 'Something new',
            'html': '<p>Take a look</p>',
            'text': 'Take a look',
            **kwargs
        }
        campaign = Campaign(**campaign_data)
        campaign.recipients = list(contacts)
        campaign.contact_groups = list(groups)
        db.session.add(campaign)
        db.session.commit()
        return campaign

    @staticmethod
    def auth_headers(user: User) -> Dict[str, str]:
        return {'Authorization': f'Bearer {create_access_token(identity=user.id)}'}

    @staticmethod
    def api_key_headers(secret: str) -> Dict[str, str]:
        return {'X-API-Key': secret}
