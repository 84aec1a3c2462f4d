from outreach.models.user import User
from outreach.models.quota import QuotaLedger
from outreach.models.message import Email, SMSMessage
from outreach.models.api_key import ApiKey
from outreach.models.contact import Contact
from outreach.models.contact_group import ContactGroup
from outreach.models.template import EmailTemplate
from outreach.models.campaign import Campaign

__all__ = [
    'User',
    'QuotaLedger',
    'Email',
    'SMSMessage',
    'ApiKey',
    'Contact',
    'ContactGroup',
    'EmailTemplate',
    'Campaign',
]
