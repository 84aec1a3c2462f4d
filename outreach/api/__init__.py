from .auth import auth_bp
from .emails import emails_bp
from .sms import sms_bp
from .webhooks import webhooks_bp
from .quotas import quotas_bp
from .api_keys import api_keys_bp
from .contacts import contacts_bp
from .contact_groups import contact_groups_bp
from .templates import templates_bp
from .campaigns import campaigns_bp
from .admin import admin_bp
from .health import health_bp


def register_blueprints(app):
    """Register all API blueprints"""
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(emails_bp, url_prefix='/api/emails')
    app.register_blueprint(sms_bp, url_prefix='/api/sms')
    app.register_blueprint(webhooks_bp, url_prefix='/api/webhooks')
    app.register_blueprint(quotas_bp, url_prefix='/api/quotas')
    app.register_blueprint(api_keys_bp, url_prefix='/api/api-keys')
    app.register_blueprint(contacts_bp, url_prefix='/api/contacts')
    app.register_blueprint(contact_groups_bp, url_prefix='/api/contact-groups')
    app.register_blueprint(templates_bp, url_prefix='/api/templates')
    app.register_blueprint(campaigns_bp, url_prefix='/api/campaigns')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(health_bp, url_prefix='/api/health')
