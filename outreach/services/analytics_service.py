import logging
from datetime import datetime

from sqlalchemy import func

from outreach.extensions import db
from outreach.models import ApiKey, Contact, Email, QuotaLedger, SMSMessage, User

logger = logging.getLogger(__name__)


class AnalyticsService:
    """System-wide admin statistics"""

    def get_system_stats(self, start_date=None, end_date=None):
        """
        Admin dashboard figures.

        Args:
            start_date: Optional lower bound on message creation time
            end_date: Optional upper bound on message creation time
        """
        user_rows = db.session.query(User.role, func.count(User.id)).group_by(User.role).all()

        return {
            'generated_at': datetime.utcnow().isoformat(),
            'date_range': {
                'start': start_date.isoformat() if start_date else None,
                'end': end_date.isoformat() if end_date else None
            },
            'users': {
                'total': User.query.count(),
                'active': User.query.filter_by(is_active=True).count(),
                'by_role': {role: count for role, count in user_rows}
            },
            'contacts': Contact.query.count(),
            'quotas': {
                'system': QuotaLedger.get_system_stats(),
                'plans': QuotaLedger.get_plan_distribution(),
                'statuses': QuotaLedger.get_status_distribution(),
                'alerts': len(QuotaLedger.get_alerts())
            },
            'emails': Email.get_stats(start_date=start_date, end_date=end_date),
            'sms': SMSMessage.get_stats(start_date=start_date, end_date=end_date),
            'sms_costs': SMSMessage.get_cost_analysis(start_date=start_date, end_date=end_date),
            'api_keys': ApiKey.get_stats()
        }
