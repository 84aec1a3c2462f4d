"""
Periodic sweeps: scheduled message delivery and rolling quota resets
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from outreach.celery_app import celery_app
from outreach.extensions import db

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_scheduled_messages_task(self, batch_size=None):
    """Deliver pending messages whose scheduled time has passed"""
    from outreach.services import get_send_service

    try:
        results = get_send_service().send_scheduled_messages(batch_size)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Scheduled sweep failed: {e}")
        raise self.retry(exc=e)

    return {
        'processed': len(results),
        'sent': sum(1 for result in results if result['success']),
        'failed': sum(1 for result in results if not result['success']),
        'results': results
    }


@celery_app.task(bind=True, max_retries=3)
def reset_expired_quotas_task(self):
    """Roll every quota bucket whose window has ended"""
    from outreach.models import QuotaLedger

    try:
        results = QuotaLedger.reset_all_expired()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Quota reset sweep failed: {e}")
        raise self.retry(exc=e)

    if results:
        logger.info(f"Reset expired quota windows for {len(results)} users")
    return {'reset': len(results), 'results': results}


@celery_app.task(bind=True, max_retries=3)
def send_due_campaigns_task(self):
    """Send scheduled campaigns whose time has come"""
    from outreach.services import get_campaign_service

    try:
        summaries = get_campaign_service().send_due_campaigns()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Campaign sweep failed: {e}")
        raise self.retry(exc=e)

    return {'processed': len(summaries), 'results': summaries}
