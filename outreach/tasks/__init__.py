from .delivery_tasks import reset_expired_quotas_task, send_due_campaigns_task, send_scheduled_messages_task

__all__ = [
    'send_scheduled_messages_task',
    'send_due_campaigns_task',
    'reset_expired_quotas_task',
]
