# Service Factory Pattern
def get_user_service():
    from .user_service import UserService
    return UserService()


def get_email_service():
    from .email_service import EmailService
    return EmailService()


def get_sms_service():
    from .sms_service import SMSService
    return SMSService()


def get_send_service():
    from .send_service import SendService
    return SendService()


def get_delivery_service():
    from .delivery_service import DeliveryService
    return DeliveryService()


def get_api_key_service():
    from .api_key_service import ApiKeyService
    return ApiKeyService()


def get_analytics_service():
    from .analytics_service import AnalyticsService
    return AnalyticsService()


def get_campaign_service():
    from .campaign_service import CampaignService
    return CampaignService()


__all__ = [
    "get_user_service",
    "get_email_service",
    "get_sms_service",
    "get_send_service",
    "get_delivery_service",
    "get_api_key_service",
    "get_analytics_service",
    "get_campaign_service",
]
