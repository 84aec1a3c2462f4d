class OutreachError(Exception):
    """Base exception for errors surfaced to API callers"""
    status_code = 500
    default_message = 'Server error'

    def __init__(self, message=None, status_code=None, payload=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        data = {'success': False, 'error': self.message}
        data.update(self.payload)
        return data


class ValidationFailedError(OutreachError):
    """Exception for malformed or missing input"""
    status_code = 400
    default_message = 'Validation failed'


class InvalidArgumentError(OutreachError):
    """Exception for arguments outside the accepted domain (unknown plan, resource type)"""
    status_code = 400
    default_message = 'Invalid argument'


class DuplicateKeyError(OutreachError):
    """Exception for unique-constraint violations"""
    status_code = 400
    default_message = 'Resource already exists'


class AuthenticationError(OutreachError):
    """Exception for authentication-related errors"""
    status_code = 401
    default_message = 'Authentication required'


class PermissionDeniedError(OutreachError):
    """Exception for authorization and ownership failures"""
    status_code = 403
    default_message = 'Access denied'


class NotFoundError(OutreachError):
    """Exception for referenced entities that do not exist"""
    status_code = 404
    default_message = 'Resource not found'


class InvalidTransitionError(OutreachError):
    """Exception for delivery state transitions the state machine refuses"""
    status_code = 409
    default_message = 'Invalid status transition'

    def __init__(self, current_status, target_status, message=None):
        super().__init__(
            message or f"Cannot move message from '{current_status}' to '{target_status}'"
        )
        self.current_status = current_status
        self.target_status = target_status


class QuotaExceededError(OutreachError):
    """Exception for exhausted ledger capacity"""
    status_code = 429
    default_message = 'Quota exceeded'

    labels = {'email': 'Email', 'sms': 'SMS', 'api': 'API'}

    def __init__(self, resource_type=None, message=None):
        label = self.labels.get(resource_type, 'Resource')
        super().__init__(message or f"{label} quota exceeded")
        self.resource_type = resource_type


class ProviderError(OutreachError):
    """Exception for email/SMS provider failures"""
    status_code = 500
    default_message = 'Provider error'

    def __init__(self, message=None, code=None):
        super().__init__(message)
        self.code = code


class EmailProviderError(ProviderError):
    """Exception for email provider failures"""
    default_message = 'Failed to send email'


class SMSProviderError(ProviderError):
    """Exception for SMS provider failures"""
    default_message = 'Failed to send SMS'
