"""
Authentication utilities - JWT and API key request authentication,
role checks and SignalWire webhook signature validation
"""
import base64
import hashlib
import hmac
import logging
import secrets
import time
from datetime import datetime
from functools import wraps
from typing import Dict, Optional, Tuple

import redis
from flask import current_app, g, jsonify, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from outreach.exceptions import (
    AuthenticationError, PermissionDeniedError, QuotaExceededError
)
from outreach.extensions import db, get_redis

logger = logging.getLogger(__name__)


def generate_api_key() -> Tuple[str, str]:
    """Generate API key and hash"""
    api_key = f"sk_{secrets.token_hex(16)}"
    key_hash = hashlib.sha256(api_key.encode()).hexdigest()
    return api_key, key_hash


def hash_api_key(api_key: str) -> str:
    """Hash API key for secure storage"""
    return hashlib.sha256(api_key.encode()).hexdigest()


def compute_signalwire_signature(url: str, params: Dict[str, str], auth_token: str) -> str:
    """Signature over the callback URL followed by the sorted form parameters"""
    validation_string = url + ''.join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(
        auth_token.encode('utf-8'),
        validation_string.encode('utf-8'),
        hashlib.sha256
    ).digest()
    return base64.b64encode(digest).decode('utf-8')


def verify_signalwire_signature(url: str, params: Dict[str, str], signature: str, auth_token: str) -> bool:
    """Verify SignalWire webhook signature"""
    expected_signature = compute_signalwire_signature(url, params, auth_token)
    return hmac.compare_digest(signature, expected_signature)


def sign_tracking_link(email_id: str, url: str, secret: str) -> str:
    """Signature binding a click-tracking target to one email"""
    return hmac.new(
        secret.encode('utf-8'),
        f"{email_id}:{url}".encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def verify_tracking_link(email_id: str, url: str, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(signature, sign_tracking_link(email_id, url, secret))


def get_client_ip() -> str:
    """
    Get client IP address.

    Forwarded headers are only honoured through ProxyFix, which rewrites
    remote_addr for the configured number of trusted proxy hops.
    """
    return request.remote_addr


def extract_api_key() -> Optional[str]:
    """API key from X-API-Key or an `Authorization: Bearer sk_...` header"""
    api_key = request.headers.get('X-API-Key')
    if api_key:
        return api_key.strip()

    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer sk_'):
        return auth_header[len('Bearer '):].strip()
    return None


def rate_limit_key(identifier: str, window: int) -> str:
    """Generate rate limiting key for the current fixed window"""
    return f"rate_limit:{identifier}:{int(time.time() // window)}"


def check_rate_limit(api_key) -> bool:
    """Fixed-window request counter in Redis; always admits when Redis is absent"""
    client = get_redis()
    if client is None:
        return True

    window = api_key.rate_limit_window or 3600
    key = rate_limit_key(f"api_key:{api_key.id}", window)
    try:
        count = client.incr(key)
        if count == 1:
            client.expire(key, window)
    except redis.RedisError as e:
        logger.warning(f"Rate limit check skipped, Redis unavailable: {e}")
        return True

    return count <= api_key.rate_limit_requests


def authenticate_api_key(secret: str):
    """
    Resolve an API key secret to its (user, api_key) pair.

    Counts the request against both the key and the owner's api quota bucket.
    """
    from outreach.models import ApiKey, QuotaLedger

    api_key = ApiKey.find_by_secret(secret)
    if api_key is None:
        raise AuthenticationError('Invalid API key')
    if not api_key.is_active:
        raise AuthenticationError('API key is inactive')
    if api_key.is_expired:
        raise AuthenticationError('API key has expired')
    if api_key.usage_reset_date and api_key.usage_reset_date <= datetime.utcnow():
        api_key.reset_usage()
    if api_key.is_over_limit:
        raise QuotaExceededError('api', 'API key usage limit exceeded')
    if not api_key.ip_allowed(get_client_ip()):
        raise PermissionDeniedError('IP address not allowed for this API key')
    if not check_rate_limit(api_key):
        raise QuotaExceededError('api', 'API key rate limit exceeded')

    user = api_key.user
    if user is None or not user.is_active:
        raise AuthenticationError('User account is inactive')

    ledger = QuotaLedger.get_or_create_for_user(user)
    try:
        api_key.record_usage(commit=False)
        ledger.consume('api', commit=False)
    except QuotaExceededError:
        db.session.rollback()
        raise
    db.session.commit()

    return user, api_key


def _authenticate_jwt():
    from outreach.models import User

    verify_jwt_in_request()
    user = db.session.get(User, get_jwt_identity())
    if user is None or not user.is_active:
        raise AuthenticationError('User not found or inactive')
    return user


def login_required(permission=None):
    """
    Decorator accepting either a JWT or an API key.

    Sets g.current_user and g.api_key. API keys must carry `permission`
    unless their owner is an admin.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            secret = extract_api_key()
            if secret:
                user, api_key = authenticate_api_key(secret)
                if permission and not user.is_admin and not api_key.has_permission(permission):
                    raise PermissionDeniedError(f"API key lacks '{permission}' permission")
            else:
                user, api_key = _authenticate_jwt(), None

            g.current_user = user
            g.api_key = api_key
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    """Decorator requiring an authenticated admin user"""
    @wraps(f)
    @login_required()
    def decorated_function(*args, **kwargs):
        if not g.current_user.is_admin:
            raise PermissionDeniedError('Admin access required')
        return f(*args, **kwargs)
    return decorated_function


def require_webhook_signature(webhook_type='signalwire'):
    """Decorator to verify webhook signatures"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_app.config.get('VERIFY_WEBHOOK_SIGNATURES', True):
                return f(*args, **kwargs)

            if webhook_type == 'signalwire':
                signature = request.headers.get('X-SignalWire-Signature')
                auth_token = current_app.config.get('SIGNALWIRE_API_TOKEN')

                if not signature or not auth_token:
                    return jsonify({'success': False, 'error': 'Missing signature or token'}), 401

                if not verify_signalwire_signature(request.url, request.form.to_dict(), signature, auth_token):
                    logger.warning(f"Rejected SignalWire webhook with invalid signature from {get_client_ip()}")
                    return jsonify({'success': False, 'error': 'Invalid signature'}), 401

            return f(*args, **kwargs)
        return decorated_function
    return decorator
