import logging
from typing import Any, Dict, Tuple

from flask import current_app

from outreach.exceptions import InvalidArgumentError, NotFoundError
from outreach.extensions import db
from outreach.models import ApiKey

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'permissions', 'is_active', 'ip_whitelist')


class ApiKeyService:
    """API key lifecycle for a single owner"""

    def key_limit(self, user):
        limits = current_app.config.get('API_KEY_LIMITS', {})
        return limits.get(user.plan, limits.get('free', 2))

    def get_owned(self, key_id, user) -> ApiKey:
        api_key = ApiKey.query.filter_by(id=key_id, user_id=user.id).first()
        if api_key is None:
            raise NotFoundError('API key not found')
        return api_key

    def create(self, user, data: Dict[str, Any]) -> Tuple[ApiKey, str]:
        limit = self.key_limit(user)
        if ApiKey.count_for_user(user.id) >= limit:
            raise InvalidArgumentError(f"API key limit reached for {user.plan} plan ({limit} keys)")

        fields = {key: data[key] for key in ('permissions', 'ip_whitelist', 'expires_at',
                                             'usage_limit', 'rate_limit_requests',
                                             'rate_limit_window') if data.get(key) is not None}
        api_key, secret = ApiKey.issue(user.id, data['name'], **fields)
        db.session.add(api_key)
        db.session.commit()

        logger.info(f"Issued API key {api_key.id} ({api_key.masked_key}) for user {user.id}")
        return api_key, secret

    def update(self, api_key, data: Dict[str, Any]) -> ApiKey:
        for field in UPDATABLE_FIELDS:
            if field in data:
                setattr(api_key, field, data[field])
        db.session.commit()
        return api_key

    def regenerate(self, api_key) -> str:
        secret = api_key.regenerate()
        db.session.commit()
        logger.info(f"Regenerated API key {api_key.id} for user {api_key.user_id}")
        return secret

    def reset_usage(self, api_key) -> ApiKey:
        api_key.reset_usage()
        db.session.commit()
        return api_key

    def delete(self, api_key):
        db.session.delete(api_key)
        db.session.commit()
        logger.info(f"Deleted API key {api_key.id} for user {api_key.user_id}")
