"""
API key lifecycle and API key request authentication
"""
import re
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from outreach import configure_proxy
from outreach.exceptions import QuotaExceededError
from outreach.models import ApiKey, Email, QuotaLedger
from outreach.utils import auth as auth_utils
from outreach.utils.auth import hash_api_key

SECRET_PATTERN = re.compile(r'^sk_[0-9a-f]{32}$')


class FakeRedis:
    def __init__(self):
        self.counters = {}

    def incr(self, key):
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    def expire(self, key, seconds):
        return True


class TestApiKeyModel:

    def test_issue_stores_only_hash(self, app, user, utils):
        api_key, secret = utils.create_test_api_key(user)

        assert SECRET_PATTERN.match(secret)
        assert api_key.key_hash == hash_api_key(secret)
        assert api_key.masked_key == f'{secret[:7]}...{secret[-4:]}'
        assert secret not in api_key.to_dict().values()

    def test_admin_permission_implies_all(self, app, user, utils):
        api_key, _ = utils.create_test_api_key(user, permissions=['admin'])

        assert api_key.has_permission('write')
        assert api_key.has_permission('read')

    @pytest.mark.parametrize('whitelist,ip,allowed', [
        ([], '203.0.113.9', True),
        (['203.0.113.9'], '203.0.113.9', True),
        (['203.0.113.9'], '203.0.113.10', False),
        (['10.0.0.0/8'], '10.20.30.40', True),
        (['10.0.0.0/8'], 'not-an-ip', False),
        (['garbage', '192.168.1.0/24'], '192.168.1.7', True),
    ])
    def test_ip_allowed(self, app, user, utils, whitelist, ip, allowed):
        api_key, _ = utils.create_test_api_key(user, ip_whitelist=whitelist)

        assert api_key.ip_allowed(ip) is allowed

    def test_record_usage_rolls_window(self, app, db, user, utils):
        api_key, _ = utils.create_test_api_key(user, usage_requests=50,
                                               usage_reset_date=datetime.utcnow() - timedelta(days=1))

        api_key.record_usage()

        assert api_key.usage_requests == 1
        assert api_key.usage_reset_date > datetime.utcnow()
        assert api_key.last_used is not None

    def test_record_usage_stops_at_limit(self, app, db, user, utils):
        api_key, _ = utils.create_test_api_key(user, usage_limit=2, usage_requests=1)
        api_key.record_usage()

        with pytest.raises(QuotaExceededError):
            api_key.record_usage()

        assert db.session.get(ApiKey, api_key.id).usage_requests == 2

    def test_concurrent_increment_cannot_overshoot(self, client, db, user, utils, monkeypatch):
        api_key, secret = utils.create_test_api_key(user, usage_limit=1)
        original_ip_allowed = ApiKey.ip_allowed

        def ip_allowed_after_competing_request(self, ip):
            # another worker spends the last unit after this request passed the limit check
            db.session.execute(update(ApiKey).where(ApiKey.id == api_key.id).values(usage_requests=1))
            return original_ip_allowed(self, ip)

        monkeypatch.setattr(ApiKey, 'ip_allowed', ip_allowed_after_competing_request)

        response = client.get('/api/quotas', headers=utils.api_key_headers(secret))

        assert response.status_code == 429
        assert response.get_json()['error'] == 'API key usage limit exceeded'
        assert db.session.get(ApiKey, api_key.id).usage_requests <= 1
        assert QuotaLedger.get_for_user(user.id).api_used == 0


class TestApiKeyEndpoints:

    def test_create_returns_secret_once(self, client, user, auth_headers):
        response = client.post('/api/api-keys', json={'name': 'CI', 'permissions': ['read', 'write']},
                               headers=auth_headers)

        assert response.status_code == 201
        created = response.get_json()['api_key']
        assert SECRET_PATTERN.match(created['key'])

        listed = client.get('/api/api-keys', headers=auth_headers).get_json()['api_keys']
        assert len(listed) == 1
        assert listed[0]['key'] == f"{created['key'][:7]}...{created['key'][-4:]}"

    def test_per_plan_key_cap(self, client, user, auth_headers):
        for name in ('one', 'two'):
            assert client.post('/api/api-keys', json={'name': name},
                               headers=auth_headers).status_code == 201

        response = client.post('/api/api-keys', json={'name': 'three'}, headers=auth_headers)

        assert response.status_code == 400
        assert 'free plan' in response.get_json()['error']
        assert ApiKey.count_for_user(user.id) == 2

    def test_unknown_permission_rejected(self, client, user, auth_headers):
        response = client.post('/api/api-keys', json={'name': 'CI', 'permissions': ['root']},
                               headers=auth_headers)

        assert response.status_code == 400

    def test_update_and_delete(self, client, user, utils, auth_headers):
        api_key, _ = utils.create_test_api_key(user)

        response = client.put(f'/api/api-keys/{api_key.id}', json={'name': 'Renamed', 'is_active': False},
                              headers=auth_headers)
        assert response.get_json()['api_key']['name'] == 'Renamed'
        assert response.get_json()['api_key']['is_active'] is False

        assert client.delete(f'/api/api-keys/{api_key.id}', headers=auth_headers).status_code == 200
        assert client.get(f'/api/api-keys/{api_key.id}', headers=auth_headers).status_code == 404

    def test_other_users_key_not_visible(self, client, user, utils, auth_headers):
        other = utils.create_test_user()
        api_key, _ = utils.create_test_api_key(other)

        assert client.get(f'/api/api-keys/{api_key.id}', headers=auth_headers).status_code == 404

    def test_regenerate_invalidates_old_secret(self, client, user, utils, auth_headers):
        api_key, old_secret = utils.create_test_api_key(user)

        response = client.post(f'/api/api-keys/{api_key.id}/regenerate', headers=auth_headers)
        new_secret = response.get_json()['api_key']['key']

        assert new_secret != old_secret
        assert client.get('/api/quotas', headers=utils.api_key_headers(old_secret)).status_code == 401
        assert client.get('/api/quotas', headers=utils.api_key_headers(new_secret)).status_code == 200

    def test_reset_usage(self, client, user, utils, auth_headers):
        api_key, _ = utils.create_test_api_key(user, usage_requests=42)

        response = client.post(f'/api/api-keys/{api_key.id}/reset-usage', headers=auth_headers)

        assert response.get_json()['api_key']['usage']['requests'] == 0

    def test_validate(self, client, user, utils, auth_headers):
        _, secret = utils.create_test_api_key(user)

        response = client.get('/api/api-keys/validate', headers=utils.api_key_headers(secret))
        assert response.status_code == 200
        assert response.get_json()['user']['id'] == user.id

        assert client.get('/api/api-keys/validate', headers=auth_headers).status_code == 401


class TestApiKeyAuthentication:

    def test_request_counts_against_key_and_ledger(self, client, db, user, utils):
        api_key, secret = utils.create_test_api_key(user)

        response = client.post('/api/emails/send', headers=utils.api_key_headers(secret), json={
            'to': 'alice@example.com', 'subject': 'Hi', 'text': 'Hello'
        })

        assert response.status_code == 201
        ledger = QuotaLedger.get_for_user(user.id)
        assert ledger.api_used == 1
        assert ledger.email_used == 1
        assert db.session.get(ApiKey, api_key.id).usage_requests == 1

    def test_bearer_form(self, client, user, utils):
        _, secret = utils.create_test_api_key(user)

        response = client.get('/api/quotas', headers={'Authorization': f'Bearer {secret}'})

        assert response.status_code == 200

    def test_missing_permission(self, client, user, utils):
        _, secret = utils.create_test_api_key(user, permissions=['read'])

        response = client.post('/api/emails/send', headers=utils.api_key_headers(secret), json={
            'to': 'alice@example.com', 'subject': 'Hi', 'text': 'Hello'
        })

        assert response.status_code == 403
        assert Email.query.count() == 0

    def test_admin_owner_bypasses_permissions(self, client, admin, utils):
        _, secret = utils.create_test_api_key(admin, permissions=['read'])

        response = client.post('/api/emails/send', headers=utils.api_key_headers(secret), json={
            'to': 'alice@example.com', 'subject': 'Hi', 'text': 'Hello'
        })

        assert response.status_code == 201

    def test_unknown_key(self, client, user, utils):
        response = client.get('/api/quotas', headers=utils.api_key_headers('sk_' + '0' * 32))

        assert response.status_code == 401
        assert response.get_json()['error'] == 'Invalid API key'

    def test_inactive_key(self, client, user, utils):
        _, secret = utils.create_test_api_key(user, is_active=False)

        assert client.get('/api/quotas', headers=utils.api_key_headers(secret)).status_code == 401

    def test_expired_key(self, client, user, utils):
        _, secret = utils.create_test_api_key(user, expires_at=datetime.utcnow() - timedelta(seconds=1))

        response = client.get('/api/quotas', headers=utils.api_key_headers(secret))

        assert response.status_code == 401
        assert response.get_json()['error'] == 'API key has expired'

    def test_suspended_owner(self, client, db, user, utils):
        _, secret = utils.create_test_api_key(user)
        user.is_active = False
        db.session.commit()

        assert client.get('/api/quotas', headers=utils.api_key_headers(secret)).status_code == 401

    def test_ip_allow_list(self, client, user, utils):
        _, secret = utils.create_test_api_key(user, ip_whitelist=['10.0.0.0/8'])
        headers = utils.api_key_headers(secret)

        blocked = client.get('/api/quotas', headers=headers,
                             environ_base={'REMOTE_ADDR': '203.0.113.7'})
        allowed = client.get('/api/quotas', headers=headers,
                             environ_base={'REMOTE_ADDR': '10.1.2.3'})

        assert blocked.status_code == 403
        assert allowed.status_code == 200

    def test_forwarded_header_ignored_without_trusted_proxy(self, client, user, utils):
        _, secret = utils.create_test_api_key(user, ip_whitelist=['10.0.0.0/8'])

        response = client.get('/api/quotas',
                              headers={**utils.api_key_headers(secret), 'X-Forwarded-For': '10.9.9.9'},
                              environ_base={'REMOTE_ADDR': '203.0.113.7'})

        assert response.status_code == 403
        assert QuotaLedger.get_for_user(user.id).api_used == 0

    def test_trusted_proxy_hop(self, app, client, user, utils):
        app.config['PROXY_FIX_X_FOR'] = 1
        configure_proxy(app)
        _, secret = utils.create_test_api_key(user, ip_whitelist=['10.0.0.0/8'])
        headers = utils.api_key_headers(secret)

        # the proxy appends the peer it saw; only that last hop is trusted
        proxied = client.get('/api/quotas', headers={**headers, 'X-Forwarded-For': '10.1.2.3'},
                             environ_base={'REMOTE_ADDR': '172.16.0.2'})
        spoofed = client.get('/api/quotas', headers={**headers, 'X-Forwarded-For': '10.9.9.9, 203.0.113.7'},
                             environ_base={'REMOTE_ADDR': '172.16.0.2'})

        assert proxied.status_code == 200
        assert spoofed.status_code == 403

    def test_key_usage_limit(self, client, user, utils):
        _, secret = utils.create_test_api_key(user, usage_limit=1, usage_requests=1)

        response = client.get('/api/quotas', headers=utils.api_key_headers(secret))

        assert response.status_code == 429
        assert response.get_json()['error'] == 'API key usage limit exceeded'

    def test_api_bucket_exhausted(self, client, user, utils):
        _, secret = utils.create_test_api_key(user)
        utils.set_usage(user, api=10000)

        response = client.get('/api/quotas', headers=utils.api_key_headers(secret))

        assert response.status_code == 429
        assert response.get_json()['error'] == 'API quota exceeded'

    def test_rate_limit_window(self, client, user, utils, monkeypatch):
        fake_redis = FakeRedis()
        monkeypatch.setattr(auth_utils, 'get_redis', lambda: fake_redis)
        _, secret = utils.create_test_api_key(user, rate_limit_requests=2, rate_limit_window=60)
        headers = utils.api_key_headers(secret)

        statuses = [client.get('/api/quotas', headers=headers).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
        assert QuotaLedger.get_for_user(user.id).api_used == 2
