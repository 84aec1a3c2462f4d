"""
Registration, login and token handling
"""
from outreach.models import QuotaLedger, User

from tests.outreach_test_utils import TEST_PASSWORD


class TestRegistration:

    def test_register_creates_ledger(self, client, app):
        response = client.post('/api/auth/register', json={
            'name': 'New User',
            'email': 'New.User@Example.com',
            'password': 'a-long-password',
            'plan': 'starter'
        })

        data = response.get_json()
        assert response.status_code == 201
        assert data['user']['email'] == 'new.user@example.com'
        assert data['tokens']['access_token']

        user = User.query.filter_by(email='new.user@example.com').one()
        ledger = QuotaLedger.get_for_user(user.id)
        assert ledger.plan == 'starter'
        assert ledger.sms_limit == 1000

    def test_duplicate_email(self, client, user):
        response = client.post('/api/auth/register', json={
            'name': 'Again', 'email': 'OWNER@example.com', 'password': 'a-long-password'
        })

        assert response.status_code == 400
        assert response.get_json()['error'] == 'User with this email already exists'

    def test_short_password(self, client, app):
        response = client.post('/api/auth/register', json={
            'name': 'Short', 'email': 'short@example.com', 'password': 'abc'
        })

        assert response.status_code == 400
        assert 'password' in response.get_json()['errors']

    def test_non_json_body(self, client, app):
        response = client.post('/api/auth/register', data='name=x')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Content-Type must be application/json'


class TestLogin:

    def test_login_and_me(self, client, user):
        response = client.post('/api/auth/login', json={'email': user.email, 'password': TEST_PASSWORD})

        assert response.status_code == 200
        token = response.get_json()['tokens']['access_token']

        me = client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'}).get_json()
        assert me['user']['id'] == user.id
        assert me['user']['last_login'] is not None
        assert me['user']['quota']['plan'] == 'free'

    def test_wrong_password(self, client, user):
        response = client.post('/api/auth/login', json={'email': user.email, 'password': 'wrong'})

        assert response.status_code == 401
        assert response.get_json() == {'success': False, 'error': 'Invalid email or password'}

    def test_suspended_account(self, client, db, user):
        user.is_active = False
        db.session.commit()

        response = client.post('/api/auth/login', json={'email': user.email, 'password': TEST_PASSWORD})

        assert response.status_code == 401

    def test_invalid_token(self, client, app):
        response = client.get('/api/auth/me', headers={'Authorization': 'Bearer not.a.token'})

        assert response.status_code == 401
        assert response.get_json()['success'] is False

    def test_token_for_suspended_user(self, client, db, user, auth_headers):
        user.is_active = False
        db.session.commit()

        assert client.get('/api/auth/me', headers=auth_headers).status_code == 401
