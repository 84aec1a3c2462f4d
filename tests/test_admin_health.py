"""
Admin dashboard, user management and health checks
"""


class TestAdmin:

    def test_stats(self, client, user, utils, admin, admin_headers):
        utils.create_test_email(user, status='delivered')
        utils.create_test_contact(user)
        utils.create_test_api_key(user)

        response = client.get('/api/admin/stats', headers=admin_headers)

        stats = response.get_json()['stats']
        assert response.status_code == 200
        assert stats['users']['total'] == 2
        assert stats['users']['by_role'] == {'user': 1, 'admin': 1}
        assert stats['contacts'] == 1
        assert stats['emails']['delivered'] == 1
        assert stats['api_keys']['total_keys'] == 1
        assert stats['quotas']['system']['total_users'] == 2

    def test_stats_forbidden_for_users(self, client, user, auth_headers):
        assert client.get('/api/admin/stats', headers=auth_headers).status_code == 403

    def test_list_users_with_filters(self, client, user, starter_user, admin, admin_headers):
        data = client.get('/api/admin/users?plan=starter', headers=admin_headers).get_json()

        assert [u['email'] for u in data['users']] == ['starter@example.com']
        assert data['users'][0]['quota']['plan'] == 'starter'

        data = client.get('/api/admin/users?search=owner', headers=admin_headers).get_json()
        assert [u['email'] for u in data['users']] == ['owner@example.com']

    def test_suspend_and_activate(self, client, user, admin, admin_headers, auth_headers):
        response = client.post(f'/api/admin/users/{user.id}/suspend', headers=admin_headers)
        assert response.get_json()['user']['is_active'] is False
        assert client.get('/api/quotas', headers=auth_headers).status_code == 401

        response = client.post(f'/api/admin/users/{user.id}/activate', headers=admin_headers)
        assert response.get_json()['user']['is_active'] is True
        assert client.get('/api/quotas', headers=auth_headers).status_code == 200

    def test_cannot_suspend_self(self, client, admin, admin_headers):
        response = client.post(f'/api/admin/users/{admin.id}/suspend', headers=admin_headers)

        assert response.status_code == 400

    def test_unknown_user(self, client, admin, admin_headers):
        assert client.post('/api/admin/users/nobody/suspend', headers=admin_headers).status_code == 404


class TestHealth:

    def test_health(self, client, app):
        data = client.get('/api/health').get_json()

        assert data['status'] == 'healthy'
        assert data['checks'] == {'database': 'healthy', 'redis': 'disabled'}

    def test_liveness_and_readiness(self, client, app):
        assert client.get('/api/health/ready').get_json()['status'] == 'ready'
        assert client.get('/api/health/live').get_json()['status'] == 'alive'

    def test_unknown_route_uses_error_envelope(self, client, app):
        response = client.get('/api/nothing-here')

        assert response.status_code == 404
        assert response.get_json()['success'] is False
