"""
Email templates: rendering, visibility and categories
"""
from outreach.models import EmailTemplate


def _template_payload(**overrides):
    payload = {
        'name': 'Monthly digest',
        'subject': '{{month}} digest',
        'html': '<h1>{{month}}</h1>',
        'text': '{{month}}',
        'category': 'newsletter',
        'tags': ['digest'],
        'variables': [{'name': 'month', 'description': 'Month name', 'default_value': 'This month'}]
    }
    payload.update(overrides)
    return payload


class TestTemplateRendering:

    def test_values_override_defaults(self, app, user, utils):
        template = utils.create_test_template(user)

        rendered = template.render({'first_name': 'Ada'})

        assert rendered == {
            'subject': 'Welcome, Ada',
            'html': '<p>Hi Ada, welcome to Outreach</p>',
            'text': 'Hi Ada, welcome to Outreach'
        }

    def test_unknown_placeholders_are_left(self, app, user, utils):
        template = utils.create_test_template(user, variables=[], subject='Hi {{nickname}}')

        assert template.render({'first_name': 'Ada'})['subject'] == 'Hi {{nickname}}'

    def test_none_renders_empty(self, app, user, utils):
        template = utils.create_test_template(user)

        assert template.render({'first_name': None})['text'] == 'Hi , welcome to Outreach'

    def test_increment_usage(self, app, user, utils):
        template = utils.create_test_template(user)

        template.increment_usage()
        template.increment_usage()

        assert template.usage_count == 2
        assert template.last_used is not None


class TestTemplateAPI:

    def test_create(self, client, user, auth_headers):
        response = client.post('/api/templates', json=_template_payload(), headers=auth_headers)

        template = response.get_json()['template']
        assert response.status_code == 201
        assert template['category'] == 'newsletter'
        assert template['is_public'] is False
        assert template['variables'][0]['default_value'] == 'This month'

    def test_create_requires_both_bodies(self, client, user, auth_headers):
        response = client.post('/api/templates', json=_template_payload(text=''), headers=auth_headers)

        assert response.status_code == 400
        assert 'text' in response.get_json()['errors']

    def test_unknown_category(self, client, user, auth_headers):
        response = client.post('/api/templates', json=_template_payload(category='spam'),
                               headers=auth_headers)

        assert response.status_code == 400

    def test_public_templates_are_shared_read_only(self, client, user, utils, auth_headers):
        author = utils.create_test_user()
        shared = utils.create_test_template(author, name='Shared', is_public=True)
        private = utils.create_test_template(author, name='Private')

        listing = client.get('/api/templates', headers=auth_headers).get_json()
        own_only = client.get('/api/templates?include_public=false', headers=auth_headers).get_json()

        assert [t['name'] for t in listing['templates']] == ['Shared']
        assert own_only['templates'] == []
        assert client.get(f'/api/templates/{private.id}', headers=auth_headers).status_code == 404
        assert client.put(f'/api/templates/{shared.id}', json={'name': 'Mine now'},
                          headers=auth_headers).status_code == 403
        assert client.delete(f'/api/templates/{shared.id}', headers=auth_headers).status_code == 403

    def test_render_endpoint(self, client, user, utils, auth_headers):
        template = utils.create_test_template(user)

        response = client.post(f'/api/templates/{template.id}/render',
                               json={'variables': {'first_name': 'Grace', 'company': 'Navy'}},
                               headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['rendered']['subject'] == 'Welcome, Grace'
        assert response.get_json()['rendered']['text'] == 'Hi Grace, welcome to Navy'

    def test_categories(self, client, user, utils, auth_headers):
        utils.create_test_template(user, category='welcome')
        utils.create_test_template(user, category='newsletter')
        utils.create_test_template(user, category='newsletter')
        utils.create_test_template(utils.create_test_user(), category='promotion')

        categories = client.get('/api/templates/categories', headers=auth_headers).get_json()['categories']

        assert categories == [
            {'category': 'newsletter', 'count': 2},
            {'category': 'welcome', 'count': 1}
        ]

    def test_delete_detaches_campaigns(self, client, user, utils, auth_headers):
        template = utils.create_test_template(user)
        campaign = utils.create_test_campaign(user, template_id=template.id)

        response = client.delete(f'/api/templates/{template.id}', headers=auth_headers)

        assert response.status_code == 200
        assert EmailTemplate.query.count() == 0
        assert client.get(f'/api/campaigns/{campaign.id}',
                          headers=auth_headers).get_json()['campaign']['template_id'] is None
