"""
Campaigns: creation from templates, recipient resolution, sending and
per-campaign statistics
"""
from datetime import datetime, timedelta

import pytest

from outreach.exceptions import InvalidTransitionError
from outreach.extensions import mail
from outreach.models import Campaign, Email, QuotaLedger
from outreach.services import get_campaign_service
from outreach.tasks import send_due_campaigns_task


class TestCampaignCRUD:

    def test_create_draft(self, client, user, utils, auth_headers):
        contact = utils.create_test_contact(user)
        group = utils.create_test_group(user)

        response = client.post('/api/campaigns', json={
            'name': 'Launch',
            'subject': 'We are live',
            'html': '<p>Live</p>',
            'contact_ids': [contact.id],
            'contact_group_ids': [group.id]
        }, headers=auth_headers)

        campaign = response.get_json()['campaign']
        assert response.status_code == 201
        assert campaign['status'] == 'draft'
        assert campaign['contact_ids'] == [contact.id]
        assert campaign['contact_group_ids'] == [group.id]

    def test_scheduled_at_makes_it_scheduled(self, client, user, auth_headers):
        response = client.post('/api/campaigns', json={
            'name': 'Later',
            'subject': 'Soon',
            'text': 'Soon',
            'scheduled_at': '2030-01-01T09:00:00+02:00'
        }, headers=auth_headers)

        campaign = response.get_json()['campaign']
        assert campaign['status'] == 'scheduled'
        assert campaign['scheduled_at'] == '2030-01-01T07:00:00'

    def test_content_from_template(self, client, user, utils, auth_headers):
        template = utils.create_test_template(user)

        response = client.post('/api/campaigns', json={
            'name': 'Onboarding',
            'template_id': template.id,
            'variables': {'first_name': 'friend'}
        }, headers=auth_headers)

        campaign = response.get_json()['campaign']
        assert response.status_code == 201
        assert campaign['subject'] == 'Welcome, friend'
        assert campaign['text'] == 'Hi friend, welcome to Outreach'
        assert campaign['template_id'] == template.id
        assert template.usage_count == 1

    def test_requires_content(self, client, user, auth_headers):
        no_body = client.post('/api/campaigns', json={'name': 'Empty', 'subject': 'Hi'},
                              headers=auth_headers)
        no_subject = client.post('/api/campaigns', json={'name': 'Empty', 'text': 'Hi'},
                                 headers=auth_headers)

        assert no_body.status_code == 400
        assert no_subject.status_code == 400

    def test_foreign_group_is_refused(self, client, user, utils, auth_headers):
        theirs = utils.create_test_group(utils.create_test_user())

        response = client.post('/api/campaigns', json={
            'name': 'Sneaky', 'subject': 'Hi', 'text': 'Hi', 'contact_group_ids': [theirs.id]
        }, headers=auth_headers)

        assert response.status_code == 400
        assert Campaign.query.count() == 0

    def test_update_refused_after_send(self, client, user, utils, auth_headers):
        campaign = utils.create_test_campaign(user, status='sent')

        response = client.put(f'/api/campaigns/{campaign.id}', json={'subject': 'Edited'},
                              headers=auth_headers)

        assert response.status_code == 400
        assert 'sent' in response.get_json()['error']

    def test_pause_and_resume(self, client, user, utils, auth_headers):
        campaign = utils.create_test_campaign(user, contacts=[utils.create_test_contact(user)])

        paused = client.put(f'/api/campaigns/{campaign.id}', json={'status': 'paused'},
                            headers=auth_headers).get_json()['campaign']
        send_while_paused = client.post(f'/api/campaigns/{campaign.id}/send', headers=auth_headers)
        resumed = client.put(f'/api/campaigns/{campaign.id}', json={'status': 'draft'},
                             headers=auth_headers).get_json()['campaign']

        assert paused['status'] == 'paused'
        assert send_while_paused.status_code == 409
        assert resumed['status'] == 'draft'

    def test_delete_refused_while_sending(self, client, user, utils, auth_headers):
        sending = utils.create_test_campaign(user, status='sending')
        draft = utils.create_test_campaign(user)

        assert client.delete(f'/api/campaigns/{sending.id}', headers=auth_headers).status_code == 400
        assert client.delete(f'/api/campaigns/{draft.id}', headers=auth_headers).status_code == 200
        assert [c.id for c in Campaign.query.all()] == [sending.id]

    def test_owner_scoped(self, client, user, utils, auth_headers):
        theirs = utils.create_test_campaign(utils.create_test_user())

        assert client.get(f'/api/campaigns/{theirs.id}', headers=auth_headers).status_code == 404
        assert client.post(f'/api/campaigns/{theirs.id}/send', headers=auth_headers).status_code == 404
        assert client.get('/api/campaigns', headers=auth_headers).get_json()['campaigns'] == []


class TestCampaignSend:

    def test_send_reaches_direct_and_group_contacts_once(self, client, user, utils, auth_headers):
        shared = utils.create_test_contact(user, email='shared@example.com')
        grouped = utils.create_test_contact(user, email='grouped@example.com')
        utils.create_test_contact(user, email='not-addressed@example.com')
        unsubscribed = utils.create_test_contact(user, email='gone@example.com', status='unsubscribed')
        group = utils.create_test_group(user, contacts=[shared, grouped, unsubscribed])
        campaign = utils.create_test_campaign(user, contacts=[shared], groups=[group])

        with mail.record_messages() as outbox:
            response = client.post(f'/api/campaigns/{campaign.id}/send', headers=auth_headers)

        data = response.get_json()
        assert response.status_code == 200
        assert data['campaign']['status'] == 'sent'
        assert data['campaign']['total_recipients'] == 2
        assert data['summary'] == {'total': 2, 'successful': 2, 'failed': 0}
        assert sorted(message.recipients[0] for message in outbox) == [
            'grouped@example.com', 'shared@example.com'
        ]
        assert Email.query.filter_by(campaign_id=campaign.id).count() == 2
        assert QuotaLedger.get_for_user(user.id).email_used == 2

    def test_send_without_recipients(self, client, db, user, utils, auth_headers):
        campaign = utils.create_test_campaign(user)

        response = client.post(f'/api/campaigns/{campaign.id}/send', headers=auth_headers)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'No valid recipients found'
        assert db.session.get(Campaign, campaign.id).status == 'draft'

    def test_send_twice_is_refused(self, client, user, utils, auth_headers):
        campaign = utils.create_test_campaign(user, contacts=[utils.create_test_contact(user)])

        first = client.post(f'/api/campaigns/{campaign.id}/send', headers=auth_headers)
        second = client.post(f'/api/campaigns/{campaign.id}/send', headers=auth_headers)

        assert first.status_code == 200
        assert second.status_code == 409
        assert Email.query.filter_by(campaign_id=campaign.id).count() == 1

    def test_claim_loses_to_concurrent_sender(self, app, db, user, utils):
        campaign = utils.create_test_campaign(user, contacts=[utils.create_test_contact(user)])
        db.session.execute(
            Campaign.__table__.update().where(Campaign.id == campaign.id).values(status='sending')
        )
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            get_campaign_service().send(campaign)
        assert Email.query.count() == 0

    def test_quota_exhaustion_is_reported_per_recipient(self, client, user, utils, auth_headers):
        utils.set_usage(user, email=1999)
        contacts = [utils.create_test_contact(user) for _ in range(2)]
        campaign = utils.create_test_campaign(user, contacts=contacts)

        response = client.post(f'/api/campaigns/{campaign.id}/send', headers=auth_headers)

        data = response.get_json()
        assert data['summary'] == {'total': 2, 'successful': 1, 'failed': 1}
        assert data['results'][1]['error'] == 'Email quota exceeded'
        assert data['campaign']['status'] == 'sent'

    def test_due_scheduled_campaigns_are_sent(self, app, db, user, utils):
        contact = utils.create_test_contact(user)
        due = utils.create_test_campaign(user, contacts=[contact], status='scheduled',
                                         scheduled_at=datetime.utcnow() - timedelta(minutes=1))
        later = utils.create_test_campaign(user, contacts=[contact], status='scheduled',
                                           scheduled_at=datetime.utcnow() + timedelta(hours=1))

        result = send_due_campaigns_task.apply().get()

        assert result['processed'] == 1
        assert result['results'][0] == {'id': due.id, 'success': True, 'sent': 1}
        assert db.session.get(Campaign, due.id).status == 'sent'
        assert db.session.get(Campaign, later.id).status == 'scheduled'


class TestCampaignStats:

    def test_stats_cover_only_the_campaign(self, client, user, utils, auth_headers):
        campaign = utils.create_test_campaign(user, status='sent')
        utils.create_test_email(user, status='opened', open_count=1, campaign_id=campaign.id)
        utils.create_test_email(user, status='delivered', campaign_id=campaign.id)
        utils.create_test_email(user, status='clicked', open_count=1, click_count=1)
        utils.create_test_sms(user, status='delivered', campaign_id=campaign.id)

        response = client.get(f'/api/campaigns/{campaign.id}/stats', headers=auth_headers)

        stats = response.get_json()['stats']
        assert response.status_code == 200
        assert stats['campaign_id'] == campaign.id
        assert stats['email']['total'] == 2
        assert stats['email']['opened'] == 1
        assert stats['email']['clicked'] == 0
        assert stats['email']['open_rate'] == 50.0
        assert stats['sms']['total'] == 1
        assert stats['sms']['delivery_rate'] == 100.0
