import uuid
from types import SimpleNamespace

import pytest

from outreach import create_app
from outreach.extensions import db as _db
from outreach.services import sms_service

from tests.outreach_test_utils import OutreachTestUtils


class FakeSignalWireClient:
    """
    Stands in for signalwire.rest.Client.

    Records every messages.create call and raises `error` when one is set.
    """

    def __init__(self):
        self.sent = []
        self.credentials = None
        self.error = None
        self.messages = self

    def __call__(self, project_id, api_token, signalwire_space_url=None):
        self.credentials = (project_id, api_token, signalwire_space_url)
        return self

    def create(self, from_, to, body, status_callback=None):
        if self.error is not None:
            raise self.error
        sid = f'SM{uuid.uuid4().hex}'
        self.sent.append({'sid': sid, 'from': from_, 'to': to, 'body': body,
                          'status_callback': status_callback})
        return SimpleNamespace(sid=sid, status='queued')


class FakeSignalWireError(Exception):
    """Shaped like the SDK's REST exception: a message plus a numeric code"""

    def __init__(self, msg, code=None):
        super().__init__(msg)
        self.msg = msg
        self.code = code


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def sms_provider(monkeypatch):
    client = FakeSignalWireClient()
    monkeypatch.setattr(sms_service, 'SignalWireClient', client)
    return client


@pytest.fixture
def utils():
    return OutreachTestUtils


@pytest.fixture
def user(app):
    return OutreachTestUtils.create_test_user(email='owner@example.com')


@pytest.fixture
def starter_user(app):
    return OutreachTestUtils.create_test_user(email='starter@example.com', plan='starter')


@pytest.fixture
def admin(app):
    return OutreachTestUtils.create_test_admin(email='admin@example.com')


@pytest.fixture
def auth_headers(user):
    return OutreachTestUtils.auth_headers(user)


@pytest.fixture
def admin_headers(admin):
    return OutreachTestUtils.auth_headers(admin)
