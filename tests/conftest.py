import flask_pymongo
import mongomock
import pytest

from medwell import create_app
from medwell.utils.email_utils import mail
from medwell.utils.mongo_utils import mongo

FUTURE_DATE = '2099-01-01'
PASSWORD = 'secret123'


@pytest.fixture
def app(monkeypatch):
    # every app gets its own in-memory server
    monkeypatch.setattr(flask_pymongo, 'MongoClient', mongomock.MongoClient)
    app = create_app('testing')
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mongo_db(app):
    return mongo.db


@pytest.fixture
def outbox(app):
    with mail.record_messages() as outbox:
        yield outbox


def auth_headers(token):
    return {'Authorization': f'Bearer {token}'}


class ApiClient:
    """Thin wrapper over the Flask test client for account set-up."""

    headers = staticmethod(auth_headers)

    def __init__(self, client):
        self.client = client

    def login(self, username, password=PASSWORD):
        resp = self.client.post('/api/auth/login', json={'username': username, 'password': password})
        assert resp.status_code == 200, resp.get_json()
        return resp.get_json()['token']

    def admin_token(self):
        return self.login('admin', 'admin123456')

    def register(self, username, role='patient', token=None, password=PASSWORD):
        resp = self.client.post(
            '/api/auth/register',
            json={
                'username': username,
                'email': f'{username}@example.com',
                'password': password,
                'role': role
            },
            headers=auth_headers(token) if token else None
        )
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()['user']['id']

    def patient(self, username):
        """Register a patient; returns (id, token)."""
        user_id = self.register(username)
        return user_id, self.login(username)

    def doctor(self, username, **profile):
        """Register a doctor through the admin account; returns (id, token)."""
        user_id = self.register(username, role='doctor', token=self.admin_token())
        token = self.login(username)
        if profile:
            resp = self.client.put('/api/auth/profile', json=profile, headers=auth_headers(token))
            assert resp.status_code == 200, resp.get_json()
        return user_id, token

    def book(self, token, doctor_id, date=FUTURE_DATE, time='10:00', **extra):
        body = {'doctorId': doctor_id, 'appointmentDate': date, 'appointmentTime': time}
        body.update(extra)
        return self.client.post('/api/appointments/book', json=body, headers=auth_headers(token))


@pytest.fixture
def api(client):
    return ApiClient(client)