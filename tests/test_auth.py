from datetime import datetime, timedelta

import jwt

from conftest import PASSWORD


def _register(api, **body):
    return api.client.post('/api/auth/register', json=body)


def test_register_patient_sends_verification(api, mongo_db, outbox):
    resp = _register(api, username='alice', email='alice@example.com', password=PASSWORD)
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['user']['role'] == 'patient'
    assert data['emailSent'] is True
    assert 'emailError' not in data

    user = mongo_db.users.find_one({'username': 'alice'})
    assert user['is_email_verified'] is False
    assert user['email_verification_token']
    assert user['password_hash'] != PASSWORD

    assert len(outbox) == 1
    assert outbox[0].recipients == ['alice@example.com']
    assert user['email_verification_token'] in outbox[0].body
    assert user['email_verification_token'] in outbox[0].html


def test_register_reports_email_failure(app, api):
    app.config['MAIL_USERNAME'] = None
    resp = _register(api, username='alice', email='alice@example.com', password=PASSWORD)
    assert resp.status_code == 201
    assert resp.get_json()['emailSent'] is False
    assert resp.get_json()['emailError']


def test_register_rejects_duplicates(api):
    api.register('alice')
    resp = _register(api, username='alice', email='other@example.com', password=PASSWORD)
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Username already exists'

    resp = _register(api, username='alicia', email='alice@example.com', password=PASSWORD)
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Email already exists'


def test_register_validation(api):
    assert _register(api, username='alice', password=PASSWORD).status_code == 400
    assert _register(api, username='alice', email='not-an-email', password=PASSWORD).status_code == 400
    assert _register(api, username='alice', email='alice@example.com', password='123').status_code == 400
    assert _register(api, username='alice', email='alice@example.com', password=PASSWORD,
                     role='nurse').status_code == 400


def test_register_doctor_requires_admin(api):
    body = {'username': 'drhouse', 'email': 'drhouse@example.com', 'password': PASSWORD, 'role': 'doctor'}
    assert api.client.post('/api/auth/register', json=body).status_code == 401

    _, patient_token = api.patient('alice')
    resp = api.client.post('/api/auth/register', json=body, headers=api.headers(patient_token))
    assert resp.status_code == 403

    resp = api.client.post('/api/auth/register', json=body, headers=api.headers(api.admin_token()))
    assert resp.status_code == 201
    assert resp.get_json()['user']['role'] == 'doctor'


def test_login(app, api, mongo_db):
    user_id = api.register('alice')

    resp = api.client.post('/api/auth/login', json={'username': 'alice', 'password': PASSWORD})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['user'] == {'id': user_id, 'username': 'alice', 'email': 'alice@example.com', 'role': 'patient'}

    payload = jwt.decode(data['token'], app.config['JWT_SECRET_KEY'], algorithms=['HS256'])
    assert payload['userId'] == user_id
    assert payload['role'] == 'patient'
    assert payload['exp'] - payload['iat'] == 3600

    assert mongo_db.users.find_one({'username': 'alice'})['last_login_at'] is not None
    assert mongo_db.system_logs.count_documents({'log_type': 'security'}) >= 1


def test_login_failures(api, mongo_db):
    api.register('alice')
    assert api.client.post('/api/auth/login', json={'username': 'alice'}).status_code == 400
    assert api.client.post('/api/auth/login', json={'username': 'nobody', 'password': PASSWORD}).status_code == 404
    assert api.client.post('/api/auth/login', json={'username': 'alice', 'password': 'wrong-pass'}).status_code == 401

    mongo_db.users.update_one({'username': 'alice'}, {'$set': {'is_active': False}})
    assert api.client.post('/api/auth/login', json={'username': 'alice', 'password': PASSWORD}).status_code == 403


def test_expired_token_is_rejected(app, api):
    user_id, _ = api.patient('alice')
    issued = datetime.now() - timedelta(hours=2)
    token = jwt.encode({
        'sub': user_id,
        'userId': user_id,
        'username': 'alice',
        'role': 'patient',
        'iat': int(issued.timestamp()),
        'exp': int((issued + timedelta(hours=1)).timestamp())
    }, app.config['JWT_SECRET_KEY'], algorithm='HS256')

    resp = api.client.get('/api/auth/profile', headers=api.headers(token))
    assert resp.status_code == 401


def test_logout(api):
    assert api.client.post('/api/auth/logout').status_code == 401

    user_id, token = api.patient('alice')
    resp = api.client.post('/api/auth/logout', headers=api.headers(token))
    assert resp.status_code == 200
    assert resp.get_json()['user'] == {'id': user_id, 'username': 'alice'}


def test_verify_email(api, mongo_db):
    api.register('alice')
    token = mongo_db.users.find_one({'username': 'alice'})['email_verification_token']

    assert api.client.post('/api/auth/verify-email', json={}).status_code == 400
    assert api.client.post('/api/auth/verify-email', json={'token': 'bogus'}).status_code == 400

    resp = api.client.post('/api/auth/verify-email', json={'token': token})
    assert resp.status_code == 200
    user = mongo_db.users.find_one({'username': 'alice'})
    assert user['is_email_verified'] is True
    assert user['email_verification_token'] is None

    # token is single use
    assert api.client.post('/api/auth/verify-email', json={'token': token}).status_code == 400


def test_verify_email_rejects_expired_token(api, mongo_db):
    api.register('alice')
    mongo_db.users.update_one({'username': 'alice'}, {'$set': {
        'email_verification_token_expiry': datetime.now() - timedelta(minutes=1)
    }})
    token = mongo_db.users.find_one({'username': 'alice'})['email_verification_token']
    assert api.client.post('/api/auth/verify-email', json={'token': token}).status_code == 400


def test_resend_verification(api, mongo_db, outbox):
    api.register('alice')
    old_token = mongo_db.users.find_one({'username': 'alice'})['email_verification_token']

    resp = api.client.post('/api/auth/resend-verification', json={'email': 'nobody@example.com'})
    assert resp.status_code == 200
    assert 'emailSent' not in resp.get_json()

    resp = api.client.post('/api/auth/resend-verification', json={'email': 'alice@example.com'})
    assert resp.status_code == 200
    assert resp.get_json()['emailSent'] is True
    assert mongo_db.users.find_one({'username': 'alice'})['email_verification_token'] != old_token
    assert len(outbox) == 2

    mongo_db.users.update_one({'username': 'alice'}, {'$set': {'is_email_verified': True}})
    resp = api.client.post('/api/auth/resend-verification', json={'email': 'alice@example.com'})
    assert resp.status_code == 400


def test_password_reset_flow(api, mongo_db, outbox):
    api.register('alice')

    resp = api.client.post('/api/auth/forgot-password', json={'email': 'nobody@example.com'})
    assert resp.status_code == 200

    resp = api.client.post('/api/auth/forgot-password', json={'email': 'alice@example.com'})
    assert resp.status_code == 200
    reset_token = mongo_db.users.find_one({'username': 'alice'})['reset_token']
    assert reset_token
    assert reset_token in outbox[-1].body

    resp = api.client.post('/api/auth/reset-password', json={'token': reset_token, 'newPassword': '123'})
    assert resp.status_code == 400
    resp = api.client.post('/api/auth/reset-password', json={'token': 'bogus', 'newPassword': 'new-secret'})
    assert resp.status_code == 400

    resp = api.client.post('/api/auth/reset-password', json={'token': reset_token, 'newPassword': 'new-secret'})
    assert resp.status_code == 200
    assert mongo_db.users.find_one({'username': 'alice'})['reset_token'] is None

    api.login('alice', 'new-secret')
    resp = api.client.post('/api/auth/login', json={'username': 'alice', 'password': PASSWORD})
    assert resp.status_code == 401


def test_forgot_password_clears_token_when_email_fails(app, api, mongo_db):
    api.register('alice')
    app.config['MAIL_USERNAME'] = None

    resp = api.client.post('/api/auth/forgot-password', json={'email': 'alice@example.com'})
    assert resp.status_code == 500
    assert mongo_db.users.find_one({'username': 'alice'})['reset_token'] is None


def test_change_password(api):
    _, token = api.patient('alice')
    url = '/api/auth/change-password'

    assert api.client.post(url, json={'currentPassword': PASSWORD}).status_code == 401
    assert api.client.post(url, json={'currentPassword': PASSWORD},
                           headers=api.headers(token)).status_code == 400
    assert api.client.post(url, json={'currentPassword': PASSWORD, 'newPassword': '123'},
                           headers=api.headers(token)).status_code == 400
    assert api.client.post(url, json={'currentPassword': 'wrong-pass', 'newPassword': 'new-secret'},
                           headers=api.headers(token)).status_code == 401
    assert api.client.post(url, json={'currentPassword': PASSWORD, 'newPassword': PASSWORD},
                           headers=api.headers(token)).status_code == 400

    resp = api.client.post(url, json={'currentPassword': PASSWORD, 'newPassword': 'new-secret'},
                           headers=api.headers(token))
    assert resp.status_code == 200
    api.login('alice', 'new-secret')


def test_health_and_fallbacks(client):
    assert client.get('/').status_code == 200

    resp = client.get('/api/health')
    assert resp.status_code == 200
    assert resp.get_json()['database'] == 'connected'

    resp = client.get('/api/nothing-here')
    assert resp.status_code == 404
    assert resp.get_json() == {'message': 'Route not found'}

    assert client.get('/api/auth/login').status_code == 405


def test_non_object_json_body_is_rejected(api):
    api.register('alice')
    _, token = api.patient('bob')

    for url in ('/api/auth/register', '/api/auth/login', '/api/auth/verify-email',
                '/api/auth/resend-verification', '/api/auth/forgot-password', '/api/auth/reset-password'):
        resp = api.client.post(url, json=['alice'])
        assert resp.status_code == 400, url
        assert resp.get_json()['message'] == 'Request body must be a JSON object'

    resp = api.client.post('/api/auth/change-password', json=[PASSWORD], headers=api.headers(token))
    assert resp.status_code == 400

    # a non-string email is a missing email, not a crash
    assert api.client.post('/api/auth/forgot-password', json={'email': 42}).status_code == 400
