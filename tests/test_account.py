from bson import ObjectId

from conftest import FUTURE_DATE


def test_delete_account_cancels_active_appointments(api, mongo_db):
    doctor_id, doctor_token = api.doctor('drhouse')
    patient_id, token = api.patient('alice')
    for time in ('09:00', '10:00', '11:00'):
        assert api.book(token, doctor_id, time=time).status_code == 201

    completed = mongo_db.appointments.find_one({'appointment_time': '11:00'})
    resp = api.client.patch(f"/api/appointments/{completed['_id']}/status", json={'status': 'completed'},
                            headers=api.headers(doctor_token))
    assert resp.status_code == 200

    resp = api.client.delete('/api/auth/account', headers=api.headers(token))
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['cancelledAppointments'] == 2
    assert data['deletedUser']['id'] == patient_id

    assert mongo_db.users.find_one({'_id': ObjectId(patient_id)}) is None
    statuses = sorted(a['status'] for a in mongo_db.appointments.find({'patient_id': ObjectId(patient_id)}))
    assert statuses == ['cancelled', 'cancelled', 'completed']


def test_admin_deletes_other_account(api, mongo_db):
    doctor_id, _ = api.doctor('drhouse')
    _, token = api.patient('alice')
    assert api.book(token, doctor_id).status_code == 201

    resp = api.client.delete(f'/api/auth/account/{doctor_id}', headers=api.headers(token))
    assert resp.status_code == 403

    resp = api.client.delete(f'/api/auth/account/{doctor_id}', headers=api.headers(api.admin_token()))
    assert resp.status_code == 200
    assert resp.get_json()['cancelledAppointments'] == 1
    assert mongo_db.system_logs.count_documents({'log_type': 'admin'}) == 1

    resp = api.client.delete('/api/auth/account/0123456789abcdef01234567', headers=api.headers(api.admin_token()))
    assert resp.status_code == 404


def test_profile_is_shaped_by_role(api):
    _, patient_token = api.patient('alice')
    _, doctor_token = api.doctor('drhouse')

    patient = api.client.get('/api/auth/profile', headers=api.headers(patient_token)).get_json()['user']
    assert patient['role'] == 'patient'
    assert patient['allergies'] == []
    assert 'medicalHistory' in patient
    assert 'specialization' not in patient
    assert 'passwordHash' not in patient and 'password_hash' not in patient

    doctor = api.client.get('/api/auth/profile', headers=api.headers(doctor_token)).get_json()['user']
    assert doctor['role'] == 'doctor'
    assert doctor['qualifications'] == []
    assert doctor['availability']['monday'] == {'available': False, 'startTime': None, 'endTime': None}
    assert 'bloodGroup' not in doctor


def test_profile_of_other_user_is_admin_only(api):
    alice_id, alice_token = api.patient('alice')
    _, bob_token = api.patient('bob')

    resp = api.client.get(f'/api/auth/profile/{alice_id}', headers=api.headers(bob_token))
    assert resp.status_code == 403

    admin_token = api.admin_token()
    resp = api.client.get(f'/api/auth/profile/{alice_id}', headers=api.headers(admin_token))
    assert resp.status_code == 200
    assert resp.get_json()['user']['username'] == 'alice'

    resp = api.client.put(f'/api/auth/profile/{alice_id}', json={'firstName': 'Alice'},
                          headers=api.headers(admin_token))
    assert resp.status_code == 200
    assert resp.get_json()['user']['firstName'] == 'Alice'


def test_update_patient_profile(api):
    _, token = api.patient('alice')
    resp = api.client.put('/api/auth/profile', json={
        'firstName': 'Alice',
        'lastName': 'Liddell',
        'gender': 'martian',
        'bloodGroup': 'Z+',
        'allergies': 'peanuts',
        'address': {'street': '1 Rabbit Hole', 'zipCode': '12345'},
        'dateOfBirth': '1990-05-04',
        'specialization': 'ignored for patients'
    }, headers=api.headers(token))
    assert resp.status_code == 200
    user = resp.get_json()['user']
    assert user['firstName'] == 'Alice'
    assert user['gender'] is None
    assert user['bloodGroup'] is None
    assert user['allergies'] == ['peanuts']
    assert user['address'] == {'street': '1 Rabbit Hole', 'zipCode': '12345'}
    assert user['dateOfBirth'].startswith('1990-05-04')
    assert 'specialization' not in user


def test_update_doctor_profile(api):
    _, token = api.doctor('drhouse')
    _, other_token = api.doctor('drwilson')

    resp = api.client.put('/api/auth/profile', json={'bio': 'x' * 501}, headers=api.headers(token))
    assert resp.status_code == 400

    resp = api.client.put('/api/auth/profile', json={
        'specialization': 'Diagnostics',
        'licenseNumber': 'LIC-1',
        'consultationFee': 150,
        'bio': 'Grumpy but right.'
    }, headers=api.headers(token))
    assert resp.status_code == 200
    user = resp.get_json()['user']
    assert user['licenseNumber'] == 'LIC-1'
    assert user['consultationFee'] == 150

    resp = api.client.put('/api/auth/profile', json={'licenseNumber': 'LIC-1'}, headers=api.headers(other_token))
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'License number already exists'

    # keeping one's own license number is fine
    resp = api.client.put('/api/auth/profile', json={'licenseNumber': 'LIC-1'}, headers=api.headers(token))
    assert resp.status_code == 200


def test_profile_password_change(api):
    _, token = api.patient('alice')
    url = '/api/auth/profile'

    assert api.client.put(url, json={'newPassword': 'new-secret'}, headers=api.headers(token)).status_code == 400
    assert api.client.put(url, json={'newPassword': 'new-secret', 'currentPassword': 'wrong-pass'},
                          headers=api.headers(token)).status_code == 401
    assert api.client.put(url, json={'newPassword': 'new-secret', 'currentPassword': 'secret123'},
                          headers=api.headers(token)).status_code == 200
    api.login('alice', 'new-secret')


def test_update_medical_record(api):
    _, token = api.patient('alice')
    url = '/api/auth/medical-record'

    resp = api.client.put(url, json={
        'bloodGroup': 'O+',
        'allergies': ['penicillin'],
        'emergencyContact': {'name': 'Bob', 'phoneNumber': '555-0100'},
        'medicalHistory': [{'condition': 'Asthma', 'diagnosisDate': '2010-03-01'}]
    }, headers=api.headers(token))
    assert resp.status_code == 200
    record = resp.get_json()['medicalRecord']
    assert record['bloodGroup'] == 'O+'
    assert record['allergies'] == ['penicillin']
    assert record['medicalHistory'][0]['condition'] == 'Asthma'
    assert record['medicalHistory'][0]['diagnosisDate'].startswith('2010-03-01')

    # partial contact update keeps the stored fields
    resp = api.client.put(url, json={'emergencyContact': {'relationship': 'brother'}}, headers=api.headers(token))
    contact = resp.get_json()['medicalRecord']['emergencyContact']
    assert contact == {'name': 'Bob', 'relationship': 'brother', 'phoneNumber': '555-0100', 'email': ''}

    assert api.client.put(url, json={'bloodGroup': 'Z+'}, headers=api.headers(token)).status_code == 400
    assert api.client.put(url, json={'allergies': 'dust'}, headers=api.headers(token)).status_code == 400
    assert api.client.put(url, json={'medicalHistory': 'none'}, headers=api.headers(token)).status_code == 400


def test_medical_record_is_patient_only(api):
    _, token = api.doctor('drhouse')
    resp = api.client.put('/api/auth/medical-record', json={'bloodGroup': 'O+'}, headers=api.headers(token))
    assert resp.status_code == 403


def test_admin_user_listing(api, mongo_db):
    api.patient('alice')
    api.patient('bob')
    api.doctor('drhouse')
    mongo_db.users.update_one({'username': 'bob'}, {'$set': {'is_active': False}})

    _, patient_token = api.patient('carol')
    resp = api.client.get('/api/auth/users', headers=api.headers(patient_token))
    assert resp.status_code == 403

    admin_token = api.admin_token()

    def listing(**params):
        resp = api.client.get('/api/auth/users', query_string=params, headers=api.headers(admin_token))
        assert resp.status_code == 200
        return resp.get_json()

    data = listing()
    # admin + alice + bob + drhouse + carol
    assert data['pagination']['totalUsers'] == 5
    for user in data['users']:
        assert 'passwordHash' not in user and 'password_hash' not in user
        assert 'resetToken' not in user and 'emailVerificationToken' not in user

    assert listing(role='doctor')['users'][0]['username'] == 'drhouse'
    assert listing(isActive='false')['pagination']['totalUsers'] == 1
    assert listing(search='ALI')['pagination']['totalUsers'] == 1
    assert listing(search='(')['pagination']['totalUsers'] == 0

    ordered = listing(sortBy='username', sortOrder='asc', limit=2)
    assert [u['username'] for u in ordered['users']] == ['admin', 'alice']
    assert ordered['pagination']['totalPages'] == 3
    assert ordered['pagination']['hasNextPage'] is True

    # unknown sort keys fall back to createdAt
    assert listing(sortBy='password_hash')['pagination']['totalUsers'] == 5


def test_booked_appointment_keeps_deleted_doctor_history(api, mongo_db):
    doctor_id, _ = api.doctor('drhouse')
    _, token = api.patient('alice')
    assert api.book(token, doctor_id, date=FUTURE_DATE).status_code == 201
    assert api.client.delete(f'/api/auth/account/{doctor_id}', headers=api.headers(api.admin_token())).status_code == 200

    resp = api.client.get('/api/appointments/my-appointments', headers=api.headers(token))
    assert resp.status_code == 200
    appointments = resp.get_json()['appointments']
    assert [a['status'] for a in appointments] == ['cancelled']
    assert 'doctor' not in appointments[0]


def test_profile_updates_reject_non_object_body(api):
    _, token = api.patient('alice')
    assert api.client.put('/api/auth/profile', json=['Alice'], headers=api.headers(token)).status_code == 400
    assert api.client.put('/api/auth/medical-record', json='O+', headers=api.headers(token)).status_code == 400
