from datetime import datetime
import enum
from pymongo import ReturnDocument
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from ..utils.mongo_utils import to_object_id, format_mongo_doc


class Role(enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


GENDERS = ("male", "female", "other", "prefer not to say")
BLOOD_GROUPS = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class Principal(UserMixin):
    """The authenticated caller, decoded from the bearer token."""

    def __init__(self, user_id, username, role):
        self.id = str(user_id)
        self.username = username
        self.role = role if isinstance(role, Role) else Role(role)

    def __repr__(self):
        return f'<Principal {self.username} ({self.role.value})>'

    def get_id(self):
        return self.id

    def has_role(self, role):
        if isinstance(role, str):
            return self.role.value == role
        return self.role == role


def display_name(user):
    """First and last name, falling back to the username."""
    if not user:
        return ''
    name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return name or user.get('username', '')


def _iso(value):
    return value.isoformat() if value else None


def _default_availability():
    return {day: {'available': False, 'start_time': None, 'end_time': None} for day in WEEKDAYS}


def _camel(key):
    head, *rest = key.split('_')
    return head + ''.join(part.capitalize() for part in rest)


def _camel_doc(value):
    """Rename nested snake_case keys for the JSON response."""
    if isinstance(value, dict):
        return {_camel(k): _camel_doc(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camel_doc(item) for item in value]
    return value


def _pick(user, keys):
    return {_camel(key): _camel_doc(format_mongo_doc(user.get(key))) for key in keys}


# Role-specific response shaping. ``view`` is one of
# 'profile' (full record), 'update' (after a profile update) or 'listing'
# (admin user list).

def _patient_fields(user, view):
    if view == 'listing':
        return _pick(user, ['blood_group', 'allergies'])
    keys = ['blood_group', 'emergency_contact', 'allergies', 'insurance_info']
    if view == 'profile':
        keys.append('medical_history')
    return _pick(user, keys)


def _doctor_fields(user, view):
    if view == 'listing':
        return _pick(user, ['specialization', 'department', 'license_number',
                            'years_of_experience', 'consultation_fee'])
    if view == 'update':
        return _pick(user, ['specialization', 'department', 'license_number',
                            'consultation_fee', 'bio'])
    return _pick(user, ['specialization', 'department', 'license_number', 'qualifications',
                        'years_of_experience', 'consultation_fee', 'availability', 'bio'])


def _admin_fields(user, view):
    return _pick(user, ['position'])


ROLE_FIELDS = {
    Role.PATIENT: _patient_fields,
    Role.DOCTOR: _doctor_fields,
    Role.ADMIN: _admin_fields,
}


class User:
    """
    Helpers over the ``users`` collection.

    Users are plain MongoDB documents; every helper takes the database handle
    explicitly.
    """

    @staticmethod
    def get(mongo_db, user_id):
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return mongo_db.users.find_one({'_id': oid})

    @staticmethod
    def find_by_username(mongo_db, username):
        return mongo_db.users.find_one({'username': username})

    @staticmethod
    def find_by_email(mongo_db, email):
        return mongo_db.users.find_one({'email': email})

    @staticmethod
    def find_many(mongo_db, user_ids):
        """Map ``_id -> document`` for the given ids."""
        ids = [oid for oid in (to_object_id(user_id) for user_id in user_ids) if oid is not None]
        if not ids:
            return {}
        return {user['_id']: user for user in mongo_db.users.find({'_id': {'$in': ids}})}

    @staticmethod
    def license_taken(mongo_db, license_number, exclude_id=None):
        query = {'license_number': license_number}
        if exclude_id is not None:
            query['_id'] = {'$ne': to_object_id(exclude_id)}
        return mongo_db.users.find_one(query) is not None

    @staticmethod
    def create(mongo_db, username, email, password, role=Role.PATIENT, **fields):
        now = datetime.now()
        doc = {
            'username': username,
            'email': email,
            'password_hash': generate_password_hash(password),
            'role': role.value,
            'profile_picture': None,
            'is_email_verified': False,
            'email_verification_token': None,
            'email_verification_token_expiry': None,
            'reset_token': None,
            'reset_token_expiry': None,
            'is_active': True,
            'last_login_at': None,
            'created_at': now,
            'updated_at': now
        }
        if role == Role.PATIENT:
            doc.update({'allergies': [], 'medical_history': []})
        elif role == Role.DOCTOR:
            doc.update({
                'qualifications': [],
                'years_of_experience': 0,
                'consultation_fee': 0,
                'availability': _default_availability()
            })
        doc.update(fields)
        result = mongo_db.users.insert_one(doc)
        doc['_id'] = result.inserted_id
        return doc

    @staticmethod
    def update(mongo_db, user_id, changes=None, unset=None):
        """Apply ``$set``/``$unset`` and return the updated document."""
        update = {'$set': dict(changes or {})}
        update['$set']['updated_at'] = datetime.now()
        if unset:
            update['$unset'] = {key: '' for key in unset}
        return mongo_db.users.find_one_and_update(
            {'_id': to_object_id(user_id)},
            update,
            return_document=ReturnDocument.AFTER
        )

    @staticmethod
    def delete(mongo_db, user_id):
        result = mongo_db.users.delete_one({'_id': to_object_id(user_id)})
        return result.deleted_count > 0

    @staticmethod
    def verify_password(user, password):
        if not user or not password:
            return False
        return check_password_hash(user['password_hash'], password)

    @staticmethod
    def hash_password(password):
        return generate_password_hash(password)

    @staticmethod
    def summary(user):
        return {
            'id': str(user['_id']),
            'username': user['username'],
            'email': user['email'],
            'role': user['role']
        }

    @staticmethod
    def to_dict(user, view='profile'):
        """Serialize a user, adding only the fields of its own role."""
        role = Role(user['role'])
        data = User.summary(user)
        if view == 'listing':
            data.update({
                'firstName': user.get('first_name'),
                'lastName': user.get('last_name'),
                'phoneNumber': user.get('phone_number'),
                'isEmailVerified': user.get('is_email_verified', False),
                'isActive': user.get('is_active', True),
                'createdAt': _iso(user.get('created_at')),
                'updatedAt': _iso(user.get('updated_at'))
            })
            data.update(ROLE_FIELDS[role](user, view))
            return data

        data.update({
            'firstName': user.get('first_name'),
            'lastName': user.get('last_name'),
            'phoneNumber': user.get('phone_number'),
            'address': _camel_doc(user.get('address')),
            'dateOfBirth': _iso(user.get('date_of_birth')),
            'gender': user.get('gender'),
            'profilePicture': user.get('profile_picture')
        })
        data.update(ROLE_FIELDS[role](user, view))
        if view == 'profile':
            data['createdAt'] = _iso(user.get('created_at'))
        data['updatedAt'] = _iso(user.get('updated_at'))
        return data

    @staticmethod
    def medical_record(user):
        return {
            'emergencyContact': _camel_doc(user.get('emergency_contact')),
            'bloodGroup': user.get('blood_group'),
            'allergies': user.get('allergies', []),
            'insuranceInfo': _camel_doc(format_mongo_doc(user.get('insurance_info'))),
            'medicalHistory': _camel_doc(format_mongo_doc(user.get('medical_history'))),
            'updatedAt': _iso(user.get('updated_at'))
        }

