"""
Profile, medical record, account deletion and the admin user listing.

Shares the ``/api/auth`` prefix with the authentication routes.
"""
import math
import re
from datetime import datetime
import pymongo
from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from ..models import User, Role, Appointment
from ..models.user import GENDERS, BLOOD_GROUPS
from ..utils.mongo_utils import get_mongo_db
from ..utils.errors import ApiError, ValidationError, AuthenticationRequired, AuthorizationDenied, NotFound, \
    error_response, server_error, json_body
from ..utils.security import check_password_length
from ..utils.log_utils import log_user, log_admin
from .auth import role_required

account_bp = Blueprint('account', __name__, url_prefix='/api/auth')

BIO_MAX_LENGTH = 500
USER_SORT_FIELDS = {
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
    'username': 'username',
    'email': 'email',
    'role': 'role',
}

COMMON_FIELDS = ('firstName', 'lastName', 'phoneNumber', 'profilePicture')
DOCTOR_FIELDS = ('specialization', 'department', 'yearsOfExperience', 'consultationFee')


def _snake(key):
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


def _snake_doc(value):
    if isinstance(value, dict):
        return {_snake(k): _snake_doc(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_doc(item) for item in value]
    return value


def _as_list(value):
    return value if isinstance(value, list) else [value]


def _parse_date(value, field):
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid {field}')
    return parsed.replace(tzinfo=None)


def _target_user(mongo_db, user_id, denied_message):
    """Resolve the user a request acts on; self unless an admin names another."""
    user = User.get(mongo_db, user_id or current_user.id)
    if not user:
        raise NotFound('User not found')
    if str(user['_id']) != current_user.id and not current_user.has_role(Role.ADMIN):
        raise AuthorizationDenied(denied_message)
    return user


# Profile changes per role. Invalid enum values are dropped, not rejected.

def _patient_changes(data, user):
    changes = {}
    if 'emergencyContact' in data:
        changes['emergency_contact'] = _snake_doc(data['emergencyContact'])
    if 'bloodGroup' in data and data['bloodGroup'] in BLOOD_GROUPS:
        changes['blood_group'] = data['bloodGroup']
    if 'allergies' in data:
        changes['allergies'] = _as_list(data['allergies'])
    if 'insuranceInfo' in data:
        changes['insurance_info'] = _snake_doc(data['insuranceInfo'])
    if 'medicalHistory' in data:
        changes['medical_history'] = _snake_doc(_as_list(data['medicalHistory']))
    return changes


def _doctor_changes(data, user):
    changes = {_snake(key): data[key] for key in DOCTOR_FIELDS if key in data}
    if 'licenseNumber' in data:
        if data['licenseNumber'] and User.license_taken(get_mongo_db(), data['licenseNumber'], exclude_id=user['_id']):
            raise ValidationError('License number already exists')
        changes['license_number'] = data['licenseNumber']
    if 'qualifications' in data:
        changes['qualifications'] = _as_list(data['qualifications'])
    if 'availability' in data:
        changes['availability'] = _snake_doc(data['availability'])
    if 'bio' in data:
        bio = data['bio'] or ''
        if len(bio) > BIO_MAX_LENGTH:
            raise ValidationError(f'Bio must be {BIO_MAX_LENGTH} characters or less')
        changes['bio'] = bio
    return changes


def _admin_changes(data, user):
    return {'position': data['position']} if 'position' in data else {}


PROFILE_CHANGES = {
    Role.PATIENT: _patient_changes,
    Role.DOCTOR: _doctor_changes,
    Role.ADMIN: _admin_changes,
}


def _get_profile(user_id=None):
    try:
        user = _target_user(get_mongo_db(), user_id, 'You can only view your own profile')
        return jsonify({
            'message': 'Profile retrieved successfully',
            'user': User.to_dict(user, view='profile')
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Get profile')


def _update_profile(user_id=None):
    try:
        data = json_body()
        mongo_db = get_mongo_db()
        user = _target_user(mongo_db, user_id, 'You can only update your own profile')

        changes = {_snake(key): data[key] for key in COMMON_FIELDS if key in data}
        if 'address' in data:
            changes['address'] = _snake_doc(data['address'])
        if 'dateOfBirth' in data:
            changes['date_of_birth'] = _parse_date(data['dateOfBirth'], 'date of birth')
        if 'gender' in data and data['gender'] in GENDERS:
            changes['gender'] = data['gender']

        changes.update(PROFILE_CHANGES[Role(user['role'])](data, user))

        # an empty license number is removed so the sparse unique index ignores it
        unset = []
        if 'license_number' in changes and not changes['license_number']:
            del changes['license_number']
            unset.append('license_number')

        new_password = data.get('newPassword')
        if new_password:
            if not data.get('currentPassword'):
                raise ValidationError('Current password is required to change password')
            if not User.verify_password(user, data['currentPassword']):
                raise AuthenticationRequired('Current password is incorrect')
            message = check_password_length(new_password)
            if message:
                raise ValidationError(f'New {message[0].lower()}{message[1:]}')
            changes['password_hash'] = User.hash_password(new_password)

        updated = User.update(mongo_db, user['_id'], changes, unset=unset)
        if not updated:
            raise NotFound('User not found after update')

        log_user('Profile updated', {
            'target_user_id': str(user['_id']),
            'fields': sorted(key for key in changes if key != 'password_hash'),
            'password_changed': 'password_hash' in changes
        })

        return jsonify({
            'message': 'Profile updated successfully',
            'user': User.to_dict(updated, view='update')
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Update profile')


@account_bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return _get_profile()


@account_bp.route('/profile/<user_id>', methods=['GET'])
@role_required(Role.ADMIN)
def get_user_profile(user_id):
    return _get_profile(user_id)


@account_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    return _update_profile()


@account_bp.route('/profile/<user_id>', methods=['PUT'])
@role_required(Role.ADMIN)
def update_user_profile(user_id):
    return _update_profile(user_id)


@account_bp.route('/medical-record', methods=['PUT'])
@role_required(Role.PATIENT)
def update_medical_record():
    try:
        data = json_body()
        mongo_db = get_mongo_db()
        user = User.get(mongo_db, current_user.id)
        if not user:
            raise NotFound('User not found')
        if user['role'] != Role.PATIENT.value:
            raise AuthorizationDenied('Only patients can update medical records')

        changes = {}

        contact = data.get('emergencyContact')
        if 'emergencyContact' in data:
            if isinstance(contact, dict):
                existing = user.get('emergency_contact') or {}
                changes['emergency_contact'] = {
                    'name': contact.get('name') or existing.get('name') or '',
                    'relationship': contact.get('relationship') or existing.get('relationship') or '',
                    'phone_number': contact.get('phoneNumber') or existing.get('phone_number') or '',
                    'email': contact.get('email') or existing.get('email') or ''
                }
            else:
                changes['emergency_contact'] = contact

        if 'bloodGroup' in data:
            if data['bloodGroup'] not in BLOOD_GROUPS:
                raise ValidationError(f"Invalid blood group. Valid options: {', '.join(BLOOD_GROUPS)}")
            changes['blood_group'] = data['bloodGroup']

        if 'allergies' in data:
            if not isinstance(data['allergies'], list):
                raise ValidationError('Allergies must be an array')
            changes['allergies'] = data['allergies']

        insurance = data.get('insuranceInfo')
        if 'insuranceInfo' in data:
            if isinstance(insurance, dict):
                existing = user.get('insurance_info') or {}
                changes['insurance_info'] = {
                    'provider': insurance.get('provider') or existing.get('provider') or '',
                    'policy_number': insurance.get('policyNumber') or existing.get('policy_number') or '',
                    'group_number': insurance.get('groupNumber') or existing.get('group_number') or '',
                    'expiry_date': _parse_date(insurance.get('expiryDate'), 'insurance expiry date')
                    if insurance.get('expiryDate') else existing.get('expiry_date')
                }
            else:
                changes['insurance_info'] = insurance

        if 'medicalHistory' in data:
            if not isinstance(data['medicalHistory'], list):
                raise ValidationError('Medical history must be an array')
            changes['medical_history'] = [
                {
                    'condition': entry.get('condition') or '',
                    'diagnosis_date': _parse_date(entry.get('diagnosisDate'), 'diagnosis date'),
                    'notes': entry.get('notes') or ''
                } if isinstance(entry, dict) else entry
                for entry in data['medicalHistory']
            ]

        updated = User.update(mongo_db, user['_id'], changes)
        if not updated:
            raise NotFound('User not found after update')

        log_user('Medical record updated', {'fields': sorted(changes)}, user_id=user['_id'])
        current_app.logger.info(f"Medical record updated for patient: {updated['username']}")

        return jsonify({
            'message': 'Medical record updated successfully',
            'medicalRecord': User.medical_record(updated)
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Update medical record')


def _delete_account(user_id=None):
    try:
        mongo_db = get_mongo_db()
        user = _target_user(mongo_db, user_id, 'You can only delete your own account')

        if str(user['_id']) == current_user.id and current_user.has_role(Role.ADMIN):
            current_app.logger.warning(f'Admin {current_user.username} is deleting their own account')

        cancelled = Appointment.cancel_active_for_user(mongo_db, user['_id'])
        if cancelled:
            current_app.logger.info(f"Cancelled {cancelled} appointment(s) for user {user['username']}")

        User.delete(mongo_db, user['_id'])
        current_app.logger.info(f"Account deleted: {user['username']} ({user['role']})")

        details = {
            'deleted_user_id': str(user['_id']),
            'username': user['username'],
            'role': user['role'],
            'cancelled_appointments': cancelled
        }
        if str(user['_id']) == current_user.id:
            log_user('Account deleted', details)
        else:
            log_admin('Account deleted by admin', details)

        return jsonify({
            'message': 'Account deleted successfully',
            'deletedUser': User.summary(user),
            'cancelledAppointments': cancelled
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Delete account')


@account_bp.route('/account', methods=['DELETE'])
@login_required
def delete_account():
    return _delete_account()


@account_bp.route('/account/<user_id>', methods=['DELETE'])
@role_required(Role.ADMIN)
def delete_user_account(user_id):
    return _delete_account(user_id)


def _bool_arg(value):
    if value is None:
        return None
    return value.lower() == 'true'


# Admin user listing
@account_bp.route('/users', methods=['GET'])
@role_required(Role.ADMIN)
def get_users():
    try:
        role = request.args.get('role')
        is_active = _bool_arg(request.args.get('isActive'))
        is_email_verified = _bool_arg(request.args.get('isEmailVerified'))
        search = request.args.get('search')
        page = request.args.get('page', 1, type=int)
        limit = min(request.args.get('limit', 10, type=int), 100)
        sort_by = request.args.get('sortBy', 'createdAt')
        sort_order = request.args.get('sortOrder', 'desc')

        page = max(page, 1)
        limit = max(limit, 1)

        query = {}
        if role in [r.value for r in Role]:
            query['role'] = role
        if is_active is not None:
            query['is_active'] = is_active
        if is_email_verified is not None:
            query['is_email_verified'] = is_email_verified
        if search:
            pattern = {'$regex': re.escape(search), '$options': 'i'}
            query['$or'] = [
                {'username': pattern},
                {'email': pattern},
                {'first_name': pattern},
                {'last_name': pattern}
            ]

        if sort_by not in USER_SORT_FIELDS:
            sort_by = 'createdAt'
        direction = pymongo.ASCENDING if sort_order == 'asc' else pymongo.DESCENDING

        mongo_db = get_mongo_db()
        total = mongo_db.users.count_documents(query)
        users = list(
            mongo_db.users.find(query)
            .sort(USER_SORT_FIELDS[sort_by], direction)
            .skip((page - 1) * limit)
            .limit(limit)
        )

        total_pages = math.ceil(total / limit)
        current_app.logger.info(
            f'Admin {current_user.username} retrieved {len(users)} users (page {page}/{total_pages})'
        )

        return jsonify({
            'message': 'Users retrieved successfully',
            'users': [User.to_dict(user, view='listing') for user in users],
            'pagination': {
                'currentPage': page,
                'totalPages': total_pages,
                'totalUsers': total,
                'usersPerPage': limit,
                'hasNextPage': page < total_pages,
                'hasPrevPage': page > 1
            },
            'filters': {
                'role': role or None,
                'isActive': is_active,
                'isEmailVerified': is_email_verified,
                'search': search or None
            }
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Get users')
