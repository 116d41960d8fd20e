from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user
from datetime import datetime
from functools import wraps
from ..models import User, Role
from ..utils.mongo_utils import get_mongo_db
from ..utils.jwt_utils import generate_jwt_token
from ..utils.errors import ApiError, ValidationError, AuthenticationRequired, AuthorizationDenied, NotFound, \
    error_response, server_error, json_body
from ..utils.security import generate_token, token_expiry, check_password_length, validate_registration
from ..utils.email_utils import send_verification_email, send_password_reset_email
from ..utils.log_utils import log_security, log_user

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


# Role check for API routes; answers with JSON instead of redirecting
def role_required(role):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'message': 'Not authorized'}), 401
            if not current_user.has_role(role):
                role_name = role.value if isinstance(role, Role) else role
                return jsonify({'message': f'Access denied. Required role: {role_name}'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


# Register
@auth_bp.route('/register', methods=['POST'])
def register():
    try:
        data = json_body()
        role_str = data.get('role') or Role.PATIENT.value
        if role_str not in [role.value for role in Role]:
            raise ValidationError('Invalid role. Allowed roles: patient, doctor, admin')
        role = Role(role_str)

        # doctor and admin accounts are created by admins only
        if role in (Role.DOCTOR, Role.ADMIN):
            if not current_user.is_authenticated:
                raise AuthenticationRequired(
                    'Authentication required. Only admin can register doctor/admin accounts. '
                    'Please provide a valid admin token.'
                )
            if not current_user.has_role(Role.ADMIN):
                raise AuthorizationDenied('Only admin can register doctor/admin accounts.')

        ok, message = validate_registration(data)
        if not ok:
            raise ValidationError(message)

        mongo_db = get_mongo_db()
        username = data['username'].strip()
        email = data['email'].strip().lower()

        if User.find_by_username(mongo_db, username):
            raise ValidationError('Username already exists')
        if User.find_by_email(mongo_db, email):
            raise ValidationError('Email already exists')

        verification_token = generate_token()
        user = User.create(
            mongo_db,
            username=username,
            email=email,
            password=data['password'],
            role=role,
            email_verification_token=verification_token,
            email_verification_token_expiry=token_expiry(current_app.config['EMAIL_VERIFICATION_TTL'])
        )

        log_user(
            message=f'New user registered: {username}',
            details={'username': username, 'email': email, 'role': role.value},
            user_id=user['_id']
        )

        email_result = send_verification_email(email, verification_token, username)
        if not email_result['success']:
            current_app.logger.error(
                f"Verification email to {email} failed: {email_result.get('error')}; "
                "user can request a new one through /api/auth/resend-verification"
            )

        response = {
            'message': 'User registered successfully. Please check your email to verify your account.'
            if email_result['success'] else
            'User registered successfully, but email verification failed. '
            'Please use the resend verification endpoint.',
            'user': User.summary(user),
            'emailSent': email_result['success']
        }
        if not email_result['success']:
            response['emailError'] = email_result.get('error')
        return jsonify(response), 201

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Registration')


# Login
@auth_bp.route('/login', methods=['POST'])
def login():
    try:
        data = json_body()
        username = data.get('username')
        password = data.get('password')
        if not username or not password:
            raise ValidationError('Please provide username and password')

        mongo_db = get_mongo_db()
        user = User.find_by_username(mongo_db, username)
        if not user:
            log_security('Login failed: unknown user', {'username': username})
            raise NotFound('User not found')

        if not user.get('is_active', True):
            log_security('Login failed: account disabled', {'username': username}, user_id=user['_id'])
            raise AuthorizationDenied('Account is disabled. Please contact an administrator.')

        if not User.verify_password(user, password):
            log_security('Login failed: incorrect password', {'username': username}, user_id=user['_id'])
            raise AuthenticationRequired('Incorrect password')

        User.update(mongo_db, user['_id'], {'last_login_at': datetime.now()})
        token = generate_jwt_token(user)

        log_security('User logged in', {'username': username, 'role': user['role']}, user_id=user['_id'])

        return jsonify({
            'message': 'Login successful',
            'token': token,
            'user': User.summary(user)
        })

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Login')


# Logout; tokens are stateless, the client drops its copy
@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    try:
        user = User.get(get_mongo_db(), current_user.id)
        if not user:
            raise NotFound('User not found')

        log_security('User logged out', {'username': user['username']}, user_id=user['_id'])
        return jsonify({
            'message': 'Logout successful',
            'user': {
                'id': str(user['_id']),
                'username': user['username']
            }
        })

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Logout')


@auth_bp.route('/verify-email', methods=['POST'])
def verify_email():
    try:
        token = json_body().get('token')
        if not token:
            raise ValidationError('Please provide verification token')

        mongo_db = get_mongo_db()
        user = mongo_db.users.find_one({
            'email_verification_token': token,
            'email_verification_token_expiry': {'$gt': datetime.now()}
        })
        if not user:
            raise ValidationError('Invalid or expired verification token')

        if user.get('is_email_verified'):
            raise ValidationError('Email already verified')

        User.update(mongo_db, user['_id'], {
            'is_email_verified': True,
            'email_verification_token': None,
            'email_verification_token_expiry': None
        })
        log_user('Email verified', {'email': user['email']}, user_id=user['_id'])

        return jsonify({'message': 'Email verified successfully! You can now login to your account.'})

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Verify email')


@auth_bp.route('/resend-verification', methods=['POST'])
def resend_verification():
    try:
        email = json_body().get('email')
        if not email or not isinstance(email, str):
            raise ValidationError('Please provide your email address')

        mongo_db = get_mongo_db()
        user = User.find_by_email(mongo_db, email.strip().lower())
        if not user:
            # same answer whether or not the address is registered
            return jsonify({
                'message': 'If that email exists and is not verified, a verification email has been sent'
            })

        if user.get('is_email_verified'):
            raise ValidationError('Email is already verified')

        verification_token = generate_token()
        User.update(mongo_db, user['_id'], {
            'email_verification_token': verification_token,
            'email_verification_token_expiry': token_expiry(current_app.config['EMAIL_VERIFICATION_TTL'])
        })

        email_result = send_verification_email(user['email'], verification_token, user['username'])
        if not email_result['success']:
            current_app.logger.error(f"Verification email to {user['email']} failed: {email_result.get('error')}")

        return jsonify({
            'message': 'Verification email sent. Please check your inbox.',
            'emailSent': email_result['success']
        })

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Resend verification email')


@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    try:
        email = json_body().get('email')
        if not email or not isinstance(email, str):
            raise ValidationError('Please provide your email address')

        mongo_db = get_mongo_db()
        user = User.find_by_email(mongo_db, email.strip().lower())
        if not user:
            return jsonify({'message': 'If that email exists, a password reset link has been sent'})

        reset_token = generate_token()
        User.update(mongo_db, user['_id'], {
            'reset_token': reset_token,
            'reset_token_expiry': token_expiry(current_app.config['PASSWORD_RESET_TTL'])
        })

        email_result = send_password_reset_email(user['email'], reset_token)
        if not email_result['success']:
            # a link nobody received must not stay usable
            User.update(mongo_db, user['_id'], {'reset_token': None, 'reset_token_expiry': None})
            current_app.logger.error(f"Password reset email to {user['email']} failed: {email_result.get('error')}")
            return jsonify({
                'message': 'Failed to send password reset email. Please try again later.',
                'error': email_result.get('error')
            }), 500

        log_security('Password reset requested', {'email': user['email']}, user_id=user['_id'])
        return jsonify({
            'message': 'If that email exists, a password reset link has been sent. Please check your inbox.',
            'emailSent': True
        })

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Forgot password')


@auth_bp.route('/reset-password', methods=['POST'])
def reset_password():
    try:
        data = json_body()
        token = data.get('token')
        new_password = data.get('newPassword')
        if not token or not new_password:
            raise ValidationError('Please provide reset token and new password')

        message = check_password_length(new_password)
        if message:
            raise ValidationError(message)

        mongo_db = get_mongo_db()
        user = mongo_db.users.find_one({
            'reset_token': token,
            'reset_token_expiry': {'$gt': datetime.now()}
        })
        if not user:
            raise ValidationError('Invalid or expired reset token. Please request a new password reset.')

        User.update(mongo_db, user['_id'], {
            'password_hash': User.hash_password(new_password),
            'reset_token': None,
            'reset_token_expiry': None
        })

        log_security('Password reset completed', {'username': user['username']}, user_id=user['_id'])
        current_app.logger.info(f"Password reset for user: {user['username']}")

        return jsonify({'message': 'Password reset successfully! You can now login with your new password.'})

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Reset password')


@auth_bp.route('/change-password', methods=['POST'])
@login_required
def change_password():
    try:
        data = json_body()
        current_password = data.get('currentPassword')
        new_password = data.get('newPassword')
        if not current_password or not new_password:
            raise ValidationError('Please provide both current password and new password')

        message = check_password_length(new_password)
        if message:
            raise ValidationError(f'New {message[0].lower()}{message[1:]}')

        mongo_db = get_mongo_db()
        user = User.get(mongo_db, current_user.id)
        if not user:
            raise NotFound('User not found')

        if not User.verify_password(user, current_password):
            log_security('Password change failed: incorrect current password', user_id=user['_id'])
            raise AuthenticationRequired('Current password is incorrect')

        if User.verify_password(user, new_password):
            raise ValidationError('New password must be different from your current password')

        User.update(mongo_db, user['_id'], {'password_hash': User.hash_password(new_password)})
        log_security('Password changed', {'username': user['username']}, user_id=user['_id'])

        return jsonify({'message': 'Password changed successfully'})

    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Change password')
