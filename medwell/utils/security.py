import re
import secrets
from datetime import datetime, timedelta
from flask import current_app

EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def generate_token():
    """Random hex token for email verification and password resets"""
    return secrets.token_hex(32)


def token_expiry(seconds):
    return datetime.now() + timedelta(seconds=seconds)


def password_min_length():
    return current_app.config.get('PASSWORD_MIN_LENGTH', 6)


def check_password_length(password):
    """Return an error message when the password is too short, else None."""
    min_length = password_min_length()
    if not isinstance(password, str) or len(password) < min_length:
        return f'Password must be at least {min_length} characters long'
    return None


def is_valid_email(email):
    return isinstance(email, str) and EMAIL_PATTERN.fullmatch(email) is not None


def validate_registration(data):
    """Validate registration data; returns (ok, message)."""
    if not data:
        return False, "No data provided"

    for field in ('username', 'email', 'password'):
        if not data.get(field):
            return False, "Missing required fields (username, email, password)"

    if not isinstance(data['username'], str) or len(data['username'].strip()) < 3:
        return False, "Username must be a string of at least 3 characters"

    if not is_valid_email(data['email']):
        return False, "Invalid email format"

    message = check_password_length(data['password'])
    if message:
        return False, message

    return True, "OK"
