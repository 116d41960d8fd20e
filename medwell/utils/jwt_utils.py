from flask import current_app
from datetime import datetime, timedelta
import jwt
from ..models import login_manager
from ..models.user import Principal


def generate_jwt_token(user):
    """Issue a signed token carrying the user's id, username and role."""
    current_time = datetime.now()
    payload = {
        'sub': str(user['_id']),
        'userId': str(user['_id']),
        'username': user['username'],
        'role': user['role'],
        'iat': int(current_time.timestamp()),
        'exp': int((current_time + timedelta(seconds=current_app.config['JWT_EXPIRATION_DELTA'])).timestamp())
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET_KEY'], algorithm='HS256')


def decode_jwt_token(token):
    """
    Decode and verify a token.

    Raises jwt.InvalidTokenError (including ExpiredSignatureError) when the
    token cannot be trusted.
    """
    return jwt.decode(
        token,
        current_app.config['JWT_SECRET_KEY'],
        algorithms=['HS256']
    )


def get_bearer_token(request):
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        return None
    parts = auth_header.split(' ')
    return parts[1] if len(parts) > 1 and parts[1] else None


def principal_from_request(request):
    """Return the Principal for the request's bearer token, or None."""
    token = get_bearer_token(request)
    if not token:
        return None
    try:
        payload = decode_jwt_token(token)
        return Principal(payload['userId'], payload.get('username'), payload['role'])
    except jwt.ExpiredSignatureError:
        current_app.logger.info("Rejected expired token")
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        current_app.logger.warning(f"Rejected invalid token: {str(e)}")
    return None


def init_jwt_loader(app):
    """
    Register the bearer-token loader. Every request with a valid token gets
    its Principal as ``flask_login.current_user``.
    """
    @login_manager.request_loader
    def load_user_from_jwt(request):
        return principal_from_request(request)

    @login_manager.user_loader
    def load_user(user_id):
        # sessions are not used; identity always comes from the token
        return None
