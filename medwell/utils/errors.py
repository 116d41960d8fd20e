"""
Error taxonomy shared by the lifecycle logic and the request handlers.

Handlers catch ``ApiError`` at their own boundary and turn it into a JSON
response with ``error_response``; anything else goes through ``server_error``.
"""
import traceback
from flask import jsonify, current_app, request
from .log_utils import log_error


class ApiError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        data = dict(self.payload or {})
        data['message'] = self.message
        return data


class AuthenticationRequired(ApiError):
    status_code = 401


class AuthorizationDenied(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class ValidationError(ApiError):
    status_code = 400


class Conflict(ApiError):
    # Slot taken, past date-time or a mutation of a terminal appointment
    status_code = 400


def json_body():
    """The request's JSON object. A missing or unparsable body counts as empty."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def error_response(error):
    return jsonify(error.to_dict()), error.status_code


def server_error(error, action='Request'):
    """Log an unexpected failure and render the 500 body."""
    current_app.logger.error(f"{action} error: {str(error)}", exc_info=error)
    log_error(f"{action} failed", error)
    body = {
        'message': 'Server error',
        'error': str(error)
    }
    if current_app.config.get('EXPOSE_ERROR_TRACE'):
        body['trace'] = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
    return jsonify(body), 500
