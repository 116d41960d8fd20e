"""
Activity log helpers. Entries go to the ``system_logs`` collection; a failure
to write one is reported through the application logger and never breaks the
request that triggered it.
"""
from datetime import datetime
from flask import request, current_app, has_request_context
from flask_login import current_user
from ..models.log import SystemLog, LogType
from .mongo_utils import get_mongo_db


def log_activity(log_type, message, details=None, user_id=None, ip_address=None, user_agent=None):
    """
    Record a system activity.

    Args:
        log_type (LogType): category of the entry
        message (str): log message
        details (dict): extra information
        user_id (str): acting user; defaults to the authenticated caller
        ip_address (str): defaults to the request's remote address
        user_agent (str): defaults to the request's user agent

    Returns:
        ObjectId of the created entry, or None when logging failed
    """
    try:
        if has_request_context():
            if user_id is None and current_user and current_user.is_authenticated:
                user_id = current_user.id
            if ip_address is None:
                ip_address = request.remote_addr
            if user_agent is None and request.user_agent:
                user_agent = request.user_agent.string

        details = dict(details or {})
        details.setdefault('timestamp', datetime.now().isoformat())

        return SystemLog.create_log(
            get_mongo_db(),
            log_type=log_type,
            message=message,
            details=details,
            user_id=str(user_id) if user_id is not None else None,
            ip_address=ip_address,
            user_agent=user_agent
        )
    except Exception as e:
        current_app.logger.error(f"Failed to write activity log: {str(e)}")
        return None


def log_error(error_message, exception=None, details=None, user_id=None):
    error_details = dict(details or {})
    if exception:
        error_details['exception'] = str(exception)
        error_details['exception_type'] = exception.__class__.__name__
    return log_activity(LogType.ERROR, error_message, error_details, user_id)


def log_security(message, details=None, user_id=None):
    """Login attempts, password changes and resets"""
    return log_activity(LogType.SECURITY, message, details, user_id)


def log_user(message, details=None, user_id=None):
    return log_activity(LogType.USER, message, details, user_id)


def log_appointment(message, details=None, user_id=None):
    return log_activity(LogType.APPOINTMENT, message, details, user_id)


def log_admin(message, details=None, user_id=None):
    return log_activity(LogType.ADMIN, message, details, user_id)
