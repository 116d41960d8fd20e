"""
Transactional email notifications.

Every ``send_*`` function is best-effort: it returns a result dict
(``{'success': bool, 'error': str}``) and never raises, so a delivery failure
cannot undo the state change that triggered it.
"""
from flask import current_app, render_template
from flask_mail import Mail, Message

mail = Mail()


def _mail_configured():
    config = current_app.config
    return bool(config.get('MAIL_USERNAME') and config.get('MAIL_PASSWORD'))


def _send(recipient, subject, template, **context):
    if not recipient:
        return {'success': False, 'error': 'No recipient address'}

    if not _mail_configured():
        current_app.logger.warning("Email disabled: SMTP credentials not configured (SMTP_USER, SMTP_PASS)")
        return {'success': False, 'error': 'Email transport not configured. Check SMTP configuration.'}

    brand = current_app.config.get('MAIL_BRAND', 'Nexus Medwell')
    context.setdefault('brand', brand)
    try:
        message = Message(
            subject=f'{subject} - {brand}',
            recipients=[recipient],
            body=render_template(f'email/{template}.txt', **context),
            html=render_template(f'email/{template}.html', **context)
        )
        mail.send(message)
        current_app.logger.info(f"Email '{subject}' sent to {recipient}")
        return {'success': True}
    except Exception as e:
        current_app.logger.error(f"Failed to send '{subject}' email to {recipient}: {str(e)}")
        return {'success': False, 'error': str(e)}


def _frontend_link(path, token):
    base = current_app.config.get('FRONTEND_URL', 'http://localhost:5173').rstrip('/')
    return f'{base}/{path}?token={token}'


def send_verification_email(email, verification_token, username):
    return _send(
        email,
        'Verify Your Email Address',
        'verify_email',
        username=username,
        link=_frontend_link('verify-email', verification_token)
    )


def send_password_reset_email(email, reset_token):
    return _send(
        email,
        'Reset Your Password',
        'reset_password',
        link=_frontend_link('reset-password', reset_token)
    )


def send_appointment_confirmation_email(email, appointment_data):
    """appointment_data: recipientName, otherPartyName, appointmentDate, appointmentTime, reason"""
    return _send(email, 'Appointment Confirmed', 'appointment_confirmed', **appointment_data)


def send_appointment_cancellation_email(email, appointment_data):
    """appointment_data: recipientName, otherPartyName, appointmentDate, appointmentTime, cancelledBy"""
    return _send(email, 'Appointment Cancelled', 'appointment_cancelled', **appointment_data)


def send_appointment_rescheduled_email(email, appointment_data):
    """appointment_data: recipientName, otherPartyName, oldDate, oldTime, newDate, newTime, rescheduledBy"""
    return _send(email, 'Appointment Rescheduled', 'appointment_rescheduled', **appointment_data)
