"""
Appointment lifecycle: booking, status transitions, field updates,
rescheduling, cancellation and the patient/doctor listings.

Every function takes the MongoDB handle and the calling Principal explicitly
and raises ``ApiError`` subclasses; the routers turn those into responses.

The slot check and the following write are two separate operations; two
concurrent bookings of the same slot can both pass the check.
"""
import math
import re
from datetime import datetime
import pymongo
from flask import current_app

from ..models.user import User, Role, display_name
from ..models.appointment import (
    Appointment, AppointmentStatus, TERMINAL_STATUSES, SORT_FIELDS
)
from ..utils.errors import AuthenticationRequired, AuthorizationDenied, NotFound, ValidationError, Conflict
from ..utils.email_utils import (
    send_appointment_confirmation_email,
    send_appointment_cancellation_email,
    send_appointment_rescheduled_email
)
from ..utils.log_utils import log_appointment

# Stored slot times are always HH:MM
TIME_FORMAT = '%H:%M'
INPUT_TIME_FORMATS = (TIME_FORMAT, '%H:%M:%S')
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

CONFIRMING_STATUSES = (AppointmentStatus.CONFIRMED.value, AppointmentStatus.COMPLETED.value)


# ---------------------------------------------------------------- parsing

def parse_appointment_date(value):
    """Parse 'YYYY-MM-DD' (or a full ISO timestamp) into a midnight datetime."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('Invalid appointment date format')
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError('Invalid appointment date format')
    return datetime(parsed.year, parsed.month, parsed.day)


def parse_appointment_time(value):
    """Validate a time of day and return it as HH:MM ('9:30' and '09:30:00' -> '09:30').

    Seconds are accepted only when zero, so one slot has exactly one spelling.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('Invalid appointment time')
    value = value.strip()
    for fmt in INPUT_TIME_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if parsed.second:
            raise ValidationError('Appointment time must be given in whole minutes (HH:MM)')
        return parsed.strftime(TIME_FORMAT)
    raise ValidationError('Invalid appointment time')


def slot_datetime(appointment_date, appointment_time):
    return datetime.combine(appointment_date.date(), datetime.strptime(appointment_time, TIME_FORMAT).time())


def _parse_filter_date(value):
    try:
        return parse_appointment_date(value)
    except ValidationError:
        return None


def _positive_int(value, default, maximum=None):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < 1:
        return default
    if maximum is not None:
        number = min(number, maximum)
    return number


# ----------------------------------------------------------------- checks

def ensure_future_slot(appointment_date, appointment_time,
                       message='Appointment date and time must be in the future'):
    if slot_datetime(appointment_date, appointment_time) <= datetime.now():
        raise Conflict(message)


def ensure_slot_free(mongo_db, doctor_id, appointment_date, appointment_time, exclude_id=None):
    conflict = Appointment.find_slot_conflict(
        mongo_db, doctor_id, appointment_date, appointment_time, exclude_id=exclude_id
    )
    if conflict:
        raise Conflict('This time slot is already booked. Please choose another time.')


def validate_status(status):
    if not status or status not in AppointmentStatus.values():
        raise ValidationError('Valid status is required (pending, confirmed, cancelled, completed)')


def _load_actor(mongo_db, principal):
    user = User.get(mongo_db, principal.id)
    if not user:
        raise AuthenticationRequired('Invalid user')
    return user


def _load_appointment(mongo_db, appointment_id):
    appointment = Appointment.get(mongo_db, appointment_id)
    if not appointment:
        raise NotFound('Appointment not found')
    return appointment


def _is_patient_of(appointment, user):
    return appointment['patient_id'] == user['_id']


def _is_doctor_of(appointment, user):
    return appointment['doctor_id'] == user['_id']


def _is_participant(appointment, user):
    return _is_patient_of(appointment, user) or _is_doctor_of(appointment, user)


def _is_admin(user):
    return user['role'] == Role.ADMIN.value


def _check_can_modify(appointment, actor):
    # the assigned patient, the assigned doctor, or an admin
    if not (_is_participant(appointment, actor) or _is_admin(actor)):
        raise AuthorizationDenied('You can only update your own appointments')


def _check_can_confirm(appointment, actor, status):
    if status in CONFIRMING_STATUSES and not (_is_doctor_of(appointment, actor) or _is_admin(actor)):
        raise AuthorizationDenied('Only the assigned doctor or an admin can confirm or complete appointments')


def _participants(mongo_db, appointment):
    return User.get(mongo_db, appointment['patient_id']), User.get(mongo_db, appointment['doctor_id'])


# ---------------------------------------------------------- notifications

def _date_str(appointment_date):
    return appointment_date.date().isoformat()


def _notify(send, recipient, data, label):
    if not recipient or not recipient.get('email'):
        return
    result = send(recipient['email'], data)
    if not result.get('success'):
        current_app.logger.error(f"Failed to send {label} email to {recipient['email']}: {result.get('error')}")


def _notify_confirmation(appointment, patient, doctor):
    _notify(send_appointment_confirmation_email, patient, {
        'recipientName': display_name(patient),
        'otherPartyName': display_name(doctor),
        'appointmentDate': _date_str(appointment['appointment_date']),
        'appointmentTime': appointment['appointment_time'],
        'reason': appointment.get('reason', ''),
        'status': appointment['status']
    }, 'confirmation')


def _notify_cancellation(appointment, patient, doctor, actor):
    cancelled_by = display_name(actor)
    details = {
        'appointmentDate': _date_str(appointment['appointment_date']),
        'appointmentTime': appointment['appointment_time'],
        'cancelledBy': cancelled_by
    }
    _notify(send_appointment_cancellation_email, patient, dict(
        details, recipientName=display_name(patient), otherPartyName=display_name(doctor)
    ), 'cancellation')
    if _is_patient_of(appointment, actor):
        _notify(send_appointment_cancellation_email, doctor, dict(
            details, recipientName=display_name(doctor), otherPartyName=display_name(patient)
        ), 'cancellation')


def _notify_reschedule(appointment, patient, doctor, actor, old_date, old_time):
    details = {
        'oldDate': _date_str(old_date),
        'oldTime': old_time,
        'newDate': _date_str(appointment['appointment_date']),
        'newTime': appointment['appointment_time'],
        'rescheduledBy': display_name(actor)
    }
    _notify(send_appointment_rescheduled_email, patient, dict(
        details, recipientName=display_name(patient), otherPartyName=display_name(doctor)
    ), 'reschedule')
    if _is_patient_of(appointment, actor):
        _notify(send_appointment_rescheduled_email, doctor, dict(
            details, recipientName=display_name(doctor), otherPartyName=display_name(patient)
        ), 'reschedule')


# ------------------------------------------------------------- operations

def book_appointment(mongo_db, principal, data):
    doctor_id = data.get('doctorId')
    date_value = data.get('appointmentDate')
    time_value = data.get('appointmentTime')

    if not doctor_id or not date_value or not time_value:
        raise ValidationError('Doctor ID, appointment date, and appointment time are required')

    doctor = User.get(mongo_db, doctor_id)
    if not doctor or doctor['role'] != Role.DOCTOR.value:
        raise NotFound('Doctor not found')

    patient = _load_actor(mongo_db, principal)
    if patient['role'] != Role.PATIENT.value:
        raise AuthorizationDenied('Only patients can book appointments')

    appointment_date = parse_appointment_date(date_value)
    appointment_time = parse_appointment_time(time_value)
    ensure_future_slot(appointment_date, appointment_time)
    ensure_slot_free(mongo_db, doctor['_id'], appointment_date, appointment_time)

    appointment = Appointment.create(
        mongo_db,
        patient_id=patient['_id'],
        doctor_id=doctor['_id'],
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        reason=data.get('reason') or '',
        notes=data.get('notes') or ''
    )

    log_appointment('Appointment booked', {
        'appointment_id': str(appointment['_id']),
        'doctor_id': str(doctor['_id']),
        'appointment_date': _date_str(appointment_date),
        'appointment_time': appointment_time
    }, user_id=patient['_id'])

    _notify_confirmation(appointment, patient, doctor)
    return Appointment.to_dict(appointment, patient=patient, doctor=doctor)


def update_status(mongo_db, principal, appointment_id, status):
    validate_status(status)
    appointment = _load_appointment(mongo_db, appointment_id)
    actor = _load_actor(mongo_db, principal)

    _check_can_modify(appointment, actor)
    _check_can_confirm(appointment, actor, status)

    old_status = appointment['status']
    if old_status in TERMINAL_STATUSES and status != old_status:
        raise Conflict(f'Cannot update a {old_status} appointment')

    if status != old_status:
        appointment = Appointment.update(mongo_db, appointment['_id'], {'status': status})
        log_appointment('Appointment status updated', {
            'appointment_id': str(appointment['_id']),
            'previous_status': old_status,
            'status': status
        }, user_id=actor['_id'])

        patient, doctor = _participants(mongo_db, appointment)
        if status == AppointmentStatus.CONFIRMED.value:
            _notify_confirmation(appointment, patient, doctor)
        elif status == AppointmentStatus.CANCELLED.value:
            _notify_cancellation(appointment, patient, doctor, actor)

    return {
        'id': str(appointment['_id']),
        'status': appointment['status'],
        'previousStatus': old_status
    }


def update_appointment(mongo_db, principal, appointment_id, data):
    appointment = _load_appointment(mongo_db, appointment_id)
    actor = _load_actor(mongo_db, principal)

    _check_can_modify(appointment, actor)

    old_status = appointment['status']
    if old_status in TERMINAL_STATUSES:
        raise Conflict(f'Cannot update a {old_status} appointment')

    status = data.get('status') or None
    if status is not None:
        validate_status(status)
        _check_can_confirm(appointment, actor, status)

    old_date = appointment['appointment_date']
    old_time = appointment['appointment_time']
    new_date, new_time = old_date, old_time
    if data.get('appointmentDate') is not None:
        new_date = parse_appointment_date(data['appointmentDate'])
    if data.get('appointmentTime') is not None:
        new_time = parse_appointment_time(data['appointmentTime'])

    changes = {}
    date_time_changed = new_date != old_date or new_time != old_time
    if date_time_changed:
        ensure_future_slot(new_date, new_time)
        ensure_slot_free(mongo_db, appointment['doctor_id'], new_date, new_time, exclude_id=appointment['_id'])
        changes['appointment_date'] = new_date
        changes['appointment_time'] = new_time

    if 'reason' in data:
        changes['reason'] = data['reason'] or ''
    if 'notes' in data:
        changes['notes'] = data['notes'] or ''

    new_status = status or old_status
    # a moved appointment has to be confirmed again
    if date_time_changed and new_status == AppointmentStatus.CONFIRMED.value:
        new_status = AppointmentStatus.PENDING.value
    if new_status != old_status:
        changes['status'] = new_status

    if changes:
        appointment = Appointment.update(mongo_db, appointment['_id'], changes)
        log_appointment('Appointment updated', {
            'appointment_id': str(appointment['_id']),
            'fields': sorted(changes.keys())
        }, user_id=actor['_id'])

    patient, doctor = _participants(mongo_db, appointment)
    if date_time_changed:
        _notify_reschedule(appointment, patient, doctor, actor, old_date, old_time)
    if new_status == AppointmentStatus.CONFIRMED.value and old_status != new_status:
        _notify_confirmation(appointment, patient, doctor)
    if new_status == AppointmentStatus.CANCELLED.value:
        _notify_cancellation(appointment, patient, doctor, actor)

    return Appointment.to_dict(appointment, patient=patient, doctor=doctor)


def cancel_appointment(mongo_db, principal, appointment_id):
    if not appointment_id:
        raise ValidationError(
            'Appointment ID is required. Provide it in the URL (/api/appointments/<id>/cancel) '
            'or in the request body ({"appointmentId": "..."}).'
        )

    appointment = _load_appointment(mongo_db, appointment_id)
    actor = _load_actor(mongo_db, principal)

    # no admin override here
    if not _is_participant(appointment, actor):
        raise AuthorizationDenied('You can only cancel your own appointments')

    if appointment['status'] == AppointmentStatus.CANCELLED.value:
        raise Conflict('Appointment is already cancelled')
    if appointment['status'] == AppointmentStatus.COMPLETED.value:
        raise Conflict('Cannot cancel a completed appointment')

    appointment = Appointment.update(mongo_db, appointment['_id'], {'status': AppointmentStatus.CANCELLED.value})
    cancelled_by = display_name(actor)

    log_appointment('Appointment cancelled', {
        'appointment_id': str(appointment['_id']),
        'cancelled_by': cancelled_by
    }, user_id=actor['_id'])
    current_app.logger.info(f"Appointment {appointment['_id']} cancelled by {actor['role']}: {actor['username']}")

    patient, doctor = _participants(mongo_db, appointment)
    _notify_cancellation(appointment, patient, doctor, actor)

    return {
        'id': str(appointment['_id']),
        'status': appointment['status'],
        'cancelledBy': cancelled_by
    }


def reschedule_appointment(mongo_db, principal, appointment_id, data):
    date_value = data.get('appointmentDate')
    time_value = data.get('appointmentTime')
    if not date_value or not time_value:
        raise ValidationError('Appointment date and time are required')

    appointment = _load_appointment(mongo_db, appointment_id)
    actor = _load_actor(mongo_db, principal)

    if not _is_participant(appointment, actor):
        raise AuthorizationDenied('You can only reschedule your own appointments')

    if appointment['status'] in TERMINAL_STATUSES:
        raise Conflict(f"Cannot reschedule a {appointment['status']} appointment")

    new_date = parse_appointment_date(date_value)
    new_time = parse_appointment_time(time_value)
    ensure_future_slot(new_date, new_time, 'New appointment date and time must be in the future')
    ensure_slot_free(mongo_db, appointment['doctor_id'], new_date, new_time, exclude_id=appointment['_id'])

    old_date = appointment['appointment_date']
    old_time = appointment['appointment_time']
    changes = {'appointment_date': new_date, 'appointment_time': new_time}
    if data.get('reason'):
        changes['reason'] = data['reason']
    if appointment['status'] == AppointmentStatus.CONFIRMED.value:
        changes['status'] = AppointmentStatus.PENDING.value

    appointment = Appointment.update(mongo_db, appointment['_id'], changes)
    rescheduled_by = display_name(actor)

    log_appointment('Appointment rescheduled', {
        'appointment_id': str(appointment['_id']),
        'old_date': _date_str(old_date),
        'old_time': old_time,
        'new_date': _date_str(new_date),
        'new_time': new_time
    }, user_id=actor['_id'])
    current_app.logger.info(f"Appointment {appointment['_id']} rescheduled by {actor['role']}: {actor['username']}")

    patient, doctor = _participants(mongo_db, appointment)
    _notify_reschedule(appointment, patient, doctor, actor, old_date, old_time)

    result = Appointment.to_dict(appointment, patient=patient, doctor=doctor)
    result['rescheduledBy'] = rescheduled_by
    return result


def list_patient_appointments(mongo_db, principal):
    appointments = Appointment.find_for_patient(mongo_db, principal.id)
    doctors = User.find_many(mongo_db, {a['doctor_id'] for a in appointments})
    return [
        Appointment.to_dict(appointment, doctor=doctors.get(appointment['doctor_id']))
        for appointment in appointments
    ]


def list_doctor_appointments(mongo_db, principal, args):
    """Filtered, searchable, paginated listing of the calling doctor's appointments."""
    doctor = _load_actor(mongo_db, principal)
    if doctor['role'] != Role.DOCTOR.value:
        raise AuthorizationDenied('Only doctors can view their appointments')

    status = args.get('status')
    from_date = args.get('fromDate')
    to_date = args.get('toDate')
    search = args.get('search')
    sort_by = args.get('sortBy', 'appointmentDate')
    sort_order = 'desc' if args.get('sortOrder') == 'desc' else 'asc'

    query = {'doctor_id': doctor['_id']}

    if status and status in AppointmentStatus.values():
        query['status'] = status

    date_range = {}
    if from_date:
        start = _parse_filter_date(from_date)
        if start:
            date_range['$gte'] = start
    if to_date:
        end = _parse_filter_date(to_date)
        if end:
            date_range['$lte'] = end.replace(hour=23, minute=59, second=59, microsecond=999000)
    if date_range:
        query['appointment_date'] = date_range

    if search:
        pattern = {'$regex': re.escape(search), '$options': 'i'}
        matching = mongo_db.users.find({
            'role': Role.PATIENT.value,
            '$or': [
                {'username': pattern},
                {'email': pattern},
                {'first_name': pattern},
                {'last_name': pattern}
            ]
        }, {'_id': 1})
        query['patient_id'] = {'$in': [user['_id'] for user in matching]}

    page = _positive_int(args.get('page'), 1)
    limit = _positive_int(args.get('limit'), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)

    if sort_by not in SORT_FIELDS:
        sort_by = 'appointmentDate'
    direction = pymongo.DESCENDING if sort_order == 'desc' else pymongo.ASCENDING
    sort = [(SORT_FIELDS[sort_by], direction)]
    if sort_by == 'appointmentDate':
        sort.append(('appointment_time', direction))

    appointments, total = Appointment.search(mongo_db, query, sort, skip=(page - 1) * limit, limit=limit)
    patients = User.find_many(mongo_db, {a['patient_id'] for a in appointments})

    total_pages = math.ceil(total / limit)
    return {
        'appointments': [
            Appointment.to_dict(a, patient=patients.get(a['patient_id']), include_patient_phone=True)
            for a in appointments
        ],
        'pagination': {
            'currentPage': page,
            'totalPages': total_pages,
            'totalAppointments': total,
            'appointmentsPerPage': limit,
            'hasNextPage': page < total_pages,
            'hasPrevPage': page > 1
        },
        'filters': {
            'status': status or None,
            'fromDate': from_date or None,
            'toDate': to_date or None,
            'search': search or None,
            'sortBy': sort_by,
            'sortOrder': sort_order
        }
    }
