from enum import Enum
from datetime import datetime
from pymongo import ReturnDocument
import pymongo
from ..utils.mongo_utils import to_object_id
from .user import display_name


class AppointmentStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @classmethod
    def values(cls):
        return [status.value for status in cls]


# A slot is occupied by any appointment in one of these states
ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)
TERMINAL_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.COMPLETED.value)

# API sort key -> document field
SORT_FIELDS = {
    'appointmentDate': 'appointment_date',
    'appointmentTime': 'appointment_time',
    'status': 'status',
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
}


def _iso(value):
    return value.isoformat() if value else None


def patient_dict(patient, with_phone=False):
    if not patient:
        return None
    data = {
        'id': str(patient['_id']),
        'username': patient['username'],
        'email': patient['email'],
        'name': display_name(patient)
    }
    if with_phone:
        data['phoneNumber'] = patient.get('phone_number')
    return data


def doctor_dict(doctor):
    if not doctor:
        return None
    return {
        'id': str(doctor['_id']),
        'username': doctor['username'],
        'email': doctor['email'],
        'name': display_name(doctor),
        'specialization': doctor.get('specialization'),
        'department': doctor.get('department')
    }


class Appointment:
    """Helpers over the ``appointments`` collection."""

    @staticmethod
    def get(mongo_db, appointment_id):
        oid = to_object_id(appointment_id)
        if oid is None:
            return None
        return mongo_db.appointments.find_one({'_id': oid})

    @staticmethod
    def find_slot_conflict(mongo_db, doctor_id, appointment_date, appointment_time, exclude_id=None):
        """Return an active appointment occupying the slot, if any."""
        query = {
            'doctor_id': to_object_id(doctor_id),
            'appointment_date': appointment_date,
            'appointment_time': appointment_time,
            'status': {'$in': list(ACTIVE_STATUSES)}
        }
        if exclude_id is not None:
            query['_id'] = {'$ne': to_object_id(exclude_id)}
        return mongo_db.appointments.find_one(query)

    @staticmethod
    def create(mongo_db, patient_id, doctor_id, appointment_date, appointment_time, reason='', notes=''):
        now = datetime.now()
        doc = {
            'patient_id': to_object_id(patient_id),
            'doctor_id': to_object_id(doctor_id),
            'appointment_date': appointment_date,
            'appointment_time': appointment_time,
            'reason': reason,
            'notes': notes,
            'status': AppointmentStatus.PENDING.value,
            'created_at': now,
            'updated_at': now
        }
        result = mongo_db.appointments.insert_one(doc)
        doc['_id'] = result.inserted_id
        return doc

    @staticmethod
    def update(mongo_db, appointment_id, changes):
        changes = dict(changes)
        changes['updated_at'] = datetime.now()
        return mongo_db.appointments.find_one_and_update(
            {'_id': to_object_id(appointment_id)},
            {'$set': changes},
            return_document=ReturnDocument.AFTER
        )

    @staticmethod
    def find_for_patient(mongo_db, patient_id):
        cursor = mongo_db.appointments.find({'patient_id': to_object_id(patient_id)}).sort([
            ('appointment_date', pymongo.ASCENDING),
            ('appointment_time', pymongo.ASCENDING)
        ])
        return list(cursor)

    @staticmethod
    def search(mongo_db, query, sort, skip=0, limit=10):
        """Return one page of matches together with the total match count."""
        total = mongo_db.appointments.count_documents(query)
        cursor = mongo_db.appointments.find(query).sort(sort).skip(skip).limit(limit)
        return list(cursor), total

    @staticmethod
    def active_query_for_user(user_id):
        oid = to_object_id(user_id)
        return {
            '$or': [
                {'patient_id': oid, 'status': {'$in': list(ACTIVE_STATUSES)}},
                {'doctor_id': oid, 'status': {'$in': list(ACTIVE_STATUSES)}}
            ]
        }

    @staticmethod
    def cancel_active_for_user(mongo_db, user_id):
        """Cancel every pending/confirmed appointment the user takes part in."""
        query = Appointment.active_query_for_user(user_id)
        result = mongo_db.appointments.update_many(
            query,
            {'$set': {'status': AppointmentStatus.CANCELLED.value, 'updated_at': datetime.now()}}
        )
        return result.modified_count

    @staticmethod
    def to_dict(appointment, patient=None, doctor=None, include_patient_phone=False):
        data = {'id': str(appointment['_id'])}
        if patient is not None:
            data['patient'] = patient_dict(patient, with_phone=include_patient_phone)
        if doctor is not None:
            data['doctor'] = doctor_dict(doctor)
        data.update({
            'appointmentDate': appointment['appointment_date'].date().isoformat(),
            'appointmentTime': appointment['appointment_time'],
            'reason': appointment.get('reason', ''),
            'notes': appointment.get('notes', ''),
            'status': appointment['status'],
            'createdAt': _iso(appointment.get('created_at')),
            'updatedAt': _iso(appointment.get('updated_at'))
        })
        return data
