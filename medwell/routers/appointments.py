from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from ..services import appointment_service
from ..utils.mongo_utils import get_mongo_db
from ..utils.errors import ApiError, error_response, server_error, json_body

appointments_bp = Blueprint('appointments', __name__, url_prefix='/api/appointments')


@appointments_bp.route('/book', methods=['POST'])
@login_required
def book_appointment():
    try:
        appointment = appointment_service.book_appointment(get_mongo_db(), current_user, json_body())
        return jsonify({
            'message': 'Appointment booked successfully',
            'appointment': appointment
        }), 201
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Book appointment')


@appointments_bp.route('/my-appointments', methods=['GET'])
@login_required
def get_my_appointments():
    try:
        appointments = appointment_service.list_patient_appointments(get_mongo_db(), current_user)
        return jsonify({
            'message': 'Appointments retrieved successfully',
            'appointments': appointments
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Get appointments')


@appointments_bp.route('/doctor-appointments', methods=['GET'])
@login_required
def get_doctor_appointments():
    try:
        result = appointment_service.list_doctor_appointments(get_mongo_db(), current_user, request.args)
        return jsonify(dict(result, message='Appointments retrieved successfully'))
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Get doctor appointments')


@appointments_bp.route('/<appointment_id>/status', methods=['PATCH'])
@login_required
def update_appointment_status(appointment_id):
    try:
        appointment = appointment_service.update_status(
            get_mongo_db(), current_user, appointment_id, json_body().get('status')
        )
        return jsonify({
            'message': 'Appointment status updated successfully',
            'appointment': appointment
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Update appointment status')


@appointments_bp.route('/<appointment_id>', methods=['PUT'])
@login_required
def update_appointment(appointment_id):
    try:
        appointment = appointment_service.update_appointment(
            get_mongo_db(), current_user, appointment_id, json_body()
        )
        return jsonify({
            'message': 'Appointment updated successfully',
            'appointment': appointment
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Update appointment')


# The id may come from the path or from the JSON body
@appointments_bp.route('/cancel', methods=['POST'])
@appointments_bp.route('/<appointment_id>/cancel', methods=['POST'])
@login_required
def cancel_appointment(appointment_id=None):
    try:
        appointment_id = appointment_id or json_body().get('appointmentId')
        appointment = appointment_service.cancel_appointment(get_mongo_db(), current_user, appointment_id)
        return jsonify({
            'message': 'Appointment cancelled successfully',
            'appointment': appointment
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Cancel appointment')


@appointments_bp.route('/<appointment_id>/reschedule', methods=['PUT'])
@login_required
def reschedule_appointment(appointment_id):
    try:
        appointment = appointment_service.reschedule_appointment(
            get_mongo_db(), current_user, appointment_id, json_body()
        )
        return jsonify({
            'message': 'Appointment rescheduled successfully',
            'appointment': appointment
        })
    except ApiError as e:
        return error_response(e)
    except Exception as e:
        return server_error(e, 'Reschedule appointment')
