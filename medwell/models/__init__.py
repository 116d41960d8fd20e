from flask import jsonify
from flask_login import LoginManager

login_manager = LoginManager()


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'message': 'Not authorized'}), 401


# Model helpers are re-exported here for the routers
from .user import User, Role, Principal
from .appointment import Appointment, AppointmentStatus
from .log import SystemLog, LogType
