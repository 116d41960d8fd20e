from datetime import datetime
from enum import Enum


class LogType(Enum):
    """Activity log categories"""
    SYSTEM = 'system'
    SECURITY = 'security'
    USER = 'user'
    APPOINTMENT = 'appointment'
    ADMIN = 'admin'
    ERROR = 'error'

    def __str__(self):
        return self.value


class SystemLog:
    """
    Activity log stored in the ``system_logs`` MongoDB collection.
    This is a schemaless document model.
    """

    @staticmethod
    def create_log(mongo_db, log_type, message, details=None, user_id=None,
                   ip_address=None, user_agent=None):
        """
        Insert a new log entry.

        Args:
            mongo_db: MongoDB database
            log_type: LogType of the entry
            message: short description
            details: dict with extra data
            user_id: acting user, if any

        Returns:
            ObjectId: id of the created entry
        """
        log_data = {
            'log_type': str(log_type),
            'message': message,
            'details': details or {},
            'user_id': user_id,
            'ip_address': ip_address,
            'user_agent': user_agent,
            'created_at': datetime.now()
        }
        result = mongo_db.system_logs.insert_one(log_data)
        return result.inserted_id

