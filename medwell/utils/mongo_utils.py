from flask import g
from flask_pymongo import PyMongo
from bson.objectid import ObjectId
from bson.errors import InvalidId
import pymongo
import pymongo.errors
import datetime

mongo = PyMongo()


def get_mongo_db():
    """
    Get the MongoDB database bound to the current application.
    """
    if 'mongo_db' not in g:
        g.mongo_db = mongo.db
    return g.mongo_db


def init_mongo(app):
    """
    Bind the application to MongoDB. The database comes from the path of
    ``MONGO_URI``.
    """
    mongo.init_app(app, serverSelectionTimeoutMS=app.config.get('MONGO_TIMEOUT_MS', 5000))
    try:
        ensure_indexes(mongo.db)
    except pymongo.errors.PyMongoError as e:
        app.logger.error(f"Failed to create MongoDB indexes: {str(e)}")


def ensure_indexes(mongo_db):
    # users
    mongo_db.users.create_index('username', unique=True)
    mongo_db.users.create_index('email', unique=True)
    # documents without a license number are skipped by the sparse index
    mongo_db.users.create_index('license_number', unique=True, sparse=True)
    mongo_db.users.create_index('role')

    # appointments
    mongo_db.appointments.create_index([
        ('doctor_id', pymongo.ASCENDING),
        ('appointment_date', pymongo.ASCENDING),
        ('appointment_time', pymongo.ASCENDING)
    ])
    mongo_db.appointments.create_index([
        ('patient_id', pymongo.ASCENDING),
        ('appointment_date', pymongo.ASCENDING)
    ])
    mongo_db.appointments.create_index('status')

    mongo_db.system_logs.create_index('created_at')
    mongo_db.system_logs.create_index('log_type')


def to_object_id(value):
    """Return ``value`` as an ObjectId, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def format_mongo_doc(doc):
    """
    Format a MongoDB document for a JSON response (ObjectId and datetime values).
    Nested dicts and lists are handled recursively.
    """
    if not doc:
        return doc

    if isinstance(doc, dict):
        result = {}
        for key, value in doc.items():
            if isinstance(value, ObjectId):
                result[key] = str(value)
            elif isinstance(value, (datetime.datetime, datetime.date)):
                result[key] = value.isoformat()
            elif isinstance(value, dict):
                result[key] = format_mongo_doc(value)
            elif isinstance(value, list):
                result[key] = format_mongo_docs(value)
            else:
                result[key] = value
        return result
    elif isinstance(doc, list):
        return format_mongo_docs(doc)
    elif isinstance(doc, ObjectId):
        return str(doc)
    elif isinstance(doc, (datetime.datetime, datetime.date)):
        return doc.isoformat()
    else:
        return doc


def format_mongo_docs(docs):
    """
    Format a list of MongoDB documents for a JSON response.
    """
    if not docs:
        return docs
    return [format_mongo_doc(item) for item in docs]
