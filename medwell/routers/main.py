from flask import Blueprint, jsonify, current_app
import pymongo.errors
from ..utils.mongo_utils import get_mongo_db

main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    return jsonify({
        'message': 'Welcome to the Nexus Medwell API',
        'status': 'success'
    })


@main_bp.route('/api/health')
def health_check():
    try:
        get_mongo_db().command('ping')
        database = 'connected'
    except pymongo.errors.PyMongoError as e:
        current_app.logger.error(f"Health check database ping failed: {str(e)}")
        database = 'unavailable'

    healthy = database == 'connected'
    return jsonify({
        'status': 'healthy' if healthy else 'degraded',
        'database': database,
        'version': current_app.config.get('SYSTEM_VERSION', '1.0.0')
    }), 200 if healthy else 503
