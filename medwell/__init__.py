from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
import pymongo.errors
from .config.config import config
from .models import login_manager
from .utils.mongo_utils import init_mongo, get_mongo_db
from .utils.jwt_utils import init_jwt_loader
from .utils.email_utils import mail
from .utils.errors import server_error


def create_app(config_name="development"):
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    app.config['SYSTEM_VERSION'] = '1.0.0'

    # Extensions
    login_manager.init_app(app)
    init_mongo(app)
    mail.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # Bearer token authentication
    init_jwt_loader(app)

    with app.app_context():
        if app.config.get('CREATE_DEFAULT_ADMIN'):
            init_default_admin(app)

    # Blueprints
    from .routers.main import main_bp
    from .routers.auth import auth_bp
    from .routers.account import account_bp
    from .routers.appointments import appointments_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(appointments_bp)

    register_error_handlers(app)

    return app


def init_default_admin(app):
    """Create the default admin account when no admin exists yet."""
    from .models.user import User, Role

    try:
        mongo_db = get_mongo_db()
        if mongo_db.users.find_one({'role': Role.ADMIN.value}):
            return

        admin_username = app.config.get('DEFAULT_ADMIN_USERNAME', 'admin')
        User.create(
            mongo_db,
            username=admin_username,
            email=app.config.get('DEFAULT_ADMIN_EMAIL', 'admin@example.com'),
            password=app.config.get('DEFAULT_ADMIN_PASSWORD', 'admin123456'),
            role=Role.ADMIN,
            first_name='System',
            last_name='Administrator',
            is_email_verified=True
        )
        app.logger.info(f"Created default admin account: {admin_username}")
    except pymongo.errors.PyMongoError as e:
        app.logger.error(f"Failed to create default admin: {str(e)}")


def register_error_handlers(app):
    """JSON bodies for errors raised outside the route handlers."""

    @app.errorhandler(404)
    def route_not_found(error):
        return jsonify({'message': 'Route not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'message': 'Method not allowed'}), 405

    @app.errorhandler(Exception)
    def unhandled_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'message': error.description}), error.code
        return server_error(error, 'Unhandled')
