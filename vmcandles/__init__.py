# vmcandles/__init__.py
import os
import time
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, g, jsonify, send_from_directory, abort as flask_abort
from flask_cors import CORS
from flask_jwt_extended import JWTManager, verify_jwt_in_request, get_jwt_identity, get_jwt
from flask_talisman import Talisman
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .config import get_config_by_name

# Initialize extensions without app object yet
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)
talisman = Talisman()

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'


def _configure_logging(app):
    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO').upper(), logging.INFO)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE')
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024 * 100, backupCount=20)
        else:
            handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(log_level)
        if not app.logger.handlers: app.logger.addHandler(handler)
        app.logger.setLevel(log_level)
    elif app.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        if not app.logger.handlers: app.logger.addHandler(handler)
        app.logger.setLevel(logging.DEBUG)


def _register_jwt_callbacks():
    from .models import User
    from .utils import error_response

    @jwt.additional_claims_loader
    def add_claims_to_access_token(user):
        return {"email": user.email, "role": user.role.value}

    @jwt.user_identity_loader
    def user_identity_lookup(user):
        return str(user.id)

    @jwt.user_lookup_loader
    def user_lookup_callback(_jwt_header, jwt_data):
        return db.session.get(User, int(jwt_data["sub"]))

    @jwt.user_lookup_error_loader
    def user_lookup_error_callback(_jwt_header, _jwt_data):
        return error_response('USER_NOT_FOUND', "User no longer exists", 401)

    @jwt.unauthorized_loader
    def missing_token_callback(reason):
        return error_response('NO_TOKEN', "Authentication token is required", 401)

    @jwt.invalid_token_loader
    def invalid_token_callback(reason):
        return error_response('INVALID_TOKEN', reason, 401)

    @jwt.expired_token_loader
    def expired_token_callback(_jwt_header, _jwt_data):
        return error_response('TOKEN_EXPIRED', "Token expired", 401)


def create_app(config_name=None):
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'default')

    app_config = get_config_by_name(config_name)
    app = Flask(__name__)
    app.config.from_object(app_config)

    _configure_logging(app)
    app.logger.info(f"V&M Candle Experience API starting with config: {config_name}")

    # Initialize extensions with app object
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    talisman_config = {
        'content_security_policy': app.config.get('CONTENT_SECURITY_POLICY'),
        'force_https': app.config.get('TALISMAN_FORCE_HTTPS', False),
        'strict_transport_security': app.config.get('TALISMAN_FORCE_HTTPS', False),
        'frame_options': 'DENY',
        'referrer_policy': 'strict-origin-when-cross-origin',
    }
    talisman.init_app(app, **talisman_config)

    CORS(app, resources={r"/api/*": {"origins": app.config.get("CORS_ORIGINS", "*").split(',')}})
    app.logger.info(f"CORS configured for origins: {app.config.get('CORS_ORIGINS', '*')}")

    # Import models here so Flask-Migrate can find them
    from . import models
    from .audit_log_service import AuditLogService
    app.audit_log_service = AuditLogService(app=app)

    _register_jwt_callbacks()

    # Register Blueprints
    from .auth.routes import auth_bp
    app.register_blueprint(auth_bp)
    limiter.limit(';'.join(app.config.get('AUTH_RATELIMITS', ["20 per minute"])))(auth_bp)

    from .profile.routes import profile_bp
    app.register_blueprint(profile_bp)

    from .products.routes import products_bp
    app.register_blueprint(products_bp)

    from .reviews.routes import reviews_bp
    app.register_blueprint(reviews_bp)

    from .wishlist.routes import wishlist_bp
    app.register_blueprint(wishlist_bp)

    from .cart.routes import cart_bp
    app.register_blueprint(cart_bp)

    from .orders.routes import orders_bp
    app.register_blueprint(orders_bp)

    from .payments.routes import payments_bp
    app.register_blueprint(payments_bp)

    from .invoices.routes import invoices_bp
    app.register_blueprint(invoices_bp)

    from .subscriptions.routes import subscriptions_bp
    app.register_blueprint(subscriptions_bp)

    from .audio.routes import audio_bp
    app.register_blueprint(audio_bp)

    from .uploads.routes import uploads_bp
    app.register_blueprint(uploads_bp)

    from .inventory.routes import inventory_bp
    app.register_blueprint(inventory_bp)

    from .admin_api import admin_api_bp, users_bp
    app.register_blueprint(admin_api_bp)
    app.register_blueprint(users_bp)
    limiter.limit(';'.join(app.config.get('ADMIN_API_RATELIMITS', ["200 per hour"])))(admin_api_bp)

    from .health import health_bp
    app.register_blueprint(health_bp)
    limiter.exempt(health_bp)

    from .database import register_db_commands
    register_db_commands(app)

    app.logger.info("Blueprints registered.")
    app.config['STARTED_AT'] = time.time()

    @app.before_request
    def load_user_from_token_if_present():
        g.current_user_id = None
        g.current_user_role = None
        g.is_admin = False
        try:
            verify_jwt_in_request(optional=True)
            identity = get_jwt_identity()
            if identity:
                g.current_user_id = int(identity)
                claims = get_jwt()
                g.current_user_role = claims.get('role')
                g.is_admin = claims.get('role') == 'ADMIN'
        except Exception:
            # Invalid tokens are rejected by the protected routes themselves
            g.current_user_id = None

    @app.route('/')
    @app.route('/api')
    def api_root():
        return jsonify({
            "name": app.config.get("API_NAME"),
            "version": app.config.get("API_VERSION", "1.0.0"),
            "status": "running",
        })

    @app.route('/uploads/<path:filepath>')
    def serve_upload(filepath):
        if ".." in filepath or filepath.startswith("/"):
            app.logger.warning(f"Directory traversal attempt for upload: {filepath}")
            return flask_abort(404)
        return send_from_directory(app.config['UPLOAD_FOLDER'], filepath)

    # --- Error Handlers ---
    def _error(code, message, status):
        return jsonify(success=False, message=message, error_code=code), status

    @app.errorhandler(400)
    def bad_request_error(error): return _error('BAD_REQUEST', str(getattr(error, 'description', "Bad Request")), 400)
    @app.errorhandler(401)
    def unauthorized_error(error): return _error('UNAUTHORIZED', str(getattr(error, 'description', "Unauthorized")), 401)
    @app.errorhandler(403)
    def forbidden_error(error): return _error('FORBIDDEN', str(getattr(error, 'description', "Forbidden")), 403)
    @app.errorhandler(404)
    def not_found_error(error): return _error('NOT_FOUND', "Route not found", 404)
    @app.errorhandler(405)
    def method_not_allowed_error(error): return _error('METHOD_NOT_ALLOWED', "Method not allowed", 405)
    @app.errorhandler(413)
    def payload_too_large_error(error): return _error('FILE_TOO_LARGE', "Uploaded file is too large", 413)
    @app.errorhandler(429)
    def ratelimit_handler(e): return _error('RATE_LIMIT_EXCEEDED', f"Too many requests, please try again later ({e.description})", 429)
    @app.errorhandler(500)
    def internal_server_error(error):
        app.logger.error(f"Internal Server Error: {error}", exc_info=True)
        return _error('SERVER_ERROR', "An internal server error occurred. Please try again later.", 500)

    return app
