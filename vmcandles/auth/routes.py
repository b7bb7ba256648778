# vmcandles/auth/routes.py
from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import create_access_token, jwt_required
from sqlalchemy.exc import IntegrityError

from .. import db
from ..models import User, Profile, UserRoleEnum, CustomerTypeEnum, LanguageEnum
from ..utils import sanitize_input, error_response, validation_error_response, current_user_id, json_body
from ..validation import validate_registration, validate_login

auth_bp = Blueprint('auth_bp', __name__, url_prefix='/api/auth')


@auth_bp.route('/register', methods=['POST'])
def register():
    data = json_body()
    audit_logger = current_app.audit_log_service

    errors = validate_registration(data)
    if errors:
        return validation_error_response(errors)

    email = data['email'].strip().lower()
    try:
        if User.query.filter_by(email=email).first():
            audit_logger.log_action(action='register_fail', email_for_unauthenticated=email, details="Email already registered.", status='failure')
            return error_response('USER_EXISTS', "User already exists", 400)

        new_user = User(email=email, role=UserRoleEnum.USER)
        new_user.set_password(data['password'])
        new_user.profile = Profile(
            first_name=sanitize_input(data['first_name'], max_length=100),
            last_name=sanitize_input(data['last_name'], max_length=100),
            phone=data.get('phone'),
            customer_type=CustomerTypeEnum(data.get('customer_type', 'INDIVIDUAL')),
            tax_id=sanitize_input(data.get('tax_id'), max_length=20),
            preferred_language=LanguageEnum(data.get('preferred_language', 'ES')),
        )
        db.session.add(new_user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response('USER_EXISTS', "User already exists", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error during registration for {email}: {e}", exc_info=True)
        return error_response('REGISTRATION_ERROR', "Registration failed due to a server error", 500)

    audit_logger.log_action(user_id=new_user.id, action='register_success', target_type='user', target_id=new_user.id, details=f"User {email} registered.")
    token = create_access_token(identity=new_user)
    return jsonify(success=True, message="User registered successfully", token=token, user=new_user.to_dict()), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = json_body()
    audit_logger = current_app.audit_log_service

    errors = validate_login(data)
    if errors:
        return validation_error_response(errors)

    email = data['email'].strip().lower()
    try:
        user = User.query.filter_by(email=email).first()
        if not user or not user.check_password(data['password']):
            audit_logger.log_action(action='login_fail', email_for_unauthenticated=email, details="Invalid credentials.", status='failure')
            return error_response('INVALID_CREDENTIALS', "Invalid email or password", 401)

        token = create_access_token(identity=user)
        audit_logger.log_action(user_id=user.id, action='login_success', target_type='user', target_id=user.id)
        return jsonify(success=True, message="Login successful", token=token, user=user.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error during login for {email}: {e}", exc_info=True)
        return error_response('LOGIN_ERROR', "Login failed due to a server error", 500)


@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_current_user():
    user = db.session.get(User, current_user_id())
    if not user:
        return error_response('USER_NOT_FOUND', "User not found", 404)
    data = user.to_dict()
    data["addresses"] = [a.to_dict() for a in user.addresses.all()]
    return jsonify(success=True, user=data)


@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    # Tokens are stateless; the client discards its copy
    current_app.audit_log_service.log_action(user_id=current_user_id(), action='logout', target_type='user', target_id=current_user_id())
    return jsonify(success=True, message="Logout successful")
