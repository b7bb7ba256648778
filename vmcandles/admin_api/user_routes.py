# vmcandles/admin_api/user_routes.py
# Admin User Management (CRUD)

from flask import request, jsonify, current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from . import users_bp
from .. import db
from ..models import (
    User, Profile, Order, AudioAccessKey, UserRoleEnum, CustomerTypeEnum, LanguageEnum
)
from ..utils import (
    json_body, sanitize_input, error_response, validation_error_response, pagination_dict,
    parse_int_arg, admin_required, current_user_id, utcnow, start_of_month, is_valid_email
)
from ..validation import validate_profile_update, password_error

PROFILE_FIELDS = ('first_name', 'last_name', 'phone', 'tax_id')


def _user_summary(user):
    data = user.to_dict()
    data["orders_count"] = user.orders.count()
    return data

def _parse_role(value):
    try:
        return UserRoleEnum(str(value).upper())
    except ValueError:
        return None


@users_bp.route('', methods=['GET'])
@admin_required
def get_users():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 50, maximum=200)
    try:
        query = User.query.outerjoin(Profile)
        role = request.args.get('role')
        if role:
            role_enum = _parse_role(role)
            if role_enum is None:
                return error_response('INVALID_ROLE', f"Invalid role filter: {role}", 400)
            query = query.filter(User.role == role_enum)

        search = (request.args.get('search') or '').strip()
        if search:
            term_like = f"%{search}%"
            query = query.filter(or_(
                User.email.ilike(term_like), Profile.first_name.ilike(term_like), Profile.last_name.ilike(term_like)
            ))

        pagination = query.order_by(User.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)
        return jsonify(success=True, users=[_user_summary(u) for u in pagination.items],
                       pagination=pagination_dict(page, limit, pagination.total))
    except Exception as e:
        current_app.logger.error(f"Error fetching users for admin: {e}", exc_info=True)
        return error_response('USERS_FETCH_ERROR', "Failed to fetch users", 500)


@users_bp.route('/stats', methods=['GET'])
@admin_required
def get_user_stats():
    try:
        total_users = User.query.count()
        admin_count = User.query.filter(User.role == UserRoleEnum.ADMIN).count()
        users_by_type = {
            customer_type.value: count
            for customer_type, count in db.session.query(Profile.customer_type, func.count(Profile.id))
            .group_by(Profile.customer_type).all()
        }
        return jsonify(success=True, stats={
            "total_users": total_users,
            "admin_count": admin_count,
            "regular_users_count": total_users - admin_count,
            "users_by_type": users_by_type,
            "new_users_this_month": User.query.filter(User.created_at >= start_of_month(utcnow())).count(),
        })
    except Exception as e:
        current_app.logger.error(f"Error fetching user stats: {e}", exc_info=True)
        return error_response('USER_STATS_ERROR', "Failed to fetch user statistics", 500)


@users_bp.route('', methods=['POST'])
@admin_required
def create_user():
    data = json_body()
    email = str(data.get('email') or '').strip().lower()
    if not email or not data.get('password'):
        return error_response('MISSING_FIELDS', "Email and password are required", 400)

    errors = validate_profile_update(data)
    if not is_valid_email(email):
        errors.append({"field": "email", "message": "A valid email is required"})
    pw_error = password_error(data['password'])
    if pw_error:
        errors.append({"field": "password", "message": pw_error})
    role = _parse_role(data.get('role', 'USER'))
    if role is None:
        errors.append({"field": "role", "message": "Role must be one of: USER, ADMIN"})
    if errors:
        return validation_error_response(errors)

    if User.query.filter_by(email=email).first():
        return error_response('USER_EXISTS', "A user with this email already exists", 400)
    try:
        user = User(email=email, role=role)
        user.set_password(data['password'])
        user.profile = Profile(
            first_name=sanitize_input(data.get('first_name') or '', max_length=100),
            last_name=sanitize_input(data.get('last_name') or '', max_length=100),
            phone=data.get('phone') or '',
            customer_type=CustomerTypeEnum(data.get('customer_type', 'INDIVIDUAL')),
            tax_id=sanitize_input(data.get('tax_id'), max_length=20),
        )
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response('USER_EXISTS', "A user with this email already exists", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating user {email}: {e}", exc_info=True)
        return error_response('USER_CREATE_ERROR', "Failed to create user", 500)

    current_app.audit_log_service.log_action(user_id=current_user_id(), action='admin_create_user', target_type='user', target_id=user.id)
    return jsonify(success=True, user=user.to_dict()), 201


@users_bp.route('/<int:user_id>', methods=['GET'])
@admin_required
def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return error_response('USER_NOT_FOUND', "User not found", 404)
    data = user.to_dict()
    data["addresses"] = [a.to_dict() for a in user.addresses]
    data["recent_orders"] = [o.to_dict(include_items=False) for o in user.orders.order_by(Order.created_at.desc()).limit(10)]
    data["total_orders"] = user.orders.count()
    return jsonify(success=True, user=data)


@users_bp.route('/<int:user_id>', methods=['PUT'])
@admin_required
def update_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return error_response('USER_NOT_FOUND', "User not found", 404)
    data = json_body()
    errors = validate_profile_update(data)
    if errors:
        return validation_error_response(errors)

    email = data.get('email')
    if email is not None:
        email = str(email).strip().lower()
        if not is_valid_email(email):
            return validation_error_response([{"field": "email", "message": "A valid email is required"}])
        if email != user.email and User.query.filter_by(email=email).first():
            return error_response('EMAIL_EXISTS', "This email is already in use", 400)

    try:
        if email:
            user.email = email
        if user.profile is None:
            user.profile = Profile(first_name='', last_name='')
        for field in PROFILE_FIELDS:
            if data.get(field) is not None:
                setattr(user.profile, field, sanitize_input(data[field], max_length=100))
        if data.get('customer_type'):
            user.profile.customer_type = CustomerTypeEnum(data['customer_type'])
        if data.get('preferred_language'):
            user.profile.preferred_language = LanguageEnum(data['preferred_language'])
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating user {user_id}: {e}", exc_info=True)
        return error_response('USER_UPDATE_ERROR', "Failed to update user", 500)

    current_app.audit_log_service.log_action(user_id=current_user_id(), action='admin_update_user', target_type='user', target_id=user_id)
    return jsonify(success=True, user=user.to_dict())


@users_bp.route('/<int:user_id>/role', methods=['PUT'])
@admin_required
def update_user_role(user_id):
    data = json_body()
    role = _parse_role(data.get('role')) if data.get('role') else None
    if role is None:
        return error_response('INVALID_ROLE', "Role must be one of: USER, ADMIN", 400)
    if user_id == current_user_id() and role != UserRoleEnum.ADMIN:
        return error_response('CANNOT_DEMOTE_SELF', "You cannot change your own admin role", 400)

    user = db.session.get(User, user_id)
    if not user:
        return error_response('USER_NOT_FOUND', "User not found", 404)
    try:
        user.role = role
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating role for user {user_id}: {e}", exc_info=True)
        return error_response('USER_UPDATE_ERROR', "Failed to update user role", 500)

    current_app.logger.info(f"User {user_id} role set to {role.value} by admin {current_user_id()}")
    current_app.audit_log_service.log_action(user_id=current_user_id(), action='admin_update_user_role', target_type='user',
                                             target_id=user_id, details=f"Role set to {role.value}")
    return jsonify(success=True, message="User role updated successfully", role=role.value)


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    if user_id == current_user_id():
        return error_response('CANNOT_DELETE_SELF', "You cannot delete your own account", 400)
    user = db.session.get(User, user_id)
    if not user:
        return error_response('USER_NOT_FOUND', "User not found", 404)
    # Orders and invoices are accounting records and keep their customer
    if user.orders.count():
        return error_response('USER_HAS_ORDERS', "Users with orders cannot be deleted", 400)

    email = user.email
    try:
        AudioAccessKey.query.filter_by(redeemed_by_user_id=user_id).update({"redeemed_by_user_id": None})
        db.session.delete(user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting user {user_id}: {e}", exc_info=True)
        return error_response('USER_DELETE_ERROR', "Failed to delete user", 500)

    current_app.audit_log_service.log_action(user_id=current_user_id(), action='admin_delete_user', target_type='user',
                                             target_id=user_id, details=f"Deleted {email}")
    return jsonify(success=True, message="User deleted successfully", deleted_user={"id": user_id, "email": email})
