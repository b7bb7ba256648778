# vmcandles/profile/routes.py
from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required

from .. import db
from ..models import Profile, Address, AddressTypeEnum, CustomerTypeEnum, LanguageEnum
from ..utils import sanitize_input, error_response, validation_error_response, current_user_id, json_body
from ..validation import validate_profile_update, validate_address

profile_bp = Blueprint('profile_bp', __name__, url_prefix='/api/profile')

ADDRESS_FIELDS = ('street', 'city', 'region', 'postal_code', 'country')


def _unset_other_defaults(user_id, address_type, keep_id=None):
    query = Address.query.filter(Address.user_id == user_id, Address.type == address_type, Address.is_default.is_(True))
    if keep_id is not None:
        query = query.filter(Address.id != keep_id)
    for other in query.all():
        other.is_default = False


@profile_bp.route('', methods=['GET'])
@jwt_required()
def get_profile():
    profile = Profile.query.filter_by(user_id=current_user_id()).first()
    if not profile:
        return error_response('PROFILE_NOT_FOUND', "Profile not found", 404)
    return jsonify(success=True, profile=profile.to_dict())


@profile_bp.route('', methods=['PUT'])
@jwt_required()
def update_profile():
    user_id = current_user_id()
    data = json_body()
    errors = validate_profile_update(data)
    if errors:
        return validation_error_response(errors)

    profile = Profile.query.filter_by(user_id=user_id).first()
    if not profile:
        return error_response('PROFILE_NOT_FOUND', "Profile not found", 404)
    try:
        if 'first_name' in data: profile.first_name = sanitize_input(data['first_name'], max_length=100)
        if 'last_name' in data: profile.last_name = sanitize_input(data['last_name'], max_length=100)
        if 'phone' in data: profile.phone = data['phone'] or None
        if 'tax_id' in data: profile.tax_id = sanitize_input(data['tax_id'], max_length=20) or None
        if data.get('customer_type'): profile.customer_type = CustomerTypeEnum(data['customer_type'])
        if data.get('preferred_language'): profile.preferred_language = LanguageEnum(data['preferred_language'])
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating profile for user {user_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update profile", 500)

    current_app.audit_log_service.log_action(user_id=user_id, action='update_profile', target_type='profile', target_id=profile.id)
    return jsonify(success=True, message="Profile updated successfully", profile=profile.to_dict())


@profile_bp.route('/addresses', methods=['GET'])
@jwt_required()
def get_addresses():
    addresses = Address.query.filter_by(user_id=current_user_id()).order_by(Address.is_default.desc(), Address.created_at.desc()).all()
    return jsonify(success=True, addresses=[a.to_dict() for a in addresses])


@profile_bp.route('/addresses', methods=['POST'])
@jwt_required()
def create_address():
    user_id = current_user_id()
    data = json_body()
    errors = validate_address(data)
    if errors:
        return validation_error_response(errors)
    try:
        address_type = AddressTypeEnum(data.get('type', 'SHIPPING'))
        is_default = bool(data.get('is_default', False))
        if is_default:
            _unset_other_defaults(user_id, address_type)
        address = Address(
            user_id=user_id, type=address_type, is_default=is_default,
            street=sanitize_input(data['street'], max_length=255),
            city=sanitize_input(data['city'], max_length=100),
            region=sanitize_input(data['region'], max_length=100),
            postal_code=sanitize_input(data['postal_code'], max_length=20),
            country=sanitize_input(data.get('country') or 'Chile', max_length=100),
        )
        db.session.add(address)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating address for user {user_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to create address", 500)
    return jsonify(success=True, message="Address created successfully", address=address.to_dict()), 201


@profile_bp.route('/addresses/<int:address_id>', methods=['PUT'])
@jwt_required()
def update_address(address_id):
    user_id = current_user_id()
    data = json_body()
    errors = validate_address(data, partial=True)
    if errors:
        return validation_error_response(errors)

    address = Address.query.filter_by(id=address_id, user_id=user_id).first()
    if not address:
        return error_response('ADDRESS_NOT_FOUND', "Address not found", 404)
    try:
        if data.get('type'):
            address.type = AddressTypeEnum(data['type'])
        for field in ADDRESS_FIELDS:
            if data.get(field) is not None:
                setattr(address, field, sanitize_input(data[field], max_length=255))
        if 'is_default' in data:
            address.is_default = data['is_default']
        if address.is_default:
            _unset_other_defaults(user_id, address.type, keep_id=address.id)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating address {address_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update address", 500)
    return jsonify(success=True, message="Address updated successfully", address=address.to_dict())


@profile_bp.route('/addresses/<int:address_id>', methods=['DELETE'])
@jwt_required()
def delete_address(address_id):
    address = Address.query.filter_by(id=address_id, user_id=current_user_id()).first()
    if not address:
        return error_response('ADDRESS_NOT_FOUND', "Address not found", 404)
    try:
        db.session.delete(address)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting address {address_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to delete address", 500)
    return jsonify(success=True, message="Address deleted successfully")
