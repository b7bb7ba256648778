# vmcandles/wishlist/routes.py
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import IntegrityError

from .. import db
from ..models import Product, WishlistItem, LanguageEnum
from ..products.routes import parse_language
from ..utils import error_response, current_user_id

wishlist_bp = Blueprint('wishlist_bp', __name__, url_prefix='/api/wishlist')


@wishlist_bp.route('', methods=['GET'])
@jwt_required()
def get_wishlist():
    language = parse_language(request.args.get('language')) or LanguageEnum.ES
    items = WishlistItem.query.filter_by(user_id=current_user_id()).order_by(WishlistItem.created_at.desc()).all()
    return jsonify(success=True, items=[i.to_dict(language=language) for i in items], count=len(items))


@wishlist_bp.route('/check/<string:product_id>', methods=['GET'])
@jwt_required()
def check_wishlist(product_id):
    exists = WishlistItem.query.filter_by(user_id=current_user_id(), product_id=product_id).first() is not None
    return jsonify(success=True, in_wishlist=exists)


@wishlist_bp.route('/<string:product_id>', methods=['POST'])
@jwt_required()
def add_to_wishlist(product_id):
    user_id = current_user_id()
    if not db.session.get(Product, product_id):
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    if WishlistItem.query.filter_by(user_id=user_id, product_id=product_id).first():
        return error_response('ALREADY_IN_WISHLIST', "Product is already in your wishlist", 400)
    try:
        item = WishlistItem(user_id=user_id, product_id=product_id)
        db.session.add(item)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response('ALREADY_IN_WISHLIST', "Product is already in your wishlist", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error adding {product_id} to wishlist of user {user_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to add to wishlist", 500)
    return jsonify(success=True, message="Added to wishlist", item=item.to_dict()), 201


@wishlist_bp.route('/<string:product_id>', methods=['DELETE'])
@jwt_required()
def remove_from_wishlist(product_id):
    item = WishlistItem.query.filter_by(user_id=current_user_id(), product_id=product_id).first()
    if not item:
        return error_response('WISHLIST_ITEM_NOT_FOUND', "Product is not in your wishlist", 404)
    try:
        db.session.delete(item)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error removing {product_id} from wishlist: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to remove from wishlist", 500)
    return jsonify(success=True, message="Removed from wishlist")
