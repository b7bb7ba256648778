# vmcandles/cart/routes.py
from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import jwt_required

from .. import db
from ..models import Cart, CartItem, Product, LanguageEnum
from ..utils import error_response, current_user_id, json_body

cart_bp = Blueprint('cart_bp', __name__, url_prefix='/api/cart')


def get_or_create_cart(user_id):
    cart = Cart.query.filter_by(user_id=user_id).first()
    if cart is None:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.flush()
    return cart

def _positive_int(value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return None
    return value


@cart_bp.route('', methods=['GET'])
@jwt_required()
def get_cart():
    user_id = current_user_id()
    try:
        cart = get_or_create_cart(user_id)
        db.session.commit()
        return jsonify(success=True, cart=cart.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error fetching cart for user {user_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to fetch cart", 500)


@cart_bp.route('/items', methods=['POST'])
@jwt_required()
def add_cart_item():
    user_id = current_user_id()
    data = json_body()
    product_id = data.get('product_id')
    quantity = _positive_int(data.get('quantity', 1))
    if not product_id or quantity is None:
        return error_response('INVALID_INPUT', "product_id and a quantity of at least 1 are required", 400)

    product = db.session.get(Product, str(product_id))
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    if not product.in_stock:
        return error_response('OUT_OF_STOCK', "Product is out of stock", 400)
    try:
        cart = get_or_create_cart(user_id)
        item = CartItem.query.filter_by(cart_id=cart.id, product_id=product.id).first()
        if item:
            item.quantity += quantity
        else:
            translation = product.translation_for(LanguageEnum.ES)
            item = CartItem(
                cart_id=cart.id, product_id=product.id, quantity=quantity,
                name=translation.name if translation else product.id,
                price=product.price, image=product.image,
            )
            db.session.add(item)
        db.session.commit()
        return jsonify(success=True, message="Item added to cart", cart=cart.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error adding {product_id} to cart of user {user_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to add item to cart", 500)


@cart_bp.route('/items/<int:item_id>', methods=['PUT'])
@jwt_required()
def update_cart_item(item_id):
    user_id = current_user_id()
    data = json_body()
    quantity = _positive_int(data.get('quantity'))
    if quantity is None:
        return error_response('INVALID_QUANTITY', "Quantity must be at least 1", 400)

    item = CartItem.query.join(Cart).filter(CartItem.id == item_id, Cart.user_id == user_id).first()
    if not item:
        return error_response('CART_ITEM_NOT_FOUND', "Cart item not found", 404)
    if item.product and not item.product.in_stock:
        return error_response('OUT_OF_STOCK', "Product is out of stock", 400)
    try:
        item.quantity = quantity
        db.session.commit()
        return jsonify(success=True, message="Cart item updated", cart=item.cart.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating cart item {item_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update cart item", 500)


@cart_bp.route('/items/<int:item_id>', methods=['DELETE'])
@jwt_required()
def remove_cart_item(item_id):
    item = CartItem.query.join(Cart).filter(CartItem.id == item_id, Cart.user_id == current_user_id()).first()
    if not item:
        return error_response('CART_ITEM_NOT_FOUND', "Cart item not found", 404)
    try:
        cart = item.cart
        db.session.delete(item)
        db.session.commit()
        return jsonify(success=True, message="Item removed from cart", cart=cart.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error removing cart item {item_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to remove cart item", 500)


@cart_bp.route('', methods=['DELETE'])
@jwt_required()
def clear_cart():
    cart = Cart.query.filter_by(user_id=current_user_id()).first()
    if not cart:
        return error_response('CART_NOT_FOUND', "Cart not found", 404)
    try:
        cart.items.delete()
        db.session.commit()
        return jsonify(success=True, message="Cart cleared", cart=cart.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error clearing cart {cart.id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to clear cart", 500)
