# vmcandles/orders/routes.py
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from .. import db
from ..models import (
    Order, OrderItem, Cart, CartItem, Address, Profile, User,
    OrderStatusEnum, PaymentStatusEnum, LanguageEnum
)
from ..utils import (
    json_body, sanitize_input, error_response, pagination_dict, parse_int_arg,
    admin_required, current_user_id, utcnow, start_of_month
)

orders_bp = Blueprint('orders_bp', __name__, url_prefix='/api/orders')


def next_order_id():
    next_number = Order.query.count() + 1
    order_id = f"ORD-{next_number:03d}"
    while db.session.get(Order, order_id) is not None:
        next_number += 1
        order_id = f"ORD-{next_number:03d}"
    return order_id

def shipping_cost_for(subtotal):
    if subtotal >= current_app.config.get('FREE_SHIPPING_THRESHOLD', 50):
        return 0.0
    return float(current_app.config.get('FLAT_SHIPPING_COST', 5))

def _parse_status(value, enum_cls):
    if not value: return None
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        return None


@orders_bp.route('/checkout', methods=['POST'])
@jwt_required()
def checkout():
    """
    Converts the cart into a PENDING order.

    Prices, names (ES) and images are re-read from the catalog; the order keeps a
    snapshot of the customer and both addresses. The order, its items and the
    emptied cart are written in one transaction. Stock is not decremented.
    """
    user_id = current_user_id()
    data = json_body()
    shipping_address_id = data.get('shipping_address_id')
    billing_address_id = data.get('billing_address_id') or shipping_address_id
    if not shipping_address_id:
        return error_response('MISSING_ADDRESS', "shipping_address_id is required", 400)
    if any(isinstance(v, bool) or not isinstance(v, int) for v in (shipping_address_id, billing_address_id)):
        return error_response('INVALID_INPUT', "Address ids must be integers", 400)

    audit_logger = current_app.audit_log_service
    try:
        shipping = Address.query.filter_by(id=shipping_address_id, user_id=user_id).first()
        billing = Address.query.filter_by(id=billing_address_id, user_id=user_id).first()
        if not shipping or not billing:
            return error_response('ADDRESS_NOT_FOUND', "Address not found", 404)

        cart = Cart.query.filter_by(user_id=user_id).first()
        cart_items = cart.items.order_by(CartItem.id).all() if cart else []
        if not cart_items:
            return error_response('EMPTY_CART', "Your cart is empty", 400)

        for item in cart_items:
            if item.product is None or not item.product.in_stock:
                return error_response('OUT_OF_STOCK', f"Product {item.product_id} is out of stock", 400,
                                      details={"product_id": item.product_id})

        profile = Profile.query.filter_by(user_id=user_id).first()
        if not profile:
            return error_response('PROFILE_NOT_FOUND', "Profile not found", 404)
        user = db.session.get(User, user_id)

        order = Order(
            id=next_order_id(), user_id=user_id,
            status=OrderStatusEnum.PENDING, payment_status=PaymentStatusEnum.PENDING,
            customer_name=profile.full_name, customer_email=user.email,
            customer_phone=profile.phone, customer_type=profile.customer_type,
            customer_tax_id=profile.tax_id,
            shipping_street=shipping.street, shipping_city=shipping.city, shipping_region=shipping.region,
            shipping_postal_code=shipping.postal_code, shipping_country=shipping.country,
            billing_street=billing.street, billing_city=billing.city, billing_region=billing.region,
            billing_postal_code=billing.postal_code, billing_country=billing.country,
            notes=sanitize_input(data.get('notes'), max_length=1000),
            subtotal=0.0, shipping_cost=0.0, total=0.0,
        )
        subtotal = 0.0
        for item in cart_items:
            product = item.product
            translation = product.translation_for(LanguageEnum.ES)
            line_total = round(product.price * item.quantity, 2)
            subtotal += line_total
            order.items.append(OrderItem(
                product_id=product.id,
                product_name=translation.name if translation else item.name,
                product_image=product.image,
                price=product.price, quantity=item.quantity, subtotal=line_total,
            ))
        order.subtotal = round(subtotal, 2)
        order.shipping_cost = shipping_cost_for(order.subtotal)
        order.total = round(order.subtotal + order.shipping_cost, 2)
        db.session.add(order)

        cart.items.delete()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Checkout failed for user {user_id}: {e}", exc_info=True)
        return error_response('CHECKOUT_ERROR', "Failed to create order", 500)

    audit_logger.log_action(user_id=user_id, action='checkout', target_type='order', target_id=order.id,
                            details=f"Order {order.id} created, total {order.total}")
    return jsonify(success=True, message="Order created successfully", order=order.to_dict()), 201


@orders_bp.route('', methods=['GET'])
@jwt_required()
def get_my_orders():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 10, maximum=100)
    query = Order.query.filter_by(user_id=current_user_id())
    status = request.args.get('status')
    if status:
        status_enum = _parse_status(status, OrderStatusEnum)
        if status_enum is None:
            return error_response('INVALID_STATUS', f"Unknown order status '{status}'", 400)
        query = query.filter(Order.status == status_enum)
    pagination = query.order_by(Order.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)
    return jsonify(success=True, orders=[o.to_dict() for o in pagination.items],
                   pagination=pagination_dict(page, limit, pagination.total))


@orders_bp.route('/<string:order_id>', methods=['GET'])
@jwt_required()
def get_order(order_id):
    order = Order.query.filter_by(id=order_id, user_id=current_user_id()).first()
    if not order:
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    return jsonify(success=True, order=order.to_dict())


@orders_bp.route('/<string:order_id>/cancel', methods=['PUT'])
@jwt_required()
def cancel_order(order_id):
    user_id = current_user_id()
    order = Order.query.filter_by(id=order_id, user_id=user_id).first()
    if not order:
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    if order.status != OrderStatusEnum.PENDING:
        return error_response('INVALID_ORDER_STATUS', "Only pending orders can be cancelled", 400)
    try:
        order.status = OrderStatusEnum.CANCELLED
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error cancelling order {order_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to cancel order", 500)
    current_app.audit_log_service.log_action(user_id=user_id, action='cancel_order', target_type='order', target_id=order_id)
    return jsonify(success=True, message="Order cancelled", order=order.to_dict())


# --- Admin ---
@orders_bp.route('/admin/all', methods=['GET'])
@admin_required
def admin_get_orders():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    query = Order.query
    status = request.args.get('status')
    if status:
        status_enum = _parse_status(status, OrderStatusEnum)
        if status_enum is None:
            return error_response('INVALID_STATUS', f"Unknown order status '{status}'", 400)
        query = query.filter(Order.status == status_enum)
    user_filter = parse_int_arg(request.args.get('user_id'), None)
    if user_filter:
        query = query.filter(Order.user_id == user_filter)
    pagination = query.order_by(Order.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)
    return jsonify(success=True, orders=[o.to_dict() for o in pagination.items],
                   pagination=pagination_dict(page, limit, pagination.total))


@orders_bp.route('/admin/<string:order_id>/status', methods=['PUT', 'PATCH'])
@admin_required
def admin_update_order_status(order_id):
    data = json_body()
    new_status = _parse_status(data.get('status'), OrderStatusEnum)
    if new_status is None:
        return error_response('INVALID_STATUS', f"Status must be one of: {', '.join(s.value for s in OrderStatusEnum)}", 400)
    order = db.session.get(Order, order_id)
    if not order:
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    old_status = order.status
    try:
        order.status = new_status
        if new_status == OrderStatusEnum.SHIPPED and order.shipped_at is None:
            order.shipped_at = utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating status of order {order_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update order status", 500)
    current_app.audit_log_service.log_action(
        user_id=current_user_id(), action='update_order_status', target_type='order', target_id=order_id,
        details=f"Status changed from {old_status.value} to {new_status.value}"
    )
    return jsonify(success=True, message="Order status updated", order=order.to_dict())


@orders_bp.route('/admin/<string:order_id>/tracking', methods=['PUT'])
@admin_required
def admin_update_tracking(order_id):
    data = json_body()
    order = db.session.get(Order, order_id)
    if not order:
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    try:
        if 'tracking_number' in data:
            tracking_number = sanitize_input(data['tracking_number'], max_length=100) or None
            if tracking_number and not order.tracking_number:
                order.status = OrderStatusEnum.SHIPPED
                order.shipped_at = order.shipped_at or utcnow()
            order.tracking_number = tracking_number
        if 'carrier' in data: order.carrier = sanitize_input(data['carrier'], max_length=100) or None
        if 'admin_notes' in data: order.admin_notes = sanitize_input(data['admin_notes'])
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating tracking of order {order_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update tracking", 500)
    current_app.audit_log_service.log_action(user_id=current_user_id(), action='update_order_tracking', target_type='order', target_id=order_id)
    return jsonify(success=True, message="Tracking information updated", order=order.to_dict())


@orders_bp.route('/admin/analytics', methods=['GET'])
@admin_required
def admin_order_analytics():
    try:
        by_status = {s.value: 0 for s in OrderStatusEnum}
        for status, count in db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
            by_status[status.value] = count
        by_payment_status = {s.value: 0 for s in PaymentStatusEnum}
        for status, count in db.session.query(Order.payment_status, func.count(Order.id)).group_by(Order.payment_status).all():
            by_payment_status[status.value] = count

        total_revenue = db.session.query(func.coalesce(func.sum(Order.total), 0))\
            .filter(Order.payment_status == PaymentStatusEnum.PAID).scalar()
        month_start = start_of_month(utcnow())
        this_month_orders = Order.query.filter(Order.created_at >= month_start).count()
        this_month_revenue = db.session.query(func.coalesce(func.sum(Order.total), 0))\
            .filter(Order.payment_status == PaymentStatusEnum.PAID, Order.created_at >= month_start).scalar()

        top_products = db.session.query(
            OrderItem.product_id, OrderItem.product_name,
            func.sum(OrderItem.quantity).label('quantity'), func.sum(OrderItem.subtotal).label('revenue')
        ).group_by(OrderItem.product_id, OrderItem.product_name)\
            .order_by(func.sum(OrderItem.quantity).desc()).limit(5).all()

        recent = Order.query.order_by(Order.created_at.desc()).limit(10).all()
        return jsonify(
            success=True,
            analytics={
                "total_orders": Order.query.count(),
                "by_status": by_status,
                "by_payment_status": by_payment_status,
                "total_revenue": round(float(total_revenue), 2),
                "this_month": {"orders": this_month_orders, "revenue": round(float(this_month_revenue), 2)},
                "top_products": [
                    {"product_id": p.product_id, "product_name": p.product_name,
                     "quantity": int(p.quantity or 0), "revenue": round(float(p.revenue or 0), 2)}
                    for p in top_products
                ],
                "recent_orders": [o.to_dict(include_items=False) for o in recent],
            },
        )
    except Exception as e:
        current_app.logger.error(f"Error building order analytics: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to load order analytics", 500)
