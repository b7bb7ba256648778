# vmcandles/payments/routes.py
from urllib.parse import urlencode

from flask import Blueprint, request, jsonify, current_app, redirect, g
from flask_jwt_extended import jwt_required

from .. import db
from ..models import Order, OrderStatusEnum, PaymentStatusEnum, PaymentContextTypeEnum
from ..services.webpay_service import (
    PaymentContextNotFound, start_payment, confirm_payment, extract_token
)
from ..utils import (
    json_body, error_response, pagination_dict, parse_int_arg, admin_required,
    current_user_id, diagnostic_details
)

payments_bp = Blueprint('payments_bp', __name__, url_prefix='/api/payments')


def _result_redirect(**params):
    base = current_app.config['FRONTEND_URL'].rstrip('/')
    return redirect(f"{base}/payment/result?{urlencode(params)}")

def _payment_dict(order):
    return {
        "order_id": order.id, "status": order.status.value, "payment_status": order.payment_status.value,
        "payment_method": order.payment_method, "total": order.total,
        "webpay_transaction_id": order.webpay_transaction_id,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


@payments_bp.route('/webpay/init', methods=['POST'])
@jwt_required()
def init_webpay_payment():
    user_id = current_user_id()
    data = json_body()
    order_id = data.get('order_id')
    if not order_id:
        return error_response('MISSING_ORDER_ID', "order_id is required", 400)

    order = Order.query.filter_by(id=str(order_id), user_id=user_id).first()
    if not order:
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    if order.payment_status != PaymentStatusEnum.PENDING:
        return error_response('INVALID_PAYMENT_STATUS', "Order payment is not pending", 400)

    try:
        response = start_payment(
            PaymentContextTypeEnum.ORDER,
            buy_order=order.id, session_id=str(user_id), amount=round(order.total),
            return_url=current_app.config['WEBPAY_RETURN_URL'], order_id=order.id,
        )
        order.webpay_token = response['token']
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error initializing payment for order {order.id}: {e}", exc_info=True)
        return error_response('WEBPAY_INIT_ERROR', "Failed to initialize payment", 500, details=diagnostic_details(e))

    current_app.audit_log_service.log_action(user_id=user_id, action='payment_init', target_type='order', target_id=order.id)
    return jsonify(success=True, token=response['token'], url=response.get('url'), order_id=order.id)


@payments_bp.route('/webpay/return', methods=['GET', 'POST'])
def webpay_return():
    """Gateway redirects the browser here; the outcome is forwarded to the frontend."""
    token = extract_token()
    if not token:
        current_app.logger.warning("Webpay return without token_ws (payment aborted by user or timeout).")
        return _result_redirect(status='error', message='missing_token')

    try:
        context, response, approved = confirm_payment(token, PaymentContextTypeEnum.ORDER)
        order = db.session.get(Order, context.order_id)
        if order is None:
            db.session.rollback()
            return _result_redirect(status='error', message='order_not_found')

        if response is not None:
            if approved:
                order.payment_status = PaymentStatusEnum.PAID
                order.status = OrderStatusEnum.PROCESSING
            else:
                order.payment_status = PaymentStatusEnum.FAILED
            order.webpay_transaction_id = response.get('transaction_date')
            db.session.commit()
            current_app.audit_log_service.log_action(
                user_id=order.user_id, action='payment_confirmed' if approved else 'payment_rejected',
                target_type='order', target_id=order.id, status='success' if approved else 'failure'
            )
        return _result_redirect(orderId=order.id, status='success' if approved else 'failed')
    except PaymentContextNotFound:
        db.session.rollback()
        current_app.logger.warning(f"Webpay return with unknown token {token[:8]}...")
        return _result_redirect(status='error', message='order_not_found')
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error confirming Webpay payment: {e}", exc_info=True)
        return _result_redirect(status='error')


@payments_bp.route('/order/<string:order_id>', methods=['GET'])
@jwt_required()
def get_order_payment_status(order_id):
    order = db.session.get(Order, order_id)
    if not order or (order.user_id != current_user_id() and not g.is_admin):
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    return jsonify(success=True, payment=_payment_dict(order))


@payments_bp.route('/admin/all', methods=['GET'])
@admin_required
def admin_get_payments():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    query = Order.query
    payment_status = request.args.get('payment_status')
    if payment_status:
        try:
            query = query.filter(Order.payment_status == PaymentStatusEnum(payment_status.upper()))
        except ValueError:
            return error_response('INVALID_STATUS', f"Unknown payment status '{payment_status}'", 400)
    pagination = query.order_by(Order.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)
    return jsonify(success=True, payments=[_payment_dict(o) for o in pagination.items],
                   pagination=pagination_dict(page, limit, pagination.total))
