# vmcandles/subscriptions/routes.py
from urllib.parse import urlencode

from flask import Blueprint, request, jsonify, current_app, redirect
from flask_jwt_extended import jwt_required

from .. import db
from ..models import (
    Subscription, SubscriptionStatusEnum, PaymentStatusEnum, PaymentContextTypeEnum
)
from ..services.subscription_service import (
    PLAN_PRICES, parse_plan, period_end, get_plan_catalog, quote_plan_change,
    activate_paid_period, subscription_analytics
)
from ..services.webpay_service import (
    PaymentContextNotFound, start_payment, confirm_payment, extract_token
)
from ..utils import (
    json_body, error_response, pagination_dict, parse_int_arg, admin_required,
    current_user_id, diagnostic_details, utcnow
)

subscriptions_bp = Blueprint('subscriptions_bp', __name__, url_prefix='/api/subscriptions')


def _result_redirect(**params):
    base = current_app.config['FRONTEND_URL'].rstrip('/')
    return redirect(f"{base}/subscription/result?{urlencode(params)}")

def _backend_url(path):
    return f"{current_app.config['BACKEND_URL'].rstrip('/')}{path}"

def _owned_subscription(subscription_id, user_id):
    """Returns (subscription, error_response_or_None)."""
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        return None, error_response('SUBSCRIPTION_NOT_FOUND', "Subscription not found", 404)
    if subscription.user_id != user_id:
        return None, error_response('FORBIDDEN', "Not authorized to manage this subscription", 403)
    return subscription, None

def _set_status(subscription_id, status, auto_renew, action):
    user_id = current_user_id()
    subscription, error = _owned_subscription(subscription_id, user_id)
    if error:
        return error
    if action == 'resume' and subscription.status != SubscriptionStatusEnum.PAUSED:
        return error_response('INVALID_STATUS', "Only paused subscriptions can be resumed", 400)
    try:
        subscription.status = status
        subscription.auto_renew = auto_renew
        if status == SubscriptionStatusEnum.CANCELLED:
            subscription.cancelled_at = utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error during subscription {action} for {subscription_id}: {e}", exc_info=True)
        return error_response(f'SUBSCRIPTION_{action.upper()}_ERROR', f"Failed to {action} subscription", 500)
    current_app.audit_log_service.log_action(user_id=user_id, action=f'subscription_{action}', target_type='subscription', target_id=subscription.id)
    return jsonify(success=True, message=f"Subscription {action} successful", subscription=subscription.to_dict())


@subscriptions_bp.route('/plans', methods=['GET'])
def get_plans():
    return jsonify(success=True, plans=get_plan_catalog())


@subscriptions_bp.route('/my-subscription', methods=['GET'])
@jwt_required()
def get_my_subscription():
    subscription = Subscription.query.filter(
        Subscription.user_id == current_user_id(),
        Subscription.status.in_([SubscriptionStatusEnum.ACTIVE, SubscriptionStatusEnum.PAUSED])
    ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()
    return jsonify(success=True, subscription=subscription.to_dict() if subscription else None)


@subscriptions_bp.route('', methods=['POST'])
@jwt_required()
def create_subscription():
    user_id = current_user_id()
    data = json_body()
    plan_id = parse_plan(data.get('plan_id'))
    if plan_id is None:
        return error_response('INVALID_PLAN', "Invalid subscription plan", 400)

    if Subscription.query.filter_by(user_id=user_id, status=SubscriptionStatusEnum.ACTIVE).first():
        return error_response('SUBSCRIPTION_EXISTS', "User already has an active subscription", 400)
    try:
        # Abandoned checkouts never become payable again
        for shell in Subscription.query.filter_by(user_id=user_id, status=SubscriptionStatusEnum.CANCELLED,
                                                  payment_status=PaymentStatusEnum.PENDING).all():
            shell.status = SubscriptionStatusEnum.CANCELLED
            shell.payment_status = PaymentStatusEnum.FAILED

        subscription = Subscription(
            user_id=user_id, plan_id=plan_id,
            status=SubscriptionStatusEnum.CANCELLED, payment_status=PaymentStatusEnum.PENDING,
            auto_renew=True, amount=PLAN_PRICES[plan_id],
        )
        db.session.add(subscription)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating subscription for user {user_id}: {e}", exc_info=True)
        return error_response('SUBSCRIPTION_CREATE_ERROR', "Failed to create subscription", 500)

    current_app.logger.info(f"Subscription created (pending payment) for user {user_id}: {subscription.id}")
    return jsonify(success=True, subscription=subscription.to_dict(), requires_payment=True,
                   amount=subscription.amount), 201


@subscriptions_bp.route('/payment/init', methods=['POST'])
@jwt_required()
def init_subscription_payment():
    user_id = current_user_id()
    data = json_body()
    subscription_id = data.get('subscription_id')
    if not subscription_id:
        return error_response('MISSING_SUBSCRIPTION_ID', "subscription_id is required", 400)

    subscription = Subscription.query.filter_by(id=subscription_id, user_id=user_id).first()
    if not subscription:
        return error_response('SUBSCRIPTION_NOT_FOUND', "Subscription not found", 404)
    if subscription.payment_status != PaymentStatusEnum.PENDING:
        return error_response('INVALID_PAYMENT_STATUS', "Subscription payment already processed", 400)

    amount = subscription.amount or PLAN_PRICES[subscription.plan_id]
    try:
        response = start_payment(
            PaymentContextTypeEnum.SUBSCRIPTION,
            buy_order=f"SUB-{subscription.id}", session_id=str(user_id), amount=amount,
            return_url=_backend_url('/api/subscriptions/webpay/return'),
            subscription_id=subscription.id,
        )
        subscription.webpay_token = response['token']
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error initializing subscription payment for {subscription.id}: {e}", exc_info=True)
        return error_response('WEBPAY_INIT_ERROR', "Failed to initialize payment", 500, details=diagnostic_details(e))
    return jsonify(success=True, token=response['token'], url=response.get('url'), subscription_id=subscription.id)


@subscriptions_bp.route('/webpay/return', methods=['GET', 'POST'])
def subscription_webpay_return():
    token = extract_token()
    if not token:
        current_app.logger.warning("Subscription Webpay return without token_ws.")
        return _result_redirect(status='error', message='missing_token')
    try:
        context, response, approved = confirm_payment(token, PaymentContextTypeEnum.SUBSCRIPTION)
        subscription = db.session.get(Subscription, context.subscription_id)
        if subscription is None:
            db.session.rollback()
            return _result_redirect(status='error', message='subscription_not_found')

        if response is not None:
            if approved:
                activate_paid_period(subscription, subscription.plan_id, now=utcnow())
                subscription.payment_status = PaymentStatusEnum.PAID
            else:
                subscription.payment_status = PaymentStatusEnum.FAILED
            subscription.webpay_transaction_id = response.get('transaction_date')
            db.session.commit()
            current_app.logger.info(f"Subscription {subscription.id} payment {'approved' if approved else 'rejected'}")
        return _result_redirect(subscriptionId=subscription.id, status='success' if approved else 'failed')
    except PaymentContextNotFound:
        db.session.rollback()
        return _result_redirect(status='error', message='subscription_not_found')
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error processing subscription Webpay return: {e}", exc_info=True)
        return _result_redirect(status='error')


@subscriptions_bp.route('/payment/status/<int:subscription_id>', methods=['GET'])
@jwt_required()
def get_subscription_payment_status(subscription_id):
    subscription = Subscription.query.filter_by(id=subscription_id, user_id=current_user_id()).first()
    if not subscription:
        return error_response('SUBSCRIPTION_NOT_FOUND', "Subscription not found", 404)
    data = subscription.to_dict()
    data["has_webpay_token"] = bool(subscription.webpay_token)
    data["transaction_id"] = subscription.webpay_transaction_id
    return jsonify(success=True, payment=data)


@subscriptions_bp.route('/<int:subscription_id>', methods=['PUT'])
@jwt_required()
def update_subscription(subscription_id):
    user_id = current_user_id()
    subscription, error = _owned_subscription(subscription_id, user_id)
    if error:
        return error
    data = json_body()
    try:
        if isinstance(data.get('auto_renew'), bool):
            subscription.auto_renew = data['auto_renew']
        new_plan = parse_plan(data.get('new_plan_id'))
        if new_plan is not None:
            subscription.plan_id = new_plan
            subscription.next_renewal = period_end(utcnow(), new_plan)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating subscription {subscription_id}: {e}", exc_info=True)
        return error_response('SUBSCRIPTION_UPDATE_ERROR', "Failed to update subscription", 500)
    return jsonify(success=True, message="Subscription updated", subscription=subscription.to_dict())


@subscriptions_bp.route('/<int:subscription_id>/cancel', methods=['POST'])
@jwt_required()
def cancel_subscription(subscription_id):
    return _set_status(subscription_id, SubscriptionStatusEnum.CANCELLED, False, 'cancel')


@subscriptions_bp.route('/<int:subscription_id>/pause', methods=['POST'])
@jwt_required()
def pause_subscription(subscription_id):
    return _set_status(subscription_id, SubscriptionStatusEnum.PAUSED, False, 'pause')


@subscriptions_bp.route('/<int:subscription_id>/resume', methods=['POST'])
@jwt_required()
def resume_subscription(subscription_id):
    return _set_status(subscription_id, SubscriptionStatusEnum.ACTIVE, True, 'resume')


@subscriptions_bp.route('/<int:subscription_id>/upgrade', methods=['POST'])
@jwt_required()
def upgrade_subscription(subscription_id):
    """
    Upgrades are quoted with proration and wait for payment; downgrades switch the
    plan right away with nothing to pay, the new price applying from the next renewal.
    """
    user_id = current_user_id()
    data = json_body()
    new_plan = parse_plan(data.get('new_plan_id'))
    if new_plan is None:
        return error_response('INVALID_PLAN', "Invalid subscription plan", 400)
    subscription, error = _owned_subscription(subscription_id, user_id)
    if error:
        return error
    if subscription.status != SubscriptionStatusEnum.ACTIVE:
        return error_response('INVALID_STATUS', "Only active subscriptions can be upgraded", 400)
    if subscription.plan_id == new_plan:
        return error_response('SAME_PLAN', "Already subscribed to this plan", 400)

    current_plan = subscription.plan_id
    quote = quote_plan_change(subscription, new_plan)
    try:
        if quote.is_upgrade:
            subscription.payment_status = PaymentStatusEnum.PENDING
        else:
            subscription.plan_id = new_plan
            subscription.payment_status = PaymentStatusEnum.PAID
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error initiating upgrade for subscription {subscription_id}: {e}", exc_info=True)
        return error_response('UPGRADE_ERROR', "Failed to initiate subscription upgrade", 500)

    current_app.logger.info(f"Subscription plan change initiated: {subscription_id} from {current_plan.value} to {new_plan.value} "
                            f"(upgrade={quote.is_upgrade}, amount={quote.amount_due})")
    return jsonify(
        success=True,
        subscription_id=subscription.id,
        current_plan=current_plan.value,
        new_plan=new_plan.value,
        is_upgrade=quote.is_upgrade,
        upgrade_amount=quote.amount_due,
        credit=quote.credit,
        requires_payment=quote.is_upgrade and quote.amount_due > 0,
        effective_immediately=quote.is_upgrade,
        message="Payment required to complete upgrade" if quote.is_upgrade else "Your plan will change at the next renewal date",
    )


@subscriptions_bp.route('/upgrade/payment/init', methods=['POST'])
@jwt_required()
def init_upgrade_payment():
    user_id = current_user_id()
    data = json_body()
    if not data.get('subscription_id') or not data.get('new_plan_id') or not data.get('amount'):
        return error_response('MISSING_PARAMS', "subscription_id, new_plan_id and amount are required", 400)
    new_plan = parse_plan(data.get('new_plan_id'))
    if new_plan is None:
        return error_response('INVALID_PLAN', "Invalid subscription plan", 400)

    subscription = Subscription.query.filter_by(id=data['subscription_id'], user_id=user_id).first()
    if not subscription:
        return error_response('SUBSCRIPTION_NOT_FOUND', "Subscription not found", 404)
    if subscription.status != SubscriptionStatusEnum.ACTIVE:
        return error_response('INVALID_STATUS', "Only active subscriptions can be upgraded", 400)

    quote = quote_plan_change(subscription, new_plan)
    if not quote.is_upgrade:
        return error_response('INVALID_PLAN', "Only upgrades require payment", 400)
    if data.get('amount') != quote.amount_due:
        current_app.logger.warning(f"Upgrade amount mismatch for subscription {subscription.id}: "
                                   f"client={data.get('amount')}, server={quote.amount_due}")
    try:
        response = start_payment(
            PaymentContextTypeEnum.UPGRADE,
            buy_order=f"UPG-{subscription.id}", session_id=str(user_id), amount=quote.amount_due,
            return_url=_backend_url('/api/subscriptions/upgrade/webpay/return'),
            subscription_id=subscription.id, new_plan_id=new_plan,
        )
        subscription.webpay_token = response['token']
        subscription.payment_status = PaymentStatusEnum.PENDING
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error initializing upgrade payment for {subscription.id}: {e}", exc_info=True)
        return error_response('WEBPAY_INIT_ERROR', "Failed to initialize upgrade payment", 500, details=diagnostic_details(e))
    return jsonify(success=True, token=response['token'], url=response.get('url'),
                   subscription_id=subscription.id, amount=quote.amount_due)


@subscriptions_bp.route('/upgrade/webpay/return', methods=['GET', 'POST'])
def upgrade_webpay_return():
    token = extract_token()
    if not token:
        return _result_redirect(status='error', message='missing_token')
    try:
        context, response, approved = confirm_payment(token, PaymentContextTypeEnum.UPGRADE)
        subscription = db.session.get(Subscription, context.subscription_id)
        if subscription is None:
            db.session.rollback()
            return _result_redirect(status='error', message='subscription_not_found')

        if response is not None:
            if approved:
                activate_paid_period(subscription, context.new_plan_id, now=utcnow(),
                                     transaction_id=response.get('transaction_date'))
                subscription.payment_status = PaymentStatusEnum.PAID
            else:
                # The current period stays paid
                subscription.payment_status = PaymentStatusEnum.PAID
                subscription.webpay_token = None
            db.session.commit()
            current_app.logger.info(f"Upgrade payment for subscription {subscription.id} {'approved' if approved else 'rejected'}")
        if approved:
            return _result_redirect(subscriptionId=subscription.id, status='upgraded', plan=context.new_plan_id.value)
        return _result_redirect(subscriptionId=subscription.id, status='upgrade_failed')
    except PaymentContextNotFound:
        db.session.rollback()
        return _result_redirect(status='error', message='subscription_not_found')
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error processing upgrade Webpay return: {e}", exc_info=True)
        return _result_redirect(status='error')


# --- Admin ---
@subscriptions_bp.route('/admin/all', methods=['GET'])
@admin_required
def admin_get_subscriptions():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    query = Subscription.query
    status = request.args.get('status')
    if status:
        try:
            query = query.filter(Subscription.status == SubscriptionStatusEnum(status.upper()))
        except ValueError:
            return error_response('INVALID_STATUS', f"Unknown subscription status '{status}'", 400)
    pagination = query.order_by(Subscription.created_at.desc(), Subscription.id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)
    subscriptions = []
    for sub in pagination.items:
        entry = sub.to_dict()
        entry["user_email"] = sub.user.email if sub.user else None
        subscriptions.append(entry)
    return jsonify(success=True, subscriptions=subscriptions, pagination=pagination_dict(page, limit, pagination.total))


@subscriptions_bp.route('/admin/analytics', methods=['GET'])
@admin_required
def admin_subscription_analytics():
    try:
        return jsonify(success=True, analytics=subscription_analytics())
    except Exception as e:
        current_app.logger.error(f"Error fetching subscription analytics: {e}", exc_info=True)
        return error_response('ANALYTICS_FETCH_ERROR', "Failed to fetch subscription analytics", 500)
