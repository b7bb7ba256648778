# tests/test_payments.py
from urllib.parse import urlparse, parse_qs

from vmcandles import db
from vmcandles.models import Order, PaymentContext, PaymentStatusEnum, OrderStatusEnum

from conftest import make_order


def redirect_params(response):
    assert response.status_code == 302
    location = urlparse(response.headers['Location'])
    return location.path, {k: v[0] for k, v in parse_qs(location.query).items()}


def init_payment(client, headers, order_id):
    return client.post('/api/payments/webpay/init', json={"order_id": order_id}, headers=headers)


def test_init_creates_transaction_and_context(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    response = init_payment(client, user_headers, order.id)
    assert response.status_code == 200
    body = response.get_json()
    assert body["token"] == 'tok-0001'
    assert body["order_id"] == order.id

    assert gateway.created[0]["buy_order"] == order.id
    assert gateway.created[0]["amount"] == 48
    context = db.session.get(PaymentContext, 'tok-0001')
    assert context.order_id == order.id
    assert context.consumed_at is None
    assert db.session.get(Order, order.id).webpay_token == 'tok-0001'


def test_init_rejects_foreign_or_settled_orders(client, catalog, user, other_user, user_headers, gateway):
    foreign = make_order(other_user, [(catalog["calm"], 1)])
    paid = make_order(user, [(catalog["calm"], 1)], payment_status=PaymentStatusEnum.PAID)

    assert init_payment(client, user_headers, None).get_json()["error_code"] == 'MISSING_ORDER_ID'
    assert init_payment(client, user_headers, foreign.id).get_json()["error_code"] == 'ORDER_NOT_FOUND'
    assert init_payment(client, user_headers, paid.id).get_json()["error_code"] == 'INVALID_PAYMENT_STATUS'
    assert gateway.created == []


def test_gateway_failure_reports_init_error(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    gateway.fail_create = True
    response = init_payment(client, user_headers, order.id)
    assert response.status_code == 500
    body = response.get_json()
    assert body["error_code"] == 'WEBPAY_INIT_ERROR'
    assert 'gateway unavailable' in body["details"]
    assert PaymentContext.query.count() == 0


def test_approved_return_marks_order_paid(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    token = init_payment(client, user_headers, order.id).get_json()["token"]

    path, params = redirect_params(client.post('/api/payments/webpay/return', data={"token_ws": token}))
    assert path == '/payment/result'
    assert params == {"orderId": order.id, "status": 'success'}

    order = db.session.get(Order, order.id)
    assert order.payment_status == PaymentStatusEnum.PAID
    assert order.status == OrderStatusEnum.PROCESSING
    assert order.webpay_transaction_id == '2024-05-01T12:00:00.000Z'


def test_rejected_return_marks_payment_failed(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    token = init_payment(client, user_headers, order.id).get_json()["token"]
    gateway.outcomes[token] = 'rejected'

    _, params = redirect_params(client.get(f'/api/payments/webpay/return?token_ws={token}'))
    assert params["status"] == 'failed'
    order = db.session.get(Order, order.id)
    assert order.payment_status == PaymentStatusEnum.FAILED
    assert order.status == OrderStatusEnum.PENDING


def test_repeated_callback_does_not_commit_twice(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    token = init_payment(client, user_headers, order.id).get_json()["token"]

    client.post('/api/payments/webpay/return', data={"token_ws": token})
    _, params = redirect_params(client.post('/api/payments/webpay/return', data={"token_ws": token}))

    assert params["status"] == 'success'
    assert gateway.commits == [token]
    assert db.session.get(Order, order.id).payment_status == PaymentStatusEnum.PAID


def test_return_without_or_with_unknown_token(client, gateway):
    _, params = redirect_params(client.post('/api/payments/webpay/return'))
    assert params == {"status": 'error', "message": 'missing_token'}

    _, params = redirect_params(client.post('/api/payments/webpay/return', data={"token_ws": 'tok-9999'}))
    assert params == {"status": 'error', "message": 'order_not_found'}
    assert gateway.commits == []


def test_order_token_cannot_complete_subscription_flow(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    token = init_payment(client, user_headers, order.id).get_json()["token"]

    _, params = redirect_params(client.post('/api/subscriptions/webpay/return', data={"token_ws": token}))
    assert params["status"] == 'error'
    assert gateway.commits == []
    assert db.session.get(Order, order.id).payment_status == PaymentStatusEnum.PENDING


def test_payment_status_visible_to_owner_and_admin(client, catalog, user, other_user, user_headers, admin_headers):
    from conftest import auth_headers
    order = make_order(user, [(catalog["calm"], 1)])
    assert client.get(f'/api/payments/order/{order.id}', headers=user_headers).get_json()["payment"]["payment_status"] == 'PENDING'
    assert client.get(f'/api/payments/order/{order.id}', headers=admin_headers).status_code == 200
    assert client.get(f'/api/payments/order/{order.id}', headers=auth_headers(other_user)).status_code == 404
