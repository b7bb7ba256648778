# tests/test_webpay_service.py
from urllib.parse import urlparse, parse_qs

import pytest
from transbank.common.integration_type import IntegrationType
from transbank.error.transaction_commit_error import TransactionCommitError
from transbank.error.transaction_create_error import TransactionCreateError
from transbank.webpay.webpay_plus.transaction import Transaction

from vmcandles import db
from vmcandles.models import Order, PaymentContext, PaymentContextTypeEnum, PaymentStatusEnum
from vmcandles.services.webpay_service import (
    WebpayService, WebpayError, PaymentContextNotFound, start_payment, confirm_payment
)

from conftest import make_order


def test_from_config_uses_test_environment_outside_production(app):
    service = WebpayService.from_config(app.config)
    options = service.transaction.options
    assert options.commerce_code == app.config['WEBPAY_COMMERCE_CODE']
    assert options.api_key == app.config['WEBPAY_API_KEY']
    assert options.integration_type == IntegrationType.TEST


def test_production_environment_selects_live_endpoint():
    service = WebpayService('597012345678', 'secret-key', environment='production')
    assert service.transaction.options.integration_type == IntegrationType.LIVE


def test_create_transaction_normalizes_arguments(monkeypatch):
    calls = []

    def fake_create(self, buy_order, session_id, amount, return_url):
        calls.append((buy_order, session_id, amount, return_url))
        return {"token": "tok-abc", "url": "https://webpay3gint.transbank.cl/webpayserver/initTransaction"}

    monkeypatch.setattr(Transaction, 'create', fake_create)
    service = WebpayService('597055555532', 'key')
    response = service.create_transaction(1042, 7, 48.0, 'http://backend.test/return')
    assert response["token"] == 'tok-abc'
    assert calls == [('1042', '7', 48, 'http://backend.test/return')]


def test_sdk_errors_become_webpay_errors(monkeypatch):
    def failing_create(self, *args):
        raise TransactionCreateError("Invalid amount", 422)

    def failing_commit(self, token):
        raise TransactionCommitError("Invalid token", 404)

    monkeypatch.setattr(Transaction, 'create', failing_create)
    monkeypatch.setattr(Transaction, 'commit', failing_commit)
    service = WebpayService('597055555532', 'key')

    with pytest.raises(WebpayError) as create_error:
        service.create_transaction('ORD-1', '1', 10, 'http://backend.test/return')
    assert create_error.value.status_code == 422
    assert 'Invalid amount' in str(create_error.value)

    with pytest.raises(WebpayError) as commit_error:
        service.commit_transaction('tok-x')
    assert commit_error.value.status_code == 404


@pytest.mark.parametrize("response, approved", [
    ({"status": "AUTHORIZED", "response_code": 0}, True),
    ({"status": "AUTHORIZED", "response_code": -1}, False),
    ({"status": "FAILED", "response_code": 0}, False),
    ({}, False),
])
def test_is_approved(response, approved):
    assert WebpayService.is_approved(response) is approved


def test_start_and_confirm_payment_consume_context_once(app, catalog, user, gateway):
    order = make_order(user, [(catalog["calm"], 2)])
    response = start_payment(PaymentContextTypeEnum.ORDER, buy_order=order.id, session_id=str(user.id),
                             amount=96, return_url='http://backend.test/return', order_id=order.id)
    db.session.commit()
    token = response["token"]

    context, commit_response, approved = confirm_payment(token, PaymentContextTypeEnum.ORDER)
    db.session.commit()
    assert approved is True
    assert commit_response["authorization_code"] == '1213'
    assert context.outcome == 'approved'

    _, second_response, approved_again = confirm_payment(token, PaymentContextTypeEnum.ORDER)
    assert second_response is None
    assert approved_again is True
    assert gateway.commits == [token]


def test_confirm_payment_rejects_token_of_another_flow(app, catalog, user, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    token = start_payment(PaymentContextTypeEnum.ORDER, buy_order=order.id, session_id=str(user.id),
                          amount=48, return_url='http://backend.test/return', order_id=order.id)["token"]
    db.session.commit()
    with pytest.raises(PaymentContextNotFound):
        confirm_payment(token, PaymentContextTypeEnum.SUBSCRIPTION)
    assert gateway.commits == []


def test_commit_failure_leaves_context_retryable(client, catalog, user, user_headers, gateway):
    order = make_order(user, [(catalog["calm"], 1)])
    token = client.post('/api/payments/webpay/init', json={"order_id": order.id},
                        headers=user_headers).get_json()["token"]

    gateway.fail_commit = True
    response = client.post('/api/payments/webpay/return', data={"token_ws": token})
    assert response.status_code == 302
    assert parse_qs(urlparse(response.headers['Location']).query)["status"] == ['error']
    assert db.session.get(PaymentContext, token).consumed_at is None

    gateway.fail_commit = False
    client.post('/api/payments/webpay/return', data={"token_ws": token})
    assert db.session.get(Order, order.id).payment_status == PaymentStatusEnum.PAID


def test_return_with_non_object_json_body_is_treated_as_missing_token(client):
    response = client.post('/api/payments/webpay/return', json=["tok-0001"])
    assert response.status_code == 302
    assert parse_qs(urlparse(response.headers['Location']).query)["message"] == ['missing_token']
