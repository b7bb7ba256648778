# vmcandles/services/webpay_service.py
from flask import current_app, request
from transbank.common.integration_type import IntegrationType
from transbank.common.options import WebpayOptions
from transbank.error.transbank_error import TransbankError
from transbank.webpay.webpay_plus.transaction import Transaction

from .. import db
from ..models import PaymentContext
from ..utils import utcnow, json_body


class WebpayError(Exception):
    """Raised when Transbank cannot be reached or rejects a call."""
    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class PaymentContextNotFound(Exception):
    pass


class WebpayService:
    """Webpay Plus hosted-redirect transactions through the Transbank SDK."""

    def __init__(self, commerce_code, api_key, environment='integration'):
        self.environment = environment
        integration_type = IntegrationType.LIVE if environment == 'production' else IntegrationType.TEST
        self.transaction = Transaction(WebpayOptions(commerce_code, api_key, integration_type))

    @classmethod
    def from_config(cls, config):
        return cls(
            commerce_code=config['WEBPAY_COMMERCE_CODE'],
            api_key=config['WEBPAY_API_KEY'],
            environment=config.get('WEBPAY_ENVIRONMENT', 'integration'),
        )

    def create_transaction(self, buy_order, session_id, amount, return_url):
        """Returns {'token': ..., 'url': ...} for the browser redirect."""
        try:
            return self.transaction.create(str(buy_order), str(session_id), int(amount), return_url)
        except TransbankError as e:
            raise WebpayError(f"Webpay create failed: {getattr(e, 'message', e)}",
                              status_code=getattr(e, 'code', None)) from e

    def commit_transaction(self, token):
        try:
            return self.transaction.commit(token)
        except TransbankError as e:
            raise WebpayError(f"Webpay commit failed: {getattr(e, 'message', e)}",
                              status_code=getattr(e, 'code', None)) from e

    @staticmethod
    def is_approved(commit_response):
        return commit_response.get('status') == 'AUTHORIZED' and commit_response.get('response_code') == 0


def get_webpay_service():
    return WebpayService.from_config(current_app.config)


def start_payment(context_type, buy_order, session_id, amount, return_url,
                  order_id=None, subscription_id=None, new_plan_id=None):
    """
    Creates the gateway transaction and stages a PaymentContext keyed by its token.
    The caller commits the session together with its own changes.
    """
    response = get_webpay_service().create_transaction(buy_order, session_id, amount, return_url)
    token = response.get('token')
    if not token:
        raise WebpayError("Webpay did not return a token", payload=response)

    db.session.add(PaymentContext(
        token=token,
        context_type=context_type,
        order_id=order_id,
        subscription_id=subscription_id,
        new_plan_id=new_plan_id,
        buy_order=str(buy_order),
        amount=int(amount),
    ))
    current_app.logger.info(f"Webpay transaction created: type={context_type.value}, buy_order={buy_order}, amount={amount}")
    return response


def confirm_payment(token, context_type):
    """
    Commits the transaction behind `token` and returns (context, commit_response, approved).

    A context that was already consumed is not committed again; commit_response is
    None and `approved` reflects the recorded outcome.
    """
    context = db.session.get(PaymentContext, token)
    if not context or context.context_type != context_type:
        raise PaymentContextNotFound(token)

    if context.consumed_at is not None:
        current_app.logger.info(f"Repeated Webpay callback for already processed token (buy_order={context.buy_order}).")
        return context, None, context.outcome == 'approved'

    response = get_webpay_service().commit_transaction(token)
    approved = WebpayService.is_approved(response)
    context.consumed_at = utcnow()
    context.outcome = 'approved' if approved else 'rejected'
    current_app.logger.info(
        f"Webpay commit for buy_order={context.buy_order}: status={response.get('status')}, "
        f"response_code={response.get('response_code')}, authorization_code={response.get('authorization_code')}"
    )
    return context, response, approved


def extract_token():
    """token_ws arrives as form data (POST), JSON or query string depending on the flow."""
    token = request.form.get('token_ws') or request.args.get('token_ws')
    if not token and request.is_json:
        token = json_body().get('token_ws')
    return token
