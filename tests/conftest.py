# tests/conftest.py
import itertools

import pytest
from flask_jwt_extended import create_access_token
from transbank.error.transaction_commit_error import TransactionCommitError
from transbank.error.transaction_create_error import TransactionCreateError
from transbank.webpay.webpay_plus.transaction import Transaction

from vmcandles import create_app, db
from vmcandles.models import (
    User, Profile, Address, Product, ProductTranslation, UserRoleEnum,
    CustomerTypeEnum, LanguageEnum, ProductCategoryEnum
)


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config.update(
        INVOICE_PDF_PATH=str(tmp_path / 'invoices'),
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email, role=UserRoleEnum.USER, first_name='Ana', last_name='Rojas',
              customer_type=CustomerTypeEnum.INDIVIDUAL, tax_id=None, password='Secret123!'):
    user = User(email=email, role=role)
    user.set_password(password)
    user.profile = Profile(first_name=first_name, last_name=last_name, phone='+56911111111',
                           customer_type=customer_type, tax_id=tax_id)
    db.session.add(user)
    db.session.commit()
    return user


def make_product(product_id, price, category=ProductCategoryEnum.CANDLES, stock=20, in_stock=True,
                 name_es=None, name_en=None):
    product = Product(id=product_id, category=category, price=price, image=f"/images/{product_id}.png",
                      images=[], stock=stock, in_stock=in_stock)
    db.session.add(product)
    db.session.add(ProductTranslation(product=product, language=LanguageEnum.ES, name=name_es or f"Vela {product_id}"))
    db.session.add(ProductTranslation(product=product, language=LanguageEnum.EN, name=name_en or f"Candle {product_id}"))
    db.session.commit()
    return product


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(identity=user)}"}


@pytest.fixture
def user(app):
    return make_user('ana@example.com')


@pytest.fixture
def other_user(app):
    return make_user('pedro@example.com', first_name='Pedro', last_name='Soto')


@pytest.fixture
def admin(app):
    return make_user('admin@vmcandles.com', role=UserRoleEnum.ADMIN, first_name='Admin', last_name='V&M')


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def address(user):
    addr = Address(user_id=user.id, street='Av. Providencia 1234', city='Santiago',
                   region='Metropolitana', postal_code='7500000', is_default=True)
    db.session.add(addr)
    db.session.commit()
    return addr


@pytest.fixture
def catalog(app):
    return {
        "calm": make_product('1', 48.0),
        "balance": make_product('2', 52.0),
        "snuffer": make_product('acc-1', 25.0, category=ProductCategoryEnum.ACCESSORIES),
        "trimmer": make_product('acc-2', 28.0, category=ProductCategoryEnum.ACCESSORIES),
    }


class FakeGateway:
    """Stands in for the Transbank SDK calls; outcomes are set per token."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.created = []
        self.commits = []
        self.outcomes = {}
        self.fail_create = False
        self.fail_commit = False

    def create_transaction(self, buy_order, session_id, amount, return_url):
        if self.fail_create:
            raise TransactionCreateError("gateway unavailable", 500)
        token = f"tok-{next(self._ids):04d}"
        self.created.append({"token": token, "buy_order": buy_order, "amount": amount, "return_url": return_url})
        return {"token": token, "url": "https://webpay3gint.transbank.cl/webpayserver/initTransaction"}

    def commit_transaction(self, token):
        if self.fail_commit:
            raise TransactionCommitError("gateway unavailable", 500)
        self.commits.append(token)
        if self.outcomes.get(token, 'approved') == 'approved':
            return {"status": "AUTHORIZED", "response_code": 0, "authorization_code": "1213",
                    "transaction_date": "2024-05-01T12:00:00.000Z"}
        return {"status": "FAILED", "response_code": -1, "transaction_date": "2024-05-01T12:00:00.000Z"}


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(Transaction, 'create',
                        lambda self, buy_order, session_id, amount, return_url: fake.create_transaction(buy_order, session_id, amount, return_url))
    monkeypatch.setattr(Transaction, 'commit', lambda self, token: fake.commit_transaction(token))
    return fake


def make_order(user, items, payment_status=None, status=None, created_at=None, order_id=None):
    """Creates an order directly; items is a list of (product, quantity)."""
    from vmcandles.models import Order, OrderItem, OrderStatusEnum, PaymentStatusEnum
    from vmcandles.orders.routes import next_order_id

    order = Order(
        id=order_id or next_order_id(), user_id=user.id,
        status=status or OrderStatusEnum.PENDING,
        payment_status=payment_status or PaymentStatusEnum.PENDING,
        customer_name=user.profile.full_name, customer_email=user.email,
        customer_type=user.profile.customer_type, customer_tax_id=user.profile.tax_id,
        shipping_street='Av. Providencia 1234', shipping_city='Santiago', shipping_region='Metropolitana',
        shipping_postal_code='7500000', shipping_country='Chile',
        subtotal=0.0, shipping_cost=0.0, total=0.0,
    )
    if created_at is not None:
        order.created_at = created_at
    subtotal = 0.0
    for product, quantity in items:
        line_total = product.price * quantity
        subtotal += line_total
        order.items.append(OrderItem(product_id=product.id, product_name=product.translation_for('ES').name,
                                     price=product.price, quantity=quantity, subtotal=line_total))
    order.subtotal = subtotal
    order.total = subtotal
    db.session.add(order)
    db.session.commit()
    return order
