# tests/test_cart_orders.py
import pytest

from vmcandles import db
from vmcandles.models import Order, Product, CartItem, OrderStatusEnum


def add_to_cart(client, headers, product_id, quantity=1):
    return client.post('/api/cart/items', json={"product_id": product_id, "quantity": quantity}, headers=headers)


def test_cart_merges_quantities_and_snapshots_spanish_name(client, catalog, user_headers):
    add_to_cart(client, user_headers, '1', 1)
    response = add_to_cart(client, user_headers, '1', 2)
    assert response.status_code == 200
    cart = response.get_json()["cart"]
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    assert cart["items"][0]["name"] == 'Vela 1'
    assert cart["total_items"] == 3
    assert cart["total_amount"] == 144.0


def test_cart_input_errors(client, catalog, user_headers):
    assert add_to_cart(client, user_headers, '1', 0).get_json()["error_code"] == 'INVALID_INPUT'
    assert add_to_cart(client, user_headers, 'missing').get_json()["error_code"] == 'PRODUCT_NOT_FOUND'

    catalog["calm"].in_stock = False
    db.session.commit()
    assert add_to_cart(client, user_headers, '1').get_json()["error_code"] == 'OUT_OF_STOCK'


@pytest.mark.parametrize("body", [[1, 2], "1", 7, {"product_id": "1", "quantity": "2"}, {"product_id": "1", "quantity": True}])
def test_cart_rejects_malformed_bodies(client, catalog, user_headers, body):
    response = client.post('/api/cart/items', json=body, headers=user_headers)
    assert response.status_code == 400
    assert response.get_json()["error_code"] == 'INVALID_INPUT'
    assert CartItem.query.count() == 0


def test_update_and_remove_cart_item(client, catalog, user_headers, other_user):
    from conftest import auth_headers
    item_id = add_to_cart(client, user_headers, '2').get_json()["cart"]["items"][0]["id"]

    assert client.put(f'/api/cart/items/{item_id}', json={"quantity": 0}, headers=user_headers)\
        .get_json()["error_code"] == 'INVALID_QUANTITY'
    assert client.put(f'/api/cart/items/{item_id}', json={"quantity": 2}, headers=auth_headers(other_user))\
        .get_json()["error_code"] == 'CART_ITEM_NOT_FOUND'
    assert client.put(f'/api/cart/items/{item_id}', json={"quantity": 4}, headers=user_headers)\
        .get_json()["cart"]["total_items"] == 4
    assert client.delete(f'/api/cart/items/{item_id}', headers=user_headers).get_json()["cart"]["items"] == []


@pytest.mark.parametrize("items, expected_shipping, expected_total", [
    ([('1', 1)], 5.0, 53.0),
    ([('1', 1), ('2', 1)], 0.0, 100.0),
])
def test_checkout_applies_shipping_threshold(client, catalog, address, user_headers, items, expected_shipping, expected_total):
    for product_id, quantity in items:
        add_to_cart(client, user_headers, product_id, quantity)
    response = client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=user_headers)
    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["id"] == 'ORD-001'
    assert order["status"] == 'PENDING'
    assert order["payment_status"] == 'PENDING'
    assert order["shipping_cost"] == expected_shipping
    assert order["total"] == expected_total
    assert order["billing_address"]["street"] == address.street


def test_checkout_uses_catalog_prices_and_keeps_stock(client, catalog, address, user_headers):
    add_to_cart(client, user_headers, '1', 2)
    catalog["calm"].price = 50.0
    db.session.commit()

    order = client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=user_headers).get_json()["order"]
    assert order["items"][0]["price"] == 50.0
    assert order["subtotal"] == 100.0
    assert db.session.get(Product, '1').stock == 20
    assert CartItem.query.count() == 0


def test_checkout_errors(client, catalog, address, user_headers, other_user):
    from conftest import auth_headers
    assert client.post('/api/orders/checkout', json={}, headers=user_headers).get_json()["error_code"] == 'MISSING_ADDRESS'
    assert client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=user_headers)\
        .get_json()["error_code"] == 'EMPTY_CART'
    assert client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=auth_headers(other_user))\
        .get_json()["error_code"] == 'ADDRESS_NOT_FOUND'

    add_to_cart(client, user_headers, '2')
    catalog["balance"].in_stock = False
    db.session.commit()
    response = client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=user_headers)
    assert response.status_code == 400
    assert response.get_json()["details"] == {"product_id": '2'}


def test_failed_checkout_leaves_cart_untouched(client, catalog, address, user_headers, monkeypatch):
    import vmcandles.orders.routes as order_routes

    def broken_order_id():
        raise RuntimeError("sequence unavailable")

    add_to_cart(client, user_headers, '1')
    monkeypatch.setattr(order_routes, 'next_order_id', broken_order_id)
    response = client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=user_headers)
    assert response.status_code == 500
    assert response.get_json()["error_code"] == 'CHECKOUT_ERROR'
    assert Order.query.count() == 0
    assert CartItem.query.count() == 1


def test_order_ids_are_sequential(client, catalog, address, user_headers):
    ids = []
    for _ in range(2):
        add_to_cart(client, user_headers, 'acc-1')
        ids.append(client.post('/api/orders/checkout', json={"shipping_address_id": address.id}, headers=user_headers)
                   .get_json()["order"]["id"])
    assert ids == ['ORD-001', 'ORD-002']


def test_cancel_only_pending_orders(client, catalog, user, user_headers):
    from conftest import make_order
    pending = make_order(user, [(catalog["calm"], 1)])
    shipped = make_order(user, [(catalog["calm"], 1)], status=OrderStatusEnum.SHIPPED)

    assert client.put(f'/api/orders/{pending.id}/cancel', headers=user_headers).get_json()["order"]["status"] == 'CANCELLED'
    response = client.put(f'/api/orders/{shipped.id}/cancel', headers=user_headers)
    assert response.status_code == 400
    assert response.get_json()["error_code"] == 'INVALID_ORDER_STATUS'


def test_admin_order_management(client, catalog, user, admin_headers):
    from conftest import make_order
    order = make_order(user, [(catalog["calm"], 1)])

    assert client.put(f'/api/orders/admin/{order.id}/status', json={"status": "LOST"}, headers=admin_headers)\
        .get_json()["error_code"] == 'INVALID_STATUS'
    updated = client.patch(f'/api/orders/admin/{order.id}/status', json={"status": "shipped"}, headers=admin_headers)
    assert updated.get_json()["order"]["status"] == 'SHIPPED'
    assert updated.get_json()["order"]["shipped_at"] is not None

    tracking = client.put(f'/api/orders/admin/{order.id}/tracking', headers=admin_headers,
                          json={"tracking_number": "CL123", "carrier": "Chilexpress"})
    assert tracking.get_json()["order"]["carrier"] == 'Chilexpress'

    listing = client.get(f'/api/orders/admin/all?user_id={user.id}', headers=admin_headers).get_json()
    assert listing["pagination"]["total"] == 1


@pytest.mark.parametrize("body, error_code", [
    ([1], 'MISSING_ADDRESS'),
    ({"shipping_address_id": [1]}, 'INVALID_INPUT'),
    ({"shipping_address_id": "1"}, 'INVALID_INPUT'),
    ({"shipping_address_id": 1, "billing_address_id": {"id": 1}}, 'INVALID_INPUT'),
])
def test_checkout_rejects_malformed_bodies(client, catalog, address, user_headers, body, error_code):
    add_to_cart(client, user_headers, '1')
    response = client.post('/api/orders/checkout', json=body, headers=user_headers)
    assert response.status_code == 400
    assert response.get_json()["error_code"] == error_code
    assert CartItem.query.count() == 1


def test_register_login_shop_and_checkout_over_http(client, catalog):
    registered = client.post('/api/auth/register', json={
        "email": "Lucia@Example.com", "password": "Velas2024!",
        "first_name": "Lucía", "last_name": "Rojas",
    })
    assert registered.status_code == 201

    login = client.post('/api/auth/login', json={"email": "lucia@example.com", "password": "Velas2024!"})
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.get_json()['token']}"}

    address = client.post('/api/profile/addresses', json={
        "street": 'Av. Italia 850', "city": 'Santiago', "region": 'Metropolitana', "postal_code": '7500000',
    }, headers=headers)
    assert address.status_code == 201
    address_id = address.get_json()["address"]["id"]

    assert add_to_cart(client, headers, '1', 2).status_code == 200
    assert add_to_cart(client, headers, '1', 1).status_code == 200
    cart = client.get('/api/cart', headers=headers).get_json()["cart"]
    assert [(i["product_id"], i["quantity"]) for i in cart["items"]] == [('1', 3)]

    checkout = client.post('/api/orders/checkout', json={"shipping_address_id": address_id}, headers=headers)
    assert checkout.status_code == 201
    order = checkout.get_json()["order"]
    assert order["shipping_cost"] == 0.0
    assert order["subtotal"] == 48.0 * 3
    assert order["total"] == order["subtotal"] + order["shipping_cost"] == 144.0
    assert order["customer_email"] == 'lucia@example.com'

    assert client.get('/api/cart', headers=headers).get_json()["cart"]["items"] == []
    assert client.get(f'/api/orders/{order["id"]}', headers=headers).get_json()["order"]["id"] == order["id"]
