# tests/test_catalog.py
from vmcandles import db
from vmcandles.models import Product, OrderItem, PaymentStatusEnum

from conftest import make_order


def test_list_products_in_requested_language(client, catalog):
    response = client.get('/api/products?language=en&category=candles')
    assert response.status_code == 200
    body = response.get_json()
    assert [p["id"] for p in body["products"]] == ['1', '2']
    assert body["products"][0]["name"] == 'Candle 1'
    assert body["pagination"]["total"] == 2


def test_unknown_category_is_rejected(client, catalog):
    response = client.get('/api/products?category=lamps')
    assert response.status_code == 400
    assert response.get_json()["error_code"] == 'INVALID_CATEGORY'


def test_missing_translation_falls_back_to_untranslated(client, catalog):
    response = client.get('/api/products/1?language=FR')
    assert response.status_code == 200
    product = response.get_json()["product"]
    assert product["name"] == 'Untranslated'
    assert {t["language"] for t in product["translations"]} == {'ES', 'EN'}


def test_admin_creates_product_with_translations(client, admin_headers):
    payload = {
        "id": "acc-9", "category": "ACCESSORIES", "price": 19.5,
        "translations": [{"language": "ES", "name": "Bandeja"}, {"language": "EN", "name": "Tray"}],
    }
    response = client.post('/api/products', json=payload, headers=admin_headers)
    assert response.status_code == 201
    assert response.get_json()["product"]["name"] == 'Bandeja'

    duplicate = client.post('/api/products', json=payload, headers=admin_headers)
    assert duplicate.status_code == 400
    assert duplicate.get_json()["error_code"] == 'PRODUCT_EXISTS'


def test_product_admin_routes_require_admin(client, catalog, user_headers):
    response = client.put('/api/products/1', json={"price": 1}, headers=user_headers)
    assert response.status_code == 403
    assert response.get_json()["error_code"] == 'FORBIDDEN'


def test_upsert_translation(client, catalog, admin_headers):
    response = client.put('/api/products/1/translations/fr', json={"name": "Rituel de Calme"}, headers=admin_headers)
    assert response.status_code == 200
    assert client.get('/api/products/1?language=FR').get_json()["product"]["name"] == 'Rituel de Calme'

    invalid = client.put('/api/products/1/translations/xx', json={"name": "?"}, headers=admin_headers)
    assert invalid.get_json()["error_code"] == 'INVALID_LANGUAGE'


def test_delete_product_keeps_order_history(client, catalog, user, admin_headers):
    order = make_order(user, [(catalog["calm"], 1)], payment_status=PaymentStatusEnum.PAID)
    response = client.delete('/api/products/1', headers=admin_headers)
    assert response.status_code == 200
    assert db.session.get(Product, '1') is None
    item = OrderItem.query.filter_by(order_id=order.id).one()
    assert item.product_id is None
    assert item.product_name == 'Vela 1'


def test_review_is_verified_only_after_paid_purchase(client, catalog, user, other_user, user_headers):
    from conftest import auth_headers
    make_order(user, [(catalog["calm"], 2)], payment_status=PaymentStatusEnum.PAID)
    make_order(other_user, [(catalog["calm"], 1)])

    verified = client.post('/api/products/1/reviews', json={"rating": 5, "comment": "Precioso"}, headers=user_headers)
    assert verified.status_code == 201
    assert verified.get_json()["review"]["is_verified"] is True

    unverified = client.post('/api/products/1/reviews', json={"rating": 3}, headers=auth_headers(other_user))
    assert unverified.status_code == 201
    assert unverified.get_json()["review"]["is_verified"] is False

    listing = client.get('/api/products/1/reviews').get_json()
    assert listing["stats"] == {"average_rating": 4.0, "total_reviews": 2}


def test_review_rules(client, catalog, user_headers):
    assert client.post('/api/products/1/reviews', json={"rating": 6}, headers=user_headers)\
        .get_json()["error_code"] == 'INVALID_RATING'
    assert client.post('/api/products/nope/reviews', json={"rating": 4}, headers=user_headers)\
        .get_json()["error_code"] == 'PRODUCT_NOT_FOUND'
    assert client.post('/api/products/1/reviews', json={"rating": 4}, headers=user_headers).status_code == 201
    assert client.post('/api/products/1/reviews', json={"rating": 4}, headers=user_headers)\
        .get_json()["error_code"] == 'REVIEW_EXISTS'


def test_only_owner_edits_but_admin_may_delete_review(client, catalog, user_headers, other_user, admin_headers):
    from conftest import auth_headers
    review_id = client.post('/api/products/2/reviews', json={"rating": 4}, headers=user_headers).get_json()["review"]["id"]

    assert client.put(f'/api/reviews/{review_id}', json={"rating": 1}, headers=auth_headers(other_user)).status_code == 404
    assert client.put(f'/api/reviews/{review_id}', json={"rating": 2}, headers=user_headers).get_json()["review"]["rating"] == 2
    assert client.delete(f'/api/reviews/{review_id}', headers=admin_headers).status_code == 200
    assert client.get('/api/reviews/my-reviews', headers=user_headers).get_json()["reviews"] == []


def test_wishlist_flow(client, catalog, user_headers):
    assert client.post('/api/wishlist/1', headers=user_headers).status_code == 201
    duplicate = client.post('/api/wishlist/1', headers=user_headers)
    assert duplicate.get_json()["error_code"] == 'ALREADY_IN_WISHLIST'
    assert client.get('/api/wishlist/check/1', headers=user_headers).get_json()["in_wishlist"] is True
    assert client.get('/api/wishlist', headers=user_headers).get_json()["count"] == 1

    assert client.delete('/api/wishlist/1', headers=user_headers).status_code == 200
    missing = client.delete('/api/wishlist/1', headers=user_headers)
    assert missing.status_code == 404
    assert missing.get_json()["error_code"] == 'WISHLIST_ITEM_NOT_FOUND'


def test_profile_addresses_keep_single_default(client, user_headers):
    first = client.post('/api/profile/addresses', headers=user_headers, json={
        "street": "Los Leones 10", "city": "Santiago", "region": "RM", "postal_code": "7510000", "is_default": True})
    second = client.post('/api/profile/addresses', headers=user_headers, json={
        "street": "Apoquindo 200", "city": "Las Condes", "region": "RM", "postal_code": "7550000", "is_default": True})
    assert first.status_code == 201 and second.status_code == 201

    addresses = client.get('/api/profile/addresses', headers=user_headers).get_json()["addresses"]
    defaults = [a for a in addresses if a["is_default"]]
    assert len(defaults) == 1
    assert defaults[0]["street"] == "Apoquindo 200"
