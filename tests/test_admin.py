# tests/test_admin.py
import io
from datetime import timedelta

import pytest

from vmcandles import db
from vmcandles.database import populate_initial_data
from vmcandles.models import (
    User, Product, AudioContent, AudioAccessKey, Subscription, UserRoleEnum,
    OrderStatusEnum, PaymentStatusEnum, SubscriptionPlanEnum, SubscriptionStatusEnum
)
from vmcandles.utils import utcnow, add_months

from conftest import make_order

PAID = PaymentStatusEnum.PAID
PROCESSING = OrderStatusEnum.PROCESSING


@pytest.fixture
def sales(catalog, user, other_user):
    make_order(user, [(catalog["calm"], 2)], payment_status=PAID, status=PROCESSING)
    make_order(user, [(catalog["snuffer"], 1)], payment_status=PAID, status=PROCESSING)
    make_order(other_user, [(catalog["calm"], 1), (catalog["balance"], 1)], payment_status=PAID, status=PROCESSING)
    make_order(other_user, [(catalog["trimmer"], 3)])


# --- Dashboard analytics ---
def test_dashboard_counts_paid_orders_only(client, sales, admin_headers):
    response = client.get('/api/admin/analytics/dashboard', headers=admin_headers)
    assert response.status_code == 200
    analytics = response.get_json()["analytics"]

    assert analytics["revenue"]["total"] == 221.0
    assert analytics["revenue"]["this_month"] == 221.0
    assert analytics["revenue"]["growth"] == 100.0
    assert analytics["revenue"]["avg_order_value"] == 73.67
    assert analytics["orders"]["total"] == 4
    assert analytics["orders"]["paid"] == 3
    assert analytics["orders"]["by_status"]["PROCESSING"] == 3
    assert analytics["orders"]["by_status"]["PENDING"] == 1
    assert analytics["customers"]["total_with_orders"] == 2

    top = analytics["top_products"]
    assert top[0] == {"product_id": '1', "name": 'Vela 1', "quantity_sold": 3, "revenue": 144.0}
    assert {p["product_id"] for p in top} == {'1', '2', 'acc-1'}

    by_category = {c["category"]: (c["revenue"], c["items_sold"]) for c in analytics["revenue_by_category"]}
    assert by_category == {"CANDLES": (196.0, 4), "ACCESSORIES": (25.0, 1)}

    assert len(analytics["sales_over_time"]) == 30
    assert sum(day["revenue"] for day in analytics["sales_over_time"]) == 221.0
    assert len(analytics["recent_orders"]) == 4


def test_dashboard_requires_admin(client, user_headers):
    response = client.get('/api/admin/analytics/dashboard', headers=user_headers)
    assert response.status_code == 403


def test_customer_list_and_search(client, sales, admin_headers):
    body = client.get('/api/admin/analytics/customers', headers=admin_headers).get_json()
    assert body["pagination"]["total"] == 2

    found = client.get('/api/admin/analytics/customers?search=pedro', headers=admin_headers).get_json()["customers"]
    assert len(found) == 1
    assert found[0]["email"] == 'pedro@example.com'
    assert found[0]["total_orders"] == 2
    assert found[0]["total_spent"] == 100.0
    assert found[0]["avg_order_value"] == 50.0


def test_customer_details(client, sales, user, admin_headers):
    customer = client.get(f'/api/admin/analytics/customers/{user.id}', headers=admin_headers).get_json()["customer"]
    stats = customer["statistics"]
    assert stats["total_orders"] == 2
    assert stats["paid_orders"] == 2
    assert stats["lifetime_value"] == 121.0
    assert stats["avg_order_value"] == 60.5
    assert len(customer["order_history"]) == 2

    missing = client.get('/api/admin/analytics/customers/9999', headers=admin_headers)
    assert missing.status_code == 404
    assert missing.get_json()["error_code"] == 'CUSTOMER_NOT_FOUND'


def test_customer_stats_retention(client, sales, user, admin_headers):
    stats = client.get('/api/admin/analytics/customer-stats', headers=admin_headers).get_json()["stats"]
    assert stats["total_customers"] == 2
    assert stats["customers_with_orders"] == 2
    assert stats["repeat_customers"] == 1
    assert stats["customer_retention_rate"] == 50.0
    assert stats["top_customers"][0]["id"] == user.id
    assert stats["top_customers"][0]["total_spent"] == 121.0


# --- User management ---
def test_list_users_by_role(client, user, other_user, admin, admin_headers):
    admins = client.get('/api/users?role=admin', headers=admin_headers).get_json()["users"]
    assert [u["email"] for u in admins] == ['admin@vmcandles.com']
    invalid = client.get('/api/users?role=boss', headers=admin_headers)
    assert invalid.get_json()["error_code"] == 'INVALID_ROLE'

    stats = client.get('/api/users/stats', headers=admin_headers).get_json()["stats"]
    assert stats["total_users"] == 3
    assert stats["admin_count"] == 1
    assert stats["regular_users_count"] == 2
    assert stats["users_by_type"] == {"INDIVIDUAL": 3}


def test_create_user(client, user, admin_headers):
    missing = client.post('/api/users', json={"email": 'new@example.com'}, headers=admin_headers)
    assert missing.get_json()["error_code"] == 'MISSING_FIELDS'
    weak = client.post('/api/users', json={"email": 'new@example.com', "password": 'short'}, headers=admin_headers)
    assert weak.get_json()["error_code"] == 'VALIDATION_ERROR'
    duplicate = client.post('/api/users', json={"email": 'ANA@example.com', "password": 'Secret123!'}, headers=admin_headers)
    assert duplicate.get_json()["error_code"] == 'USER_EXISTS'

    created = client.post('/api/users', headers=admin_headers, json={
        "email": 'staff@vmcandles.com', "password": 'Staff123!', "first_name": 'Sofía', "last_name": 'Mora', "role": 'admin'})
    assert created.status_code == 201
    assert created.get_json()["user"]["role"] == 'ADMIN'
    assert User.query.filter_by(email='staff@vmcandles.com').one().check_password('Staff123!')


def test_update_user(client, user, other_user, admin_headers):
    conflict = client.put(f'/api/users/{user.id}', json={"email": 'pedro@example.com'}, headers=admin_headers)
    assert conflict.get_json()["error_code"] == 'EMAIL_EXISTS'

    updated = client.put(f'/api/users/{user.id}', json={"first_name": 'Anita', "last_name": None},
                         headers=admin_headers).get_json()["user"]
    assert updated["profile"]["first_name"] == 'Anita'
    assert updated["profile"]["last_name"] == 'Rojas'


def test_role_changes(client, user, admin, admin_headers):
    assert client.put(f'/api/users/{admin.id}/role', json={"role": 'USER'},
                      headers=admin_headers).get_json()["error_code"] == 'CANNOT_DEMOTE_SELF'
    assert client.put(f'/api/users/{user.id}/role', json={"role": 'owner'},
                      headers=admin_headers).get_json()["error_code"] == 'INVALID_ROLE'

    promoted = client.put(f'/api/users/{user.id}/role', json={"role": 'admin'}, headers=admin_headers)
    assert promoted.get_json()["role"] == 'ADMIN'
    assert db.session.get(User, user.id).role == UserRoleEnum.ADMIN


def test_delete_user_rules(client, catalog, user, other_user, admin, admin_headers):
    make_order(user, [(catalog["calm"], 1)])
    key = AudioAccessKey(key_code='VM-PROMO-GIFT2', plan_id=SubscriptionPlanEnum.QUARTERLY, duration_months=3,
                         is_redeemed=True, redeemed_by_user_id=other_user.id)
    db.session.add(key)
    db.session.commit()

    assert client.delete(f'/api/users/{admin.id}', headers=admin_headers).get_json()["error_code"] == 'CANNOT_DELETE_SELF'
    assert client.delete(f'/api/users/{user.id}', headers=admin_headers).get_json()["error_code"] == 'USER_HAS_ORDERS'
    assert client.delete('/api/users/9999', headers=admin_headers).get_json()["error_code"] == 'USER_NOT_FOUND'

    other_id = other_user.id
    deleted = client.delete(f'/api/users/{other_id}', headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.get_json()["deleted_user"] == {"id": other_id, "email": 'pedro@example.com'}
    assert db.session.get(User, other_id) is None
    key = AudioAccessKey.query.filter_by(key_code='VM-PROMO-GIFT2').one()
    assert key.is_redeemed is True
    assert key.redeemed_by_user_id is None


def test_user_routes_require_admin(client, user, user_headers):
    assert client.get('/api/users', headers=user_headers).status_code == 403
    assert client.get('/api/users').status_code == 401


# --- Inventory ---
def test_inventory_updates_and_filters(client, catalog, admin_headers):
    low = client.patch('/api/admin/inventory/1', json={"stock": 3, "adjustment_note": 'recount'}, headers=admin_headers)
    assert low.get_json()["product"]["stock_status"] == 'low-stock'
    out = client.patch('/api/admin/inventory/2', json={"stock": 0}, headers=admin_headers).get_json()["product"]
    assert out["stock_status"] == 'out-of-stock'
    assert out["in_stock"] is False

    listed = client.get('/api/admin/inventory?stock_status=low-stock', headers=admin_headers).get_json()["products"]
    assert [p["id"] for p in listed] == ['1']
    assert client.get('/api/admin/inventory/low-stock', headers=admin_headers).get_json()["count"] == 1
    ordered = client.get('/api/admin/inventory?sort_by=stock', headers=admin_headers).get_json()["products"]
    assert [p["id"] for p in ordered][:2] == ['2', '1']

    stats = client.get('/api/admin/inventory/stats', headers=admin_headers).get_json()["stats"]
    assert stats["out_of_stock"] == 1
    assert stats["low_stock"] == 1
    assert stats["in_stock"] == 2
    assert stats["total_stock_value"] == 1204.0

    restocked = client.patch('/api/admin/inventory/2', json={"stock": 12}, headers=admin_headers).get_json()["product"]
    assert restocked["in_stock"] is True


@pytest.mark.parametrize("payload, code", [
    ({"stock": -1}, 'INVALID_STOCK'),
    ({"stock": 'ten'}, 'INVALID_STOCK'),
    ({"low_stock_threshold": 2.5}, 'INVALID_THRESHOLD'),
])
def test_inventory_rejects_bad_values(client, catalog, admin_headers, payload, code):
    response = client.patch('/api/admin/inventory/1', json=payload, headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json()["error_code"] == code
    assert db.session.get(Product, '1').stock == 20


def test_inventory_unknown_product(client, admin_headers):
    response = client.patch('/api/admin/inventory/nope', json={"stock": 1}, headers=admin_headers)
    assert response.get_json()["error_code"] == 'PRODUCT_NOT_FOUND'


# --- Uploads ---
def test_image_upload_is_served(client, admin_headers):
    response = client.post('/api/upload/image', headers=admin_headers, content_type='multipart/form-data',
                           data={"file": (io.BytesIO(b'fake-png-bytes'), 'Lavender Jar.png')})
    assert response.status_code == 201
    url = response.get_json()["url"]
    assert url.startswith('/uploads/images/')
    assert url.endswith('_lavender-jar.png')

    served = client.get(url)
    assert served.status_code == 200
    assert served.data == b'fake-png-bytes'


def test_upload_errors(client, admin_headers, user_headers):
    no_file = client.post('/api/upload/image', headers=admin_headers, content_type='multipart/form-data', data={})
    assert no_file.get_json()["error_code"] == 'NO_FILE'
    wrong_type = client.post('/api/upload/audio', headers=admin_headers, content_type='multipart/form-data',
                             data={"file": (io.BytesIO(b'text'), 'notes.txt')})
    assert wrong_type.get_json()["error_code"] == 'INVALID_FILE_TYPE'
    forbidden = client.post('/api/upload/image', headers=user_headers, content_type='multipart/form-data',
                            data={"file": (io.BytesIO(b'x'), 'a.png')})
    assert forbidden.status_code == 403


# --- Service endpoints and CLI ---
def test_health_and_root(client):
    health = client.get('/api/health')
    assert health.status_code == 200
    body = health.get_json()
    assert body["status"] == 'ok'
    assert body["database"] == 'connected'
    assert body["environment"] == 'testing'
    assert body["timestamp"].endswith('Z')

    assert client.get('/api').get_json()["name"] == 'V&M Candle Experience API'
    missing = client.get('/api/does-not-exist')
    assert missing.status_code == 404
    assert missing.get_json()["error_code"] == 'NOT_FOUND'


def test_seed_command_is_idempotent(app):
    runner = app.test_cli_runner()
    first = runner.invoke(args=['seed-db'])
    assert first.exit_code == 0
    assert Product.query.count() == 6
    assert AudioContent.query.count() == 19
    assert AudioAccessKey.query.count() == 5
    assert User.query.filter_by(email='admin@vmcandles.com').one().role == UserRoleEnum.ADMIN

    assert populate_initial_data() == {"users": 0, "products": 0, "translations": 0, "audio": 0, "access_keys": 0}
    assert Product.query.count() == 6


def test_renew_command_reports_counts(app, user):
    started_at = utcnow() - timedelta(days=40)
    db.session.add(Subscription(
        user_id=user.id, plan_id=SubscriptionPlanEnum.MONTHLY, status=SubscriptionStatusEnum.ACTIVE,
        payment_status=PaymentStatusEnum.PAID, amount=9990, auto_renew=True, started_at=started_at,
        expires_at=add_months(started_at, 1), next_renewal=add_months(started_at, 1),
    ))
    db.session.commit()

    result = app.test_cli_runner().invoke(args=['renew-subscriptions'])
    assert result.exit_code == 0
    assert 'Renewed: 1, skipped: 0, failed: 0, expired: 0' in result.output
