# tests/test_auth.py
import pytest

from vmcandles.models import AuditLog, User


def register_payload(**overrides):
    payload = {
        "email": "Nueva@Example.com", "password": "Velas2024!",
        "first_name": "Camila", "last_name": "Pérez", "phone": "+56922223333",
    }
    payload.update(overrides)
    return payload


def test_register_creates_user_with_profile(client):
    response = client.post('/api/auth/register', json=register_payload())
    assert response.status_code == 201
    body = response.get_json()
    assert body["success"] is True
    assert body["token"]
    assert body["user"]["email"] == "nueva@example.com"
    assert body["user"]["role"] == "USER"
    assert body["user"]["profile"]["first_name"] == "Camila"
    assert body["user"]["profile"]["preferred_language"] == "ES"


def test_register_rejects_duplicate_email(client, user):
    response = client.post('/api/auth/register', json=register_payload(email=user.email))
    assert response.status_code == 400
    assert response.get_json()["error_code"] == 'USER_EXISTS'


def test_register_validates_password_strength(client):
    response = client.post('/api/auth/register', json=register_payload(password='short'))
    assert response.status_code == 400
    body = response.get_json()
    assert body["error_code"] == 'VALIDATION_ERROR'
    assert any(e["field"] == 'password' for e in body["details"])


def test_register_business_requires_valid_rut(client):
    response = client.post('/api/auth/register', json=register_payload(customer_type='BUSINESS', tax_id='12345678-0'))
    assert response.status_code == 400
    assert any(e["field"] == 'tax_id' for e in response.get_json()["details"])

    response = client.post('/api/auth/register', json=register_payload(customer_type='BUSINESS', tax_id='76.543.210-3'))
    assert response.status_code == 201


def test_login_and_me(client, user):
    response = client.post('/api/auth/login', json={"email": "ANA@example.com", "password": "Secret123!"})
    assert response.status_code == 200
    token = response.get_json()["token"]

    me = client.get('/api/auth/me', headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    data = me.get_json()["user"]
    assert data["id"] == user.id
    assert data["addresses"] == []


def test_login_with_wrong_password_is_audited(client, user):
    response = client.post('/api/auth/login', json={"email": user.email, "password": "Wrong123!"})
    assert response.status_code == 401
    assert response.get_json()["error_code"] == 'INVALID_CREDENTIALS'
    assert AuditLog.query.filter_by(action='login_fail').count() == 1


def test_me_requires_token(client):
    response = client.get('/api/auth/me')
    assert response.status_code == 401
    assert response.get_json()["error_code"] == 'NO_TOKEN'


def test_token_for_deleted_user_is_rejected(client, app, user, user_headers):
    from vmcandles import db
    db.session.delete(user)
    db.session.commit()
    response = client.get('/api/auth/me', headers=user_headers)
    assert response.status_code in (401, 404)
    assert User.query.count() == 0


@pytest.mark.parametrize("overrides, field", [
    ({"email": 123}, 'email'),
    ({"email": ["nueva@example.com"]}, 'email'),
    ({"password": 12345678}, 'password'),
    ({"first_name": {"es": "Camila"}}, 'first_name'),
])
def test_register_rejects_wrongly_typed_fields(client, overrides, field):
    response = client.post('/api/auth/register', json=register_payload(**overrides))
    assert response.status_code == 400
    body = response.get_json()
    assert body["error_code"] == 'VALIDATION_ERROR'
    assert any(e["field"] == field for e in body["details"])
    assert User.query.count() == 0


@pytest.mark.parametrize("body", [
    {"email": "ana@example.com", "password": 12345678},
    {"email": 42, "password": "Secret123!"},
    ["ana@example.com", "Secret123!"],
    "ana@example.com",
])
def test_login_rejects_malformed_bodies(client, user, body):
    response = client.post('/api/auth/login', json=body)
    assert response.status_code == 400
    assert response.get_json()["error_code"] == 'VALIDATION_ERROR'
