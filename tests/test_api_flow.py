import uuid

import pytest
from pydantic.alias_generators import to_camel
from sqlmodel import select

from conftest import FULL_APPOINTMENT, auth_headers, sign
from medverify.db.models import User
from medverify.services.identity_service import IdentityService

PHONE = "+911234567890"


def camel(fields: dict) -> dict:
    return {to_camel(k): v for k, v in fields.items()}


async def login(client, notifier, phone=PHONE) -> dict:
    response = await client.post("/api/v1/auth/request-otp", json={"identifier": phone, "type": "phone"})
    assert response.status_code == 200
    code = notifier.last_code(response.json()["data"]["identifier"])
    response = await client.post("/api/v1/auth/verify-otp", json={"identifier": phone, "code": code, "type": "phone"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


async def test_booking_and_payment_end_to_end(client, notifier, razorpay, session_factory):
    # 1. Verify identity
    response = await client.post("/api/v1/auth/request-otp", json={"identifier": PHONE, "type": "phone"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["identifier"] == PHONE
    assert body["data"]["otp"] is None

    code = notifier.last_code(PHONE)
    response = await client.post("/api/v1/auth/verify-otp", json={"identifier": PHONE, "code": code})
    assert response.status_code == 200
    login_data = response.json()["data"]
    assert login_data["user"]["phone"] == PHONE
    headers = {"Authorization": f"Bearer {login_data['access_token']}"}

    # 2. Build the draft in two steps
    response = await client.post("/api/v1/appointments/draft", json={"firstName": "A"}, headers=headers)
    assert response.status_code == 200
    response = await client.post(
        "/api/v1/appointments/draft", json={"lastName": "B", "email": "a@b.com"}, headers=headers
    )
    assert response.status_code == 200

    response = await client.get("/api/v1/appointments/draft", headers=headers)
    draft = response.json()["data"]
    assert (draft["firstName"], draft["lastName"], draft["email"]) == ("A", "B", "a@b.com")
    assert draft["status"] == "draft"

    # 3. Finalize
    response = await client.post("/api/v1/appointments", json=camel(FULL_APPOINTMENT), headers=headers)
    assert response.status_code == 200
    appointment = response.json()["data"]
    assert appointment["id"] == draft["id"]
    assert appointment["status"] == "payment_pending"

    response = await client.get("/api/v1/appointments", headers=headers)
    assert len(response.json()["data"]) == 1

    # 4. Order sized by appointment type
    response = await client.post(
        "/api/v1/payments/orders",
        json={"appointmentId": appointment["id"], "paymentMethod": "razorpay"},
        headers=headers,
    )
    assert response.status_code == 200
    order = response.json()["data"]
    assert order["amount"] == 350000
    assert order["order_id"].startswith("order_test")

    # 5. Verify the checkout signature
    signature = razorpay.pay(order["order_id"], "pay_e2e")
    response = await client.post("/api/v1/payments/verify", json={
        "payment_method": "razorpay",
        "appointment_id": appointment["id"],
        "razorpay_order_id": order["order_id"],
        "razorpay_payment_id": "pay_e2e",
        "razorpay_signature": signature,
    }, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["verified"] is True

    response = await client.get(f"/api/v1/appointments/{appointment['id']}", headers=headers)
    final = response.json()["data"]
    assert (final["status"], final["paymentStatus"]) == ("confirmed", "completed")

    response = await client.get("/api/v1/auth/me", headers=headers)
    me = response.json()["data"]
    assert me["payment_status"] == "paid"
    assert me["payment_id"] == "pay_e2e"


async def test_fourth_otp_request_is_rate_limited(client):
    for _ in range(3):
        assert (await client.post("/api/v1/auth/request-otp", json={"identifier": PHONE})).status_code == 200

    response = await client.post("/api/v1/auth/request-otp", json={"identifier": PHONE})

    assert response.status_code == 429
    assert response.json() == {
        "success": False,
        "error": "Too many OTP requests. Please try again later.",
        "errorKind": "RateLimited",
    }
    assert "retry-after" in response.headers


async def test_invalid_identifier_and_code(client):
    response = await client.post("/api/v1/auth/request-otp", json={"identifier": "12", "type": "phone"})
    assert response.status_code == 400
    assert response.json()["errorKind"] == "InvalidIdentifier"

    response = await client.post("/api/v1/auth/verify-otp", json={"identifier": PHONE, "code": "000000"})
    assert response.status_code == 400
    assert response.json()["errorKind"] == "InvalidOrExpired"


async def test_otp_login_reuses_existing_identity(client, notifier, session_factory):
    await login(client, notifier)
    await login(client, notifier)

    async with session_factory() as session:
        identity = await IdentityService(session).find_by_identifier(PHONE, "phone")
        assert identity is not None
        users = (await session.execute(select(User).where(User.phone == PHONE))).scalars().all()
        assert len(users) == 1


async def test_finalize_errors_are_client_errors(client, notifier):
    headers = await login(client, notifier)
    fields = dict(FULL_APPOINTMENT)
    del fields["appointment_date"]

    response = await client.post("/api/v1/appointments", json=camel(fields), headers=headers)
    assert response.status_code == 400
    assert response.json()["errorKind"] == "ValidationError"
    assert response.json()["fields"] == ["appointmentDate"]

    fields = dict(FULL_APPOINTMENT, confirm_passport_number="A1234568")
    response = await client.post("/api/v1/appointments", json=camel(fields), headers=headers)
    assert response.status_code == 400
    assert response.json()["errorKind"] == "MismatchError"


async def test_other_users_appointment_looks_missing(client, notifier, session_factory):
    headers = await login(client, notifier)
    response = await client.post("/api/v1/appointments", json=camel(FULL_APPOINTMENT), headers=headers)
    appointment_id = response.json()["data"]["id"]

    async with session_factory() as session:
        stranger = User(role="user", phone="+919900000000")
        session.add(stranger)
        await session.commit()
        await session.refresh(stranger)

    for path in (f"/api/v1/appointments/{appointment_id}", f"/api/v1/appointments/{uuid.uuid4()}"):
        response = await client.get(path, headers=auth_headers(stranger))
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Appointment not found", "errorKind": "NotFound"}


async def test_tampered_signature_is_rejected_over_http(client, notifier, razorpay):
    headers = await login(client, notifier)
    appointment = (await client.post(
        "/api/v1/appointments", json=camel(FULL_APPOINTMENT), headers=headers
    )).json()["data"]
    order = (await client.post(
        "/api/v1/payments/orders",
        json={"appointmentId": appointment["id"], "paymentMethod": "razorpay"},
        headers=headers,
    )).json()["data"]

    response = await client.post("/api/v1/payments/verify", json={
        "razorpay_order_id": order["order_id"],
        "razorpay_payment_id": "pay_x",
        "razorpay_signature": sign(order["order_id"], "pay_y"),
    }, headers=headers)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Payment verification failed", "errorKind": "SignatureInvalid"}
    me = (await client.get("/api/v1/auth/me", headers=headers)).json()["data"]
    assert me["payment_status"] == "pending"


async def test_provider_outage_is_reported(client, notifier, razorpay):
    headers = await login(client, notifier)
    appointment = (await client.post(
        "/api/v1/appointments", json=camel(FULL_APPOINTMENT), headers=headers
    )).json()["data"]
    razorpay.fail_with = 500

    response = await client.post(
        "/api/v1/payments/orders",
        json={"appointmentId": appointment["id"], "paymentMethod": "razorpay"},
        headers=headers,
    )

    assert response.status_code == 502
    assert response.json()["errorKind"] == "ProviderError"


async def test_upi_confirmation_requires_admin(client, notifier, session_factory):
    headers = await login(client, notifier)
    appointment = (await client.post(
        "/api/v1/appointments", json=camel(FULL_APPOINTMENT), headers=headers
    )).json()["data"]
    order = (await client.post(
        "/api/v1/payments/orders",
        json={"appointmentId": appointment["id"], "paymentMethod": "upi"},
        headers=headers,
    )).json()["data"]

    response = await client.post(
        f"/api/v1/payments/upi/{order['transaction_id']}/confirm", json={"reference_id": "4123"}, headers=headers
    )
    assert response.status_code == 403

    async with session_factory() as session:
        await IdentityService(session).create_admin("clinic-admin", "s3cret-pass")

    response = await client.post(
        "/api/v1/auth/admin/login", json={"username": "clinic-admin", "password": "s3cret-pass"}
    )
    assert response.status_code == 200
    admin_headers = {"Authorization": f"Bearer {response.json()['data']['access_token']}"}

    response = await client.post(
        f"/api/v1/payments/upi/{order['transaction_id']}/confirm", json={"reference_id": "4123"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["verified"] is True

    final = (await client.get(f"/api/v1/appointments/{appointment['id']}", headers=headers)).json()["data"]
    assert final["status"] == "confirmed"


async def test_admin_login_rejects_bad_password(client, session_factory):
    async with session_factory() as session:
        await IdentityService(session).create_admin("clinic-admin", "s3cret-pass")

    response = await client.post("/api/v1/auth/admin/login", json={"username": "clinic-admin", "password": "nope"})

    assert response.status_code == 401
    assert response.json()["errorKind"] == "Unauthorized"


async def test_endpoints_require_a_token(client):
    response = await client.get("/api/v1/appointments/draft")

    assert response.status_code == 401
    assert response.json()["success"] is False


@pytest.mark.parametrize("payload", [{}, {"identifier": PHONE, "type": "fax"}])
async def test_malformed_request_body(client, payload):
    response = await client.post("/api/v1/auth/request-otp", json=payload)

    assert response.status_code == 400
    assert response.json()["errorKind"] == "ValidationError"


async def test_payment_methods_endpoint(client):
    response = await client.get("/api/v1/payments/methods")

    data = response.json()["data"]
    assert data["available_methods"] == ["razorpay", "upi"]
    assert data["methods_info"]["upi"]["name"] == "UPI"
