"""HTTP tests: status codes, error envelope and gateway entry points"""

from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from healthpal.config import FRONTEND_URL
from healthpal.domain.payments.router import payment_rate_limit
from healthpal.main import app
from healthpal.shared.validators import clinic_today

from .conftest import CONSULTATION_FEE, auth_headers


def _booking(seed, **overrides):
    payload = {
        "doctorId": seed.doctor_id,
        "clinicId": seed.alpha_id,
        "appointmentDate": seed.booking_date.isoformat(),
        "startTime": "09:00",
        "endTime": "09:30",
        "symptoms": "Headache",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def booked(client, seed):
    response = client.post(
        "/appointments", json=_booking(seed), headers=auth_headers(seed.patient_user)
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def pending_payment(client, seed, booked):
    response = client.post(
        "/payments/vnpay/create",
        json={"appointmentId": booked["id"]},
        headers=auth_headers(seed.patient_user),
    )
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestAuthentication:
    def test_missing_token(self, client, seed):
        response = client.post("/appointments", json=_booking(seed))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_invalid_token(self, client, seed):
        response = client.post(
            "/appointments",
            json=_booking(seed),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_wrong_role(self, client, seed):
        response = client.post(
            "/appointments", json=_booking(seed), headers=auth_headers(seed.doctor_user)
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"


class TestAppointmentEndpoints:
    def test_create_returns_camel_case_appointment(self, booked, seed):
        assert booked["status"] == "PENDING"
        assert booked["startTime"] == "09:00"
        assert booked["appointmentDate"] == seed.booking_date.isoformat()
        assert booked["doctor"]["name"] == "Gregory House"
        assert booked["doctor"]["specialty"] == "Cardiology"
        assert booked["clinic"]["name"] == "Alpha Clinic"
        assert booked["patient"]["name"] == "An Nguyen"

    def test_validation_error_envelope(self, client, seed):
        response = client.post(
            "/appointments",
            json=_booking(seed, startTime="25:00"),
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any("startTime" in issue["loc"] for issue in error["issues"])

    def test_past_date_rejected(self, client, seed):
        yesterday = (clinic_today() - timedelta(days=1)).isoformat()
        response = client.post(
            "/appointments",
            json=_booking(seed, appointmentDate=yesterday),
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_conflict_maps_to_409(self, client, seed, booked):
        response = client.post(
            "/appointments", json=_booking(seed), headers=auth_headers(seed.other_patient_user)
        )
        assert response.status_code == 409
        assert response.json()["error"] == {
            "code": "CONFLICT",
            "message": "Doctor already has an appointment at this time",
        }

    def test_outside_hours_is_business_error(self, client, seed):
        response = client.post(
            "/appointments",
            json=_booking(seed, startTime="06:00", endTime="06:30"),
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BUSINESS_ERROR"

    def test_get_by_id_and_access(self, client, seed, booked):
        own = client.get(f"/appointments/{booked['id']}", headers=auth_headers(seed.patient_user))
        assert own.status_code == 200

        other = client.get(
            f"/appointments/{booked['id']}", headers=auth_headers(seed.other_patient_user)
        )
        assert other.status_code == 403

        missing = client.get("/appointments/missing", headers=auth_headers(seed.admin_user))
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "NOT_FOUND"

    def test_confirm_and_cancel_flow(self, client, seed, booked):
        confirm = client.post(
            f"/appointments/{booked['id']}/confirm", headers=auth_headers(seed.doctor_user)
        )
        assert confirm.status_code == 200
        assert confirm.json()["status"] == "CONFIRMED"

        cancel = client.post(
            f"/appointments/{booked['id']}/cancel",
            json={"reason": "Travelling"},
            headers=auth_headers(seed.patient_user),
        )
        assert cancel.status_code == 200
        assert cancel.json()["status"] == "CANCELLED"
        assert cancel.json()["cancellationReason"] == "Travelling"

        again = client.post(
            f"/appointments/{booked['id']}/cancel", headers=auth_headers(seed.patient_user)
        )
        assert again.status_code == 400
        assert again.json()["error"]["message"] == "Appointment is already cancelled"

    def test_patient_cannot_confirm(self, client, seed, booked):
        response = client.post(
            f"/appointments/{booked['id']}/confirm", headers=auth_headers(seed.patient_user)
        )
        assert response.status_code == 403

    def test_cancel_reason_length_validated(self, client, seed, booked):
        response = client.post(
            f"/appointments/{booked['id']}/cancel",
            json={"reason": "x" * 501},
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_patch_notes(self, client, seed, booked):
        response = client.patch(
            f"/appointments/{booked['id']}",
            json={"notes": "Bring previous ECG"},
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 200
        assert response.json()["notes"] == "Bring previous ECG"

    def test_patient_listing(self, client, seed, booked):
        response = client.get(
            "/appointments/patient/my?page=1&limit=5", headers=auth_headers(seed.patient_user)
        )
        assert response.status_code == 200
        body = response.json()
        assert body["pagination"] == {"page": 1, "limit": 5, "total": 1, "totalPages": 1}
        assert body["data"][0]["id"] == booked["id"]

    def test_listing_limit_bounds(self, client, seed):
        response = client.get(
            "/appointments/patient/my?limit=51", headers=auth_headers(seed.patient_user)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_doctor_listing(self, client, seed, booked):
        response = client.get("/appointments/doctor/my", headers=auth_headers(seed.doctor_user))
        assert response.status_code == 200
        assert [a["id"] for a in response.json()["data"]] == [booked["id"]]


class TestAvailableSlotsEndpoint:
    def test_public_and_excludes_booked(self, client, seed, booked):
        response = client.get(
            "/appointments/available-slots",
            params={"doctorId": seed.doctor_id, "date": seed.booking_date.isoformat()},
        )
        assert response.status_code == 200
        slots = response.json()
        assert slots[0] == {
            "startTime": "09:30",
            "endTime": "10:00",
            "clinicId": seed.alpha_id,
            "clinicName": "Alpha Clinic",
        }
        assert all(s["startTime"] != "09:00" for s in slots)

    def test_past_date_rejected(self, client, seed):
        response = client.get(
            "/appointments/available-slots",
            params={"doctorId": seed.doctor_id, "date": (clinic_today() - timedelta(days=1)).isoformat()},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_doctor(self, client, seed):
        response = client.get(
            "/appointments/available-slots",
            params={"doctorId": "missing", "date": seed.booking_date.isoformat()},
        )
        assert response.status_code == 404


class TestPaymentEndpoints:
    def test_create_payment(self, pending_payment, booked):
        assert pending_payment["paymentUrl"].startswith("https://")
        assert pending_payment["payment"]["status"] == "PENDING"
        assert pending_payment["payment"]["appointmentId"] == booked["id"]
        assert pending_payment["appointment"]["doctorName"] == "Gregory House"

    def test_create_payment_for_someone_else(self, client, seed, booked):
        response = client.post(
            "/payments/vnpay/create",
            json={"appointmentId": booked["id"]},
            headers=auth_headers(seed.other_patient_user),
        )
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Appointment not found or access denied"

    def test_invalid_return_url(self, client, seed, booked):
        response = client.post(
            "/payments/vnpay/create",
            json={"appointmentId": booked["id"], "returnUrl": "not-a-url"},
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 400

    def test_rate_limiter_fails_closed(self, client, seed, booked, monkeypatch):
        def unavailable():
            raise ConnectionError("redis down")

        monkeypatch.setattr("healthpal.rate_limiter.get_redis_client", unavailable)
        app.dependency_overrides.pop(payment_rate_limit, None)

        response = client.post(
            "/payments/vnpay/create",
            json={"appointmentId": booked["id"]},
            headers=auth_headers(seed.patient_user),
        )
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    def test_callback_redirects_to_frontend(self, client, booked, pending_payment, make_callback):
        params = make_callback(booked["id"], CONSULTATION_FEE)
        response = client.get("/payments/vnpay/callback", params=params, follow_redirects=False)

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(f"{FRONTEND_URL}/payment/result?")
        query = parse_qs(urlsplit(location).query)
        assert query["success"] == ["true"]
        assert query["appointmentId"] == [booked["id"]]
        assert query["message"] == ["Payment successful"]

    def test_callback_with_bad_signature_redirects_with_failure(
        self, client, booked, pending_payment, make_callback
    ):
        params = make_callback(booked["id"], CONSULTATION_FEE)
        params["vnp_SecureHash"] = "0" * 128
        response = client.get("/payments/vnpay/callback", params=params, follow_redirects=False)

        assert response.status_code == 302
        query = parse_qs(urlsplit(response.headers["location"]).query)
        assert query["success"] == ["false"]
        assert query["appointmentId"] == [booked["id"]]

    def test_ipn_form_body_and_duplicate(
        self, client, seed, booked, pending_payment, make_callback, recorded_events
    ):
        params = make_callback(booked["id"], CONSULTATION_FEE)

        first = client.post("/payments/vnpay/ipn", data=params)
        assert first.status_code == 200
        assert first.json() == {"RspCode": "00", "Message": "success"}
        events_after_first = len(recorded_events)
        assert events_after_first > 0

        duplicate = client.post("/payments/vnpay/ipn", data=params)
        assert duplicate.json() == {"RspCode": "00", "Message": "success"}
        assert len(recorded_events) == events_after_first

        status = client.get(
            f"/payments/{pending_payment['payment']['id']}/status",
            headers=auth_headers(seed.patient_user),
        )
        assert status.status_code == 200
        assert status.json()["status"] == "PAID"
        assert status.json()["appointment"]["status"] == "CONFIRMED"

    def test_ipn_json_body(self, client, booked, pending_payment, make_callback):
        response = client.post(
            "/payments/vnpay/ipn", json=make_callback(booked["id"], CONSULTATION_FEE)
        )
        assert response.json() == {"RspCode": "00", "Message": "success"}

    def test_ipn_query_string(self, client, booked, pending_payment, make_callback):
        response = client.post(
            "/payments/vnpay/ipn", params=make_callback(booked["id"], CONSULTATION_FEE)
        )
        assert response.json() == {"RspCode": "00", "Message": "success"}

    def test_ipn_never_exposes_error_envelope(self, client, booked, pending_payment, make_callback):
        tampered = make_callback(booked["id"], CONSULTATION_FEE)
        tampered["vnp_Amount"] = "100"

        for payload in (tampered, {}, {"vnp_TxnRef": "missing"}):
            response = client.post("/payments/vnpay/ipn", data=payload)
            assert response.status_code == 200
            assert response.json() == {"RspCode": "99", "Message": "error"}

    def test_payment_status_of_other_patient(self, client, seed, pending_payment):
        response = client.get(
            f"/payments/{pending_payment['payment']['id']}/status",
            headers=auth_headers(seed.other_patient_user),
        )
        assert response.status_code == 404


class TestNotificationEndpoints:
    def test_doctor_sees_and_reads_booking_notification(self, client, seed, booked):
        headers = auth_headers(seed.doctor_user)
        inbox = client.get("/notifications", headers=headers).json()

        assert inbox["unreadCount"] == 1
        notification = inbox["data"][0]
        assert notification["type"] == "APPOINTMENT_CREATED"
        assert notification["data"]["appointmentId"] == booked["id"]

        read = client.post(f"/notifications/{notification['id']}/read", headers=headers)
        assert read.status_code == 200
        assert read.json()["isRead"] is True
        assert client.get("/notifications", headers=headers).json()["unreadCount"] == 0

    def test_mark_all_read(self, client, seed, booked):
        headers = auth_headers(seed.doctor_user)
        response = client.post("/notifications/read-all", headers=headers)
        assert response.json()["updated"] == 1

    def test_unknown_notification(self, client, seed):
        response = client.post("/notifications/missing/read", headers=auth_headers(seed.doctor_user))
        assert response.status_code == 404
