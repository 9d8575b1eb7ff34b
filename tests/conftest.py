"""
Shared pytest fixtures for all tests.

Provides an in-memory SQLite database, seeded doctors/patients/clinics,
services wired to a recording notification dispatcher, JWT headers and a
FastAPI TestClient with the database and rate limiter overridden.
"""

import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

# Must be set before healthpal.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret"
os.environ["VNPAY_HASH_SECRET"] = "test-vnpay-secret"
os.environ["VNPAY_TMN_CODE"] = "TESTTMN1"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from healthpal.auth import CurrentUser, create_access_token  # noqa: E402
from healthpal.database import Base, get_db  # noqa: E402
from healthpal.domain.appointments.schemas import AppointmentCreate  # noqa: E402
from healthpal.domain.appointments.service import AppointmentService  # noqa: E402
from healthpal.domain.notifications.dispatcher import (  # noqa: E402
    NotificationDispatcher,
    get_notification_dispatcher,
)
from healthpal.domain.payments.router import payment_rate_limit  # noqa: E402
from healthpal.domain.payments.service import PaymentService  # noqa: E402
from healthpal.domain.payments.vnpay_service import (  # noqa: E402
    VNPayService,
    build_query_string,
    format_vnpay_date,
)
from healthpal.main import app  # noqa: E402
from healthpal.models import (  # noqa: E402
    Clinic,
    ClinicDoctor,
    Doctor,
    Patient,
    Specialty,
    User,
    UserRole,
)
from healthpal.webhook_security import compute_hmac_sha512  # noqa: E402

TEST_VNPAY_SECRET = "test-vnpay-secret"
ALL_WEEKDAYS = ["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY"]
CONSULTATION_FEE = Decimal("300000.00")


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that keeps every event it was handed, then persists as usual"""

    def __init__(self, db):
        super().__init__(db)
        self.events = []

    def dispatch(self, events):
        events = list(events)
        self.events.extend(events)
        return super().dispatch(events)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database shared by every session of one test"""
    test_engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# SEED DATA
# ============================================================================


def _user(db, email, first_name, last_name, role):
    user = User(email=email, first_name=first_name, last_name=last_name, role=role.value)
    db.add(user)
    db.flush()
    return user


def seed_database(db):
    """
    Two clinics, two doctors, two patients and an admin.

    Doctor "house" works every day at Alpha Clinic 09:00-11:00 and at Beta
    Clinic 10:00-12:00. Doctor "weekday" works only on the weekday of
    ``booking_date`` at Alpha Clinic 10:00-12:00.
    """
    booking_date = date.today() + timedelta(days=7)

    specialty = Specialty(name="Cardiology")
    db.add(specialty)
    alpha = Clinic(
        name="Alpha Clinic", address="1 Le Loi, District 1", phone="0281111111",
        open_time="07:00", close_time="20:00",
    )
    beta = Clinic(
        name="Beta Clinic", address="2 Nguyen Hue, District 1", phone="0282222222",
        open_time="07:00", close_time="20:00",
    )
    db.add_all([alpha, beta])
    db.flush()

    doctor_user = _user(db, "house@healthpal.test", "Gregory", "House", UserRole.DOCTOR)
    doctor = Doctor(
        user_id=doctor_user.id,
        license_number="LIC-001",
        specialty_id=specialty.id,
        consultation_fee=CONSULTATION_FEE,
    )
    weekday_doctor_user = _user(db, "wilson@healthpal.test", "James", "Wilson", UserRole.DOCTOR)
    weekday_doctor = Doctor(
        user_id=weekday_doctor_user.id,
        license_number="LIC-002",
        specialty_id=specialty.id,
        consultation_fee=Decimal("200000.00"),
    )
    db.add_all([doctor, weekday_doctor])
    db.flush()

    db.add_all(
        [
            ClinicDoctor(
                clinic_id=alpha.id, doctor_id=doctor.id, working_days=ALL_WEEKDAYS,
                start_time="09:00", end_time="11:00",
            ),
            ClinicDoctor(
                clinic_id=beta.id, doctor_id=doctor.id, working_days=ALL_WEEKDAYS,
                start_time="10:00", end_time="12:00",
            ),
            ClinicDoctor(
                clinic_id=alpha.id, doctor_id=weekday_doctor.id,
                working_days=[ALL_WEEKDAYS[booking_date.weekday()]],
                start_time="10:00", end_time="12:00",
            ),
        ]
    )

    patient_user = _user(db, "an@healthpal.test", "An", "Nguyen", UserRole.PATIENT)
    other_patient_user = _user(db, "binh@healthpal.test", "Binh", "Tran", UserRole.PATIENT)
    admin_user = _user(db, "admin@healthpal.test", "Ada", "Admin", UserRole.ADMIN)
    patient = Patient(user_id=patient_user.id)
    other_patient = Patient(user_id=other_patient_user.id)
    db.add_all([patient, other_patient])
    db.commit()

    return SimpleNamespace(
        booking_date=booking_date,
        specialty_id=specialty.id,
        alpha_id=alpha.id,
        beta_id=beta.id,
        doctor_id=doctor.id,
        weekday_doctor_id=weekday_doctor.id,
        patient_id=patient.id,
        other_patient_id=other_patient.id,
        doctor_user=_current(doctor_user, UserRole.DOCTOR),
        weekday_doctor_user=_current(weekday_doctor_user, UserRole.DOCTOR),
        patient_user=_current(patient_user, UserRole.PATIENT),
        other_patient_user=_current(other_patient_user, UserRole.PATIENT),
        admin_user=_current(admin_user, UserRole.ADMIN),
    )


def _current(user: User, role: UserRole) -> CurrentUser:
    return CurrentUser(sub=user.id, email=user.email, role=role)


@pytest.fixture
def seed(db_session):
    return seed_database(db_session)


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def dispatcher(db_session):
    return RecordingDispatcher(db_session)


@pytest.fixture
def vnpay():
    return VNPayService(tmn_code="TESTTMN1", hash_secret=TEST_VNPAY_SECRET)


@pytest.fixture
def appointment_service(db_session, dispatcher):
    return AppointmentService(db_session, dispatcher)


@pytest.fixture
def payment_service(db_session, dispatcher, vnpay):
    return PaymentService(db_session, dispatcher, vnpay)


@pytest.fixture
def book(appointment_service, seed):
    """Book an appointment with the house doctor at Alpha Clinic"""

    def _book(patient_id=None, start="09:00", end="09:30", **overrides):
        payload = {
            "doctorId": seed.doctor_id,
            "clinicId": seed.alpha_id,
            "appointmentDate": seed.booking_date,
            "startTime": start,
            "endTime": end,
            "type": "OFFLINE",
        }
        payload.update(overrides)
        return appointment_service.create_appointment(
            patient_id or seed.patient_id, AppointmentCreate(**payload)
        )

    return _book


@pytest.fixture
def make_callback():
    """Build a correctly signed VNPay callback payload"""

    def _make(txn_ref, amount, response_code="00", transaction_no="14012345", **extra):
        params = {
            "vnp_Amount": str(int(Decimal(amount) * 100)),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14012345",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": "Thanh toan kham benh",
            "vnp_PayDate": format_vnpay_date(datetime.now(timezone.utc)),
            "vnp_ResponseCode": response_code,
            "vnp_TmnCode": "TESTTMN1",
            "vnp_TransactionNo": transaction_no,
            "vnp_TransactionStatus": response_code,
            "vnp_TxnRef": txn_ref,
        }
        params.update(extra)
        params["vnp_SecureHash"] = compute_hmac_sha512(
            TEST_VNPAY_SECRET, build_query_string(params)
        )
        return params

    return _make


# ============================================================================
# HTTP FIXTURES
# ============================================================================


def auth_headers(user: CurrentUser) -> dict:
    token = create_access_token({"sub": user.sub, "email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(session_factory, vnpay):
    """TestClient bound to the test database, without rate limiting"""
    from healthpal.domain.payments.vnpay_service import get_vnpay_service

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[payment_rate_limit] = lambda: None
    app.dependency_overrides[get_vnpay_service] = lambda: vnpay
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def recorded_events(client, session_factory):
    """Swap the HTTP dispatcher for a recording one and expose its events"""
    events = []

    def override_dispatcher():
        db = session_factory()
        recorder = RecordingDispatcher(db)
        recorder.events = events
        try:
            yield recorder
        finally:
            db.close()

    app.dependency_overrides[get_notification_dispatcher] = override_dispatcher
    return events
