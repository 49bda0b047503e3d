import hashlib
import hmac
import json
import os
import time
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.core.timeutils import utc_now  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402,F401
from backend.models.payment import Payment, PaymentReconciliationFlag  # noqa: E402,F401
from backend.models.slot import DoctorSchedule, Slot  # noqa: E402
from backend.models.user import Doctor, Patient, User  # noqa: E402
from backend.payments.gateway import CheckoutSession, PaymentGatewayError  # noqa: E402

WEBHOOK_SECRET = 'whsec_test_secret'


class FakeGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[dict] = []

    def create_checkout_session(self, amount, currency, metadata, *, description='', customer_email=None):
        self.calls.append(
            {
                'amount': amount,
                'currency': currency,
                'metadata': metadata,
                'description': description,
                'customer_email': customer_email,
            }
        )
        if self.fail:
            raise PaymentGatewayError('Request timed out')
        return CheckoutSession(
            session_id=f'cs_test_{len(self.calls)}',
            redirect_url=f'https://checkout.stripe.test/pay/cs_test_{len(self.calls)}',
        )


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "clinic.db"}',
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_slot(db):
    def _make_slot(days_ahead: int = 1, hour: int = 9, minute: int = 0, minutes: int = 30) -> Slot:
        start = (utc_now() + timedelta(days=days_ahead)).replace(hour=hour, minute=minute, second=0, microsecond=0)
        slot = Slot(start_time=start, end_time=start + timedelta(minutes=minutes))
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return _make_slot


@pytest.fixture
def bind_slot(db):
    def _bind_slot(doctor: Doctor, slot: Slot, is_booked: bool = False) -> DoctorSchedule:
        binding = DoctorSchedule(doctor_id=doctor.id, slot_id=slot.id, is_booked=is_booked)
        db.add(binding)
        db.commit()
        return binding

    return _bind_slot


@pytest.fixture
def clinic(db, make_slot, bind_slot):
    patient = Patient(email='patient@example.com', name='Nadia Karim')
    other_patient = Patient(email='other@example.com', name='Omar Faruk')
    doctor = Doctor(email='doctor@example.com', name='Dr. Rahman', appointment_fee=500)
    other_doctor = Doctor(email='second.doctor@example.com', name='Dr. Sultana', appointment_fee=700)
    retired_doctor = Doctor(email='retired@example.com', name='Dr. Hasan', appointment_fee=300, is_deleted=True)
    admin = User(email='admin@example.com', role='admin', hashed_password='')
    doctor_user = User(email='doctor@example.com', role='doctor', hashed_password='')
    other_doctor_user = User(email='second.doctor@example.com', role='doctor', hashed_password='')
    patient_user = User(email='patient@example.com', role='patient', hashed_password='')
    other_patient_user = User(email='other@example.com', role='patient', hashed_password='')
    db.add_all(
        [
            patient,
            other_patient,
            doctor,
            other_doctor,
            retired_doctor,
            admin,
            doctor_user,
            other_doctor_user,
            patient_user,
            other_patient_user,
        ]
    )
    db.commit()

    slot = make_slot()
    bind_slot(doctor, slot)

    return SimpleNamespace(
        patient=patient,
        other_patient=other_patient,
        doctor=doctor,
        other_doctor=other_doctor,
        retired_doctor=retired_doctor,
        slot=slot,
        admin=admin,
        doctor_user=doctor_user,
        other_doctor_user=other_doctor_user,
        patient_user=patient_user,
        other_patient_user=other_patient_user,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def failing_gateway():
    return FakeGateway(fail=True)


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed_payload = f'{timestamp}.{payload.decode("utf-8")}'.encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed_payload, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


@pytest.fixture
def sign_payload():
    return _sign


@pytest.fixture
def build_event():
    def _build_event(
        event_id: str,
        event_type: str = 'checkout.session.completed',
        appointment_id=None,
        payment_id=None,
        payment_status: str = 'paid',
    ) -> bytes:
        metadata = {}
        if appointment_id is not None:
            metadata['appointmentId'] = str(appointment_id)
        if payment_id is not None:
            metadata['paymentId'] = str(payment_id)
        body = {
            'id': event_id,
            'object': 'event',
            'type': event_type,
            'data': {
                'object': {
                    'id': 'cs_test_1',
                    'object': 'checkout.session',
                    'payment_status': payment_status,
                    'metadata': metadata,
                },
            },
        }
        return json.dumps(body).encode('utf-8')

    return _build_event
