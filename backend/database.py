import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

# FastAPI runs sync routes in a threadpool; SQLite connections must be shareable.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_payment_schema_checked = False


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('correlation_id', 'ALTER TABLE appointments ADD COLUMN correlation_id VARCHAR(36)'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_payment_created '
                    'ON appointments(payment_status, status, created_at)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_slot ON appointments(doctor_id, slot_id)')
            )

        _appointment_schema_checked = True


def ensure_payment_schema() -> None:
    global _payment_schema_checked

    if _payment_schema_checked:
        return

    with _schema_lock:
        if _payment_schema_checked:
            return

        inspector = inspect(engine)

        if 'payments' not in inspector.get_table_names():
            _payment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('payments')}
        migration_steps = [
            ('external_event_id', 'ALTER TABLE payments ADD COLUMN external_event_id VARCHAR(255)'),
            ('gateway_payload', 'ALTER TABLE payments ADD COLUMN gateway_payload TEXT'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_payments_external_event_id '
                    'ON payments(external_event_id)'
                )
            )

        _payment_schema_checked = True
