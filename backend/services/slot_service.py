"""Slot generation and doctor schedule bindings.

Slots are generated in the configured schedule zone and stored in UTC. The
existence check before each insert only saves a round trip; the unique
``(start_time, end_time)`` constraint is what keeps concurrent generators from
creating duplicates, and insert conflicts are ignored rather than reported.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterator
from zoneinfo import ZoneInfoNotFoundError

from sqlalchemy import delete, insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.exceptions import Conflict, NotFound, ValidationFailed
from backend.core.timeutils import resolve_timezone, to_utc_naive, utc_now
from backend.models.appointment import Appointment
from backend.models.slot import DoctorSchedule, Slot
from backend.models.user import Doctor

logger = logging.getLogger(__name__)

MAX_GENERATION_DAYS = 366


def iterate_days(start_date: date, end_date: date) -> Iterator[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def iterate_day_intervals(
    day: date,
    start_time: time,
    end_time: time,
    interval: timedelta,
    zone,
) -> Iterator[tuple[datetime, datetime]]:
    day_start = to_utc_naive(day, start_time, zone)
    day_end = to_utc_naive(day, end_time, zone)

    current = day_start
    while current + interval <= day_end:
        yield current, current + interval
        current += interval


def insert_ignoring_conflict(db: Session, model, values: dict, index_elements: list[str]) -> bool:
    """Insert one row, returning False when the unique key already exists."""
    dialect_name = db.get_bind().dialect.name

    if dialect_name == 'postgresql':
        statement = postgresql.insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    elif dialect_name == 'sqlite':
        statement = sqlite.insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    else:
        savepoint = db.begin_nested()
        try:
            db.execute(insert(model).values(**values))
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            return False
        return True

    return db.execute(statement).rowcount == 1


def generate_slots(
    db: Session,
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
    interval_minutes: int | None = None,
    timezone_name: str | None = None,
) -> list[Slot]:
    if interval_minutes is None:
        interval_minutes = config.SLOT_INTERVAL_MINUTES
    if interval_minutes <= 0:
        raise ValidationFailed('Slot interval must be a positive number of minutes.')
    if end_date < start_date:
        raise ValidationFailed('End date must not be before start date.')
    if (end_date - start_date).days >= MAX_GENERATION_DAYS:
        raise ValidationFailed(f'Slots can be generated for at most {MAX_GENERATION_DAYS} days at once.')

    try:
        zone = resolve_timezone(timezone_name or config.SCHEDULE_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationFailed(f'Unknown time zone: {timezone_name or config.SCHEDULE_TIMEZONE}.') from exc

    interval = timedelta(minutes=interval_minutes)
    created_keys: set[tuple[datetime, datetime]] = set()

    try:
        for day in iterate_days(start_date, end_date):
            for slot_start, slot_end in iterate_day_intervals(day, start_time, end_time, interval, zone):
                existing = db.query(Slot.id).filter(
                    Slot.start_time == slot_start,
                    Slot.end_time == slot_end,
                ).first()
                if existing:
                    continue

                inserted = insert_ignoring_conflict(
                    db,
                    Slot,
                    {'start_time': slot_start, 'end_time': slot_end, 'created_at': utc_now()},
                    ['start_time', 'end_time'],
                )
                if inserted:
                    created_keys.add((slot_start, slot_end))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    if not created_keys:
        return []

    first_start = min(start for start, _ in created_keys)
    last_start = max(start for start, _ in created_keys)
    candidates = db.query(Slot).filter(
        Slot.start_time >= first_start,
        Slot.start_time <= last_start,
    ).order_by(Slot.start_time.asc()).all()

    created = [slot for slot in candidates if (slot.start_time, slot.end_time) in created_keys]
    logger.info('Generated %d slots between %s and %s', len(created), start_date, end_date)
    return created


def delete_slot(db: Session, slot_id: int) -> None:
    slot = db.get(Slot, slot_id)
    if slot is None:
        raise NotFound('Slot not found.')

    bound = db.query(DoctorSchedule.slot_id).filter(DoctorSchedule.slot_id == slot_id).first()
    referenced = db.query(Appointment.id).filter(Appointment.slot_id == slot_id).first()
    if bound or referenced:
        raise Conflict('Slot is still referenced by a doctor schedule or appointment.')

    try:
        db.delete(slot)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict('Slot is still referenced by a doctor schedule or appointment.') from exc
    except SQLAlchemyError:
        db.rollback()
        raise


def get_active_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id, Doctor.is_deleted.is_(False)).first()
    if doctor is None:
        raise NotFound('Doctor not found.')
    return doctor


def add_doctor_slots(db: Session, doctor_id: int, slot_ids: list[int]) -> list[DoctorSchedule]:
    get_active_doctor(db, doctor_id)

    requested = sorted(set(slot_ids))
    found = {slot_id for (slot_id,) in db.query(Slot.id).filter(Slot.id.in_(requested)).all()}
    missing = [slot_id for slot_id in requested if slot_id not in found]
    if missing:
        raise NotFound(f'Slots not found: {", ".join(str(slot_id) for slot_id in missing)}.')

    try:
        for slot_id in requested:
            insert_ignoring_conflict(
                db,
                DoctorSchedule,
                {'doctor_id': doctor_id, 'slot_id': slot_id, 'is_booked': False},
                ['doctor_id', 'slot_id'],
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    return db.query(DoctorSchedule).filter(
        DoctorSchedule.doctor_id == doctor_id,
        DoctorSchedule.slot_id.in_(requested),
    ).all()


def remove_doctor_slot(db: Session, doctor_id: int, slot_id: int) -> None:
    try:
        result = db.execute(
            delete(DoctorSchedule).where(
                DoctorSchedule.doctor_id == doctor_id,
                DoctorSchedule.slot_id == slot_id,
                DoctorSchedule.is_booked.is_(False),
            )
        )
        if result.rowcount == 0:
            db.rollback()
            if db.get(DoctorSchedule, (doctor_id, slot_id)) is None:
                raise NotFound('Doctor schedule not found.')
            raise Conflict('A booked slot cannot be removed from the schedule.')
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def list_doctor_slots(
    db: Session,
    doctor_id: int,
    only_available: bool = True,
    now: datetime | None = None,
) -> list[tuple[DoctorSchedule, Slot]]:
    query = db.query(DoctorSchedule, Slot).join(Slot, Slot.id == DoctorSchedule.slot_id).filter(
        DoctorSchedule.doctor_id == doctor_id,
    )
    if only_available:
        query = query.filter(
            DoctorSchedule.is_booked.is_(False),
            Slot.start_time > (now or utc_now()),
        )
    return query.order_by(Slot.start_time.asc()).all()


def reserve_binding(db: Session, doctor_id: int, slot_id: int) -> bool:
    """Flip ``is_booked`` to true; False means another booking already holds it."""
    result = db.execute(
        update(DoctorSchedule)
        .where(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.slot_id == slot_id,
            DoctorSchedule.is_booked.is_(False),
        )
        .values(is_booked=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_binding(db: Session, doctor_id: int, slot_id: int) -> None:
    db.execute(
        update(DoctorSchedule)
        .where(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.slot_id == slot_id,
        )
        .values(is_booked=False)
        .execution_options(synchronize_session=False)
    )
