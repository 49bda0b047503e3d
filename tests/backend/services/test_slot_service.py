from datetime import date, datetime, time, timedelta, timezone

import pytest

from backend.core.exceptions import Conflict, NotFound, ValidationFailed
from backend.core.timeutils import to_utc_naive
from backend.models.slot import DoctorSchedule, Slot
from backend.services.slot_service import (
    add_doctor_slots,
    delete_slot,
    generate_slots,
    iterate_day_intervals,
    list_doctor_slots,
    release_binding,
    remove_doctor_slot,
    reserve_binding,
)


def test_generate_slots_splits_hour_into_two_half_hour_slots(db) -> None:
    slots = generate_slots(db, date(2026, 1, 5), date(2026, 1, 5), time(9, 0), time(10, 0), interval_minutes=30)

    assert [(slot.start_time, slot.end_time) for slot in slots] == [
        (datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 9, 30)),
        (datetime(2026, 1, 5, 9, 30), datetime(2026, 1, 5, 10, 0)),
    ]


def test_generate_slots_skips_existing_slots(db) -> None:
    generate_slots(db, date(2026, 1, 5), date(2026, 1, 5), time(9, 0), time(10, 0), interval_minutes=30)

    again = generate_slots(db, date(2026, 1, 5), date(2026, 1, 5), time(9, 0), time(11, 0), interval_minutes=30)

    assert [slot.start_time for slot in again] == [datetime(2026, 1, 5, 10, 0), datetime(2026, 1, 5, 10, 30)]
    assert db.query(Slot).count() == 4


def test_generate_slots_covers_every_day_in_range(db) -> None:
    slots = generate_slots(db, date(2026, 1, 5), date(2026, 1, 7), time(9, 0), time(10, 0), interval_minutes=30)

    assert len(slots) == 6
    assert {slot.start_time.date() for slot in slots} == {date(2026, 1, 5), date(2026, 1, 6), date(2026, 1, 7)}


@pytest.mark.parametrize(('start', 'end'), [(time(10, 0), time(10, 0)), (time(11, 0), time(10, 0))])
def test_generate_slots_yields_nothing_when_day_window_is_empty(db, start: time, end: time) -> None:
    assert generate_slots(db, date(2026, 1, 5), date(2026, 1, 5), start, end, interval_minutes=30) == []
    assert db.query(Slot).count() == 0


def test_generate_slots_drops_trailing_partial_interval(db) -> None:
    slots = generate_slots(db, date(2026, 1, 5), date(2026, 1, 5), time(9, 0), time(9, 45), interval_minutes=30)

    assert [(slot.start_time, slot.end_time) for slot in slots] == [
        (datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 9, 30)),
    ]


def test_generate_slots_uses_configured_interval(db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.core.config.SLOT_INTERVAL_MINUTES', 20)

    slots = generate_slots(db, date(2026, 1, 5), date(2026, 1, 5), time(9, 0), time(10, 0))

    assert [slot.start_time.minute for slot in slots] == [0, 20, 40]


@pytest.mark.parametrize(
    ('start_date', 'end_date', 'interval', 'timezone_name'),
    [
        (date(2026, 1, 6), date(2026, 1, 5), 30, None),
        (date(2026, 1, 5), date(2026, 1, 5), -15, None),
        (date(2026, 1, 5), date(2026, 1, 5), 0, None),
        (date(2026, 1, 5), date(2026, 1, 5), 30, 'Not/AZone'),
    ],
)
def test_generate_slots_rejects_invalid_input(db, start_date, end_date, interval, timezone_name) -> None:
    with pytest.raises(ValidationFailed):
        generate_slots(
            db,
            start_date,
            end_date,
            time(9, 0),
            time(10, 0),
            interval_minutes=interval,
            timezone_name=timezone_name,
        )


def test_day_intervals_are_normalized_to_utc() -> None:
    dhaka = timezone(timedelta(hours=6))

    intervals = list(
        iterate_day_intervals(date(2026, 1, 5), time(9, 0), time(10, 0), timedelta(minutes=30), dhaka)
    )

    assert intervals == [
        (datetime(2026, 1, 5, 3, 0), datetime(2026, 1, 5, 3, 30)),
        (datetime(2026, 1, 5, 3, 30), datetime(2026, 1, 5, 4, 0)),
    ]
    assert to_utc_naive(date(2026, 1, 5), time(2, 0), dhaka) == datetime(2026, 1, 4, 20, 0)


def test_delete_slot_removes_unreferenced_slot(db, make_slot) -> None:
    slot = make_slot()

    delete_slot(db, slot.id)

    assert db.query(Slot).count() == 0


def test_delete_slot_rejects_bound_slot(db, clinic) -> None:
    with pytest.raises(Conflict):
        delete_slot(db, clinic.slot.id)

    assert db.get(Slot, clinic.slot.id) is not None


def test_delete_slot_returns_not_found_when_missing(db) -> None:
    with pytest.raises(NotFound):
        delete_slot(db, 999)


def test_add_doctor_slots_creates_bindings_once(db, clinic, make_slot) -> None:
    extra = make_slot(hour=11)

    add_doctor_slots(db, clinic.doctor.id, [clinic.slot.id, extra.id, extra.id])
    bindings = add_doctor_slots(db, clinic.doctor.id, [extra.id])

    assert [(binding.slot_id, binding.is_booked) for binding in bindings] == [(extra.id, False)]
    assert db.query(DoctorSchedule).filter(DoctorSchedule.doctor_id == clinic.doctor.id).count() == 2


def test_add_doctor_slots_rejects_unknown_slots_and_retired_doctors(db, clinic) -> None:
    with pytest.raises(NotFound) as exception_info:
        add_doctor_slots(db, clinic.doctor.id, [clinic.slot.id, 404])
    assert exception_info.value.detail == 'Slots not found: 404.'

    with pytest.raises(NotFound):
        add_doctor_slots(db, clinic.retired_doctor.id, [clinic.slot.id])


def test_list_doctor_slots_hides_booked_and_past_slots(db, clinic, make_slot, bind_slot) -> None:
    booked = make_slot(hour=11)
    past = make_slot(days_ahead=-1, hour=9)
    bind_slot(clinic.doctor, booked, is_booked=True)
    bind_slot(clinic.doctor, past)

    available = list_doctor_slots(db, clinic.doctor.id)
    everything = list_doctor_slots(db, clinic.doctor.id, only_available=False)

    assert [slot.id for _, slot in available] == [clinic.slot.id]
    assert [slot.id for _, slot in everything] == [past.id, clinic.slot.id, booked.id]


def test_remove_doctor_slot_refuses_booked_binding(db, clinic, make_slot, bind_slot) -> None:
    booked = make_slot(hour=11)
    bind_slot(clinic.doctor, booked, is_booked=True)

    with pytest.raises(Conflict):
        remove_doctor_slot(db, clinic.doctor.id, booked.id)
    with pytest.raises(NotFound):
        remove_doctor_slot(db, clinic.other_doctor.id, booked.id)

    remove_doctor_slot(db, clinic.doctor.id, clinic.slot.id)
    assert db.get(DoctorSchedule, (clinic.doctor.id, clinic.slot.id)) is None


def test_reserve_binding_admits_only_one_winner(db, clinic) -> None:
    assert reserve_binding(db, clinic.doctor.id, clinic.slot.id) is True
    db.commit()

    assert reserve_binding(db, clinic.doctor.id, clinic.slot.id) is False
    db.rollback()

    release_binding(db, clinic.doctor.id, clinic.slot.id)
    db.commit()
    assert reserve_binding(db, clinic.doctor.id, clinic.slot.id) is True
    db.commit()
