from datetime import date, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.routes.schedule_routes import (
    AddDoctorSlotsRequest,
    GenerateSlotsRequest,
    add_doctor_slots,
    create_slots,
    list_doctor_slots,
    remove_doctor_slot,
    remove_slot,
)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.schedule_routes.ensure_database_ready', lambda: None)


def test_generate_slots_request_rejects_reversed_date_range() -> None:
    with pytest.raises(ValidationError):
        GenerateSlotsRequest(
            start_date=date(2026, 1, 6),
            end_date=date(2026, 1, 5),
            start_time=time(9, 0),
            end_time=time(10, 0),
        )


def test_generate_slots_request_rejects_non_positive_interval() -> None:
    with pytest.raises(ValidationError):
        GenerateSlotsRequest(
            start_date=date(2026, 1, 5),
            end_date=date(2026, 1, 5),
            start_time=time(9, 0),
            end_time=time(10, 0),
            interval_minutes=0,
        )


def test_add_doctor_slots_request_deduplicates_ids() -> None:
    assert AddDoctorSlotsRequest(slot_ids=[3, 1, 3]).slot_ids == [1, 3]


def test_create_slots_returns_only_new_slots(db, clinic) -> None:
    request = GenerateSlotsRequest(
        start_date=date(2026, 1, 5),
        end_date=date(2026, 1, 5),
        start_time=time(9, 0),
        end_time=time(10, 0),
        interval_minutes=30,
    )

    created = create_slots(request, db=db, current_user=clinic.admin)
    repeated = create_slots(request, db=db, current_user=clinic.admin)

    assert len(created) == 2
    assert repeated == []


def test_remove_slot_maps_bound_slot_to_conflict(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        remove_slot(clinic.slot.id, db=db, current_user=clinic.admin)

    assert exception_info.value.status_code == 409


def test_doctor_can_add_slots_only_to_own_schedule(db, clinic, make_slot) -> None:
    extra = make_slot(hour=11)

    with pytest.raises(HTTPException) as exception_info:
        add_doctor_slots(
            clinic.doctor.id,
            AddDoctorSlotsRequest(slot_ids=[extra.id]),
            db=db,
            current_user=clinic.other_doctor_user,
        )
    assert exception_info.value.status_code == 403

    with pytest.raises(HTTPException) as exception_info:
        add_doctor_slots(
            clinic.doctor.id,
            AddDoctorSlotsRequest(slot_ids=[extra.id]),
            db=db,
            current_user=clinic.patient_user,
        )
    assert exception_info.value.status_code == 403

    added = add_doctor_slots(
        clinic.doctor.id,
        AddDoctorSlotsRequest(slot_ids=[extra.id]),
        db=db,
        current_user=clinic.doctor_user,
    )
    assert [(item.slot_id, item.is_booked) for item in added] == [(extra.id, False)]


def test_add_doctor_slots_returns_not_found_for_unknown_slot(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        add_doctor_slots(
            clinic.doctor.id,
            AddDoctorSlotsRequest(slot_ids=[404]),
            db=db,
            current_user=clinic.admin,
        )

    assert exception_info.value.status_code == 404


def test_list_doctor_slots_returns_open_future_slots(db, clinic, make_slot, bind_slot) -> None:
    taken = make_slot(hour=11)
    bind_slot(clinic.doctor, taken, is_booked=True)

    available = list_doctor_slots(clinic.doctor.id, available_only=True, db=db)
    everything = list_doctor_slots(clinic.doctor.id, available_only=False, db=db)

    assert [item.slot_id for item in available] == [clinic.slot.id]
    assert [item.slot_id for item in everything] == [clinic.slot.id, taken.id]
    assert available[0].start_time == clinic.slot.start_time


def test_remove_doctor_slot_maps_booked_binding_to_conflict(db, clinic, make_slot, bind_slot) -> None:
    taken = make_slot(hour=11)
    bind_slot(clinic.doctor, taken, is_booked=True)

    with pytest.raises(HTTPException) as exception_info:
        remove_doctor_slot(clinic.doctor.id, taken.id, db=db, current_user=clinic.doctor_user)
    assert exception_info.value.status_code == 409

    remove_doctor_slot(clinic.doctor.id, clinic.slot.id, db=db, current_user=clinic.doctor_user)
    assert list_doctor_slots(clinic.doctor.id, available_only=True, db=db) == []
