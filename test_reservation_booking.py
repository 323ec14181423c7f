"""
Booking allocator - validation order, conflicts, capacity, atomic claims
"""
import asyncio
import re
from datetime import date, timedelta

import pytest

import reservation_booking
from core.exceptions import ConflictException, PersistenceException, ValidationException
from reservation_booking import (
    allocate_reservation, booking_confirmation, generate_booking_id, prune_expired_claims
)
from reservation_capacity import get_reserved_tables
from reservation_slots_module import ensure_slots, set_slot_active
from conftest import booking_request, date_str, fail_store


def previous_saturday() -> date:
    today = date.today()
    return today - timedelta(days=(today.weekday() - 5) % 7 or 7)


# ============== BOOKING IDS ==============

def test_booking_id_format():
    booking_id = generate_booking_id()
    assert re.match(r"^BK-[0-9A-Z]+-[0-9A-Z]{9}$", booking_id)
    assert generate_booking_id() != booking_id


async def test_colliding_booking_id_is_regenerated(saturday_slots, saturday):
    ids = iter(["BK-FIXED-000000001", "BK-FIXED-000000001", "BK-FIXED-000000002"])

    def generator():
        return next(ids)

    first = await allocate_reservation(booking_request(saturday, table_numbers=[1]), id_generator=generator)
    second = await allocate_reservation(booking_request(saturday, table_numbers=[2]), id_generator=generator)

    assert first["booking_id"] == "BK-FIXED-000000001"
    assert second["booking_id"] == "BK-FIXED-000000002"


# ============== HAPPY PATH ==============

async def test_saturday_booking_is_confirmed(saturday_slots, mock_db, saturday):
    reservation = await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[3]))

    assert reservation["status"] == "confirmed"
    assert reservation["table_numbers"] == [3]
    assert reservation["tables_required"] == 1
    assert reservation["start_instant"] == f"{date_str(saturday)}T22:00:00+00:00"
    assert reservation["end_instant"] == f"{date_str(saturday)}T23:30:00+00:00"
    assert reservation["service_date"] == date_str(saturday)
    assert reservation["customer_email"] == "ada@example.com"
    assert "_id" not in reservation

    assert await get_reserved_tables(reservation["start_instant"]) == [3]
    audit = await mock_db.audit_logs.find_one({"entity_id": reservation["booking_id"]})
    assert audit["action"] == "create"
    assert audit["actor_email"] == "ada@example.com"


async def test_large_party_claims_every_table(saturday_slots, mock_db, saturday):
    reservation = await allocate_reservation(
        booking_request(saturday, "23:30", party_size=9, table_numbers=[8, 2, 5])
    )

    assert reservation["table_numbers"] == [2, 5, 8]
    for number in (2, 5, 8):
        table = await mock_db.tables.find_one({"table_number": number})
        assert [c["reservation_id"] for c in table["claims"]] == [reservation["id"]]
    slot = await mock_db.slots.find_one({"start_instant": reservation["start_instant"]})
    assert slot["tables_reserved"] == 3


def test_confirmation_view():
    reservation = {
        "booking_id": "BK-1-ABCDEFGHI", "start_instant": "2026-10-24T22:00:00+00:00",
        "service_date": "2026-10-24", "slot_time": "22:00", "party_size": 2,
        "table_numbers": [1], "customer_name": "Ada", "status": "confirmed",
        "duration_minutes": 90, "customer_phone": "secret",
    }

    view = booking_confirmation(reservation)

    assert view["time"] == "22:00"
    assert "customer_phone" not in view


# ============== VALIDATION ORDER ==============

async def test_missing_field_is_reported_first(saturday_slots, saturday):
    data = booking_request(saturday, party_size=0, table_numbers=[99])
    del data["customer_phone"]

    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(data)
    assert exc.value.reason == "missing_field"


async def test_blank_name_is_missing(saturday_slots, saturday):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, customer_name="   "))
    assert exc.value.reason == "missing_field"


async def test_invalid_email(saturday_slots, saturday):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, customer_email="ada.example.com"))
    assert exc.value.reason == "invalid_email"


@pytest.mark.parametrize("party_size", [0, -2, 41])
async def test_party_size_bounds(saturday_slots, saturday, party_size):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, party_size=party_size, table_numbers=[99]))
    assert exc.value.reason == "party_size"


async def test_party_of_nine_with_two_tables(saturday_slots, saturday):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, party_size=9, table_numbers=[1, 2]))
    assert exc.value.reason == "table_count_mismatch"


@pytest.mark.parametrize("table_numbers", [[11], [0], [3, 3], ["3"]])
async def test_invalid_table_numbers(saturday_slots, saturday, table_numbers):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, party_size=5, table_numbers=table_numbers))
    assert exc.value.reason == "invalid_table"


async def test_table_check_precedes_slot_check(mock_db, monday):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(monday, table_numbers=[1, 2]))
    assert exc.value.reason == "table_count_mismatch"


async def test_unknown_or_unparsable_slot(saturday_slots, saturday, monday):
    for data in (
        booking_request(monday, "22:00"),
        booking_request(saturday, "21:00"),
        booking_request(saturday, date_time="next saturday at ten"),
    ):
        with pytest.raises(ValidationException) as exc:
            await allocate_reservation(data)
        assert exc.value.reason == "invalid_slot"


async def test_inactive_slot_rejected(saturday_slots, saturday):
    await set_slot_active(date_str(saturday), "22:00", False)

    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, "22:00"))
    assert exc.value.reason == "invalid_slot"


async def test_started_slot_rejected(mock_db):
    past = previous_saturday()
    await ensure_slots(date_str(past))

    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(past, "22:00"))
    assert exc.value.reason == "invalid_slot"


# ============== CONFLICTS ==============

async def test_same_table_same_slot_conflicts(saturday_slots, mock_db, saturday):
    await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[5]))

    with pytest.raises(ConflictException) as exc:
        await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[5]))

    assert exc.value.reason == "table_already_reserved"
    assert exc.value.conflicting_tables == [5]
    assert await mock_db.reservations.count_documents({}) == 1


async def test_overlapping_slot_conflicts(saturday_slots, saturday):
    await allocate_reservation(booking_request(saturday, "23:30", party_size=8, table_numbers=[6, 7]))

    with pytest.raises(ConflictException) as exc:
        await allocate_reservation(booking_request(saturday, "00:00", party_size=12, table_numbers=[1, 7, 6]))
    assert exc.value.conflicting_tables == [6, 7]

    # adjacent slot is free
    await allocate_reservation(booking_request(saturday, "22:00", party_size=8, table_numbers=[6, 7]))


async def test_slot_scope_allows_overlapping_slots(saturday_slots, slot_scope, saturday):
    await allocate_reservation(booking_request(saturday, "23:30", table_numbers=[6]))
    reservation = await allocate_reservation(booking_request(saturday, "00:00", table_numbers=[6]))

    assert reservation["table_numbers"] == [6]


async def test_concurrent_requests_for_one_table(saturday_slots, mock_db, saturday):
    results = await asyncio.gather(
        allocate_reservation(booking_request(saturday, "22:00", table_numbers=[5])),
        allocate_reservation(booking_request(saturday, "22:00", table_numbers=[5], customer_name="Grace")),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, dict)]
    conflicts = [r for r in results if isinstance(r, ConflictException)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert conflicts[0].conflicting_tables == [5]
    assert await mock_db.reservations.count_documents({}) == 1


async def test_atomic_claim_blocks_stale_snapshot(saturday_slots, mock_db, monkeypatch, saturday):
    async def stale_read(start, end, scope=None):
        return []

    monkeypatch.setattr(reservation_booking, "get_blocking_reservations", stale_read)

    await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[5]))
    with pytest.raises(ConflictException) as exc:
        await allocate_reservation(booking_request(saturday, "22:00", party_size=8, table_numbers=[4, 5]))

    assert exc.value.conflicting_tables == [5]
    assert await mock_db.reservations.count_documents({}) == 1
    # partial claim on table 4 was released
    table_4 = await mock_db.tables.find_one({"table_number": 4})
    assert table_4["claims"] == []
    slot = await mock_db.slots.find_one({"start_instant": f"{date_str(saturday)}T22:00:00+00:00"})
    assert slot["tables_reserved"] == 1


async def test_unprovisioned_table_is_a_persistence_error(saturday_slots, mock_db, saturday):
    await mock_db.tables.delete_one({"table_number": 9})

    with pytest.raises(PersistenceException):
        await allocate_reservation(booking_request(saturday, table_numbers=[9]))
    assert await mock_db.reservations.count_documents({}) == 0


# ============== CAPACITY ==============

async def test_count_mode_capacity_bound(saturday_slots, mock_db, count_mode, saturday):
    for _ in range(10):
        await allocate_reservation(booking_request(saturday, "22:00", party_size=3, table_numbers=[]))

    with pytest.raises(ConflictException) as exc:
        await allocate_reservation(booking_request(saturday, "22:00", party_size=1, table_numbers=[]))

    assert exc.value.reason == "insufficient_capacity"
    assert await mock_db.reservations.count_documents({}) == 10


async def test_count_mode_counter_blocks_stale_snapshot(saturday_slots, mock_db, monkeypatch, count_mode, saturday):
    async def stale_read(start, end, scope=None):
        return []

    monkeypatch.setattr(reservation_booking, "get_blocking_reservations", stale_read)

    results = await asyncio.gather(
        *[allocate_reservation(booking_request(saturday, "23:30", party_size=4, table_numbers=[])) for _ in range(12)],
        return_exceptions=True,
    )

    assert sum(isinstance(r, dict) for r in results) == 10
    assert all(r.reason == "insufficient_capacity" for r in results if isinstance(r, Exception))
    slot = await mock_db.slots.find_one({"time": "23:30"})
    assert slot["tables_reserved"] == 10


async def test_count_mode_party_cap(saturday_slots, count_mode, saturday):
    with pytest.raises(ValidationException) as exc:
        await allocate_reservation(booking_request(saturday, party_size=5, table_numbers=[]))
    assert exc.value.reason == "party_size"


# ============== STORE FAILURES ==============

async def test_store_error_mid_claim_releases_taken_tables(saturday_slots, mock_db, monkeypatch, saturday):
    # table 3 is claimed, the claim of table 4 hits a dropped connection
    tables = fail_store(monkeypatch, reservation_booking, mock_db, "tables", "find_one_and_update", fail_on_call=2)

    with pytest.raises(PersistenceException):
        await allocate_reservation(booking_request(saturday, "22:00", party_size=8, table_numbers=[3, 4]))

    assert tables.calls == 2
    for number in (3, 4):
        table = await mock_db.tables.find_one({"table_number": number})
        assert table["claims"] == []
    slot = await mock_db.slots.find_one({"time": "22:00"})
    assert slot["tables_reserved"] == 0
    assert await mock_db.reservations.count_documents({}) == 0

    reservation = await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[3]))
    assert reservation["table_numbers"] == [3]


async def test_store_error_on_capacity_releases_tables(saturday_slots, mock_db, monkeypatch, saturday):
    fail_store(monkeypatch, reservation_booking, mock_db, "slots", "find_one_and_update")

    with pytest.raises(PersistenceException):
        await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[5]))

    table = await mock_db.tables.find_one({"table_number": 5})
    assert table["claims"] == []
    slot = await mock_db.slots.find_one({"time": "22:00"})
    assert slot["tables_reserved"] == 0
    assert await mock_db.reservations.count_documents({}) == 0


async def test_store_error_on_insert_releases_tables_and_capacity(saturday_slots, mock_db, monkeypatch, saturday):
    fail_store(monkeypatch, reservation_booking, mock_db, "reservations", "insert_one")

    with pytest.raises(PersistenceException):
        await allocate_reservation(booking_request(saturday, "23:30", party_size=6, table_numbers=[6, 7]))

    for number in (6, 7):
        table = await mock_db.tables.find_one({"table_number": number})
        assert table["claims"] == []
    slot = await mock_db.slots.find_one({"time": "23:30"})
    assert slot["tables_reserved"] == 0
    assert await mock_db.reservations.count_documents({}) == 0


# ============== CLAIM PRUNING ==============

async def test_booking_prunes_expired_claims(saturday_slots, mock_db, saturday):
    last_week = previous_saturday()
    stale = {
        "reservation_id": "stale",
        "start": f"{date_str(last_week)}T22:00:00+00:00",
        "end": f"{date_str(last_week)}T23:30:00+00:00",
    }
    await mock_db.tables.update_one({"table_number": 2}, {"$push": {"claims": stale}})

    reservation = await allocate_reservation(booking_request(saturday, "22:00", table_numbers=[2]))

    table = await mock_db.tables.find_one({"table_number": 2})
    assert [c["reservation_id"] for c in table["claims"]] == [reservation["id"]]


async def test_prune_expired_claims_over_pool(mock_db):
    last_week = previous_saturday()
    stale = {
        "reservation_id": "stale",
        "start": f"{date_str(last_week)}T22:00:00+00:00",
        "end": f"{date_str(last_week)}T23:30:00+00:00",
    }
    await mock_db.tables.update_many({"table_number": {"$in": [1, 4]}}, {"$push": {"claims": stale}})

    assert await prune_expired_claims() == 2
    assert await mock_db.tables.count_documents({"claims.reservation_id": "stale"}) == 0
    assert await prune_expired_claims() == 0
