"""
LateSeat Reservation Booking Module
================================================================================
Validate a reservation request and commit it atomically

ORDER OF CHECKS (fail fast):
1) Required fields present
2) Party size within bounds
3) Table numbers valid, distinct, count == ceil(party_size / 4)
4) Slot exists, is active and has not started
5) Fresh read of the confirmed reservations for the slot
6) Table collision / remaining capacity
7) Atomic claims, booking id, insert with status "confirmed"

ATOMICITY:
- Tables: per-table conditional $push onto the claims ledger, only if no
  claim overlaps the requested interval (exact start in slot scope)
- Capacity: conditional $inc on the slot counter, only if it stays within
  capacity_tables
- Claims taken before a later failure (conflict or store error) are released
  again
- Claims that ended in the past are pruned from the ledger of the requested
  tables before claiming
"""

from typing import Callable, List, Optional
import secrets
import time
import uuid

from pymongo.errors import DuplicateKeyError, PyMongoError

# Core imports
from core.config import settings
from core.database import db
from core.audit import create_audit_log, guest_actor
from core.models import AddressingMode, AuditAction, ConflictScope, ReservationStatus
from core.exceptions import (
    LateSeatException, ValidationException, ConflictException, PersistenceException
)
from core.timeutils import now_iso, now_utc, parse_instant, to_iso_utc
from core.validators import validate_reservation_data, tables_required

from reservation_slots_module import get_slot_by_instant
from reservation_capacity import tables_reserved_for_slot
from table_module import (
    effective_conflict_scope, find_conflicting_tables, get_blocking_reservations
)

import logging
logger = logging.getLogger(__name__)


# ============== CONSTANTS ==============
BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
BOOKING_ID_ATTEMPTS = 3


# ============== BOOKING IDS ==============

def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_booking_id() -> str:
    """Opaque upper-case id, e.g. BK-MGX3K2Q1-4F7ZP0A9C"""
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(9))
    return f"{settings.BOOKING_ID_PREFIX}-{timestamp}-{random_part}".upper()


# ============== CLAIMS ==============

def _claim_filter(table_number: int, start: str, end: str, scope: ConflictScope) -> dict:
    if scope == ConflictScope.SLOT:
        clash = {"start": start}
    else:
        clash = {"start": {"$lt": end}, "end": {"$gt": start}}
    return {
        "table_number": table_number,
        "active": True,
        "claims": {"$not": {"$elemMatch": clash}}
    }


async def release_tables(table_numbers: List[int], reservation_id: str) -> None:
    if not table_numbers:
        return
    await db.tables.update_many(
        {"table_number": {"$in": list(table_numbers)}},
        {"$pull": {"claims": {"reservation_id": reservation_id}}}
    )


async def release_slot_capacity(start_instant: str, required: int) -> None:
    await db.slots.update_one(
        {"start_instant": start_instant},
        {"$inc": {"tables_reserved": -required}}
    )


async def prune_expired_claims(table_numbers: Optional[List[int]] = None, cutoff: Optional[str] = None) -> int:
    """Drop claims that ended before cutoff (now), returns the number of tables touched"""
    cutoff = cutoff or to_iso_utc(now_utc())
    query = {"claims.end": {"$lte": cutoff}}
    if table_numbers is not None:
        query["table_number"] = {"$in": list(table_numbers)}
    result = await db.tables.update_many(query, {"$pull": {"claims": {"end": {"$lte": cutoff}}}})
    return result.modified_count


async def _release_tables_quietly(claimed: List[int], reservation_id: str) -> None:
    try:
        await release_tables(claimed, reservation_id)
    except PyMongoError as e:
        logger.error(
            f"Releasing tables {claimed} of {reservation_id} failed, "
            f"manual reconciliation required: {e}"
        )


async def claim_tables(
    table_numbers: List[int],
    reservation_id: str,
    start: str,
    end: str,
    scope: Optional[ConflictScope] = None
) -> List[int]:
    """
    Claim every table for [start, end) or none of them.
    Tables are claimed in ascending order so that two requests with
    overlapping table sets contend on the same table first.
    """
    scope = scope or effective_conflict_scope()
    claimed = []
    try:
        # claims ending before now can never clash with a bookable slot
        await prune_expired_claims(table_numbers)
        for number in sorted(table_numbers):
            claim = {"reservation_id": reservation_id, "start": start, "end": end}
            updated = await db.tables.find_one_and_update(
                _claim_filter(number, start, end, scope),
                {"$push": {"claims": claim}}
            )
            if updated is None:
                break
            claimed.append(number)
        else:
            return claimed
    except PyMongoError:
        await _release_tables_quietly(claimed, reservation_id)
        raise

    await _release_tables_quietly(claimed, reservation_id)
    if not await db.tables.find_one({"table_number": number, "active": True}):
        raise PersistenceException(f"Table {number} is not provisioned")
    logger.warning(f"Table {number} already claimed for {start}")
    raise ConflictException(
        "Table already reserved",
        reason="table_already_reserved",
        conflicting_tables=[number]
    )


async def claim_slot_capacity(slot: dict, required: int) -> None:
    """Atomically add required tables to the slot counter within capacity"""
    updated = await db.slots.find_one_and_update(
        {
            "start_instant": slot["start_instant"],
            "is_active": True,
            "tables_reserved": {"$lte": slot["capacity_tables"] - required}
        },
        {"$inc": {"tables_reserved": required}}
    )
    if updated is None:
        logger.warning(f"Slot {slot['start_instant']} has no room for {required} table(s)")
        raise ConflictException("No tables available for this time slot", reason="insufficient_capacity")


async def _release_claims(tables: List[int], reservation_id: str, slot: dict, required: int, capacity_claimed: bool):
    try:
        await release_tables(tables, reservation_id)
        if capacity_claimed:
            await release_slot_capacity(slot["start_instant"], required)
    except PyMongoError as e:
        logger.error(
            f"Releasing claims of {reservation_id} on {slot['start_instant']} failed, "
            f"manual reconciliation required: {e}"
        )


async def _insert_reservation(reservation: dict, id_generator: Callable[[], str]) -> dict:
    for _ in range(BOOKING_ID_ATTEMPTS):
        reservation["booking_id"] = id_generator()
        try:
            await db.reservations.insert_one(reservation)
            return {k: v for k, v in reservation.items() if k != "_id"}
        except DuplicateKeyError:
            logger.warning(f"Booking id {reservation['booking_id']} already taken, regenerating")
            reservation.pop("_id", None)
    raise PersistenceException("Could not generate a unique booking id")


# ============== ALLOCATION ==============

async def allocate_reservation(
    data: dict,
    id_generator: Callable[[], str] = generate_booking_id,
    actor: Optional[dict] = None
) -> dict:
    """
    Validate and commit a reservation request.

    Args:
        data: date_time, party_size, table_numbers (table-number mode),
              customer_name, customer_email, customer_phone, special_requests
        id_generator: Callable returning a fresh booking id
        actor: Audit actor, defaults to the guest

    Returns the stored reservation (without _id).
    """
    cleaned = validate_reservation_data(data)
    party_size = cleaned["party_size"]
    required = tables_required(party_size)
    table_mode = settings.ADDRESSING_MODE == AddressingMode.TABLE_NUMBERS
    table_numbers = cleaned["table_numbers"] if table_mode else []

    start_instant = parse_instant(cleaned["date_time"])
    slot = await get_slot_by_instant(start_instant)
    if not slot or not slot.get("is_active", True):
        raise ValidationException("Invalid time slot", reason="invalid_slot")
    if slot["start_instant"] <= to_iso_utc(now_utc()):
        raise ValidationException("Time slot has already started", reason="invalid_slot")

    end_instant = slot["end_instant"]
    scope = effective_conflict_scope()

    # Fresh read, never reused from an availability query
    reservations = await get_blocking_reservations(start_instant, end_instant, scope)
    if table_mode:
        conflicts = find_conflicting_tables(reservations, start_instant, end_instant, table_numbers, scope)
        if conflicts:
            logger.warning(f"Tables {conflicts} already reserved for {start_instant}")
            raise ConflictException(
                "Table already reserved",
                reason="table_already_reserved",
                conflicting_tables=conflicts
            )
    reserved = tables_reserved_for_slot(slot, reservations, scope)
    if required > slot["capacity_tables"] - reserved:
        raise ConflictException("No tables available for this time slot", reason="insufficient_capacity")

    now = now_iso()
    reservation = {
        "id": str(uuid.uuid4()),
        "booking_id": None,
        "start_instant": start_instant,
        "end_instant": end_instant,
        "service_date": slot["date"],
        "slot_time": slot["time"],
        "duration_minutes": slot["duration_minutes"],
        "party_size": party_size,
        "tables_required": required,
        "table_numbers": table_numbers,
        "customer_name": cleaned["customer_name"],
        "customer_email": cleaned["customer_email"],
        "customer_phone": cleaned["customer_phone"],
        "special_requests": cleaned.get("special_requests") or "",
        "status": ReservationStatus.CONFIRMED.value,
        "created_at": now,
        "updated_at": now,
    }

    claimed_tables = []
    capacity_claimed = False
    try:
        if table_mode:
            claimed_tables = await claim_tables(table_numbers, reservation["id"], start_instant, end_instant, scope)
        await claim_slot_capacity(slot, required)
        capacity_claimed = True
        stored = await _insert_reservation(reservation, id_generator)
    except ConflictException as e:
        # claim_tables already released its own partial claims
        await _release_claims(claimed_tables, reservation["id"], slot, required, capacity_claimed)
        if e.reason == "table_already_reserved":
            fresh = await get_blocking_reservations(start_instant, end_instant, scope)
            conflicts = find_conflicting_tables(fresh, start_instant, end_instant, table_numbers, scope)
            if conflicts and conflicts != e.conflicting_tables:
                raise ConflictException(
                    "Table already reserved",
                    reason="table_already_reserved",
                    conflicting_tables=conflicts
                )
        raise
    except (LateSeatException, PyMongoError) as e:
        await _release_claims(claimed_tables, reservation["id"], slot, required, capacity_claimed)
        if isinstance(e, PyMongoError):
            logger.error(f"Reservation for {start_instant} could not be saved: {e}")
            raise PersistenceException("Reservation could not be saved")
        raise

    await create_audit_log(
        actor or guest_actor(stored["customer_email"]),
        "reservation", stored["booking_id"], AuditAction.CREATE.value, None, stored
    )
    logger.info(
        f"Reservation {stored['booking_id']} confirmed: {start_instant}, "
        f"party of {party_size}, tables {table_numbers or required}"
    )
    return stored


def booking_confirmation(reservation: dict) -> dict:
    """Public view of a committed reservation"""
    return {
        "booking_id": reservation["booking_id"],
        "start_instant": reservation["start_instant"],
        "service_date": reservation["service_date"],
        "time": reservation["slot_time"],
        "party_size": reservation["party_size"],
        "table_numbers": reservation.get("table_numbers", []),
        "customer_name": reservation["customer_name"],
        "status": reservation["status"],
        "duration_minutes": reservation["duration_minutes"],
    }
