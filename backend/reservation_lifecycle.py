"""
LateSeat Reservation Lifecycle Module
================================================================================
Status transitions for committed reservations

STATES:
    confirmed (initial) → cancelled (terminal)
    confirmed (initial) → no_show (terminal)

RULES:
- Reservations are never deleted, a cancellation is a status change
- A second cancel fails with AlreadyCancelledException, status unchanged
- The transition is a conditional update on the current status, so two
  concurrent cancels cannot both succeed
- Leaving "confirmed" releases the table and slot capacity claims
"""

from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

# Core imports
from core.database import db
from core.audit import create_audit_log, SYSTEM_ACTOR
from core.models import AuditAction, ReservationStatus
from core.exceptions import (
    NotFoundException, AlreadyCancelledException, InvalidStatusTransitionException,
    PersistenceException
)
from core.timeutils import now_iso
from core.validators import validate_status_transition

from reservation_booking import release_tables, release_slot_capacity

import logging
logger = logging.getLogger(__name__)


async def get_reservation(booking_id: str) -> dict:
    reservation = await db.reservations.find_one({"booking_id": booking_id}, {"_id": 0})
    if not reservation:
        raise NotFoundException("Reservation")
    return reservation


def _guard_transition(booking_id: str, current: str, target: str) -> None:
    if target == ReservationStatus.CANCELLED.value and current == ReservationStatus.CANCELLED.value:
        raise AlreadyCancelledException(booking_id)
    validate_status_transition(current, target)


async def _release_capacity(reservation: dict) -> None:
    try:
        await release_tables(reservation.get("table_numbers") or [], reservation["id"])
        await release_slot_capacity(reservation["start_instant"], reservation.get("tables_required", 1))
    except PyMongoError as e:
        logger.error(
            f"Releasing claims of {reservation['booking_id']} failed, "
            f"manual reconciliation required: {e}"
        )


async def change_status(booking_id: str, target: str, actor: Optional[dict] = None) -> dict:
    """Move a reservation to target status, releasing its claims"""
    before = await get_reservation(booking_id)
    _guard_transition(booking_id, before["status"], target)

    try:
        updated = await db.reservations.find_one_and_update(
            {"booking_id": booking_id, "status": before["status"]},
            {"$set": {"status": target, "updated_at": now_iso()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER
        )
    except PyMongoError as e:
        logger.error(f"Status change of {booking_id} to {target} failed: {e}")
        raise PersistenceException("Reservation could not be updated")

    if updated is None:
        # A concurrent request changed the status first
        current = await get_reservation(booking_id)
        _guard_transition(booking_id, current["status"], target)
        raise InvalidStatusTransitionException(current["status"], target)

    if ReservationStatus.is_active(before["status"]):
        await _release_capacity(updated)

    await create_audit_log(
        actor or SYSTEM_ACTOR, "reservation", booking_id,
        AuditAction.STATUS_CHANGE.value, before, updated
    )
    logger.info(f"Reservation {booking_id}: {before['status']} → {target}")
    return updated


async def cancel_reservation(booking_id: str, actor: Optional[dict] = None) -> dict:
    return await change_status(booking_id, ReservationStatus.CANCELLED.value, actor)


async def mark_no_show(booking_id: str, actor: Optional[dict] = None) -> dict:
    return await change_status(booking_id, ReservationStatus.NO_SHOW.value, actor)
