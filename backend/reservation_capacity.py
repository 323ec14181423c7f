"""
LateSeat Reservation Capacity Module
================================================================================
Remaining capacity per slot for a service night

FEATURES:
1. Availability per slot for a date and party size
2. Count addressing: tables reserved = sum of tables required per reservation
3. Table-number addressing: tables reserved = union of claimed table numbers
   (exact slot or overlapping interval, see CONFLICT_SCOPE)
4. Reserved table lookup for a start instant
5. Reservation list per service night

BUSINESS RULES:
- Only confirmed reservations count
- A slot is offered only while it can still seat the party
- Non-operating days answer with an empty list and a message, never an error
"""

from fastapi import APIRouter, Query
from typing import List

# Core imports
from core.config import settings
from core.database import db
from core.models import AddressingMode, ConflictScope, ReservationStatus
from core.timeutils import (
    parse_date_str, parse_instant, add_minutes, day_label, WEEKDAY_NAMES
)
from core.validators import validate_party_size, tables_required

from reservation_slots_module import ensure_slots, get_slot_by_instant, is_operating_day
from table_module import (
    blocked_tables, effective_conflict_scope, get_confirmed_reservations,
    get_blocking_reservations
)

import logging
logger = logging.getLogger(__name__)


# ============== ROUTER ==============
capacity_router = APIRouter(prefix="/reservations", tags=["Reservation Capacity"])


# ============== HELPER FUNCTIONS ==============

def operating_days_label() -> str:
    names = [WEEKDAY_NAMES[d] + "s" for d in sorted(settings.OPERATING_WEEKDAYS)]
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " and " + names[-1]


def tables_reserved_for_slot(slot: dict, reservations: List[dict], scope: ConflictScope) -> int:
    """Tables of the slot held by confirmed reservations"""
    if settings.ADDRESSING_MODE == AddressingMode.COUNT:
        return sum(
            r.get("tables_required", 1)
            for r in reservations
            if r["start_instant"] == slot["start_instant"] and r.get("status") == ReservationStatus.CONFIRMED.value
        )
    return len(blocked_tables(reservations, slot["start_instant"], slot["end_instant"], scope))


# ============== CORE BUSINESS LOGIC ==============

async def compute_availability(date_str: str, party_size: int) -> dict:
    """
    Bookable slots of a service night with remaining table capacity.

    Returns: {
        "date": "2026-10-24",
        "party_size": 4,
        "tables_required": 1,
        "day_label": "Saturday",
        "available_slots": [
            {
                "time": "22:00",
                "start_instant": "2026-10-24T22:00:00+00:00",
                "capacity": 10,
                "reserved": 1,
                "available_count": 9,
                "duration_minutes": 90
            },
            ...
        ]
    }
    """
    target_date = parse_date_str(date_str)
    validate_party_size(party_size)
    required = tables_required(party_size)

    result = {
        "date": date_str,
        "party_size": party_size,
        "tables_required": required,
        "day_label": day_label(target_date),
        "available_slots": []
    }

    if not is_operating_day(target_date):
        result["message"] = f"Reservations are only available on {operating_days_label()}"
        return result

    slots = [s for s in await ensure_slots(date_str) if s.get("is_active", True)]
    if not slots:
        return result

    reservations = await get_confirmed_reservations(
        add_minutes(slots[0]["start_instant"], -settings.SLOT_DURATION_MINUTES),
        slots[-1]["end_instant"]
    )
    scope = effective_conflict_scope()

    for slot in slots:
        reserved = tables_reserved_for_slot(slot, reservations, scope)
        available_count = slot["capacity_tables"] - reserved
        if available_count > 0 and available_count >= required:
            result["available_slots"].append({
                "time": slot["time"],
                "start_instant": slot["start_instant"],
                "capacity": slot["capacity_tables"],
                "reserved": reserved,
                "available_count": available_count,
                "duration_minutes": slot["duration_minutes"]
            })

    return result


async def get_reserved_tables(date_time: str) -> List[int]:
    """Sorted distinct table numbers unavailable for a booking starting at date_time"""
    start_instant = parse_instant(date_time)
    slot = await get_slot_by_instant(start_instant)
    duration = slot["duration_minutes"] if slot else settings.SLOT_DURATION_MINUTES
    end_instant = add_minutes(start_instant, duration)

    reservations = await get_blocking_reservations(start_instant, end_instant)
    return sorted(blocked_tables(reservations, start_instant, end_instant))


async def list_reservations_for_date(date_str: str) -> List[dict]:
    """All reservations of a service night, any status, ordered by start"""
    parse_date_str(date_str)
    return await db.reservations.find(
        {"service_date": date_str}, {"_id": 0}
    ).sort("start_instant", 1).to_list(1000)


# ============== API ENDPOINTS ==============

@capacity_router.get("/available")
async def get_available_slots(
    date: str = Query(..., description="YYYY-MM-DD"),
    party_size: int = Query(1)
):
    return await compute_availability(date, party_size)


@capacity_router.get("/reserved-tables")
async def get_reserved_tables_endpoint(
    date_time: str = Query(..., description="ISO date-time of the slot")
):
    return {
        "date_time": parse_instant(date_time),
        "reserved_tables": await get_reserved_tables(date_time)
    }


@capacity_router.get("/date/{date}")
async def get_date_reservations(date: str):
    return {
        "date": date,
        "reservations": await list_reservations_for_date(date)
    }
