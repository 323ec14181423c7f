"""
LateSeat Table Module - Table pool & overlap engine
==================================================================

FEATURES:
1. Table pool (number, seats, location) seeded from settings
2. Interval overlap test for duration-based bookings
3. Blocked-table computation per conflict scope (exact slot / interval)
4. Table suitability ranking for a party (least wasted seats first)
5. Service-period shaping of advertised table availability
6. Table suggestions for a start instant

RULES:
- A booking occupies [start_instant, start_instant + duration_minutes)
- Two bookings conflict iff they overlap AND share a table
- Suitable table: seats >= party and seats <= party + 2
- Service-period multipliers only shape what is advertised; the hard
  overlap constraint is enforced by the allocator regardless
"""

from fastapi import APIRouter, Query
from typing import List, Optional, Dict, Any, Iterable, Set, Tuple
import math

# Core imports
from core.config import settings
from core.database import db
from core.models import AddressingMode, ConflictScope, ReservationStatus
from core.exceptions import ValidationException
from core.timeutils import add_minutes, parse_instant, parse_date_str, time_to_minutes
from core.validators import validate_party_size

from reservation_slots_module import ensure_slots, get_slot_by_instant

import logging
logger = logging.getLogger(__name__)


# ============== ROUTER ==============
table_router = APIRouter(prefix="/tables", tags=["Tables"])


# ============== CONSTANTS ==============
# How far back a booking may start and still overlap a later window
OVERLAP_LOOKBACK_MINUTES = 24 * 60


# ============== OVERLAP ==============

def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    """Half-open intervals [start, end) overlap"""
    return a_start < b_end and a_end > b_start


def reservation_interval(reservation: dict) -> Tuple[str, str]:
    start = reservation["start_instant"]
    end = reservation.get("end_instant") or add_minutes(
        start, reservation.get("duration_minutes", settings.SLOT_DURATION_MINUTES)
    )
    return start, end


def effective_conflict_scope() -> ConflictScope:
    """Count addressing has no table identity and always partitions by slot"""
    if settings.ADDRESSING_MODE == AddressingMode.COUNT:
        return ConflictScope.SLOT
    return settings.CONFLICT_SCOPE


def blocks_window(reservation: dict, start: str, end: str, scope: ConflictScope) -> bool:
    if reservation.get("status") != ReservationStatus.CONFIRMED.value:
        return False
    if scope == ConflictScope.SLOT:
        return reservation["start_instant"] == start
    res_start, res_end = reservation_interval(reservation)
    return intervals_overlap(start, end, res_start, res_end)


def blocked_tables(
    reservations: Iterable[dict],
    start: str,
    end: str,
    scope: Optional[ConflictScope] = None
) -> Set[int]:
    """Union of table numbers held by confirmed reservations blocking [start, end)"""
    scope = scope or effective_conflict_scope()
    tables = set()
    for reservation in reservations:
        if blocks_window(reservation, start, end, scope):
            tables.update(reservation.get("table_numbers") or [])
    return tables


def find_conflicting_tables(
    reservations: Iterable[dict],
    start: str,
    end: str,
    table_numbers: Iterable[int],
    scope: Optional[ConflictScope] = None
) -> List[int]:
    return sorted(set(table_numbers) & blocked_tables(reservations, start, end, scope))


# ============== SUITABILITY & SERVICE PERIODS ==============

def get_suitable_tables(tables: List[dict], party_size: int) -> List[dict]:
    """
    Tables that seat the party without wasting more than two seats,
    smallest first.
    """
    suitable = [
        t for t in tables
        if party_size <= t["capacity"] <= party_size + 2
    ]
    return sorted(suitable, key=lambda t: (t["capacity"], t["table_number"]))


def _in_period(minutes: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= minutes < end
    # window wraps midnight
    return minutes >= start or minutes < end


def get_service_period(time_str: str) -> Dict[str, Any]:
    """Service period of a local HH:MM, off-peak when none matches"""
    minutes = time_to_minutes(time_str)
    for period in settings.SERVICE_PERIODS:
        if _in_period(minutes, time_to_minutes(period["start"]), time_to_minutes(period["end"])):
            return period
    return {"name": "off_peak", "tables_open": settings.OFF_PEAK_TABLES_OPEN}


def base_availability(period: Dict[str, Any]) -> float:
    """Share of tables advertised during a service period (0.0 - 1.0)"""
    return max(0.0, min(float(period.get("tables_open", 1.0)), 1.0))


def shaped_count(free_tables: int, period: Dict[str, Any]) -> int:
    return max(0, math.floor(free_tables * base_availability(period)))


# ============== STORE QUERIES ==============

async def get_table_pool() -> List[dict]:
    return await db.tables.find(
        {"active": True}, {"_id": 0, "claims": 0}
    ).sort("table_number", 1).to_list(500)


async def get_confirmed_reservations(start_from: str, start_to: str) -> List[dict]:
    """Confirmed reservations starting within [start_from, start_to]"""
    return await db.reservations.find({
        "status": ReservationStatus.CONFIRMED.value,
        "start_instant": {"$gte": start_from, "$lte": start_to}
    }, {"_id": 0}).sort("start_instant", 1).to_list(1000)


async def get_blocking_reservations(
    start: str,
    end: str,
    scope: Optional[ConflictScope] = None
) -> List[dict]:
    """Fresh read of the confirmed reservations that block [start, end)"""
    scope = scope or effective_conflict_scope()
    if scope == ConflictScope.SLOT:
        candidates = await db.reservations.find({
            "status": ReservationStatus.CONFIRMED.value,
            "start_instant": start
        }, {"_id": 0}).to_list(1000)
    else:
        candidates = await get_confirmed_reservations(
            add_minutes(start, -OVERLAP_LOOKBACK_MINUTES), end
        )
    return [r for r in candidates if blocks_window(r, start, end, scope)]


# ============== POOL AVAILABILITY ==============

async def calculate_table_availability(date_str: str, party_size: int) -> dict:
    """
    Suitable free tables per slot of a service night, shaped by the
    service-period multiplier.
    """
    parse_date_str(date_str)
    validate_party_size(party_size)

    slots = [s for s in await ensure_slots(date_str) if s.get("is_active", True)]
    tables = await get_table_pool()
    suitable = get_suitable_tables(tables, party_size)

    result = {
        "date": date_str,
        "party_size": party_size,
        "suitable_tables": [t["table_number"] for t in suitable],
        "slots": []
    }
    if not slots:
        return result

    reservations = await get_confirmed_reservations(
        add_minutes(slots[0]["start_instant"], -OVERLAP_LOOKBACK_MINUTES),
        slots[-1]["end_instant"]
    )

    for slot in slots:
        taken = blocked_tables(reservations, slot["start_instant"], slot["end_instant"], ConflictScope.INTERVAL)
        free = [t for t in suitable if t["table_number"] not in taken]
        period = get_service_period(slot["time"])
        available_count = shaped_count(len(free), period)
        if available_count > 0:
            result["slots"].append({
                "time": slot["time"],
                "start_instant": slot["start_instant"],
                "service_period": period["name"],
                "suitable_tables": len(suitable),
                "free_tables": [t["table_number"] for t in free],
                "available_count": available_count
            })

    return result


async def suggest_tables(date_time: str, party_size: int) -> List[Dict[str, Any]]:
    """
    Ranked free suitable tables for a start instant.
    Returns suggestions only, NO automatic assignment.
    """
    validate_party_size(party_size)
    start_instant = parse_instant(date_time)
    slot = await get_slot_by_instant(start_instant)
    if not slot or not slot.get("is_active", True):
        raise ValidationException("Invalid time slot", reason="invalid_slot")

    reservations = await get_blocking_reservations(start_instant, slot["end_instant"])
    taken = blocked_tables(reservations, start_instant, slot["end_instant"])
    tables = await get_table_pool()

    return [
        {
            "table_number": t["table_number"],
            "capacity": t["capacity"],
            "location": t.get("location"),
            "wasted_seats": t["capacity"] - party_size
        }
        for t in get_suitable_tables(tables, party_size)
        if t["table_number"] not in taken
    ]


# ============== API ENDPOINTS ==============

@table_router.get("")
async def list_tables():
    return await get_table_pool()


@table_router.get("/availability")
async def get_table_availability(
    date: str = Query(..., description="YYYY-MM-DD"),
    party_size: int = Query(1)
):
    return await calculate_table_availability(date, party_size)


@table_router.get("/suggestions")
async def get_table_suggestions(
    date_time: str = Query(..., description="ISO date-time of the slot"),
    party_size: int = Query(1)
):
    return {
        "date_time": parse_instant(date_time),
        "party_size": party_size,
        "suggestions": await suggest_tables(date_time, party_size)
    }
