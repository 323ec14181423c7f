"""
LateSeat Reservation Slots Module
================================================================================
Fixed slot catalogue per service night + table pool seeding

FEATURES:
1. Slots are seeded lazily on first access of an operating date
2. Seeding is idempotent (one batch insert guarded by a unique date + time index)
3. Slot times after midnight belong to the same service night
4. Slots can be deactivated/reactivated per date
5. Table pool seeded from settings

BUSINESS RULES:
- Operating days: Friday + Saturday
- Slots: 22:00, 23:30, 00:00 with 10 tables, 90 minutes each
- Non-operating days never get slots written
"""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import List, Optional
from datetime import date
import uuid

from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

# Core imports
from core.config import settings
from core.database import db
from core.audit import create_audit_log, SYSTEM_ACTOR
from core.models import AuditAction
from core.exceptions import NotFoundException, ValidationException, PersistenceException
from core.timeutils import (
    now_iso, parse_date_str, service_slot_instants, add_minutes, day_label
)

import logging
logger = logging.getLogger(__name__)


# ============== ROUTER ==============
slots_router = APIRouter(prefix="/slots", tags=["Reservation Slots"])


# ============== CONSTANTS ==============
DUPLICATE_KEY_ERROR = 11000


# ============== PYDANTIC MODELS ==============

class SlotToggle(BaseModel):
    """Activate / deactivate a single slot"""
    is_active: bool


# ============== HELPER FUNCTIONS ==============

def is_operating_day(target_date: date) -> bool:
    return target_date.weekday() in settings.OPERATING_WEEKDAYS


def build_slot_documents(target_date: date) -> List[dict]:
    """Slot documents for one service night, in service order"""
    date_str = target_date.strftime("%Y-%m-%d")
    created_at = now_iso()
    docs = []
    for time_str, start_instant in service_slot_instants(target_date, settings.SLOT_TIMES):
        docs.append({
            "id": str(uuid.uuid4()),
            "date": date_str,
            "time": time_str,
            "start_instant": start_instant,
            "end_instant": add_minutes(start_instant, settings.SLOT_DURATION_MINUTES),
            "capacity_tables": settings.SLOT_CAPACITY_TABLES,
            "duration_minutes": settings.SLOT_DURATION_MINUTES,
            "is_active": True,
            "tables_reserved": 0,
            "created_at": created_at,
            "updated_at": created_at,
        })
    return docs


async def _write_slot_batch(docs: List[dict]) -> None:
    """
    Single unordered batch insert guarded by the unique (date, time) index.
    A duplicate-key error means a concurrent caller created the slot first.
    """
    try:
        await db.slots.insert_many([dict(doc) for doc in docs], ordered=False)
    except BulkWriteError as e:
        details = e.details or {}
        unexpected = [
            err for err in details.get("writeErrors", [])
            if err.get("code") != DUPLICATE_KEY_ERROR
        ]
        if unexpected or details.get("writeConcernErrors"):
            logger.error(f"Slot seeding failed for {docs[0]['date']}: {unexpected or details}")
            raise PersistenceException("Slot seeding failed")
        logger.info(f"Slots for {docs[0]['date']} were seeded concurrently")
    except PyMongoError as e:
        logger.error(f"Slot seeding failed for {docs[0]['date']}: {e}")
        raise PersistenceException("Slot seeding failed")


# ============== CORE BUSINESS LOGIC ==============

async def get_slots_for_date(date_str: str) -> List[dict]:
    return await db.slots.find(
        {"date": date_str}, {"_id": 0}
    ).sort("start_instant", 1).to_list(100)


async def ensure_slots(date_str: str) -> List[dict]:
    """
    Return the slots of a service night, creating them on first access.

    Existing slots are returned unchanged. Non-operating days return []
    without writing. Otherwise the full catalogue is written as one batch;
    if fewer slots than configured exist afterwards the date is in a corrupt
    state that needs manual reconciliation.
    """
    target_date = parse_date_str(date_str)

    existing = await get_slots_for_date(date_str)
    if existing:
        return existing

    if not is_operating_day(target_date):
        return []

    docs = build_slot_documents(target_date)
    await _write_slot_batch(docs)

    slots = await get_slots_for_date(date_str)
    if len(slots) != len(docs):
        logger.error(
            f"Partial slot catalogue for {date_str}: {len(slots)}/{len(docs)} slots. "
            f"Manual reconciliation required."
        )
        raise PersistenceException(f"Slot catalogue for {date_str} is incomplete")

    logger.info(f"Seeded {len(slots)} slots for {date_str}")
    return slots


async def get_slot_by_instant(start_instant: str) -> Optional[dict]:
    return await db.slots.find_one({"start_instant": start_instant}, {"_id": 0})


async def set_slot_active(date_str: str, time_str: str, is_active: bool) -> dict:
    """Toggle is_active - the only mutable slot attribute"""
    parse_date_str(date_str)
    if time_str not in settings.SLOT_TIMES:
        raise ValidationException(f"Unknown slot time: {time_str}", reason="invalid_slot")

    before = await db.slots.find_one({"date": date_str, "time": time_str}, {"_id": 0})
    if not before:
        raise NotFoundException("Time slot")

    updated = await db.slots.find_one_and_update(
        {"date": date_str, "time": time_str},
        {"$set": {"is_active": is_active, "updated_at": now_iso()}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER
    )
    await create_audit_log(SYSTEM_ACTOR, "slot", before["id"], AuditAction.SLOT_TOGGLE.value, before, updated)
    logger.info(f"Slot {date_str} {time_str} is_active={is_active}")
    return updated


async def ensure_table_pool() -> int:
    """Idempotently upsert the configured table pool, returns pool size"""
    for table in settings.TABLES:
        try:
            await db.tables.update_one(
                {"table_number": table["table_number"]},
                {
                    "$set": {
                        "capacity": table["capacity"],
                        "location": table.get("location", ""),
                    },
                    "$setOnInsert": {"active": True, "claims": []},
                },
                upsert=True
            )
        except DuplicateKeyError:
            # concurrent seeder inserted it first
            continue
        except PyMongoError as e:
            logger.error(f"Table pool seeding failed at table {table['table_number']}: {e}")
            raise PersistenceException("Table pool seeding failed")
    return len(settings.TABLES)


# ============== API ENDPOINTS ==============

@slots_router.get("/{date}")
async def list_slots(date: str):
    """Slots of a service night (seeds them on first access)"""
    target_date = parse_date_str(date)
    slots = await ensure_slots(date)
    return {
        "date": date,
        "day_label": day_label(target_date),
        "operating_day": is_operating_day(target_date),
        "slots": slots
    }


@slots_router.patch("/{date}/{time}")
async def toggle_slot(date: str, time: str, data: SlotToggle):
    return await set_slot_active(date, time, data.is_active)
