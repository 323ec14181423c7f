"""
Shared Enums
"""
from enum import Enum


class ReservationStatus(str, Enum):
    """Reservation status with strict workflow"""
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @classmethod
    def is_active(cls, status: str) -> bool:
        return status == cls.CONFIRMED.value


class AddressingMode(str, Enum):
    """How a reservation claims capacity of a slot"""
    COUNT = "count"  # n tables out of the slot capacity, no table identity
    TABLE_NUMBERS = "table_numbers"  # explicit table numbers from the pool


class ConflictScope(str, Enum):
    """Which existing bookings block a table"""
    SLOT = "slot"  # same start instant only
    INTERVAL = "interval"  # any overlapping [start, end) range


class AuditAction(str, Enum):
    """Audit log action types"""
    CREATE = "create"
    STATUS_CHANGE = "status_change"
    SLOT_TOGGLE = "slot_toggle"
