"""
Validators - Centralized validation logic
"""
import math
from typing import List, Optional

from .config import settings
from .exceptions import ValidationException, InvalidStatusTransitionException
from .models import AddressingMode

REQUIRED_RESERVATION_FIELDS = [
    "date_time", "party_size", "customer_name", "customer_email", "customer_phone"
]
CUSTOMER_FIELDS = ["customer_name", "customer_email", "customer_phone"]


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate that a status transition is allowed.
    Raises InvalidStatusTransitionException if not allowed.

    Status workflow:
        confirmed → cancelled, no_show
        cancelled → (terminal)
        no_show → (terminal)
    """
    allowed_transitions = settings.STATUS_TRANSITIONS.get(current_status, [])

    if new_status not in allowed_transitions:
        raise InvalidStatusTransitionException(current_status, new_status)

    return True


def tables_required(party_size: int) -> int:
    """Number of tables a party occupies"""
    return math.ceil(party_size / settings.PER_TABLE_CAPACITY)


def validate_party_size(party_size) -> int:
    if isinstance(party_size, bool) or not isinstance(party_size, int):
        raise ValidationException("Party size must be a whole number", reason="party_size")
    if party_size < settings.MIN_PARTY_SIZE:
        raise ValidationException(
            f"Party size must be at least {settings.MIN_PARTY_SIZE}", reason="party_size"
        )
    if party_size > settings.max_party_size:
        raise ValidationException(
            f"Maximum party size is {settings.max_party_size} guests", reason="party_size"
        )
    return party_size


def validate_table_numbers(table_numbers: Optional[list], party_size: int) -> List[int]:
    """
    Table-number addressing: distinct pool members, exactly as many as the
    party needs.
    """
    required = tables_required(party_size)
    if table_numbers is None:
        table_numbers = []
    if not isinstance(table_numbers, (list, tuple, set)):
        raise ValidationException("Table numbers must be a list", reason="invalid_table")

    valid_numbers = set(settings.table_numbers)
    for number in table_numbers:
        if isinstance(number, bool) or not isinstance(number, int) or number not in valid_numbers:
            raise ValidationException(
                f"Invalid table number: {number}. Valid tables: "
                f"{min(valid_numbers)}-{max(valid_numbers)}",
                reason="invalid_table"
            )
    if len(set(table_numbers)) != len(table_numbers):
        raise ValidationException("Table numbers must be distinct", reason="invalid_table")
    if len(table_numbers) != required:
        raise ValidationException(
            f"Table count mismatch: party of {party_size} requires {required} "
            f"table(s), got {len(table_numbers)}",
            reason="table_count_mismatch"
        )
    return sorted(table_numbers)


def validate_reservation_data(data: dict) -> dict:
    """
    Validate a reservation request in a fixed order, failing fast:
    required fields, party size, table numbers.
    Returns cleaned data or raises ValidationException.
    """
    missing = [
        field for field in REQUIRED_RESERVATION_FIELDS
        if data.get(field) is None or (isinstance(data.get(field), str) and not data[field].strip())
        # contact details only count when given as text
        or (field in CUSTOMER_FIELDS and not isinstance(data.get(field), str))
    ]
    if missing:
        raise ValidationException(
            f"Missing required fields: {', '.join(missing)}", reason="missing_field"
        )

    if "@" not in data["customer_email"]:
        raise ValidationException("Invalid email address", reason="invalid_email")

    cleaned = dict(data)
    cleaned["party_size"] = validate_party_size(data["party_size"])

    if settings.ADDRESSING_MODE == AddressingMode.TABLE_NUMBERS:
        cleaned["table_numbers"] = validate_table_numbers(data.get("table_numbers"), cleaned["party_size"])
    else:
        cleaned["table_numbers"] = []

    cleaned["customer_name"] = data["customer_name"].strip()
    cleaned["customer_email"] = data["customer_email"].strip().lower()
    cleaned["customer_phone"] = data["customer_phone"].strip()
    special_requests = cleaned.get("special_requests")
    if special_requests is not None and not isinstance(special_requests, str):
        raise ValidationException("special_requests must be text", reason="invalid_request")
    if special_requests:
        cleaned["special_requests"] = special_requests.strip()

    return cleaned
