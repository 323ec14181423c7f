# Core Module - Shared configurations and utilities
from .config import settings, get_settings
from .database import db, client
from .audit import create_audit_log, safe_dict_for_audit, SYSTEM_ACTOR
from .models import ReservationStatus, AddressingMode, ConflictScope
from .validators import validate_status_transition, validate_reservation_data
from .exceptions import (
    LateSeatException,
    NotFoundException,
    ValidationException,
    ConflictException,
    AlreadyCancelledException,
    InvalidStatusTransitionException,
    PersistenceException
)

__all__ = [
    'settings', 'get_settings', 'db', 'client',
    'create_audit_log', 'safe_dict_for_audit', 'SYSTEM_ACTOR',
    'ReservationStatus', 'AddressingMode', 'ConflictScope',
    'validate_status_transition', 'validate_reservation_data',
    'LateSeatException', 'NotFoundException', 'ValidationException',
    'ConflictException', 'AlreadyCancelledException',
    'InvalidStatusTransitionException', 'PersistenceException'
]
