"""
Configuration Management - All configurable values in one place
Loads from environment (.env) with venue defaults
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional, Dict, Any, List
from functools import lru_cache
from datetime import datetime
from pathlib import Path
from dotenv import load_dotenv

from .models import AddressingMode, ConflictScope

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')


def _default_tables() -> List[Dict[str, Any]]:
    locations = ["Window", "Window", "Main Floor", "Main Floor", "Main Floor",
                 "Main Floor", "Bar", "Bar", "Lounge", "Lounge"]
    return [
        {"table_number": i + 1, "capacity": 4, "location": location}
        for i, location in enumerate(locations)
    ]


def _default_service_periods() -> List[Dict[str, Any]]:
    return [
        {"name": "dinner", "start": "17:00", "end": "22:00", "tables_open": 1.0},
        {"name": "late_night", "start": "22:00", "end": "02:00", "tables_open": 1.0},
    ]


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    # Database - no localhost fallback, MONGO_URL must be set
    MONGO_URL: str = Field(...)
    DB_NAME: str = Field(default="lateseat")

    # CORS
    CORS_ORIGINS: str = "*"

    # App
    APP_NAME: str = "LateSeat"

    # Venue calendar
    VENUE_TIMEZONE: str = "UTC"
    OPERATING_WEEKDAYS: List[int] = [4, 5]  # Friday, Saturday (date.weekday())
    SLOT_TIMES: List[str] = ["22:00", "23:30", "00:00"]
    SLOT_CAPACITY_TABLES: int = 10
    SLOT_DURATION_MINUTES: int = 90

    # Reservation limits
    PER_TABLE_CAPACITY: int = 4
    MIN_PARTY_SIZE: int = 1
    MAX_PARTY_SIZE: Optional[int] = None  # None = derived from ADDRESSING_MODE
    ADDRESSING_MODE: AddressingMode = AddressingMode.TABLE_NUMBERS
    CONFLICT_SCOPE: ConflictScope = ConflictScope.INTERVAL

    # Table pool & service periods
    TABLES: List[Dict[str, Any]] = Field(default_factory=_default_tables)
    SERVICE_PERIODS: List[Dict[str, Any]] = Field(default_factory=_default_service_periods)
    OFF_PEAK_TABLES_OPEN: float = 0.4

    BOOKING_ID_PREFIX: str = "BK"

    # Status workflow - allowed transitions
    STATUS_TRANSITIONS: Dict[str, list] = {
        "confirmed": ["cancelled", "no_show"],
        "cancelled": [],  # Terminal state
        "no_show": [],  # Terminal state
    }

    @field_validator('SLOT_TIMES')
    @classmethod
    def validate_slot_times(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("SLOT_TIMES must contain at least one time")
        for time_str in v:
            datetime.strptime(time_str, "%H:%M")
        if len(set(v)) != len(v):
            raise ValueError("SLOT_TIMES must not contain duplicates")
        return v

    @field_validator('OPERATING_WEEKDAYS')
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("OPERATING_WEEKDAYS must not be empty")
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("OPERATING_WEEKDAYS uses 0 (Monday) .. 6 (Sunday)")
        return v

    @field_validator('TABLES')
    @classmethod
    def validate_tables(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not v:
            raise ValueError("TABLES must contain at least one table")
        numbers = [t.get("table_number") for t in v]
        if len(set(numbers)) != len(numbers):
            raise ValueError("TABLES contains duplicate table numbers")
        for table in v:
            if not isinstance(table.get("table_number"), int) or table.get("capacity", 0) < 1:
                raise ValueError(f"Invalid table definition: {table}")
        return v

    @property
    def max_party_size(self) -> int:
        """Effective party-size cap for one reservation"""
        if self.MAX_PARTY_SIZE is not None:
            return self.MAX_PARTY_SIZE
        if self.ADDRESSING_MODE == AddressingMode.COUNT:
            return self.PER_TABLE_CAPACITY
        return self.PER_TABLE_CAPACITY * self.SLOT_CAPACITY_TABLES

    @property
    def table_numbers(self) -> List[int]:
        return sorted(t["table_number"] for t in self.TABLES)

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
