"""
Shared fixtures - every test runs against a fresh in-memory MongoDB
"""
import os

os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "lateseat_test")

from datetime import date, timedelta

import pytest
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import AutoReconnect

import core.audit
from core.config import settings
from core.database import ensure_indexes
from core.models import AddressingMode, ConflictScope
from core.timeutils import service_slot_instants

import reservation_slots_module
import reservation_capacity
import reservation_booking
import reservation_lifecycle
import table_module
import server

DB_MODULES = [
    core.audit,
    reservation_slots_module,
    reservation_capacity,
    reservation_booking,
    reservation_lifecycle,
    table_module,
    server,
]

SATURDAY = 5
FRIDAY = 4
MONDAY = 0


def next_weekday(weekday: int) -> date:
    """Next occurrence of weekday strictly after today"""
    today = date.today()
    return today + timedelta(days=(weekday - today.weekday()) % 7 or 7)


def date_str(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def slot_instant(day: date, time_str: str) -> str:
    """Start instant of a service-night slot, after-midnight times roll over"""
    instants = dict(service_slot_instants(day, settings.SLOT_TIMES))
    return instants.get(time_str, f"{date_str(day)}T{time_str}:00")


def booking_request(day: date, time_str: str = "22:00", party_size: int = 4,
                    table_numbers=None, **overrides) -> dict:
    """Valid reservation request for a slot of a service night"""
    data = {
        "date_time": slot_instant(day, time_str),
        "party_size": party_size,
        "table_numbers": [3] if table_numbers is None else table_numbers,
        "customer_name": "Ada Lovelace",
        "customer_email": "Ada@Example.com",
        "customer_phone": "+44 20 7946 0000",
    }
    data.update(overrides)
    return data


@pytest.fixture
async def mock_db(monkeypatch):
    database = AsyncMongoMockClient()["lateseat_test"]
    for module in DB_MODULES:
        monkeypatch.setattr(module, "db", database)
    await ensure_indexes(database)
    await reservation_slots_module.ensure_table_pool()
    return database


@pytest.fixture
def saturday() -> date:
    return next_weekday(SATURDAY)


@pytest.fixture
def friday() -> date:
    return next_weekday(FRIDAY)


@pytest.fixture
def monday() -> date:
    return next_weekday(MONDAY)


@pytest.fixture
def count_mode(monkeypatch):
    monkeypatch.setattr(settings, "ADDRESSING_MODE", AddressingMode.COUNT)


@pytest.fixture
def slot_scope(monkeypatch):
    monkeypatch.setattr(settings, "CONFLICT_SCOPE", ConflictScope.SLOT)


@pytest.fixture
async def saturday_slots(mock_db, saturday):
    return await reservation_slots_module.ensure_slots(date_str(saturday))


class FailingCollection:
    """Collection whose method raises AutoReconnect on its nth call"""

    def __init__(self, collection, method: str, fail_on_call: int = 1):
        self._collection = collection
        self._method = method
        self._fail_on_call = fail_on_call
        self.calls = 0

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if name != self._method:
            return attr

        async def wrapper(*args, **kwargs):
            self.calls += 1
            if self.calls == self._fail_on_call:
                raise AutoReconnect("connection reset by peer")
            return await attr(*args, **kwargs)

        return wrapper


class FailingDatabase:
    """Database handing out one FailingCollection, every other collection untouched"""

    def __init__(self, database, collection: str, method: str, fail_on_call: int = 1):
        self._database = database
        self.failing = FailingCollection(database[collection], method, fail_on_call)
        self._collection = collection

    def __getattr__(self, name):
        if name == self._collection:
            return self.failing
        return getattr(self._database, name)

    def __getitem__(self, name):
        return self.__getattr__(name)


def fail_store(monkeypatch, module, database, collection: str, method: str, fail_on_call: int = 1):
    """Swap module.db for a database whose collection.method fails once"""
    failing = FailingDatabase(database, collection, method, fail_on_call)
    monkeypatch.setattr(module, "db", failing)
    return failing.failing
