"""Pytest configuration and fixtures."""

import uuid
from datetime import date, time

import pytest
import pytest_asyncio

from carebook.config import get_settings
from carebook.core import database
from carebook.core.database import create_engine_from_url, create_session_factory
from carebook.core.models import Base
from carebook.core.repository import ClinicianRepository
from carebook.observability.logger import SchedulingEventLogger
from carebook.scheduling.booking import BookingCoordinator
from carebook.scheduling.inventory import SlotInventory
from carebook.scheduling.models import AppointmentPayload, BreakWindow
from carebook.scheduling.templates import AvailabilityTemplateStore

# A Monday; the week of 2026-04-06 .. 2026-04-12.
MONDAY = date(2026, 4, 6)
FRIDAY = date(2026, 4, 10)
SUNDAY = date(2026, 4, 12)


# ---------------------------------------------------------------------------
# Settings / singletons isolated per test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at tmp_path and reset cached singletons."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'settings.db'}")
    monkeypatch.setenv("EVENT_LOG_DIR", str(tmp_path / "default_events"))
    monkeypatch.setenv("API_KEY", "")

    def _reset():
        get_settings.cache_clear()
        database._get_engine.cache_clear()
        database.get_session_factory.cache_clear()
        SchedulingEventLogger._instance = None

    _reset()
    yield
    _reset()


# ---------------------------------------------------------------------------
# Database: file-backed SQLite so concurrent sessions share one database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def events(tmp_path):
    """Event logger writing under tmp_path."""
    return SchedulingEventLogger(log_dir=tmp_path / "events")


@pytest.fixture
def template_store(session_factory):
    return AvailabilityTemplateStore(session_factory)


@pytest.fixture
def inventory(session_factory):
    return SlotInventory(session_factory, today=lambda: MONDAY)


@pytest.fixture
def coordinator(session_factory, events):
    return BookingCoordinator(session_factory, events=events)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def create_clinician(session_factory, first_name="Sarah", last_name="Chen", active=True):
    async with session_factory() as session, session.begin():
        clinician = await ClinicianRepository(session).create(
            first_name=first_name,
            last_name=last_name,
            credentials="MD",
            specialty="Family Medicine",
            active=active,
        )
        return clinician.id


async def set_weekday_templates(store, clinician_id, weekdays=range(5), breaks=()):
    """09:00-17:00, 30 minute slots, no buffer."""
    for weekday in weekdays:
        await store.set_template(
            clinician_id,
            weekday,
            time(9, 0),
            time(17, 0),
            slot_duration=30,
            breaks=list(breaks),
        )


@pytest_asyncio.fixture
async def clinician_id(session_factory) -> uuid.UUID:
    return await create_clinician(session_factory)


@pytest_asyncio.fixture
async def weekday_templates(template_store, clinician_id):
    await set_weekday_templates(template_store, clinician_id)
    return clinician_id


@pytest_asyncio.fixture
async def week_of_slots(inventory, weekday_templates):
    """Generated Mon-Fri slots for the week of MONDAY."""
    await inventory.generate_slots(weekday_templates, MONDAY, SUNDAY)
    return weekday_templates


@pytest.fixture
def payload():
    return AppointmentPayload(clinician_patient_id="cp-001", visit_reason="Annual physical")


@pytest.fixture
def lunch_break():
    return BreakWindow(start=time(12, 0), end=time(13, 0), reason="Lunch")
