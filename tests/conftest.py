"""Shared fixtures: fake collaborators, snapshot builders and a SQLite database."""

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from emr_risk.core.config import Settings
from emr_risk.core.exceptions import AssessmentError, PatientNotFound, StoreUnavailable
from emr_risk.core.scoring import HealthSignalSnapshot, RiskScoringModel, load_ruleset
from emr_risk.models.base import Base
from emr_risk.services.assessment_store import InMemoryAssessmentStore
from emr_risk.services.orchestrator import AssessmentOrchestrator
from emr_risk.services.signal_provider import HealthSignalProvider

NOW = datetime(2025, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class CountingSignalProvider(HealthSignalProvider):
    """In-memory provider that records every fetch."""

    def __init__(
        self,
        snapshots: Dict[str, HealthSignalSnapshot],
        delays: Optional[Dict[str, float]] = None,
        errors: Optional[Dict[str, Exception]] = None,
        delay: float = 0.0,
    ):
        self.snapshots = dict(snapshots)
        self.delays = delays or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: Counter = Counter()
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def fetch(self, patient_id: str) -> HealthSignalSnapshot:
        self.calls[patient_id] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(patient_id, self.delay)
            if delay:
                await asyncio.sleep(delay)
            if patient_id in self.errors:
                raise self.errors[patient_id]
            if patient_id not in self.snapshots:
                raise PatientNotFound(f"Patient {patient_id} not found", patient_id)
            return self.snapshots[patient_id]
        finally:
            self.in_flight -= 1


class FailingStore(InMemoryAssessmentStore):
    """Store whose backend is down."""

    def __init__(self, fail_reads: bool = False):
        super().__init__()
        self.fail_reads = fail_reads

    async def get(self, patient_id):
        if self.fail_reads:
            raise StoreUnavailable("connection refused", patient_id)
        return await super().get(patient_id)

    async def get_many(self, patient_ids):
        if self.fail_reads:
            raise StoreUnavailable("connection refused")
        return await super().get_many(patient_ids)

    async def put(self, patient_id, assessment):
        raise StoreUnavailable("connection refused", patient_id)

    async def ping(self):
        raise StoreUnavailable("connection refused")


def very_high_snapshot(patient_id: str = "P1") -> HealthSignalSnapshot:
    """Fasting glucose 25 + age 25 + BMI 20 + HbA1c 20 = 90."""
    return HealthSignalSnapshot(
        patient_id=patient_id,
        age=70,
        sex="male",
        bmi=32.0,
        fasting_glucose=130.0,
        hba1c=6.8,
    )


def high_snapshot(patient_id: str = "P4") -> HealthSignalSnapshot:
    """Age 25 + BMI 20 + smoking 5 = 50."""
    return HealthSignalSnapshot(patient_id=patient_id, age=66, sex="female", bmi=31.0, smoking=True)


def moderate_snapshot(patient_id: str = "P2") -> HealthSignalSnapshot:
    """Age 45-64 (15) + family history (15) = 30."""
    return HealthSignalSnapshot(
        patient_id=patient_id, age=50, sex="female", family_history_diabetes=True
    )


def low_snapshot(patient_id: str = "P3") -> HealthSignalSnapshot:
    """Smoking only = 5."""
    return HealthSignalSnapshot(patient_id=patient_id, age=28, sex="male", smoking=True)


@pytest.fixture
def ruleset():
    return load_ruleset()


@pytest.fixture
def model(ruleset):
    return RiskScoringModel(ruleset)


@pytest.fixture
def settings():
    return Settings(
        bulk_max_workers=3,
        bulk_max_patients=50,
        signal_fetch_timeout_seconds=0.5,
        bulk_assess_timeout_seconds=5.0,
        assessment_max_age_hours=720,
        dashboard_default_limit=50,
        dashboard_max_limit=100,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshots():
    return {
        "P1": very_high_snapshot("P1"),
        "P2": moderate_snapshot("P2"),
        "P3": low_snapshot("P3"),
    }


@pytest.fixture
def provider(snapshots):
    return CountingSignalProvider(snapshots)


@pytest.fixture
def store():
    return InMemoryAssessmentStore()


@pytest.fixture
def orchestrator(provider, store, model, settings, clock):
    return AssessmentOrchestrator(provider, store, model, settings=settings, clock=clock)


@pytest.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, expire_on_commit=False)

    await engine.dispose()


def error_codes(failures: Dict[str, AssessmentError]) -> Dict[str, str]:
    return {pid: error.code for pid, error in failures.items()}
