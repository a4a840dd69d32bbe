"""
Assessment store.

Keeps the current RiskAssessment per patient. Writes are last-write-wins and
serialized per patient; earlier assessments are superseded, never deleted.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from emr_risk.core.exceptions import StoreUnavailable
from emr_risk.core.logging import setup_logging
from emr_risk.core.scoring.types import RiskAssessment, RiskLevel, UrgencyLevel
from emr_risk.models.base import as_utc
from emr_risk.models.risk_assessment import DiabetesRiskAssessmentRecord

logger = setup_logging("assessment_store")

# asyncpg rejects statements with more than 32767 bind parameters
LOOKUP_CHUNK_SIZE = 5000


class KeyedLock:
    """
    Per-key asyncio locks.

    Holders of different keys never block each other. A key's lock is
    discarded once nobody holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class AssessmentStore(ABC):
    """Storage contract for current risk assessments."""

    @abstractmethod
    async def get(self, patient_id: str) -> Optional[RiskAssessment]:
        """Return the current assessment, or None if the patient was never assessed."""

    @abstractmethod
    async def put(self, patient_id: str, assessment: RiskAssessment) -> None:
        """Make ``assessment`` the patient's current assessment."""

    @abstractmethod
    async def get_many(self, patient_ids: Iterable[str]) -> Dict[str, RiskAssessment]:
        """Current assessments for the given ids; unassessed ids are absent."""

    @abstractmethod
    async def history(self, patient_id: str, limit: int = 10) -> List[RiskAssessment]:
        """Superseded assessments, newest first."""

    @abstractmethod
    async def list_since(self, since: datetime) -> List[RiskAssessment]:
        """Every assessment (current or superseded) computed at or after ``since``."""

    async def ping(self) -> None:
        """Raise StoreUnavailable if the backend cannot be reached."""


class InMemoryAssessmentStore(AssessmentStore):
    """Process-local store, used for tests and single-node deployments."""

    def __init__(self):
        self._current: Dict[str, RiskAssessment] = {}
        self._superseded: Dict[str, List[RiskAssessment]] = {}
        self._locks = KeyedLock()

    async def get(self, patient_id: str) -> Optional[RiskAssessment]:
        return self._current.get(patient_id)

    async def put(self, patient_id: str, assessment: RiskAssessment) -> None:
        if assessment.patient_id != patient_id:
            raise ValueError(
                f"Assessment for '{assessment.patient_id}' cannot be stored under '{patient_id}'"
            )
        async with self._locks.hold(patient_id):
            previous = self._current.get(patient_id)
            if previous is not None:
                self._superseded.setdefault(patient_id, []).append(previous)
            # Assessments are immutable, so replacing the reference is atomic
            self._current[patient_id] = assessment

    async def get_many(self, patient_ids: Iterable[str]) -> Dict[str, RiskAssessment]:
        return {pid: self._current[pid] for pid in patient_ids if pid in self._current}

    async def history(self, patient_id: str, limit: int = 10) -> List[RiskAssessment]:
        return list(reversed(self._superseded.get(patient_id, [])))[:limit]

    async def list_since(self, since: datetime) -> List[RiskAssessment]:
        everything = list(self._current.values())
        for older in self._superseded.values():
            everything.extend(older)
        return sorted(
            (a for a in everything if a.assessed_at >= since), key=lambda a: a.assessed_at
        )


def record_to_assessment(record: DiabetesRiskAssessmentRecord) -> RiskAssessment:
    return RiskAssessment(
        patient_id=record.patient_id,
        risk_score=record.risk_score,
        risk_level=RiskLevel(record.risk_level),
        urgency_level=UrgencyLevel(record.urgency_level),
        contributing_factors=tuple(record.contributing_factors or ()),
        recommendations=tuple(record.recommendations or ()),
        next_screening_date=as_utc(record.next_screening_date),
        assessed_at=as_utc(record.assessed_at),
        assessed_from_version=record.assessed_from_version,
    )


def assessment_to_record(assessment: RiskAssessment) -> DiabetesRiskAssessmentRecord:
    return DiabetesRiskAssessmentRecord(
        patient_id=assessment.patient_id,
        risk_score=assessment.risk_score,
        risk_level=assessment.risk_level.value,
        urgency_level=assessment.urgency_level.value,
        contributing_factors=list(assessment.contributing_factors),
        recommendations=list(assessment.recommendations),
        next_screening_date=assessment.next_screening_date,
        assessed_at=assessment.assessed_at,
        assessed_from_version=assessment.assessed_from_version,
        is_current=True,
    )


class SqlAssessmentStore(AssessmentStore):
    """
    Store backed by the ``diabetes_risk_assessments`` table.

    A put flips the patient's current row to ``is_current = false`` and inserts
    the new row in a single transaction, so readers see either the old or the
    new assessment and never a mix.
    """

    def __init__(
        self, session_maker: async_sessionmaker, lookup_chunk_size: int = LOOKUP_CHUNK_SIZE
    ):
        """
        Initialize the SQL store.

        Args:
            session_maker: Async session factory bound to the EMR database
            lookup_chunk_size: Maximum ids per IN clause in bulk lookups
        """
        self.session_maker = session_maker
        self.lookup_chunk_size = lookup_chunk_size
        self._locks = KeyedLock()

    async def get(self, patient_id: str) -> Optional[RiskAssessment]:
        stmt = select(DiabetesRiskAssessmentRecord).where(
            DiabetesRiskAssessmentRecord.patient_id == patient_id,
            DiabetesRiskAssessmentRecord.is_current.is_(True),
        )
        try:
            async with self.session_maker() as session:
                record = (await session.execute(stmt)).scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read assessment for patient {patient_id}: {e}")
            raise StoreUnavailable(f"Assessment store read failed: {e}", patient_id) from e

        return record_to_assessment(record) if record else None

    async def put(self, patient_id: str, assessment: RiskAssessment) -> None:
        if assessment.patient_id != patient_id:
            raise ValueError(
                f"Assessment for '{assessment.patient_id}' cannot be stored under '{patient_id}'"
            )
        async with self._locks.hold(patient_id):
            try:
                async with self.session_maker() as session:
                    async with session.begin():
                        await session.execute(
                            update(DiabetesRiskAssessmentRecord)
                            .where(
                                DiabetesRiskAssessmentRecord.patient_id == patient_id,
                                DiabetesRiskAssessmentRecord.is_current.is_(True),
                            )
                            .values(is_current=False)
                        )
                        session.add(assessment_to_record(assessment))
            except SQLAlchemyError as e:
                logger.error(f"Failed to write assessment for patient {patient_id}: {e}")
                raise StoreUnavailable(f"Assessment store write failed: {e}", patient_id) from e

        logger.debug(
            f"Stored assessment for patient={patient_id}, score={assessment.risk_score}, "
            f"level={assessment.risk_level.value}"
        )

    async def get_many(self, patient_ids: Iterable[str]) -> Dict[str, RiskAssessment]:
        ids = list(dict.fromkeys(patient_ids))
        if not ids:
            return {}

        records = []
        try:
            async with self.session_maker() as session:
                for start in range(0, len(ids), self.lookup_chunk_size):
                    chunk = ids[start:start + self.lookup_chunk_size]
                    stmt = select(DiabetesRiskAssessmentRecord).where(
                        DiabetesRiskAssessmentRecord.patient_id.in_(chunk),
                        DiabetesRiskAssessmentRecord.is_current.is_(True),
                    )
                    records.extend((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to read assessments for {len(ids)} patients: {e}")
            raise StoreUnavailable(f"Assessment store read failed: {e}") from e

        return {record.patient_id: record_to_assessment(record) for record in records}

    async def history(self, patient_id: str, limit: int = 10) -> List[RiskAssessment]:
        stmt = (
            select(DiabetesRiskAssessmentRecord)
            .where(
                DiabetesRiskAssessmentRecord.patient_id == patient_id,
                DiabetesRiskAssessmentRecord.is_current.is_(False),
            )
            .order_by(
                DiabetesRiskAssessmentRecord.assessed_at.desc(),
                DiabetesRiskAssessmentRecord.id.desc(),
            )
            .limit(limit)
        )
        try:
            async with self.session_maker() as session:
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Assessment store read failed: {e}", patient_id) from e

        return [record_to_assessment(record) for record in records]

    async def list_since(self, since: datetime) -> List[RiskAssessment]:
        stmt = (
            select(DiabetesRiskAssessmentRecord)
            .where(DiabetesRiskAssessmentRecord.assessed_at >= since)
            .order_by(DiabetesRiskAssessmentRecord.assessed_at)
        )
        try:
            async with self.session_maker() as session:
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Assessment store read failed: {e}") from e

        return [record_to_assessment(record) for record in records]

    async def ping(self) -> None:
        try:
            async with self.session_maker() as session:
                await session.execute(select(1))
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Assessment store unreachable: {e}") from e
