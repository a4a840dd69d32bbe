"""
Assessment orchestration.

Decides per patient whether the stored assessment can be served or must be
recomputed, drives the scoring model, and writes results back to the store.
Bulk runs use a fixed-size pool of asyncio workers so large populations never
flood the EMR with concurrent fetches.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from emr_risk.core.config import Settings, get_settings
from emr_risk.core.exceptions import (
    AssessmentCancelled,
    AssessmentError,
    InternalAssessmentError,
    SignalUnavailable,
    StoreUnavailable,
)
from emr_risk.core.freshness import CacheState, FreshnessPolicy
from emr_risk.core.logging import setup_logging
from emr_risk.core.scoring.model import RiskScoringModel
from emr_risk.core.scoring.types import HealthSignalSnapshot, RiskAssessment
from emr_risk.services.assessment_store import AssessmentStore
from emr_risk.services.signal_provider import HealthSignalProvider

logger = setup_logging("orchestrator")


class AssessmentSource(str, Enum):
    """How a patient's result was produced in a bulk run."""

    RECOMPUTED = "recomputed"
    CACHED = "cached"
    FAILED = "failed"


@dataclass(frozen=True)
class AssessmentOutcome:
    """Result of assessing one patient."""

    assessment: RiskAssessment
    source: AssessmentSource
    cache_state: CacheState


@dataclass
class BulkAssessmentResult:
    """Per-patient results of a bulk run. Partial success is normal."""

    results: Dict[str, RiskAssessment] = field(default_factory=dict)
    failures: Dict[str, AssessmentError] = field(default_factory=dict)
    outcomes: Dict[str, AssessmentSource] = field(default_factory=dict)

    def record_success(self, patient_id: str, outcome: AssessmentOutcome) -> None:
        self.results[patient_id] = outcome.assessment
        self.outcomes[patient_id] = outcome.source

    def record_failure(self, patient_id: str, error: AssessmentError) -> None:
        self.failures[patient_id] = error
        self.outcomes[patient_id] = AssessmentSource.FAILED

    @property
    def summary(self) -> Dict[str, int]:
        counts = {source.value: 0 for source in AssessmentSource}
        for source in self.outcomes.values():
            counts[source.value] += 1
        return {"total": len(self.outcomes), **counts}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AssessmentOrchestrator:
    """
    Serve or recompute diabetes risk assessments.

    Cache policy per patient:
    - MISSING: no stored assessment, recompute
    - FORCED: caller asked for a reassessment, recompute
    - STALE: screening date reached, too old, or older ruleset; recompute
    - FRESH: return the stored assessment without fetching signals
    """

    def __init__(
        self,
        provider: HealthSignalProvider,
        store: AssessmentStore,
        model: Optional[RiskScoringModel] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the orchestrator.

        Args:
            provider: Source of health signal snapshots
            store: Current assessment store
            model: Scoring model. Uses the packaged ruleset if None.
            settings: Engine settings. Uses application settings if None.
            clock: Source of the current time (UTC)
        """
        self.settings = settings or get_settings()
        self.provider = provider
        self.store = store
        self.model = model or RiskScoringModel()
        self.clock = clock
        self.freshness = FreshnessPolicy(
            self.settings.assessment_max_age_hours, self.model.version
        )
        self.max_workers = self.settings.bulk_max_workers
        self.fetch_timeout = self.settings.signal_fetch_timeout_seconds

        logger.info(
            f"AssessmentOrchestrator initialized (ruleset={self.model.version}, "
            f"workers={self.max_workers}, fetch_timeout={self.fetch_timeout}s)"
        )

    async def fetch_snapshot(self, patient_id: str) -> HealthSignalSnapshot:
        """
        Fetch signals with the per-patient timeout.

        Raises:
            SignalUnavailable: If the provider fails or times out
        """
        try:
            return await asyncio.wait_for(self.provider.fetch(patient_id), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise SignalUnavailable(
                f"Health signal fetch timed out after {self.fetch_timeout}s", patient_id
            ) from e

    async def assess_with_outcome(
        self,
        patient_id: str,
        force_reassess: bool = False,
        staged: Optional[Dict[str, AssessmentOutcome]] = None,
    ) -> AssessmentOutcome:
        """
        Assess one patient and report how the result was produced.

        Args:
            patient_id: EMR patient id
            force_reassess: Recompute even if a fresh assessment is stored
            staged: Receives the recomputed outcome just before it is written
        """
        stored = await self.store.get(patient_id)
        state = self.freshness.classify(stored, force_reassess, self.clock())

        if not state.needs_recompute:
            logger.debug(f"Serving cached assessment for patient {patient_id}")
            return AssessmentOutcome(stored, AssessmentSource.CACHED, state)

        snapshot = await self.fetch_snapshot(patient_id)
        assessment = self.model.score(snapshot, assessed_at=self.clock())
        outcome = AssessmentOutcome(assessment, AssessmentSource.RECOMPUTED, state)
        if staged is not None:
            staged[patient_id] = outcome
        await self.store.put(patient_id, assessment)

        logger.info(
            f"Assessed patient {patient_id} ({state.value}): score={assessment.risk_score}, "
            f"level={assessment.risk_level.value}, urgency={assessment.urgency_level.value}"
        )
        return outcome

    async def assess(self, patient_id: str, force_reassess: bool = False) -> RiskAssessment:
        """
        Return the patient's current assessment, recomputing when needed.

        Args:
            patient_id: EMR patient id
            force_reassess: Recompute even if a fresh assessment is stored

        Returns:
            Current RiskAssessment

        Raises:
            InvalidInput: If the fetched snapshot is malformed
            SignalUnavailable: If signals cannot be fetched
            StoreUnavailable: If the store cannot be read or written
        """
        outcome = await self.assess_with_outcome(patient_id, force_reassess)
        return outcome.assessment

    async def _assess_unit(
        self,
        patient_id: str,
        force_reassess: bool,
        result: BulkAssessmentResult,
        staged: Dict[str, AssessmentOutcome],
    ) -> None:
        try:
            outcome = await self.assess_with_outcome(patient_id, force_reassess, staged)
        except StoreUnavailable:
            raise
        except AssessmentError as e:
            logger.warning(f"Assessment failed for patient {patient_id}: [{e.code}] {e.message}")
            result.record_failure(patient_id, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error assessing patient {patient_id}")
            result.record_failure(patient_id, InternalAssessmentError(str(e), patient_id))
            return

        result.record_success(patient_id, outcome)

    async def assess_many(
        self,
        patient_ids: Iterable[str],
        force_reassess: bool = False,
        timeout: Optional[float] = None,
    ) -> BulkAssessmentResult:
        """
        Assess many patients independently with a bounded worker pool.

        One patient's failure never aborts the others. When ``timeout``
        elapses, in-flight and queued patients are reported as cancelled while
        completed assessments stay stored. Cancelling the calling task cancels
        every worker.

        Args:
            patient_ids: Patients to assess; duplicates are collapsed
            force_reassess: Recompute even fresh assessments
            timeout: Seconds before the batch stops; None waits for all

        Returns:
            BulkAssessmentResult with results, failures and per-patient outcome

        Raises:
            StoreUnavailable: If the store fails; no result can be trusted
        """
        ids = list(dict.fromkeys(str(pid) for pid in patient_ids))
        result = BulkAssessmentResult()
        staged: Dict[str, AssessmentOutcome] = {}
        if not ids:
            return result

        queue: asyncio.Queue = asyncio.Queue()
        for pid in ids:
            queue.put_nowait(pid)

        async def worker() -> None:
            while True:
                try:
                    pid = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await self._assess_unit(pid, force_reassess, result, staged)

        worker_count = min(self.max_workers, len(ids))
        logger.info(
            f"Bulk assessment of {len(ids)} patients (workers={worker_count}, "
            f"force={force_reassess}, timeout={timeout})"
        )
        started = time.monotonic()

        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        try:
            done, pending = await asyncio.wait(
                workers, timeout=timeout, return_when=asyncio.FIRST_EXCEPTION
            )
        except asyncio.CancelledError:
            logger.warning("Bulk assessment cancelled by caller")
            await self._cancel(workers)
            raise

        if pending:
            await self._cancel(list(pending))

        errors = [
            task.exception()
            for task in done
            if not task.cancelled() and task.exception() is not None
        ]
        if errors:
            logger.error(f"Bulk assessment aborted: {errors[0]}")
            raise errors[0]

        if pending:
            await self._recover_staged_writes(ids, staged, result)
            unfinished = [pid for pid in ids if pid not in result.outcomes]
            logger.warning(
                f"Bulk assessment deadline reached after {timeout}s; "
                f"{len(unfinished)} patients not assessed"
            )
            for pid in unfinished:
                result.record_failure(
                    pid, AssessmentCancelled("Bulk assessment deadline reached", pid)
                )

        logger.info(
            f"Bulk assessment complete in {time.monotonic() - started:.2f}s: {result.summary}"
        )
        return result

    async def _recover_staged_writes(
        self,
        ids: List[str],
        staged: Dict[str, AssessmentOutcome],
        result: BulkAssessmentResult,
    ) -> None:
        """Record staged outcomes whose write landed before the worker was cancelled."""
        for pid in ids:
            outcome = staged.get(pid)
            if pid in result.outcomes or outcome is None:
                continue
            if await self.store.get(pid) == outcome.assessment:
                logger.info(f"Write for patient {pid} completed despite the deadline")
                result.record_success(pid, outcome)

    @staticmethod
    async def _cancel(tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
