#!/usr/bin/env python3
"""
Reassess diabetes risk for the patient directory.

Runs bulk assessment passes over every patient (or the first N). Fresh
assessments are kept unless --force is given. Patients are processed in
batches no larger than the configured bulk limit.

Usage:
    python scripts/reassess_stale.py
    python scripts/reassess_stale.py --force --limit 200
"""

import argparse
import asyncio
import sys
from typing import Dict, List, Optional

from emr_risk.api.dependencies import build_dashboard_service
from emr_risk.core.exceptions import SignalUnavailable, StoreUnavailable
from emr_risk.core.logging import setup_logging
from emr_risk.models.base import get_async_engine
from emr_risk.services.dashboard_service import DashboardService

logger = setup_logging("reassess_stale")


def chunked(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


async def reassess(service: DashboardService, force: bool, limit: Optional[int] = None) -> Dict[str, int]:
    """
    Run bulk assessment over the directory.

    Returns:
        Totals per outcome across every batch
    """
    patients = await service.directory.list_patients(limit=limit)
    patient_ids = [p.id for p in patients]
    batches = chunked(patient_ids, service.settings.bulk_max_patients)
    logger.info(f"Reassessing {len(patient_ids)} patients in {len(batches)} batches (force={force})")

    totals = {"total": 0, "recomputed": 0, "cached": 0, "failed": 0}
    for number, batch in enumerate(batches, start=1):
        result = await service.bulk_assess(batch, force_reassess=force)
        for key, value in result.summary.items():
            totals[key] += value

        for patient_id, error in result.failures.items():
            logger.warning(f"  {patient_id}: [{error.code}] {error.message}")
        logger.info(f"Batch {number}/{len(batches)}: {result.summary}")

    return totals


async def run(force: bool, limit: Optional[int] = None) -> int:
    service = build_dashboard_service()
    try:
        totals = await reassess(service, force=force, limit=limit)
    except (SignalUnavailable, StoreUnavailable) as e:
        logger.error(f"Reassessment aborted: [{e.code}] {e.message}")
        return 1
    finally:
        await get_async_engine().dispose()

    print("\n" + "=" * 60)
    print("REASSESSMENT SUMMARY")
    print("=" * 60)
    print(f"Patients:    {totals['total']}")
    print(f"Recomputed:  {totals['recomputed']}")
    print(f"Cached:      {totals['cached']}")
    print(f"Failed:      {totals['failed']}")
    print("=" * 60)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Reassess diabetes risk for EMR patients")
    parser.add_argument("--force", action="store_true",
                        help="Recompute every assessment, even fresh ones")
    parser.add_argument("--limit", type=int, default=None,
                        help="Only process the first N patients in directory order")
    args = parser.parse_args()

    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be positive")

    sys.exit(asyncio.run(run(force=args.force, limit=args.limit)))


if __name__ == "__main__":
    main()
