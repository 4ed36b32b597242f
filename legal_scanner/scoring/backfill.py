"""
Risk Score Backfill
===================
Computes and stores risk assessments for completed scans that were
finished before scoring existed, or whose scoring failed.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List

from ..storage.database import ScanStore, StorageError
from .risk_scorer import RiskScorer

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    """Outcome of one backfill run."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def backfill_risk_scores(store: ScanStore, scorer: RiskScorer) -> BackfillReport:
    """
    Score every completed scan that has no risk score.

    A failure on one scan is recorded and the run continues with the next.

    Args:
        store: Scan store
        scorer: Configured risk scorer

    Returns:
        BackfillReport with per-run counts
    """
    scan_ids = store.scans_missing_risk()
    report = BackfillReport(total=len(scan_ids))
    logger.info(f"Backfilling risk scores for {len(scan_ids)} scans")

    for scan_id in scan_ids:
        try:
            assessment = scorer.score(store.get_findings(scan_id))
            store.persist_risk_assessment(scan_id, assessment)
            report.succeeded += 1
        except StorageError as e:
            logger.error(f"Backfill failed for scan {scan_id}: {e}")
            report.failed += 1
            report.errors.append(f"{scan_id}: {e}")

    logger.info(f"Backfill complete: {report.succeeded} succeeded, {report.failed} failed")
    return report
