#!/usr/bin/env python3
"""
Scan Coordinator
================
Drives a scan end to end:

    workspace -> clone -> both analyzers concurrently -> merge -> persist

Sub-job statuses are written as each analyzer finishes, and the overall
status is recomputed after every write. The workspace is removed on
every exit path. Any failure outside the analyzers (workspace, clone,
persistence) forces the scan to failed.

Author: Legal Scanner Team
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..analyzers.base import Analyzer, AnalyzerError, AnalyzerParseError, FileFindings
from ..repository.fetcher import RepositoryFetcher, validate_git_url
from ..repository.workspace import WorkspaceProvider
from ..scoring.risk_scorer import RiskAssessment, RiskScorer
from ..storage.database import ScanStore, StorageError
from .merge import merge_results
from .state import InvalidTransition, JobStatus, SubJob

logger = logging.getLogger(__name__)


class ScanCoordinator:
    """
    Orchestrates scans over a primary and a secondary analyzer.

    The primary analyzer owns the license sub-job and is authoritative
    for licenses and copyrights; the secondary owns the export-control
    sub-job and contributes control-flag findings.
    """

    def __init__(self, store: ScanStore, primary: Analyzer, secondary: Analyzer,
                 fetcher: RepositoryFetcher, workspaces: WorkspaceProvider,
                 scorer: RiskScorer):
        self.store = store
        self.analyzers: Dict[SubJob, Analyzer] = {
            SubJob.LICENSE: primary,
            SubJob.EXPORT_CONTROL: secondary,
        }
        self.fetcher = fetcher
        self.workspaces = workspaces
        self.scorer = scorer
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def primary(self) -> Analyzer:
        return self.analyzers[SubJob.LICENSE]

    @property
    def secondary(self) -> Analyzer:
        return self.analyzers[SubJob.EXPORT_CONTROL]

    # --------------------------------------------------------------------------
    # Public API
    # --------------------------------------------------------------------------

    async def submit_scan(self, repo_url: str, credential: Optional[str] = None) -> str:
        """
        Create a scan and start it in the background.

        The scan row exists before the task is spawned, so its status is
        queryable immediately.

        Returns:
            The new scan id
        """
        repo_url = validate_git_url(repo_url)
        scan = await asyncio.to_thread(self.store.create_scan, repo_url, credential)
        self.start_scan(scan.id)
        return scan.id

    def start_scan(self, scan_id: str) -> asyncio.Task:
        """Run a scan as a background task; at most one task per scan id."""
        existing = self._tasks.get(scan_id)
        if existing is not None and not existing.done():
            logger.warning(f"Scan {scan_id} is already running")
            return existing

        task = asyncio.create_task(self.run_scan(scan_id), name=f"scan-{scan_id}")
        self._tasks[scan_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(scan_id, None))
        return task

    async def run_scan(self, scan_id: str) -> JobStatus:
        """
        Execute a scan to completion.

        Only a scan that has not started yet is run. A scan that is in
        progress or finished is left untouched and its status returned.

        Returns:
            The final overall status
        """
        logger.info(f"Starting scan {scan_id}")
        try:
            scan = await asyncio.to_thread(self.store.get_scan, scan_id)
            statuses = (scan.status, scan.license_status, scan.export_control_status)
            if any(status != JobStatus.PENDING for status in statuses):
                logger.warning(f"Scan {scan_id} already started (status {scan.status.value}), not running it again")
                return scan.status

            credential = await asyncio.to_thread(self.store.get_credential, scan_id)

            async with self.workspaces.scoped(scan_id) as workspace:
                await self.fetcher.clone(scan.repo_url, workspace, credential)
                results = await self._run_analyzers(scan_id, workspace)

                if results is None:
                    status = await asyncio.to_thread(self.store.recompute_overall_status, scan_id)
                    logger.warning(f"Scan {scan_id} finished with status {status.value}")
                    return status

                merged = merge_results(results[SubJob.LICENSE], results[SubJob.EXPORT_CONTROL])
                await asyncio.to_thread(self.store.append_findings, scan_id, merged)

            status = await asyncio.to_thread(self.store.recompute_overall_status, scan_id)
            logger.info(f"Scan {scan_id} finished with status {status.value}")
            return status

        except InvalidTransition as e:
            # Sub-jobs were moved by a concurrent run; leave its outcome in place
            logger.error(f"Scan {scan_id} was modified by another run: {e}")
            scan = await asyncio.to_thread(self.store.get_scan, scan_id)
            return scan.status

        except Exception as e:
            logger.exception(f"Scan {scan_id} failed: {e}")
            try:
                await asyncio.to_thread(self.store.mark_scan_failed, scan_id, str(e) or type(e).__name__)
            except StorageError as store_error:
                logger.error(f"Could not record failure of scan {scan_id}: {store_error}")
            return JobStatus.FAILED

    async def compute_risk(self, scan_id: str) -> RiskAssessment:
        """Score a scan from its persisted findings and store the result."""
        findings = await asyncio.to_thread(self.store.get_findings, scan_id)
        assessment = self.scorer.score(findings)
        await asyncio.to_thread(self.store.persist_risk_assessment, scan_id, assessment)
        return assessment

    async def health_check(self) -> Dict[str, Optional[str]]:
        """
        Check both analyzers.

        Returns:
            Analyzer name -> None if healthy, else the error message
        """
        async def check(analyzer: Analyzer) -> Optional[str]:
            try:
                await analyzer.health_check()
                return None
            except AnalyzerError as e:
                return str(e)

        names = [analyzer.name for analyzer in self.analyzers.values()]
        outcomes = await asyncio.gather(*(check(a) for a in self.analyzers.values()))
        return dict(zip(names, outcomes))

    async def wait_all(self) -> None:
        """Wait for every running scan task."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --------------------------------------------------------------------------
    # Internals
    # --------------------------------------------------------------------------

    async def _run_analyzers(self, scan_id: str, workspace: Path) -> Optional[Dict[SubJob, List[FileFindings]]]:
        """
        Run both analyzers concurrently.

        Returns:
            Findings per sub-job, or None if either analyzer failed
        """
        for sub_job in self.analyzers:
            await asyncio.to_thread(self.store.update_sub_status, scan_id, sub_job, JobStatus.IN_PROGRESS)
        await asyncio.to_thread(self.store.recompute_overall_status, scan_id)

        # Both runs are joined before any error propagates, so the workspace
        # outlives every analyzer
        outcomes = await asyncio.gather(*(
            self._run_one(scan_id, sub_job, analyzer, workspace)
            for sub_job, analyzer in self.analyzers.items()
        ), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        results = dict(zip(self.analyzers, outcomes))
        if any(findings is None for findings in results.values()):
            return None
        return results

    async def _run_one(self, scan_id: str, sub_job: SubJob, analyzer: Analyzer,
                       workspace: Path) -> Optional[List[FileFindings]]:
        """Run one analyzer and record its sub-job outcome; None on failure."""
        try:
            findings = await analyzer.scan(workspace)
        except AnalyzerParseError as e:
            logger.error(f"Scan {scan_id}: {analyzer.name} output unparseable: {e}\n"
                         f"Raw payload: {e.truncated_payload()}")
            error = f"{analyzer.name}: {e}"
        except AnalyzerError as e:
            logger.error(f"Scan {scan_id}: {analyzer.name} failed: {e}")
            error = f"{analyzer.name}: {e}"
        except Exception as e:
            logger.exception(f"Scan {scan_id}: {analyzer.name} crashed")
            error = f"{analyzer.name}: unexpected error: {e}"
        else:
            await asyncio.to_thread(self.store.update_sub_status, scan_id, sub_job, JobStatus.COMPLETED)
            await asyncio.to_thread(self.store.recompute_overall_status, scan_id)
            logger.info(f"Scan {scan_id}: {analyzer.name} reported {len(findings)} files")
            return findings

        await asyncio.to_thread(self.store.update_sub_status, scan_id, sub_job, JobStatus.FAILED, error)
        await asyncio.to_thread(self.store.recompute_overall_status, scan_id)
        return None
