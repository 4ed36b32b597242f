"""
Scan Store
==========
Persistence for scans, sub-job status transitions, findings and risk
assessments, on top of SQLAlchemy.

Every public method is one short transaction so callers on worker
threads never hold a session across awaits.

Author: Legal Scanner Team
"""

import logging
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..analyzers.base import ControlFlagFinding, CopyrightFinding, FileFindings, LicenseFinding
from ..scan.state import JobStatus, SubJob, check_transition, derive_overall_status
from ..scoring.risk_scorer import RiskAssessment
from ..security.credentials import CredentialCipher
from .models import Base, FindingKind, Scan, ScanFinding, utcnow

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Storage operation failure."""
    pass


class ScanNotFound(StorageError):
    """No scan exists with the requested id."""
    pass


class ScanStore:
    """
    Scan persistence.

    Provides:
    - Scan creation with encrypted credentials
    - Sub-job transitions with set-once timestamps
    - Overall status recomputation under a row lock
    - Finding storage and retrieval grouped by file
    - Risk assessment persistence and summaries
    """

    def __init__(self, database_url: str, cipher: Optional[CredentialCipher] = None, echo: bool = False):
        """
        Initialize store.

        Args:
            database_url: SQLAlchemy URL (sqlite or postgresql)
            cipher: Credential cipher; an ephemeral one is created if omitted
            echo: Log SQL statements
        """
        self.database_url = database_url
        self.cipher = cipher or CredentialCipher()
        self.engine = self._create_engine(database_url, echo)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(database_url: str, echo: bool):
        url = make_url(database_url)
        if url.get_backend_name() != 'sqlite':
            return create_engine(database_url, echo=echo, pool_pre_ping=True)

        database = url.database
        if not database or database == ':memory:':
            return create_engine(
                database_url,
                echo=echo,
                connect_args={'check_same_thread': False},
                poolclass=StaticPool,
            )

        Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, echo=echo, connect_args={'check_same_thread': False})

    def init_schema(self) -> None:
        """Create tables if they do not exist."""
        Base.metadata.create_all(self.engine)
        logger.info(f"Database schema ready ({self.engine.url.get_backend_name()})")

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self):
        """Transactional scope: commit on success, roll back on error."""
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database transaction failed: {e}")
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _load(self, session, scan_id: str, lock: bool = False) -> Scan:
        query = select(Scan).where(Scan.id == scan_id)
        if lock:
            query = query.with_for_update()
        scan = session.execute(query).scalar_one_or_none()
        if scan is None:
            raise ScanNotFound(f"Scan not found: {scan_id}")
        return scan

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def create_scan(self, repo_url: str, credential: Optional[str] = None) -> Scan:
        """
        Create a pending scan.

        Args:
            repo_url: Repository to scan
            credential: Optional access token, stored encrypted

        Returns:
            The new Scan
        """
        with self.session_scope() as session:
            scan = Scan(
                repo_url=repo_url,
                credential=self.cipher.encrypt(credential),
                status=JobStatus.PENDING,
                license_status=JobStatus.PENDING,
                export_control_status=JobStatus.PENDING,
                created_at=utcnow(),
            )
            session.add(scan)
            session.flush()
            logger.info(f"Created scan {scan.id} for {repo_url}")
            return scan

    def get_scan(self, scan_id: str) -> Scan:
        with self.session_scope() as session:
            return self._load(session, scan_id)

    def get_credential(self, scan_id: str) -> Optional[str]:
        """Decrypted repository credential for a scan."""
        with self.session_scope() as session:
            scan = self._load(session, scan_id)
            return self.cipher.decrypt(scan.credential)

    def list_scans(self, limit: int = 50, status: Optional[JobStatus] = None) -> List[Scan]:
        with self.session_scope() as session:
            query = select(Scan).order_by(Scan.created_at.desc()).limit(limit)
            if status is not None:
                query = query.where(Scan.status == status)
            return list(session.execute(query).scalars())

    def delete_scan(self, scan_id: str) -> None:
        """Delete a scan and, by cascade, all of its findings."""
        with self.session_scope() as session:
            session.delete(self._load(session, scan_id))
        logger.info(f"Deleted scan {scan_id}")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def update_sub_status(self, scan_id: str, sub_job: SubJob, status: JobStatus,
                          error: Optional[str] = None) -> bool:
        """
        Move one sub-job to a new status.

        Timestamps are set once: started_at on first entry to in_progress,
        completed_at on first entry to a terminal state. Repeating the
        current status is a no-op.

        Returns:
            True if the status changed

        Raises:
            InvalidTransition: If the lifecycle does not allow the change
        """
        prefix = sub_job.value
        with self.session_scope() as session:
            scan = self._load(session, scan_id, lock=True)
            current = getattr(scan, f"{prefix}_status")
            if not check_transition(current, status):
                return False

            now = utcnow()
            setattr(scan, f"{prefix}_status", status)
            if status == JobStatus.IN_PROGRESS and getattr(scan, f"{prefix}_started_at") is None:
                setattr(scan, f"{prefix}_started_at", now)
            if status.is_terminal and getattr(scan, f"{prefix}_completed_at") is None:
                setattr(scan, f"{prefix}_completed_at", now)
            if error is not None:
                setattr(scan, f"{prefix}_error", error)

        logger.info(f"Scan {scan_id}: {prefix} -> {status.value}")
        return True

    def recompute_overall_status(self, scan_id: str) -> JobStatus:
        """
        Derive the overall status from the current sub-job statuses.

        A scan already forced to failed stays failed.

        Returns:
            The overall status after recomputation
        """
        with self.session_scope() as session:
            scan = self._load(session, scan_id, lock=True)
            derived = derive_overall_status(scan.license_status, scan.export_control_status)

            if scan.status == JobStatus.FAILED:
                return scan.status

            if derived != scan.status:
                now = utcnow()
                scan.status = derived
                if derived != JobStatus.PENDING and scan.started_at is None:
                    scan.started_at = now
                if derived.is_terminal and scan.completed_at is None:
                    scan.completed_at = now
                if derived == JobStatus.FAILED and not scan.error_message:
                    scan.error_message = scan.license_error or scan.export_control_error
                logger.info(f"Scan {scan_id} overall status -> {derived.value}")
            return scan.status

    def mark_scan_failed(self, scan_id: str, error: str) -> None:
        """Force the overall status to failed, bypassing sub-job derivation."""
        with self.session_scope() as session:
            scan = self._load(session, scan_id, lock=True)
            scan.status = JobStatus.FAILED
            scan.error_message = error
            if scan.completed_at is None:
                scan.completed_at = utcnow()
        logger.error(f"Scan {scan_id} failed: {error}")

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    def append_findings(self, scan_id: str, findings: List[FileFindings]) -> int:
        """
        Store findings for a scan, one row per observation.

        Returns:
            Number of rows written
        """
        rows = []
        for record in findings:
            path = record.file_path
            for lic in record.licenses:
                rows.append(ScanFinding(
                    scan_id=scan_id, file_path=path, kind=FindingKind.LICENSE,
                    license_name=lic.name, spdx_id=lic.spdx_id, confidence=lic.confidence,
                ))
            for cr in record.copyrights:
                rows.append(ScanFinding(
                    scan_id=scan_id, file_path=path, kind=FindingKind.COPYRIGHT,
                    copyright_statement=cr.statement,
                    copyright_holders=list(cr.holders), copyright_years=list(cr.years),
                ))
            for flag in record.control_flags:
                rows.append(ScanFinding(
                    scan_id=scan_id, file_path=path, kind=FindingKind.CONTROL_FLAG,
                    content=flag.content, severity=flag.severity, source=flag.source,
                    line_number=flag.line_number, rule_id=flag.rule_id,
                ))

        with self.session_scope() as session:
            self._load(session, scan_id)
            session.add_all(rows)

        logger.info(f"Stored {len(rows)} findings across {len(findings)} files for scan {scan_id}")
        return len(rows)

    def get_findings(self, scan_id: str) -> List[FileFindings]:
        """Findings for a scan, grouped by file in insertion order."""
        with self.session_scope() as session:
            self._load(session, scan_id)
            rows = session.execute(
                select(ScanFinding).where(ScanFinding.scan_id == scan_id).order_by(ScanFinding.id)
            ).scalars()

            grouped: 'OrderedDict[str, FileFindings]' = OrderedDict()
            for row in rows:
                record = grouped.setdefault(row.file_path, FileFindings(file_path=row.file_path))
                if row.kind == FindingKind.LICENSE:
                    record.licenses.append(LicenseFinding(row.license_name, row.spdx_id, row.confidence))
                elif row.kind == FindingKind.COPYRIGHT:
                    record.copyrights.append(CopyrightFinding(
                        row.copyright_statement, list(row.copyright_holders or []),
                        list(row.copyright_years or []),
                    ))
                else:
                    record.control_flags.append(ControlFlagFinding(
                        content=row.content, severity=row.severity, source=row.source or "unknown",
                        line_number=row.line_number, rule_id=row.rule_id,
                    ))
            return list(grouped.values())

    def get_summary(self, scan_id: str) -> Dict[str, Any]:
        """Counts of files, licenses and copyrights for a scan."""
        with self.session_scope() as session:
            self._load(session, scan_id)

            def count(column, kind=None):
                query = select(func.count(func.distinct(column))).where(ScanFinding.scan_id == scan_id)
                if kind is not None:
                    query = query.where(ScanFinding.kind == kind)
                return session.execute(query).scalar() or 0

            return {
                'total_files': count(ScanFinding.file_path),
                'files_with_licenses': count(ScanFinding.file_path, FindingKind.LICENSE),
                'files_with_copyrights': count(ScanFinding.file_path, FindingKind.COPYRIGHT),
                'unique_licenses': count(ScanFinding.license_name, FindingKind.LICENSE),
                'unique_copyrights': count(ScanFinding.copyright_statement, FindingKind.COPYRIGHT),
                'control_flag_findings': count(ScanFinding.id, FindingKind.CONTROL_FLAG),
            }

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    def persist_risk_assessment(self, scan_id: str, assessment: RiskAssessment) -> None:
        """Replace the scan's risk annotation."""
        with self.session_scope() as session:
            scan = self._load(session, scan_id, lock=True)
            scan.risk_score = assessment.score
            scan.risk_level = assessment.level.value
            scan.risk_factors = [factor.to_dict() for factor in assessment.factors]
            scan.risk_assessed_at = utcnow()
        logger.info(f"Scan {scan_id} risk {assessment.score} ({assessment.level.value})")

    def scans_missing_risk(self) -> List[str]:
        """Ids of completed scans that have no risk score yet."""
        with self.session_scope() as session:
            query = (
                select(Scan.id)
                .where(Scan.status == JobStatus.COMPLETED, Scan.risk_score.is_(None))
                .order_by(Scan.created_at)
            )
            return list(session.execute(query).scalars())
