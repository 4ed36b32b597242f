"""
SQLAlchemy Models for the Legal Scanner
=======================================
ORM models for scans, their analyzer sub-jobs and per-file findings.
Findings cascade-delete with their scan.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Float, ForeignKey, Index, JSON, Enum
)
from sqlalchemy.orm import declarative_base, relationship

from ..scan.state import JobStatus

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_column(**kwargs) -> Column:
    return Column(
        Enum(JobStatus, name='job_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.PENDING,
        **kwargs,
    )


# =====================================================
# ENUMS
# =====================================================

class FindingKind(PyEnum):
    LICENSE = "license"
    COPYRIGHT = "copyright"
    CONTROL_FLAG = "control_flag"


# =====================================================
# SCANS
# =====================================================

class Scan(Base):
    __tablename__ = 'scans'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    repo_url = Column(Text, nullable=False)
    credential = Column(Text)  # Fernet token, never serialized

    status = _status_column(index=True)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    # License / copyright analyzer (primary)
    license_status = _status_column()
    license_started_at = Column(DateTime(timezone=True))
    license_completed_at = Column(DateTime(timezone=True))
    license_error = Column(Text)

    # Export-control analyzer (secondary)
    export_control_status = _status_column()
    export_control_started_at = Column(DateTime(timezone=True))
    export_control_completed_at = Column(DateTime(timezone=True))
    export_control_error = Column(Text)

    # Risk annotation, replaced wholesale on each assessment
    risk_score = Column(Integer)
    risk_level = Column(String(20))
    risk_factors = Column(JSON)
    risk_assessed_at = Column(DateTime(timezone=True))

    findings = relationship("ScanFinding", back_populates="scan",
                            cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        """Serialize the scan; the credential is never included."""
        def iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'repo_url': self.repo_url,
            'status': self.status.value,
            'error_message': self.error_message,
            'created_at': iso(self.created_at),
            'started_at': iso(self.started_at),
            'completed_at': iso(self.completed_at),
            'license': {
                'status': self.license_status.value,
                'started_at': iso(self.license_started_at),
                'completed_at': iso(self.license_completed_at),
                'error': self.license_error,
            },
            'export_control': {
                'status': self.export_control_status.value,
                'started_at': iso(self.export_control_started_at),
                'completed_at': iso(self.export_control_completed_at),
                'error': self.export_control_error,
            },
            'risk': None if self.risk_score is None else {
                'score': self.risk_score,
                'level': self.risk_level,
                'factors': self.risk_factors or [],
                'assessed_at': iso(self.risk_assessed_at),
            },
        }


class ScanFinding(Base):
    __tablename__ = 'scan_findings'
    __table_args__ = (
        Index('idx_scan_findings_scan_kind', 'scan_id', 'kind'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(String(36), ForeignKey('scans.id', ondelete='CASCADE'), nullable=False)
    file_path = Column(Text, nullable=False)
    kind = Column(Enum(FindingKind, name='finding_kind', values_callable=lambda e: [m.value for m in e]),
                  nullable=False)

    # license
    license_name = Column(String(255))
    spdx_id = Column(String(100))
    confidence = Column(Float)

    # copyright
    copyright_statement = Column(Text)
    copyright_holders = Column(JSON)
    copyright_years = Column(JSON)

    # control flag
    content = Column(Text)
    severity = Column(String(20))
    source = Column(String(50))
    line_number = Column(Integer)
    rule_id = Column(String(255))

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    scan = relationship("Scan", back_populates="findings")
