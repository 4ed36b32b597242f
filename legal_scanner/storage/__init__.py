"""
Storage Module
==============
SQLAlchemy-backed persistence for scans, findings and risk assessments.
"""

from .database import ScanNotFound, ScanStore, StorageError
from .models import Base, FindingKind, Scan, ScanFinding

__all__ = [
    'Base',
    'FindingKind',
    'Scan',
    'ScanFinding',
    'ScanNotFound',
    'ScanStore',
    'StorageError',
]
