"""
Analyzer Adapters
=================
Uniform adapters over the external analyzers used by a scan.

- FossologyAnalyzer: remote license/copyright service (HTTP)
- SemgrepAnalyzer: local export-control pattern scanner (subprocess)
"""

from .base import (
    Analyzer,
    AnalyzerError,
    AnalyzerFailed,
    AnalyzerParseError,
    AnalyzerUnavailable,
    ControlFlagFinding,
    CopyrightFinding,
    FileFindings,
    LicenseFinding,
)
from .fossology import FossologyAnalyzer
from .semgrep import SemgrepAnalyzer

__all__ = [
    'Analyzer',
    'AnalyzerError',
    'AnalyzerFailed',
    'AnalyzerParseError',
    'AnalyzerUnavailable',
    'ControlFlagFinding',
    'CopyrightFinding',
    'FileFindings',
    'LicenseFinding',
    'FossologyAnalyzer',
    'SemgrepAnalyzer',
]
