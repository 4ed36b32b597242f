"""
Analyzer Adapter Contract
=========================
Common finding types, error taxonomy and the abstract adapter every
external analyzer implements.

An adapter turns one external tool into a list of per-file findings.
It never raises anything outside the AnalyzerError family so the scan
coordinator can translate any failure into a persisted sub-job status.

Author: Legal Scanner Team
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional


# ================================================================================
# DATA MODELS
# ================================================================================

@dataclass
class LicenseFinding:
    """A license detected in a file."""
    name: str
    spdx_id: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CopyrightFinding:
    """A copyright statement with extracted holders and years."""
    statement: str
    holders: List[str] = field(default_factory=list)
    years: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ControlFlagFinding:
    """
    An export-control (crypto usage) observation.

    Attributes:
        content: Human-readable message, optionally with the matched code
        severity: One of critical, high, medium, low (may be absent)
        source: Name of the analyzer that produced it
        line_number: 1-based line of the match, if known
        rule_id: Identifier of the rule that matched, if known
    """
    content: str
    severity: Optional[str] = None
    source: str = "unknown"
    line_number: Optional[int] = None
    rule_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileFindings:
    """All findings for a single file path."""
    file_path: str
    licenses: List[LicenseFinding] = field(default_factory=list)
    copyrights: List[CopyrightFinding] = field(default_factory=list)
    control_flags: List[ControlFlagFinding] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.licenses or self.copyrights or self.control_flags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_path': self.file_path,
            'licenses': [item.to_dict() for item in self.licenses],
            'copyrights': [item.to_dict() for item in self.copyrights],
            'control_flags': [item.to_dict() for item in self.control_flags],
        }


# ================================================================================
# ERRORS
# ================================================================================

class AnalyzerError(Exception):
    """Base class for analyzer adapter failures."""
    pass


class AnalyzerUnavailable(AnalyzerError):
    """The analyzer cannot be reached (connection refused, binary missing)."""
    pass


class AnalyzerFailed(AnalyzerError):
    """The analyzer ran but reported failure, or a polling budget ran out."""
    pass


class AnalyzerParseError(AnalyzerError):
    """The analyzer returned output that could not be decoded."""

    MAX_PAYLOAD_CHARS = 2048

    def __init__(self, message: str, raw_payload: str = ""):
        super().__init__(message)
        self.raw_payload = raw_payload

    def truncated_payload(self) -> str:
        if len(self.raw_payload) <= self.MAX_PAYLOAD_CHARS:
            return self.raw_payload
        return self.raw_payload[:self.MAX_PAYLOAD_CHARS] + "...[truncated]"


# ================================================================================
# ADAPTER CONTRACT
# ================================================================================

class Analyzer(ABC):
    """
    Uniform interface over an external analyzer.

    Implementations must be safe to run concurrently with other adapters
    on the same event loop: all network and process I/O is awaited.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable identifier, used as the `source` of emitted findings."""

    @abstractmethod
    async def scan(self, path: Path) -> List[FileFindings]:
        """
        Analyze a checked-out repository.

        Args:
            path: Root directory of the repository working copy

        Returns:
            Findings grouped by file path

        Raises:
            AnalyzerUnavailable, AnalyzerFailed, AnalyzerParseError
        """

    @abstractmethod
    async def health_check(self) -> None:
        """Raise AnalyzerUnavailable if the analyzer cannot be used."""
