#!/usr/bin/env python3
"""
Compliance Risk Scoring Engine
==============================
Computes a 0-100 compliance risk score from the persisted findings of a
scan, together with the factors that produced it.

Scoring categories:
- Copyleft licenses: configured weight, once per distinct license
- Unknown / proprietary licenses: configured weight, once per distinct license
- Missing SPDX identifiers: 2 points per affected file
- Low detection confidence: 15 points below 50%, 8 points below 70%
- Export-control findings: 20 critical, 12 high, 6 medium, 2 other
- License diversity: 3, 6 or 10 points at 5, 10 and 15 distinct licenses

The scorer is a pure function of its inputs: same findings and rules,
same assessment.

Author: Legal Scanner Team
"""

import logging
import math
from collections import Counter, OrderedDict
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..analyzers.base import FileFindings

logger = logging.getLogger(__name__)


# ================================================================================
# DATA MODELS
# ================================================================================

class RiskLevel(Enum):
    """Banded interpretation of the numeric score."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, score: int) -> 'RiskLevel':
        if score <= 25:
            return cls.LOW
        if score <= 50:
            return cls.MEDIUM
        if score <= 75:
            return cls.HIGH
        return cls.CRITICAL


@dataclass(frozen=True)
class RiskWeightRule:
    """
    License name pattern and its risk weight.

    Pattern forms:
        "MIT"           exact match
        "GPL%"          prefix
        "%possibility"  suffix
        "%Proprietary%" contains
        "CC%4.0"        starts with "CC" and ends with "4.0"
    """
    pattern: str
    weight: int
    category: Optional[str] = None
    description: Optional[str] = None

    def matches(self, license_name: str) -> bool:
        return match_license_pattern(self.pattern, license_name)


@dataclass
class RiskFactor:
    """One contributor to the overall score."""
    category: str
    severity: str
    description: str
    affected_count: int
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RiskAssessment:
    """Score, level and the ordered factors behind them."""
    score: int
    level: RiskLevel
    factors: List[RiskFactor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'level': self.level.value,
            'factors': [factor.to_dict() for factor in self.factors],
        }


def match_license_pattern(pattern: str, name: str) -> bool:
    """Match a license name against a weight rule pattern."""
    if '%' not in pattern:
        return name == pattern

    starts = pattern.startswith('%')
    ends = pattern.endswith('%')
    core = pattern.strip('%')

    if starts and ends:
        return core in name
    if ends:
        return name.startswith(core)
    if starts:
        return name.endswith(core)

    head, _, tail = pattern.partition('%')
    tail = tail.replace('%', '')
    return len(name) >= len(head) + len(tail) and name.startswith(head) and name.endswith(tail)


# ================================================================================
# SCORER
# ================================================================================

class RiskScorer:
    """Weighted compliance risk scorer."""

    MAX_SCORE = 100
    MAX_DETAILS = 10

    # Case-sensitive substrings of the license name
    COPYLEFT_KEYWORDS = ('GPL', 'AGPL', 'LGPL', 'MPL', 'EPL', 'CDDL', 'CPL', 'Sleepycat')
    UNKNOWN_KEYWORDS = ('No_license_found', 'Unknown', 'Proprietary', 'Commercial',
                        'See-file', 'possibility')

    MISSING_SPDX_POINTS = 2
    VERY_LOW_CONFIDENCE = 0.5
    LOW_CONFIDENCE = 0.7
    VERY_LOW_CONFIDENCE_POINTS = 15
    LOW_CONFIDENCE_POINTS = 8

    CONTROL_FLAG_POINTS = {
        'critical': 20,
        'high': 12,
        'medium': 6,
    }
    CONTROL_FLAG_OTHER_POINTS = 2

    # (minimum distinct licenses, points), checked in order
    DIVERSITY_THRESHOLDS = ((15, 10), (10, 6), (5, 3))

    def __init__(self, rules: Iterable[RiskWeightRule]):
        """
        Initialize scorer.

        Args:
            rules: Ordered weight rules; the first matching rule wins
        """
        self.rules = list(rules)

    def license_weight(self, license_name: str) -> int:
        for rule in self.rules:
            if rule.matches(license_name):
                return rule.weight
        return 0

    def score(self, findings: List[FileFindings]) -> RiskAssessment:
        """
        Score a scan's findings.

        Args:
            findings: Per-file findings as persisted for the scan

        Returns:
            RiskAssessment with score capped at 100
        """
        factors: List[RiskFactor] = []
        total = 0

        total += self._score_licenses(findings, factors)
        total += self._score_missing_spdx(findings, factors)
        total += self._score_confidence(findings, factors)
        total += self._score_control_flags(findings, factors)
        total += self._score_diversity(findings, factors)

        score = min(total, self.MAX_SCORE)
        level = RiskLevel.from_score(score)
        logger.debug(f"Risk score {score} ({level.value}) from {len(factors)} factors, raw {total}")
        return RiskAssessment(score=score, level=level, factors=factors)

    # --------------------------------------------------------------------------
    # Categories
    # --------------------------------------------------------------------------

    def _files_per_license(self, findings: List[FileFindings]) -> 'OrderedDict[str, int]':
        counts: 'OrderedDict[str, int]' = OrderedDict()
        for record in findings:
            for name in {lic.name for lic in record.licenses if lic.name}:
                counts[name] = counts.get(name, 0) + 1
        return counts

    def _score_licenses(self, findings: List[FileFindings], factors: List[RiskFactor]) -> int:
        copyleft: Dict[str, int] = {}
        unknown: Dict[str, int] = {}
        points = 0

        for name, file_count in self._files_per_license(findings).items():
            weight = self.license_weight(name)
            if weight <= 0:
                continue
            if any(keyword in name for keyword in self.COPYLEFT_KEYWORDS):
                copyleft[name] = file_count
                points += weight
            elif any(keyword in name for keyword in self.UNKNOWN_KEYWORDS):
                unknown[name] = file_count
                points += weight

        if copyleft:
            factors.append(RiskFactor(
                category='copyleft_license',
                severity='high',
                description=f"{len(copyleft)} copyleft license(s) detected",
                affected_count=sum(copyleft.values()),
                details=self._bounded(f"{name} ({count} files)" for name, count in sorted(copyleft.items())),
            ))
        if unknown:
            factors.append(RiskFactor(
                category='unknown_license',
                severity='medium',
                description=f"{len(unknown)} unknown or proprietary license(s) detected",
                affected_count=sum(unknown.values()),
                details=self._bounded(f"{name} ({count} files)" for name, count in sorted(unknown.items())),
            ))
        return points

    def _score_missing_spdx(self, findings: List[FileFindings], factors: List[RiskFactor]) -> int:
        affected_files = set()
        per_license: Counter = Counter()
        for record in findings:
            for lic in record.licenses:
                if not lic.spdx_id:
                    affected_files.add(record.file_path)
                    per_license[lic.name] += 1

        if not affected_files:
            return 0

        factors.append(RiskFactor(
            category='missing_spdx_id',
            severity='medium',
            description=f"{len(affected_files)} file(s) with licenses lacking an SPDX identifier",
            affected_count=len(affected_files),
            details=self._bounded(f"{name} ({count} findings)" for name, count in sorted(per_license.items())),
        ))
        return self.MISSING_SPDX_POINTS * len(affected_files)

    def _score_confidence(self, findings: List[FileFindings], factors: List[RiskFactor]) -> int:
        very_low = []
        low = []
        for record in findings:
            for lic in record.licenses:
                confidence = self._valid_confidence(lic.confidence)
                if confidence is None:
                    continue
                if confidence < self.VERY_LOW_CONFIDENCE:
                    very_low.append((lic.name, confidence))
                elif confidence < self.LOW_CONFIDENCE:
                    low.append((lic.name, confidence))

        if not very_low and not low:
            return 0

        details = [f"{name} ({confidence * 100:.0f}% confidence)" for name, confidence in very_low + low]
        factors.append(RiskFactor(
            category='low_confidence',
            severity='high' if very_low else 'medium',
            description=f"{len(very_low) + len(low)} license detection(s) with low confidence",
            affected_count=len(very_low) + len(low),
            details=self._bounded(details),
        ))
        return len(very_low) * self.VERY_LOW_CONFIDENCE_POINTS + len(low) * self.LOW_CONFIDENCE_POINTS

    def _score_control_flags(self, findings: List[FileFindings], factors: List[RiskFactor]) -> int:
        paths: Dict[str, List[str]] = {'critical': [], 'high': [], 'medium': [], 'low': []}
        points = 0

        for record in findings:
            for flag in record.control_flags:
                severity = (flag.severity or 'medium').lower()
                points += self.CONTROL_FLAG_POINTS.get(severity, self.CONTROL_FLAG_OTHER_POINTS)
                bucket = severity if severity in paths else 'low'
                paths[bucket].append(record.file_path)

        critical, high = paths['critical'], paths['high']
        if critical or high:
            details = []
            if critical:
                details.append(f"Critical: {len(critical)} findings")
                details.extend(self._unique(critical)[:3])
            if high:
                details.append(f"High: {len(high)} findings")
                details.extend(self._unique(high)[:3])
            factors.append(RiskFactor(
                category='ecc_critical_high',
                severity='critical' if critical else 'high',
                description=f"{len(critical) + len(high)} critical/high export-control finding(s)",
                affected_count=len(critical) + len(high),
                details=self._bounded(details),
            ))

        medium, low = paths['medium'], paths['low']
        if medium or low:
            details = []
            if medium:
                details.append(f"Medium: {len(medium)} findings")
            if low:
                details.append(f"Low: {len(low)} findings")
            factors.append(RiskFactor(
                category='ecc_medium_low',
                severity='medium',
                description=f"{len(medium) + len(low)} medium/low export-control finding(s)",
                affected_count=len(medium) + len(low),
                details=details,
            ))

        return points

    def _score_diversity(self, findings: List[FileFindings], factors: List[RiskFactor]) -> int:
        names = sorted({lic.name for record in findings for lic in record.licenses if lic.name})
        for threshold, points in self.DIVERSITY_THRESHOLDS:
            if len(names) >= threshold:
                factors.append(RiskFactor(
                    category='license_diversity',
                    severity='low',
                    description=f"{len(names)} distinct licenses in use",
                    affected_count=len(names),
                    details=self._bounded(names),
                ))
                return points
        return 0

    # --------------------------------------------------------------------------
    # Helpers
    # --------------------------------------------------------------------------

    def _bounded(self, items: Iterable[str]) -> List[str]:
        return list(items)[:self.MAX_DETAILS]

    @staticmethod
    def _unique(items: List[str]) -> List[str]:
        return list(OrderedDict.fromkeys(items))

    @staticmethod
    def _valid_confidence(value: Any) -> Optional[float]:
        """Return a usable confidence in [0, 1], or None if malformed."""
        if value is None or isinstance(value, bool):
            return None
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(confidence) or confidence < 0 or confidence > 1:
            return None
        return confidence
