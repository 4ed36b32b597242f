"""
Risk Scoring
============
Weighted compliance risk scoring over persisted scan findings, plus
batch backfill for historical scans.
"""

from .risk_scorer import (
    RiskAssessment,
    RiskFactor,
    RiskLevel,
    RiskScorer,
    RiskWeightRule,
    match_license_pattern,
)

__all__ = [
    'RiskAssessment',
    'RiskFactor',
    'RiskLevel',
    'RiskScorer',
    'RiskWeightRule',
    'match_license_pattern',
]
