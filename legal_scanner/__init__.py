#!/usr/bin/env python3
"""
Legal Scanner Compliance Platform
=================================

Automated legal-compliance analysis of source repositories:

1. License & Copyright: remote FOSSology analysis of a repository archive
2. Export Control: local Semgrep pattern scan for crypto/ECC usage
3. Risk Scoring: weighted 0-100 compliance risk over the merged findings

Author: Legal Scanner Team
"""

__version__ = "1.0.0"
__author__ = "Legal Scanner Team"

from legal_scanner.config import ScannerConfig
from legal_scanner.scan.coordinator import ScanCoordinator
from legal_scanner.scoring.risk_scorer import RiskScorer

__all__ = ['ScannerConfig', 'ScanCoordinator', 'RiskScorer']
