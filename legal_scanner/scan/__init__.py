"""
Scan Orchestration
==================
Scan lifecycle state machine, cross-analyzer result merge and the
coordinator that drives a scan end to end.
"""

from .state import JobStatus, SubJob, InvalidTransition, derive_overall_status, check_transition
from .merge import merge_results

__all__ = [
    'JobStatus',
    'SubJob',
    'InvalidTransition',
    'derive_overall_status',
    'check_transition',
    'merge_results',
]
