"""
Scan State Machine
==================
Status vocabulary for scans and their two analyzer sub-jobs, the legal
sub-job transitions, and the overall-status derivation.

Overall status precedence:
    both completed        -> completed
    either failed         -> failed
    either in_progress    -> in_progress
    otherwise             -> pending
"""

from enum import Enum
from typing import Dict, Set


class JobStatus(Enum):
    """Lifecycle status of a scan or one of its sub-jobs."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SubJob(Enum):
    """The two analyzer sub-jobs of a scan."""
    LICENSE = "license"
    EXPORT_CONTROL = "export_control"


class InvalidTransition(Exception):
    """A sub-job status change that the lifecycle does not allow."""
    pass


ALLOWED_TRANSITIONS: Dict[JobStatus, Set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.IN_PROGRESS, JobStatus.FAILED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def check_transition(current: JobStatus, new: JobStatus) -> bool:
    """
    Validate a sub-job status change.

    Returns:
        True if the status actually changes, False for a repeated write

    Raises:
        InvalidTransition: If the change is not allowed
    """
    if current == new:
        return False
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move from {current.value} to {new.value}")
    return True


def derive_overall_status(license_status: JobStatus, export_control_status: JobStatus) -> JobStatus:
    """Overall scan status for a pair of sub-job statuses."""
    pair = (license_status, export_control_status)
    if all(status == JobStatus.COMPLETED for status in pair):
        return JobStatus.COMPLETED
    if JobStatus.FAILED in pair:
        return JobStatus.FAILED
    if JobStatus.IN_PROGRESS in pair:
        return JobStatus.IN_PROGRESS
    return JobStatus.PENDING
