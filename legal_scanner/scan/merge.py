"""
Result Merge
============
Combines the per-file findings of the primary (license/copyright) and
secondary (export-control) analyzers into one list.
"""

import logging
from typing import Dict, List

from ..analyzers.base import FileFindings

logger = logging.getLogger(__name__)


def merge_results(primary: List[FileFindings], secondary: List[FileFindings]) -> List[FileFindings]:
    """
    Merge secondary findings into primary findings by file path.

    The primary analyzer is authoritative for licenses and copyrights:
    only control-flag findings are taken from the secondary list. They are
    appended to the matching primary record, or to a new record for paths
    the primary never reported. Nothing is deduplicated. Primary records
    are kept one-for-one, so merging with an empty secondary list returns
    the primary findings unchanged; when the primary repeats a path, control
    flags go to its first record.

    Neither input is modified. Primary order is kept; new paths follow in
    the order they first appear in the secondary list.

    Args:
        primary: Findings from the primary analyzer
        secondary: Findings from the secondary analyzer

    Returns:
        Unified per-file findings
    """
    merged: List[FileFindings] = []
    index: Dict[str, FileFindings] = {}

    for record in primary:
        copy = FileFindings(
            file_path=record.file_path,
            licenses=list(record.licenses),
            copyrights=list(record.copyrights),
            control_flags=list(record.control_flags),
        )
        index.setdefault(record.file_path, copy)
        merged.append(copy)

    added = 0
    for record in secondary:
        target = index.get(record.file_path)
        if target is None:
            target = FileFindings(file_path=record.file_path)
            index[record.file_path] = target
            merged.append(target)
            added += 1
        target.control_flags.extend(record.control_flags)

    logger.debug(f"Merged {len(primary)} primary and {len(secondary)} secondary records ({added} new paths)")
    return merged
