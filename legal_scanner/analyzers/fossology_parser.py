"""
FOSSology Response Parsing
==========================
Converts FOSSology license and copyright report payloads into
FileFindings, normalizes license names to SPDX identifiers and extracts
holders/years from copyright statements.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .base import AnalyzerParseError, CopyrightFinding, FileFindings, LicenseFinding

logger = logging.getLogger(__name__)

NO_LICENSE_PLACEHOLDER = "No_license_found"
DEFAULT_CONFIDENCE = 1.0

# Substring -> SPDX id, checked in order against the lowercased name
SPDX_PATTERNS = [
    ("mit", "MIT"),
    ("apache-2.0", "Apache-2.0"),
    ("apache-license-2.0", "Apache-2.0"),
    ("lgpl-2.1", "LGPL-2.1-only"),
    ("lgpl-3.0", "LGPL-3.0-only"),
    ("gpl-2.0", "GPL-2.0-only"),
    ("gpl-3.0", "GPL-3.0-only"),
    ("bsd-2-clause", "BSD-2-Clause"),
    ("bsd-3-clause", "BSD-3-Clause"),
    ("mpl-2.0", "MPL-2.0"),
    ("isc", "ISC"),
    ("cc0-1.0", "CC0-1.0"),
    ("unlicense", "Unlicense"),
    ("artistic-2.0", "Artistic-2.0"),
    ("zlib", "Zlib"),
]

_YEAR_TAIL = r"\s*(?:\d{4}[-,\s]*)*\s*(?:by\s+)?(.+?)(?:\.|$)"
HOLDER_PATTERNS = [
    re.compile(r"copyright\s*(?:\(c\))?" + _YEAR_TAIL, re.IGNORECASE),
    re.compile(r"©" + _YEAR_TAIL, re.IGNORECASE),
    re.compile(r"copr\." + _YEAR_TAIL, re.IGNORECASE),
]
YEAR_PATTERN = re.compile(r"\b(19\d{2}|20\d{2})\b")


def map_to_spdx(license_name: str) -> Optional[str]:
    """Best-effort SPDX identifier for a scanner license name."""
    normalized = license_name.lower().replace(" ", "-")
    for needle, spdx_id in SPDX_PATTERNS:
        if needle in normalized:
            return spdx_id
    return None


def extract_holders(statement: str) -> List[str]:
    """Pull copyright holder names out of a statement."""
    holders = set()
    for pattern in HOLDER_PATTERNS:
        match = pattern.search(statement)
        if not match:
            continue
        holder = match.group(1).strip()
        if holder and not holder[0].isdigit():
            holders.add(holder)
            break
    return sorted(holders)


def extract_years(statement: str) -> List[str]:
    return sorted(set(YEAR_PATTERN.findall(statement)))


def parse_copyright_statement(statement: str) -> Optional[CopyrightFinding]:
    """
    Build a CopyrightFinding from raw text.

    Returns None when neither holders nor years can be extracted.
    """
    holders = extract_holders(statement)
    years = extract_years(statement)
    if not holders and not years:
        return None
    return CopyrightFinding(statement=statement, holders=holders, years=years)


def _is_printable(text: str) -> bool:
    return all(ch.isprintable() or ch.isspace() for ch in text)


def parse_license_report(payload: Any) -> Dict[str, FileFindings]:
    """
    Parse the `/uploads/{id}/licenses` report.

    Args:
        payload: Decoded JSON: a list of {filePath, findings: {scanner, conclusion}}

    Returns:
        FileFindings keyed by path, in report order
    """
    if not isinstance(payload, list):
        raise AnalyzerParseError("License report is not a list", repr(payload))

    results: Dict[str, FileFindings] = {}
    for entry in payload:
        if not isinstance(entry, dict) or 'filePath' not in entry:
            raise AnalyzerParseError("License report entry is missing filePath", repr(entry))

        findings = entry.get('findings') or {}
        if not isinstance(findings, dict):
            raise AnalyzerParseError("License report findings is not an object", repr(entry))

        names = []
        for key in ('scanner', 'conclusion'):
            values = findings.get(key) or []
            if not isinstance(values, list):
                raise AnalyzerParseError(f"License report {key} is not a list", repr(entry))
            names.extend(values)

        licenses = []
        seen = set()
        for name in names:
            if name is not None and not isinstance(name, str):
                raise AnalyzerParseError("License name is not a string", repr(entry))
            if not name or name == NO_LICENSE_PLACEHOLDER or name in seen:
                continue
            seen.add(name)
            licenses.append(LicenseFinding(
                name=name,
                spdx_id=map_to_spdx(name),
                confidence=DEFAULT_CONFIDENCE,
            ))

        if licenses:
            path = entry['filePath']
            record = results.setdefault(path, FileFindings(file_path=path))
            record.licenses.extend(licenses)

    return results


def parse_copyright_report(payload: Any) -> Dict[str, List[CopyrightFinding]]:
    """
    Parse the `/uploads/{id}/copyrights` report.

    Each entry lists one statement and every file it was found in; the
    statement is recorded once per file.
    """
    if not isinstance(payload, list):
        raise AnalyzerParseError("Copyright report is not a list", repr(payload))

    results: Dict[str, List[CopyrightFinding]] = {}
    skipped = 0
    for entry in payload:
        if not isinstance(entry, dict):
            raise AnalyzerParseError("Copyright report entry is not an object", repr(entry))

        statement = entry.get('copyright') or ""
        if not isinstance(statement, str):
            raise AnalyzerParseError("Copyright statement is not a string", repr(entry))
        statement = statement.strip()
        if not statement or not _is_printable(statement):
            skipped += 1
            continue

        finding = parse_copyright_statement(statement)
        if finding is None:
            skipped += 1
            continue

        paths = entry.get('filePath') or []
        if isinstance(paths, str):
            paths = [paths]
        for path in paths:
            results.setdefault(path, []).append(
                CopyrightFinding(finding.statement, list(finding.holders), list(finding.years))
            )

    if skipped:
        logger.debug(f"Skipped {skipped} unusable copyright statements")
    return results


def combine_reports(licenses: Dict[str, FileFindings],
                    copyrights: Dict[str, List[CopyrightFinding]]) -> List[FileFindings]:
    """Attach copyrights to license records; copyright-only files get new records."""
    combined = dict(licenses)
    for path, statements in copyrights.items():
        record = combined.setdefault(path, FileFindings(file_path=path))
        record.copyrights.extend(statements)
    return list(combined.values())


def normalize_path(file_path: str, root_name: Optional[str] = None) -> str:
    """
    Make a report path relative to the repository root.

    Report paths are prefixed with the uploaded archive and its unpacked
    members, e.g. `repository.tar.gz/repository.tar/<root>/src/main.c`.
    """
    parts = [part for part in file_path.split('/') if part]
    if root_name and root_name in parts:
        parts = parts[parts.index(root_name) + 1:]
    else:
        while parts and parts[0].endswith(('.tar.gz', '.tgz', '.tar', '.gz')):
            parts = parts[1:]
    return '/'.join(parts) or file_path
