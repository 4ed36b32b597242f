#!/usr/bin/env python3
"""
Semgrep Export-Control Analyzer
===============================
Runs Semgrep with export-control (cryptography usage) rules against a
repository and reports each match as a control-flag finding.

Semgrep runs either as a local binary or inside a long-running
container through `docker exec`, in which case the workspace path is
translated to the container's mount point.

Severity mapping:
    ERROR   -> high
    WARNING -> medium
    INFO    -> low
    other   -> low (logged)

Author: Legal Scanner Team
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import (
    Analyzer,
    AnalyzerFailed,
    AnalyzerParseError,
    AnalyzerUnavailable,
    ControlFlagFinding,
    FileFindings,
)

logger = logging.getLogger(__name__)


class SemgrepAnalyzer(Analyzer):
    """Local-process adapter around the Semgrep CLI."""

    SEVERITY_MAP = {
        'ERROR': 'high',
        'WARNING': 'medium',
        'INFO': 'low',
    }
    DEFAULT_SEVERITY = 'low'
    VERSION_TIMEOUT = 5
    MAX_MEMORY_MB = 2000

    def __init__(self, rules: str, binary: str = "semgrep", timeout: int = 300,
                 container: Optional[str] = None, container_root: str = "/scans",
                 host_root: Optional[str] = None):
        """
        Initialize analyzer.

        Args:
            rules: Semgrep --config value (rule file or registry id)
            binary: Semgrep executable
            timeout: Scan timeout in seconds
            container: Run through `docker exec <container>` when set
            container_root: Mount point of the workspace base inside the container
            host_root: Workspace base directory on the host
        """
        self.rules = rules
        self.binary = binary
        self.timeout = timeout
        self.container = container
        self.container_root = container_root
        self.host_root = Path(host_root) if host_root else None

    @property
    def name(self) -> str:
        return "semgrep"

    def _command(self, *args: str) -> List[str]:
        cmd = [self.binary, *args]
        if self.container:
            cmd = ['docker', 'exec', self.container, *cmd]
        return cmd

    def _target_path(self, path: Path) -> str:
        if not self.container:
            return str(path)
        if self.host_root is not None:
            try:
                relative = path.resolve().relative_to(self.host_root.resolve())
                return f"{self.container_root.rstrip('/')}/{relative.as_posix()}"
            except ValueError:
                pass
        return f"{self.container_root.rstrip('/')}/{path.name}"

    async def _run(self, cmd: List[str], timeout: float):
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise AnalyzerUnavailable(f"Executable not found: {cmd[0]}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise AnalyzerFailed(f"Semgrep timed out after {timeout}s")

        return process.returncode, stdout.decode(errors='replace'), stderr.decode(errors='replace')

    async def health_check(self) -> None:
        """Verify that Semgrep is installed and accessible."""
        try:
            returncode, stdout, stderr = await self._run(self._command('--version'), self.VERSION_TIMEOUT)
        except AnalyzerFailed as e:
            raise AnalyzerUnavailable(f"Semgrep is not available: {e}") from e
        if returncode != 0:
            raise AnalyzerUnavailable(f"Semgrep is not properly installed: {stderr.strip()}")
        logger.info(f"Semgrep version: {stdout.strip()}")

    async def scan(self, path: Path) -> List[FileFindings]:
        """
        Run the export-control rules over a repository.

        Args:
            path: Repository working copy

        Returns:
            Control-flag findings grouped by file
        """
        target = self._target_path(path)
        cmd = self._command(
            '--config', self.rules,
            '--json',
            '--no-git-ignore',
            '--max-memory', str(self.MAX_MEMORY_MB),
            target,
        )
        logger.info(f"Running Semgrep on {target}")

        returncode, stdout, stderr = await self._run(cmd, self.timeout)

        if returncode not in (0, 1):  # 1 = findings exist
            if not stdout.strip():
                raise AnalyzerFailed(f"Semgrep exited with {returncode}: {stderr.strip()}")
            logger.warning(f"Semgrep exited with {returncode}, parsing partial output")

        findings = self.parse_output(stdout, root=target)
        total = sum(len(record.control_flags) for record in findings)
        logger.info(f"Semgrep reported {total} findings in {len(findings)} files")
        return findings

    # --------------------------------------------------------------------------
    # Parsing
    # --------------------------------------------------------------------------

    def parse_output(self, output: str, root: Optional[str] = None) -> List[FileFindings]:
        """
        Parse Semgrep JSON output.

        Accepts a single JSON document, or line-oriented JSON where each
        line is either a full document or a single result object. Paths
        under `root` are reported relative to it.
        """
        if not output.strip():
            return []

        try:
            documents = [json.loads(output)]
        except json.JSONDecodeError:
            documents = []
            for line in output.splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    documents.append(json.loads(line))
                except json.JSONDecodeError as e:
                    raise AnalyzerParseError(f"Invalid Semgrep output: {e}", output) from e

        results: List[Dict[str, Any]] = []
        for document in documents:
            if not isinstance(document, dict):
                raise AnalyzerParseError("Semgrep output is not a JSON object", output)
            if 'results' in document:
                entries = document.get('results') or []
                if not isinstance(entries, list):
                    raise AnalyzerParseError("Semgrep results is not a list", output)
                results.extend(entries)
                for error in document.get('errors') or []:
                    if isinstance(error, dict):
                        logger.warning(f"Semgrep error in {error.get('path', '?')}: {error.get('message', error)}")
                    else:
                        logger.warning(f"Semgrep error: {error!r}")
            elif 'check_id' in document:
                results.append(document)

        grouped: Dict[str, FileFindings] = {}
        for result in results:
            if not isinstance(result, dict):
                raise AnalyzerParseError("Semgrep result is not an object", output)
            finding_path = result.get('path')
            if not finding_path or not isinstance(finding_path, str):
                raise AnalyzerParseError("Semgrep result has no path", json.dumps(result))
            finding_path = self._relative(finding_path, root)
            record = grouped.setdefault(finding_path, FileFindings(file_path=finding_path))
            record.control_flags.append(self._to_finding(result))
        return list(grouped.values())

    def _to_finding(self, result: Dict[str, Any]) -> ControlFlagFinding:
        extra = result.get('extra') or {}
        start = result.get('start') or {}
        if not isinstance(extra, dict) or not isinstance(start, dict):
            raise AnalyzerParseError("Semgrep result has malformed extra or start fields", json.dumps(result))
        message = extra.get('message') or result.get('check_id', '')
        lines = (extra.get('lines') or result.get('lines') or '').strip()
        content = f"{message}\n\nMatched code: `{lines}`" if lines else message

        return ControlFlagFinding(
            content=content,
            severity=self.map_severity(extra.get('severity')),
            source=self.name,
            line_number=start.get('line'),
            rule_id=result.get('check_id'),
        )

    def map_severity(self, severity: Optional[str]) -> str:
        mapped = self.SEVERITY_MAP.get((severity or '').upper())
        if mapped is None:
            logger.warning(f"Unknown Semgrep severity {severity!r}, using {self.DEFAULT_SEVERITY}")
            return self.DEFAULT_SEVERITY
        return mapped

    @staticmethod
    def _relative(finding_path: str, root: Optional[str]) -> str:
        if not root:
            return finding_path
        prefix = root.rstrip('/') + '/'
        if finding_path.startswith(prefix):
            return finding_path[len(prefix):]
        return finding_path
