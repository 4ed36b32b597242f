#!/usr/bin/env python3
"""
FOSSology License & Copyright Analyzer
======================================
Remote-service adapter for the FOSSology REST API.

Scan protocol:
1. Archive the repository as tar.gz and upload it
2. Poll the upload until unpacking has finished (backoff schedule)
3. Submit an analysis job (nomos, monk, ojo, copyright, ecc, ...)
4. Poll the job until it completes (fixed interval)
5. Fetch the license and copyright reports and convert them

Connection failures surface as AnalyzerUnavailable, protocol failures
and exhausted polling budgets as AnalyzerFailed, undecodable responses
as AnalyzerParseError.

Author: Legal Scanner Team
"""

import asyncio
import json
import logging
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from .base import Analyzer, AnalyzerFailed, AnalyzerParseError, AnalyzerUnavailable, FileFindings
from .fossology_parser import (
    combine_reports,
    normalize_path,
    parse_copyright_report,
    parse_license_report,
)
from .polling import (
    BackoffPolicy,
    ClockFunc,
    FixedIntervalPolicy,
    JobState,
    ReadinessResult,
    SleepFunc,
    TransientPollError,
    wait_for_job,
    wait_until_ready,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/repo/api/v1"
ARCHIVE_NAME = "repository.tar.gz"

ANALYSIS_AGENTS = {
    "bucket": True,
    "copyright_email_author": True,
    "ecc": True,
    "keyword": False,
    "mime": True,
    "monk": True,
    "nomos": True,
    "ojo": True,
    "package": True,
}


def build_archive(source: Path, destination: Path) -> Path:
    """Write `source` as a gzipped tarball rooted at its directory name."""
    def skip_git(member: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        parts = Path(member.name).parts
        return None if '.git' in parts else member

    with tarfile.open(destination, 'w:gz') as archive:
        archive.add(str(source), arcname=source.name, filter=skip_git)
    return destination


class FossologyAnalyzer(Analyzer):
    """FOSSology REST client implementing the analyzer contract."""

    PLACEHOLDER_TOKENS = ('', 'your_token_here')
    REQUEST_TIMEOUT = 60

    def __init__(self, base_url: str, token: Optional[str] = None,
                 username: str = "fossy", password: str = "fossy", folder_id: int = 1,
                 readiness_policy: BackoffPolicy = BackoffPolicy(),
                 job_policy: FixedIntervalPolicy = FixedIntervalPolicy(),
                 sleep: SleepFunc = asyncio.sleep,
                 clock: ClockFunc = time.monotonic):
        """
        Initialize analyzer.

        Args:
            base_url: FOSSology server root, e.g. http://localhost:8081
            token: API bearer token; basic auth is used when absent
            username: Basic auth user
            password: Basic auth password
            folder_id: Upload folder
            readiness_policy: Upload readiness backoff
            job_policy: Job completion polling
            sleep: Awaitable sleep used by both polling loops
            clock: Monotonic clock used by the readiness loop
        """
        self.base_url = base_url.rstrip('/')
        self.token = token if token not in self.PLACEHOLDER_TOKENS else None
        self.username = username
        self.password = password
        self.folder_id = folder_id
        self.readiness_policy = readiness_policy
        self.job_policy = job_policy
        self.sleep = sleep
        self.clock = clock

    @property
    def name(self) -> str:
        return "fossology"

    def _url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    def _session(self) -> aiohttp.ClientSession:
        headers = {}
        auth = None
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        else:
            auth = aiohttp.BasicAuth(self.username, self.password)
        return aiohttp.ClientSession(
            headers=headers,
            auth=auth,
            timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT),
        )

    @staticmethod
    async def _json(response: aiohttp.ClientResponse, step: str) -> Any:
        text = await response.text()
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise AnalyzerParseError(f"Invalid JSON from FOSSology {step}: {e}", text) from e

    @staticmethod
    async def _ensure_ok(response: aiohttp.ClientResponse, step: str) -> None:
        if response.status >= 400:
            body = await response.text()
            raise AnalyzerFailed(f"FOSSology {step} failed with HTTP {response.status}: {body[:500]}")

    # --------------------------------------------------------------------------
    # Contract
    # --------------------------------------------------------------------------

    async def health_check(self) -> None:
        """Check that the API answers its version endpoint."""
        try:
            async with self._session() as session:
                async with session.get(self._url("/version")) as response:
                    if response.status >= 400:
                        raise AnalyzerUnavailable(f"FOSSology health check returned HTTP {response.status}")
                    logger.debug(f"FOSSology version: {await response.text()}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AnalyzerUnavailable(f"FOSSology is not reachable at {self.base_url}: {e}") from e

    async def scan(self, path: Path) -> List[FileFindings]:
        """
        Upload a repository and collect license and copyright findings.

        Args:
            path: Repository working copy

        Returns:
            Findings grouped by repository-relative file path
        """
        try:
            async with self._session() as session:
                with tempfile.TemporaryDirectory(prefix="fossology-") as tmp:
                    archive = await asyncio.to_thread(build_archive, path, Path(tmp) / ARCHIVE_NAME)
                    upload_id = await self._upload(session, archive, path.name)

                await wait_until_ready(
                    lambda: self._check_upload(session, upload_id),
                    policy=self.readiness_policy,
                    description=f"FOSSology upload {upload_id}",
                    sleep=self.sleep,
                    clock=self.clock,
                )

                job_id = await self._submit_job(session, upload_id)
                await wait_for_job(
                    lambda: self._poll_job(session, job_id),
                    policy=self.job_policy,
                    description=f"FOSSology job {job_id}",
                    sleep=self.sleep,
                )

                licenses = await self._fetch_licenses(session, upload_id, path.name)
                copyrights = await self._fetch_copyrights(session, upload_id, path.name)

        # TimeoutError subclasses OSError on Python 3.11+
        except asyncio.TimeoutError as e:
            raise AnalyzerFailed("FOSSology request timed out") from e
        except (aiohttp.ClientError, OSError) as e:
            raise AnalyzerUnavailable(f"FOSSology request failed: {e}") from e

        findings = combine_reports(licenses, copyrights)
        logger.info(f"FOSSology reported findings for {len(findings)} files (upload {upload_id})")
        return findings

    # --------------------------------------------------------------------------
    # Protocol steps
    # --------------------------------------------------------------------------

    async def _upload(self, session: aiohttp.ClientSession, archive: Path, description: str) -> int:
        headers = {'folderId': str(self.folder_id), 'uploadType': 'file'}
        with open(archive, 'rb') as fh:
            form = aiohttp.FormData()
            form.add_field('uploadDescription', f"Legal scan of {description}")
            form.add_field('fileInput', fh, filename=ARCHIVE_NAME, content_type='application/gzip')
            async with session.post(self._url("/uploads"), data=form, headers=headers) as response:
                await self._ensure_ok(response, "upload")
                body = await self._json(response, "upload")

        upload_id = self._message_id(body, "upload")
        logger.info(f"Uploaded {archive.stat().st_size} bytes to FOSSology as upload {upload_id}")
        return upload_id

    async def _check_upload(self, session: aiohttp.ClientSession, upload_id: int) -> ReadinessResult:
        async with session.get(self._url(f"/uploads/{upload_id}")) as response:
            if response.status == 503:
                return ReadinessResult.NOT_READY
            if response.status >= 400:
                logger.warning(f"Upload {upload_id} status check returned HTTP {response.status}")
                return ReadinessResult.NOT_READY
            text = await response.text()

        try:
            body = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Upload {upload_id} status check returned invalid JSON")
            return ReadinessResult.NOT_READY

        if isinstance(body, dict) and body.get('hash'):
            return ReadinessResult.READY
        return ReadinessResult.NOT_READY

    async def _submit_job(self, session: aiohttp.ClientSession, upload_id: int) -> int:
        headers = {'folderId': str(self.folder_id), 'uploadId': str(upload_id)}
        payload = {'analysis': ANALYSIS_AGENTS}
        async with session.post(self._url("/jobs"), json=payload, headers=headers) as response:
            await self._ensure_ok(response, "job submission")
            body = await self._json(response, "job submission")

        job_id = self._message_id(body, "job submission")
        logger.info(f"Submitted FOSSology job {job_id} for upload {upload_id}")
        return job_id

    async def _poll_job(self, session: aiohttp.ClientSession, job_id: int) -> JobState:
        try:
            async with session.get(self._url(f"/jobs/{job_id}")) as response:
                if response.status >= 400:
                    raise TransientPollError(f"HTTP {response.status}")
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientPollError(str(e) or type(e).__name__) from e

        try:
            status = json.loads(text).get('status')
        except (json.JSONDecodeError, AttributeError) as e:
            raise TransientPollError(f"Invalid job status body: {text[:200]}") from e

        if status == 'Completed':
            return JobState.COMPLETED
        if status == 'Failed':
            return JobState.FAILED
        logger.debug(f"FOSSology job {job_id} status: {status}")
        return JobState.RUNNING

    async def _fetch_licenses(self, session: aiohttp.ClientSession, upload_id: int,
                              root_name: str) -> Dict[str, FileFindings]:
        params = {'agent': 'nomos,monk,ojo', 'containers': 'true'}
        async with session.get(self._url(f"/uploads/{upload_id}/licenses"), params=params) as response:
            await self._ensure_ok(response, "license report")
            body = await self._json(response, "license report")

        report = parse_license_report(body)
        normalized: Dict[str, FileFindings] = {}
        for record in report.values():
            file_path = normalize_path(record.file_path, root_name)
            target = normalized.setdefault(file_path, FileFindings(file_path=file_path))
            target.licenses.extend(record.licenses)
        return normalized

    async def _fetch_copyrights(self, session: aiohttp.ClientSession, upload_id: int,
                                root_name: str) -> Dict[str, list]:
        async with session.get(self._url(f"/uploads/{upload_id}/copyrights")) as response:
            await self._ensure_ok(response, "copyright report")
            body = await self._json(response, "copyright report")

        normalized: Dict[str, list] = {}
        for file_path, statements in parse_copyright_report(body).items():
            normalized.setdefault(normalize_path(file_path, root_name), []).extend(statements)
        return normalized

    @staticmethod
    def _message_id(body: Any, step: str) -> int:
        """FOSSology returns created ids in the `message` field."""
        try:
            return int(body['message'])
        except (KeyError, TypeError, ValueError) as e:
            raise AnalyzerParseError(f"FOSSology {step} response has no id", json.dumps(body)) from e
