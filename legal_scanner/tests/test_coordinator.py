"""Tests for the scan coordinator using fake analyzers and fetcher."""

import asyncio
from pathlib import Path

import pytest

from legal_scanner.analyzers.base import (
    AnalyzerFailed,
    AnalyzerParseError,
    AnalyzerUnavailable,
    ControlFlagFinding,
    FileFindings,
    LicenseFinding,
)
from legal_scanner.repository.fetcher import RepositoryFetchError
from legal_scanner.repository.workspace import WorkspaceProvider
from legal_scanner.scan.coordinator import ScanCoordinator
from legal_scanner.scan.state import InvalidTransition, JobStatus, SubJob
from legal_scanner.storage.database import StorageError
from legal_scanner.tests.conftest import FakeAnalyzer, FakeFetcher

REPO = "https://example.com/org/repo.git"


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    return tmp_path / "workspaces"


def _coordinator(store, scorer, workspace_dir, primary=None, secondary=None, fetcher=None):
    primary = primary or FakeAnalyzer("fossology", [
        FileFindings("a.rs", licenses=[LicenseFinding("GPL-3.0-only", "GPL-3.0-only", 0.9)]),
    ])
    secondary = secondary or FakeAnalyzer("semgrep", [
        FileFindings("a.rs", control_flags=[ControlFlagFinding("AES", "critical", "semgrep", 4, "ecc.aes")]),
        FileFindings("b.rs", control_flags=[ControlFlagFinding("SHA1", "low", "semgrep", 9, "ecc.sha1")]),
    ])
    return ScanCoordinator(
        store=store,
        primary=primary,
        secondary=secondary,
        fetcher=fetcher or FakeFetcher(),
        workspaces=WorkspaceProvider(str(workspace_dir)),
        scorer=scorer,
    )


def test_successful_scan(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO, "token-123").id

    status = asyncio.run(coordinator.run_scan(scan_id))

    assert status == JobStatus.COMPLETED
    scan = store.get_scan(scan_id)
    assert scan.license_status == JobStatus.COMPLETED
    assert scan.export_control_status == JobStatus.COMPLETED
    assert scan.started_at is not None and scan.completed_at is not None

    findings = {record.file_path: record for record in store.get_findings(scan_id)}
    assert len(findings["a.rs"].licenses) == 1
    assert len(findings["a.rs"].control_flags) == 1
    assert findings["b.rs"].licenses == []

    assert coordinator.fetcher.calls[0][0] == REPO
    assert coordinator.fetcher.calls[0][2] == "token-123"
    assert not (workspace_dir / scan_id).exists()


def test_both_analyzers_see_same_workspace(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO).id

    asyncio.run(coordinator.run_scan(scan_id))

    assert coordinator.primary.scanned_paths == coordinator.secondary.scanned_paths
    assert coordinator.primary.scanned_paths[0] == workspace_dir / scan_id


def test_analyzers_run_concurrently(store, scorer, workspace_dir):
    started = []
    release = None

    class GatedAnalyzer(FakeAnalyzer):
        async def scan(self, path):
            started.append(self.name)
            if len(started) == 2:
                release.set()
            await asyncio.wait_for(release.wait(), timeout=5)
            return await super().scan(path)

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        coordinator = _coordinator(
            store, scorer, workspace_dir,
            primary=GatedAnalyzer("fossology"), secondary=GatedAnalyzer("semgrep"),
        )
        return await coordinator.run_scan(store.create_scan(REPO).id)

    assert asyncio.run(scenario()) == JobStatus.COMPLETED
    assert sorted(started) == ["fossology", "semgrep"]


def test_secondary_failure_keeps_primary_result(store, scorer, workspace_dir):
    secondary = FakeAnalyzer("semgrep", error=AnalyzerFailed("Semgrep timed out after 300s"))
    coordinator = _coordinator(store, scorer, workspace_dir, secondary=secondary)
    scan_id = store.create_scan(REPO).id

    status = asyncio.run(coordinator.run_scan(scan_id))

    assert status == JobStatus.FAILED
    scan = store.get_scan(scan_id)
    assert scan.license_status == JobStatus.COMPLETED
    assert scan.export_control_status == JobStatus.FAILED
    assert scan.export_control_error == "semgrep: Semgrep timed out after 300s"
    assert scan.error_message == "semgrep: Semgrep timed out after 300s"
    assert store.get_findings(scan_id) == []
    assert not (workspace_dir / scan_id).exists()


def test_primary_unavailable(store, scorer, workspace_dir):
    primary = FakeAnalyzer("fossology", error=AnalyzerUnavailable("connection refused"))
    coordinator = _coordinator(store, scorer, workspace_dir, primary=primary)
    scan_id = store.create_scan(REPO).id

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.FAILED
    scan = store.get_scan(scan_id)
    assert scan.license_error == "fossology: connection refused"
    assert scan.export_control_status == JobStatus.COMPLETED


def test_parse_error_logged_with_payload(store, scorer, workspace_dir, caplog):
    primary = FakeAnalyzer("fossology", error=AnalyzerParseError("bad JSON", "<html>502</html>"))
    coordinator = _coordinator(store, scorer, workspace_dir, primary=primary)
    scan_id = store.create_scan(REPO).id

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.FAILED
    assert "<html>502</html>" in caplog.text


def test_unexpected_analyzer_crash_is_contained(store, scorer, workspace_dir):
    primary = FakeAnalyzer("fossology", error=RuntimeError("bug"))
    coordinator = _coordinator(store, scorer, workspace_dir, primary=primary)
    scan_id = store.create_scan(REPO).id

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.FAILED
    scan = store.get_scan(scan_id)
    assert scan.license_status == JobStatus.FAILED
    assert scan.export_control_status == JobStatus.COMPLETED


def test_clone_failure_forces_failed(store, scorer, workspace_dir, failing_fetcher):
    coordinator = _coordinator(store, scorer, workspace_dir, fetcher=failing_fetcher)
    scan_id = store.create_scan(REPO).id

    status = asyncio.run(coordinator.run_scan(scan_id))

    assert status == JobStatus.FAILED
    scan = store.get_scan(scan_id)
    assert "repository not found" in scan.error_message
    assert scan.license_status == JobStatus.PENDING
    assert coordinator.primary.scanned_paths == []
    assert not (workspace_dir / scan_id).exists()


def test_persistence_failure_forces_failed(store, scorer, workspace_dir, monkeypatch):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO).id

    def broken_append(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(store, "append_findings", broken_append)

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.FAILED
    scan = store.get_scan(scan_id)
    assert scan.status == JobStatus.FAILED
    assert scan.error_message == "disk full"


def test_submit_and_compute_risk(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)

    async def scenario():
        scan_id = await coordinator.submit_scan(REPO)
        assert store.get_scan(scan_id).status in (JobStatus.PENDING, JobStatus.IN_PROGRESS)
        await coordinator.wait_all()
        return scan_id, await coordinator.compute_risk(scan_id)

    scan_id, assessment = asyncio.run(scenario())

    # copyleft 10 + critical 20 + low 2
    assert assessment.score == 32
    assert assessment.level.value == "medium"
    assert store.get_scan(scan_id).risk_score == 32


def test_submit_rejects_bad_url(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)

    with pytest.raises(RepositoryFetchError):
        asyncio.run(coordinator.submit_scan("ftp://example.com/repo"))
    assert store.list_scans() == []


def test_start_scan_does_not_duplicate_running_task(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO).id

    async def scenario():
        first = coordinator.start_scan(scan_id)
        second = coordinator.start_scan(scan_id)
        assert first is second
        return await first

    assert asyncio.run(scenario()) == JobStatus.COMPLETED


def test_health_check_reports_per_analyzer(store, scorer, workspace_dir):
    primary = FakeAnalyzer("fossology", error=AnalyzerUnavailable("down"))
    coordinator = _coordinator(store, scorer, workspace_dir, primary=primary)

    health = asyncio.run(coordinator.health_check())

    assert health == {"fossology": "down", "semgrep": None}


def test_finished_scan_is_not_run_again(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO).id
    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.COMPLETED

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.COMPLETED

    assert len(coordinator.fetcher.calls) == 1
    scan = store.get_scan(scan_id)
    assert scan.status == JobStatus.COMPLETED
    assert scan.error_message is None
    assert len(store.get_findings(scan_id)) == 2


def test_failed_scan_is_not_run_again(store, scorer, workspace_dir):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO).id
    store.mark_scan_failed(scan_id, "Git clone failed")

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.FAILED

    assert coordinator.fetcher.calls == []
    assert store.get_scan(scan_id).error_message == "Git clone failed"


def test_concurrent_transition_does_not_force_failure(store, scorer, workspace_dir, monkeypatch):
    coordinator = _coordinator(store, scorer, workspace_dir)
    scan_id = store.create_scan(REPO).id

    def moved_elsewhere(*_args, **_kwargs):
        raise InvalidTransition("Cannot move from completed to in_progress")

    monkeypatch.setattr(store, "update_sub_status", moved_elsewhere)

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.PENDING
    scan = store.get_scan(scan_id)
    assert scan.status == JobStatus.PENDING
    assert scan.error_message is None
    assert not (workspace_dir / scan_id).exists()


def test_status_write_failure_waits_for_other_analyzer(store, scorer, workspace_dir, monkeypatch):
    workspace_seen = []

    class SlowAnalyzer(FakeAnalyzer):
        async def scan(self, path):
            await asyncio.sleep(0.05)
            workspace_seen.append(path.exists())
            return await super().scan(path)

    coordinator = _coordinator(store, scorer, workspace_dir, secondary=SlowAnalyzer("semgrep"))
    scan_id = store.create_scan(REPO).id
    update_sub_status = store.update_sub_status

    def flaky_update(scan_id, sub_job, status, error=None):
        if sub_job == SubJob.LICENSE and status == JobStatus.COMPLETED:
            raise StorageError("database is locked")
        return update_sub_status(scan_id, sub_job, status, error)

    monkeypatch.setattr(store, "update_sub_status", flaky_update)

    assert asyncio.run(coordinator.run_scan(scan_id)) == JobStatus.FAILED

    assert workspace_seen == [True]
    scan = store.get_scan(scan_id)
    assert scan.status == JobStatus.FAILED
    assert scan.error_message == "database is locked"
    assert scan.export_control_status == JobStatus.COMPLETED
    assert not (workspace_dir / scan_id).exists()
