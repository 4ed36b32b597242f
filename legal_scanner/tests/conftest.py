"""Shared test fixtures."""

from pathlib import Path
from typing import List, Optional

import pytest

from legal_scanner.analyzers.base import Analyzer, AnalyzerError, FileFindings
from legal_scanner.config import DEFAULT_RISK_RULES
from legal_scanner.repository.fetcher import RepositoryFetchError
from legal_scanner.scoring.risk_scorer import RiskScorer
from legal_scanner.security.credentials import CredentialCipher
from legal_scanner.storage.database import ScanStore


class FakeAnalyzer(Analyzer):
    """Analyzer returning canned findings or raising a canned error."""

    def __init__(self, name: str, findings: Optional[List[FileFindings]] = None,
                 error: Optional[Exception] = None):
        self._name = name
        self.findings = findings or []
        self.error = error
        self.scanned_paths: List[Path] = []

    @property
    def name(self) -> str:
        return self._name

    async def scan(self, path: Path) -> List[FileFindings]:
        self.scanned_paths.append(path)
        assert path.exists()
        if self.error is not None:
            raise self.error
        return self.findings

    async def health_check(self) -> None:
        if isinstance(self.error, AnalyzerError):
            raise self.error


class FakeFetcher:
    """Fetcher that writes a file into the destination instead of cloning."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = []

    async def clone(self, url: str, destination: Path, credential: Optional[str] = None) -> None:
        self.calls.append((url, destination, credential))
        if self.error is not None:
            raise self.error
        (destination / "README.md").write_text("hello\n")


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher("test-secret", "test-salt")


@pytest.fixture
def store(tmp_path: Path, cipher: CredentialCipher) -> ScanStore:
    scan_store = ScanStore(f"sqlite:///{tmp_path / 'scans.db'}", cipher=cipher)
    scan_store.init_schema()
    yield scan_store
    scan_store.close()


@pytest.fixture
def scorer() -> RiskScorer:
    return RiskScorer(DEFAULT_RISK_RULES)


@pytest.fixture
def failing_fetcher() -> FakeFetcher:
    return FakeFetcher(error=RepositoryFetchError("Git clone failed: repository not found"))
