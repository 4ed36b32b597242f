#!/usr/bin/env python3
"""
Legal Scanner - Command Line Entry Point
========================================
Runs license, copyright and export-control scans of git repositories and
computes their compliance risk.

Actions:
- init-db:  create the database schema
- scan:     clone and scan a repository, then score it
- status:   show a scan with its summary
- list:     list recent scans
- risk:     (re)compute the risk assessment of a scan
- backfill: score completed scans that have no risk score
- health:   check that both analyzers are reachable

Author: Legal Scanner Team
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from legal_scanner.analyzers.fossology import FossologyAnalyzer
from legal_scanner.analyzers.semgrep import SemgrepAnalyzer
from legal_scanner.config import ConfigurationError, ScannerConfig
from legal_scanner.repository.fetcher import RepositoryFetcher, RepositoryFetchError
from legal_scanner.repository.workspace import WorkspaceProvider
from legal_scanner.scan.coordinator import ScanCoordinator
from legal_scanner.scan.state import JobStatus
from legal_scanner.scoring.backfill import backfill_risk_scores
from legal_scanner.scoring.risk_scorer import RiskScorer
from legal_scanner.security.credentials import CredentialCipher
from legal_scanner.storage.database import ScanNotFound, ScanStore, StorageError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_config(config_path: str = None) -> ScannerConfig:
    config = ScannerConfig.from_file(config_path) if config_path else ScannerConfig.from_environment()
    config.validate()
    logging.getLogger().setLevel(config.log_level)
    return config


def build_coordinator(config: ScannerConfig) -> ScanCoordinator:
    """Wire the store, analyzers, fetcher and scorer from configuration."""
    store = ScanStore(
        config.database_url,
        cipher=CredentialCipher(config.credential_secret, config.credential_salt),
    )
    store.init_schema()

    fossology = FossologyAnalyzer(
        config.fossology_url,
        token=config.fossology_token,
        username=config.fossology_username,
        password=config.fossology_password,
        folder_id=config.fossology_folder_id,
    )
    semgrep = SemgrepAnalyzer(
        config.semgrep_rules,
        binary=config.semgrep_binary,
        timeout=config.semgrep_timeout_seconds,
        container=config.semgrep_container,
        container_root=config.semgrep_container_root,
        host_root=config.workspace_dir,
    )
    fetcher = RepositoryFetcher(
        default_token=config.git_token,
        depth=config.clone_depth,
        timeout=config.clone_timeout_seconds,
    )

    return ScanCoordinator(
        store=store,
        primary=fossology,
        secondary=semgrep,
        fetcher=fetcher,
        workspaces=WorkspaceProvider(config.workspace_dir),
        scorer=RiskScorer(config.risk_rules),
    )


def emit(result: Any, output: str = None) -> None:
    if output:
        with open(output, 'w') as f:
            json.dump(result, f, indent=2)
    else:
        print(json.dumps(result, indent=2))


def scan_report(coordinator: ScanCoordinator, scan_id: str) -> dict:
    report = coordinator.store.get_scan(scan_id).to_dict()
    report['summary'] = coordinator.store.get_summary(scan_id)
    return report


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Legal Scanner - license, copyright and export-control compliance'
    )
    parser.add_argument(
        'action',
        choices=['init-db', 'scan', 'status', 'list', 'risk', 'backfill', 'health'],
        help='Action to perform'
    )
    parser.add_argument(
        '--repo',
        help='Repository URL to scan'
    )
    parser.add_argument(
        '--token',
        help='Access token for private repositories'
    )
    parser.add_argument(
        '--scan-id',
        help='Scan identifier'
    )
    parser.add_argument(
        '--limit',
        type=int,
        default=20,
        help='Number of scans to list'
    )
    parser.add_argument(
        '--config',
        help='Configuration file path (YAML)'
    )
    parser.add_argument(
        '--output',
        help='Output file for results'
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    coordinator = build_coordinator(config)

    try:
        if args.action == 'init-db':
            emit({'database': config.to_dict()['database_url'], 'status': 'ready'}, args.output)

        elif args.action == 'scan':
            if not args.repo:
                print("Error: --repo required for scan action")
                sys.exit(1)

            scan_id = await coordinator.submit_scan(args.repo, args.token)
            logger.info(f"Scan {scan_id} submitted")
            await coordinator.wait_all()

            if coordinator.store.get_scan(scan_id).status == JobStatus.COMPLETED:
                await coordinator.compute_risk(scan_id)
            emit(scan_report(coordinator, scan_id), args.output)

        elif args.action == 'status':
            if not args.scan_id:
                print("Error: --scan-id required for status action")
                sys.exit(1)
            emit(scan_report(coordinator, args.scan_id), args.output)

        elif args.action == 'list':
            scans = coordinator.store.list_scans(limit=args.limit)
            emit([scan.to_dict() for scan in scans], args.output)

        elif args.action == 'risk':
            if not args.scan_id:
                print("Error: --scan-id required for risk action")
                sys.exit(1)
            assessment = await coordinator.compute_risk(args.scan_id)
            emit(assessment.to_dict(), args.output)

        elif args.action == 'backfill':
            report = backfill_risk_scores(coordinator.store, coordinator.scorer)
            emit(report.to_dict(), args.output)

        elif args.action == 'health':
            health = await coordinator.health_check()
            emit({name: error or 'ok' for name, error in health.items()}, args.output)
            if any(health.values()):
                sys.exit(1)

    except (ScanNotFound, RepositoryFetchError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    except StorageError as e:
        logger.error(f"Storage failure: {e}")
        sys.exit(1)
    finally:
        coordinator.store.close()


def cli():
    asyncio.run(main())


if __name__ == '__main__':
    cli()
