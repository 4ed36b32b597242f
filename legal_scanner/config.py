"""
Scanner Configuration Module
============================
Centralized configuration for analyzer endpoints, storage, workspaces,
credential encryption and risk weight rules.

Settings come from environment variables (optionally loaded from a .env
file by the entry point) or from a YAML file.

Author: Legal Scanner Team
"""

import os
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .scoring.risk_scorer import RiskWeightRule

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Invalid or unreadable configuration."""
    pass


# Seeded license weights, highest first. First matching pattern wins.
DEFAULT_RISK_RULES: List[RiskWeightRule] = [
    RiskWeightRule('%Proprietary%', 15, 'unknown', 'Proprietary license terms'),
    RiskWeightRule('%Commercial%', 15, 'unknown', 'Commercial license terms'),
    RiskWeightRule('AGPL%', 12, 'copyleft', 'Network copyleft'),
    RiskWeightRule('GPL-3.0%', 10, 'copyleft', 'Strong copyleft'),
    RiskWeightRule('GPL-2.0%', 10, 'copyleft', 'Strong copyleft'),
    RiskWeightRule('GPL', 10, 'copyleft', 'Strong copyleft'),
    RiskWeightRule('Sleepycat', 10, 'copyleft', 'Strong copyleft'),
    RiskWeightRule('No_license_found', 8, 'unknown', 'No license detected'),
    RiskWeightRule('Unknown%', 8, 'unknown', 'Unrecognized license'),
    RiskWeightRule('See-file', 6, 'unknown', 'License text referenced elsewhere'),
    RiskWeightRule('%possibility', 6, 'unknown', 'Possible license reference'),
    RiskWeightRule('LGPL%', 5, 'copyleft', 'Weak copyleft'),
    RiskWeightRule('MPL%', 5, 'copyleft', 'Weak copyleft'),
    RiskWeightRule('EPL%', 5, 'copyleft', 'Weak copyleft'),
    RiskWeightRule('CDDL%', 5, 'copyleft', 'Weak copyleft'),
    RiskWeightRule('CPL%', 5, 'copyleft', 'Weak copyleft'),
    RiskWeightRule('CC-BY%', 1, 'attribution', 'Attribution required'),
] + [
    RiskWeightRule(pattern, 0, 'permissive', 'Permissive license')
    for pattern in (
        'MIT', 'Apache-2.0', 'Apache', 'BSD%', 'ISC', '0BSD', 'CC0%', 'Unlicense',
        'WTFPL', 'Zlib', 'Curl', 'Libpng', 'Python%', 'AFL%', 'BlueOak%', 'Boost%',
        'PostgreSQL',
    )
]


def load_risk_rules(path: str) -> List[RiskWeightRule]:
    """
    Load weight rules from YAML.

    Expected shape::

        rules:
          - pattern: "GPL%"
            weight: 10
            category: copyleft

    Rules are sorted by weight, highest first, to keep first-match-wins
    deterministic regardless of file order.
    """
    rules_path = Path(path)
    if not rules_path.exists():
        raise ConfigurationError(f"Risk weights file not found: {rules_path}")

    with open(rules_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    entries = data.get('rules') if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ConfigurationError(f"Risk weights file has no rule list: {rules_path}")

    return parse_risk_rules(entries)


def parse_risk_rules(entries: List[Any]) -> List[RiskWeightRule]:
    """Build weight rules from decoded entries, highest weight first."""
    rules = []
    for entry in entries:
        try:
            rules.append(RiskWeightRule(
                pattern=str(entry['pattern']),
                weight=int(entry['weight']),
                category=entry.get('category'),
                description=entry.get('description'),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid risk rule {entry!r}: {e}") from e

    return sorted(rules, key=lambda rule: rule.weight, reverse=True)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class ScannerConfig:
    """
    Scanner configuration container.

    Holds every setting the coordinator, adapters and storage need, with
    defaults suitable for a local docker-compose deployment.
    """

    # Storage
    database_url: str = "sqlite:///./data/legalscanner.db"

    # FOSSology (license/copyright analyzer)
    fossology_url: str = "http://localhost:8081"
    fossology_token: Optional[str] = None
    fossology_username: str = "fossy"
    fossology_password: str = "fossy"
    fossology_folder_id: int = 1

    # Semgrep (export-control analyzer)
    semgrep_binary: str = "semgrep"
    semgrep_rules: str = "/semgrep-rules/ecc-crypto-detection.yaml"
    semgrep_container: Optional[str] = None
    semgrep_container_root: str = "/scans"
    semgrep_timeout_seconds: int = 300

    # Workspaces and cloning
    workspace_dir: str = "/tmp/legalscanner"
    git_token: Optional[str] = None
    clone_depth: int = 1
    clone_timeout_seconds: int = 300

    # Credential encryption
    credential_secret: Optional[str] = None
    credential_salt: str = "legal-scanner-credentials"

    # Risk scoring
    risk_rules: List[RiskWeightRule] = field(default_factory=lambda: list(DEFAULT_RISK_RULES))

    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> 'ScannerConfig':
        """
        Load configuration from environment variables.

        Returns:
            ScannerConfig instance with environment-based settings
        """
        config = cls()

        config.database_url = os.getenv('DATABASE_URL', config.database_url)

        config.fossology_url = os.getenv('FOSSOLOGY_URL', config.fossology_url)
        config.fossology_token = os.getenv('FOSSOLOGY_API_TOKEN') or None
        config.fossology_username = os.getenv('FOSSOLOGY_USERNAME', config.fossology_username)
        config.fossology_password = os.getenv('FOSSOLOGY_PASSWORD', config.fossology_password)
        config.fossology_folder_id = _env_int('FOSSOLOGY_FOLDER_ID', config.fossology_folder_id)

        config.semgrep_binary = os.getenv('SEMGREP_BINARY', config.semgrep_binary)
        config.semgrep_rules = os.getenv('SEMGREP_RULES', config.semgrep_rules)
        config.semgrep_container = os.getenv('SEMGREP_CONTAINER') or None
        config.semgrep_container_root = os.getenv('SEMGREP_CONTAINER_ROOT', config.semgrep_container_root)
        config.semgrep_timeout_seconds = _env_int('SEMGREP_TIMEOUT', config.semgrep_timeout_seconds)

        config.workspace_dir = os.getenv('TEMP_WORKSPACE_DIR', config.workspace_dir)
        config.git_token = os.getenv('GIT_TOKEN') or None
        config.clone_depth = _env_int('CLONE_DEPTH', config.clone_depth)
        config.clone_timeout_seconds = _env_int('CLONE_TIMEOUT', config.clone_timeout_seconds)

        config.credential_secret = os.getenv('CREDENTIAL_SECRET') or None
        config.credential_salt = os.getenv('CREDENTIAL_SALT', config.credential_salt)

        rules_file = os.getenv('RISK_WEIGHTS_FILE')
        if rules_file:
            config.risk_rules = load_risk_rules(rules_file)

        config.log_level = os.getenv('LOG_LEVEL', config.log_level).upper()

        return config

    @classmethod
    def from_file(cls, config_path: str) -> 'ScannerConfig':
        """
        Load configuration from a YAML file.

        Keys match the field names. `risk_rules_file` may point at a
        separate rule file; an inline `risk_rules` list is also accepted.

        Args:
            config_path: Path to configuration file

        Returns:
            ScannerConfig instance
        """
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        stat = path.stat()
        if stat.st_mode & 0o004:
            logger.warning(f"Configuration file is world-readable: {path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {path}")

        rules_file = data.pop('risk_rules_file', None)
        inline_rules = data.pop('risk_rules', None)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        config = cls(**data)
        if rules_file:
            config.risk_rules = load_risk_rules(str(path.parent / rules_file))
        elif inline_rules is not None:
            if not isinstance(inline_rules, list):
                raise ConfigurationError("risk_rules must be a list")
            config.risk_rules = parse_risk_rules(inline_rules)
        return config

    def validate(self) -> bool:
        """
        Validate configuration settings.

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not self.database_url:
            raise ConfigurationError("database_url must be set")
        if not self.fossology_url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"fossology_url must be an http(s) URL: {self.fossology_url}")
        if self.fossology_folder_id < 1:
            raise ConfigurationError("fossology_folder_id must be positive")
        if self.semgrep_timeout_seconds <= 0 or self.clone_timeout_seconds <= 0:
            raise ConfigurationError("Timeouts must be positive")
        if self.clone_depth < 1:
            raise ConfigurationError("clone_depth must be at least 1")
        if not self.workspace_dir:
            raise ConfigurationError("workspace_dir must be set")
        for rule in self.risk_rules:
            if rule.weight < 0:
                raise ConfigurationError(f"Risk rule {rule.pattern} has negative weight")

        if not self.credential_secret:
            logger.warning("No credential secret configured - stored credentials will not survive restarts")

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration with secrets masked."""
        return {
            'database_url': self.database_url,
            'fossology_url': self.fossology_url,
            'fossology_token': '***' if self.fossology_token else None,
            'fossology_folder_id': self.fossology_folder_id,
            'semgrep_binary': self.semgrep_binary,
            'semgrep_rules': self.semgrep_rules,
            'semgrep_container': self.semgrep_container,
            'semgrep_timeout_seconds': self.semgrep_timeout_seconds,
            'workspace_dir': self.workspace_dir,
            'git_token': '***' if self.git_token else None,
            'clone_depth': self.clone_depth,
            'credential_secret': '***' if self.credential_secret else None,
            'risk_rules': len(self.risk_rules),
            'log_level': self.log_level,
        }
