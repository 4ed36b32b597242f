"""
Repository Fetcher
==================
Clones a repository into a scan workspace with git.

Provides:
- URL scheme validation
- Shallow cloning
- Token injection for HTTPS remotes, redacted from every error message

Author: Legal Scanner Team
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ALLOWED_URL_PREFIXES = ('http://', 'https://', 'git://', 'ssh://', 'git@')


class RepositoryFetchError(Exception):
    """Repository clone exception."""
    pass


def validate_git_url(url: str) -> str:
    """
    Check that a repository URL uses a supported scheme.

    Returns:
        The stripped URL

    Raises:
        RepositoryFetchError: If the URL is empty or unsupported
    """
    url = (url or "").strip()
    if not url:
        raise RepositoryFetchError("Repository URL cannot be empty")
    if not url.startswith(ALLOWED_URL_PREFIXES):
        raise RepositoryFetchError(
            f"Unsupported repository URL: {url} (expected one of {', '.join(ALLOWED_URL_PREFIXES)})"
        )
    return url


class RepositoryFetcher:
    """Shallow git clone into a destination directory."""

    def __init__(self, default_token: Optional[str] = None, depth: int = 1,
                 timeout: int = 300, git_binary: str = "git"):
        """
        Initialize fetcher.

        Args:
            default_token: Token used when a scan carries no credential
            depth: Clone depth
            timeout: Clone timeout in seconds
            git_binary: git executable
        """
        self.default_token = default_token
        self.depth = depth
        self.timeout = timeout
        self.git_binary = git_binary

    @staticmethod
    def _authenticated_url(url: str, token: Optional[str]) -> str:
        if token and url.startswith('https://') and '@' not in url.split('/')[2]:
            return url.replace('https://', f'https://{token}@', 1)
        return url

    async def clone(self, url: str, destination: Path, credential: Optional[str] = None) -> None:
        """
        Clone a repository.

        Args:
            url: Repository URL
            destination: Empty target directory
            credential: Optional access token

        Raises:
            RepositoryFetchError: On invalid URL, git failure or timeout
        """
        url = validate_git_url(url)
        token = credential or self.default_token

        cmd = [self.git_binary, 'clone', '--depth', str(self.depth), '--quiet',
               self._authenticated_url(url, token), str(destination)]

        # Don't log the full command (contains token)
        logger.info(f"Cloning {url} into {destination}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, 'GIT_TERMINAL_PROMPT': '0'},
            )
        except FileNotFoundError as e:
            raise RepositoryFetchError(f"git executable not found: {self.git_binary}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RepositoryFetchError(f"Repository clone timed out after {self.timeout}s")

        if process.returncode != 0:
            error_msg = stderr.decode(errors='replace').strip()
            if token:
                error_msg = error_msg.replace(token, '***')
            raise RepositoryFetchError(f"Git clone failed: {error_msg}")

        logger.debug(f"Clone of {url} finished")
