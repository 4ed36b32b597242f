"""
Repository Module
=================
Cloning of scanned repositories and per-scan workspace directories.
"""

from .fetcher import RepositoryFetcher, RepositoryFetchError, validate_git_url
from .workspace import WorkspaceProvider

__all__ = ['RepositoryFetcher', 'RepositoryFetchError', 'validate_git_url', 'WorkspaceProvider']
