"""
Security Module
===============
Encryption of repository credentials at rest.
"""

from .credentials import CredentialCipher, CredentialError

__all__ = ['CredentialCipher', 'CredentialError']
