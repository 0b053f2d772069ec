"""Credential vault and providers for source access tokens."""

from .vault import CredentialError, CredentialProvider, CredentialVault, DatabaseCredentialProvider

__all__ = ["CredentialError", "CredentialProvider", "CredentialVault", "DatabaseCredentialProvider"]
