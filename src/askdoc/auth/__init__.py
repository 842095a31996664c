"""Credential acquisition for the storage and retrieval backends."""

from .credentials import ClientCredentials, CredentialManager, TokenProvider

__all__ = ["ClientCredentials", "CredentialManager", "TokenProvider"]
