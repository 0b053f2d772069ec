"""Encrypted storage of source access tokens.

Tokens are Fernet-encrypted at rest and decrypted only for the duration of
one source call. The source client depends on the :class:`CredentialProvider`
protocol, so an external secret store can replace the database-backed
provider without touching the client.
"""

from typing import Callable, ContextManager, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from duedigest.logging import get_logger
from duedigest.persistence import CredentialRepository, get_session

logger = get_logger(__name__, component="credentials")


class CredentialError(Exception):
    """Raised when a credential is missing or cannot be decrypted."""

    pass


class CredentialVault:
    """Symmetric encryption for tokens using a Fernet key."""

    def __init__(self, key: str | bytes):
        if isinstance(key, str):
            key = key.encode("utf-8")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise CredentialError("Encryption key must be a 32-byte url-safe base64 Fernet key") from e

    def encrypt(self, token: str) -> str:
        return self._fernet.encrypt(token.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialError("Stored credential could not be decrypted with the current key") from e


class CredentialProvider(Protocol):
    """What the source client needs from a secret store."""

    def get_token(self, subject_id: str) -> str: ...

    def mark_invalid(self, subject_id: str) -> None: ...

    def is_valid(self, subject_id: str) -> bool: ...


class DatabaseCredentialProvider:
    """CredentialProvider backed by the ``subject_credentials`` table."""

    def __init__(
        self,
        vault: CredentialVault,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
    ):
        self.vault = vault
        self._session_factory = session_factory

    def store(self, subject_id: str, token: str) -> None:
        with self._session_factory() as session:
            CredentialRepository(session).store(subject_id, self.vault.encrypt(token))
        logger.info(
            "Credential stored",
            extra={"event": "credential.stored", "subject_id": subject_id},
        )

    def get_token(self, subject_id: str) -> str:
        with self._session_factory() as session:
            ciphertext: Optional[str] = CredentialRepository(session).get_encrypted_token(subject_id)
        if ciphertext is None:
            raise CredentialError(f"No credential stored for subject {subject_id}")
        return self.vault.decrypt(ciphertext)

    def mark_invalid(self, subject_id: str) -> None:
        with self._session_factory() as session:
            CredentialRepository(session).mark_invalid(subject_id)
        logger.warning(
            "Credential marked invalid",
            extra={"event": "credential.invalidated", "subject_id": subject_id},
        )

    def is_valid(self, subject_id: str) -> bool:
        with self._session_factory() as session:
            return CredentialRepository(session).is_valid(subject_id)
