"""Signing credential hashing and re-authentication.

An electronic signature requires the signer to re-enter a signing
credential at signing time. Credentials are never stored in plaintext:
StudyMember rows hold a PBKDF2-SHA256 hash with a per-member salt, and the
application secret key is mixed in as a pepper.
"""

import hashlib
import hmac
import secrets
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from edc_engine.config import get_settings
from edc_engine.models.membership import StudyMember
from edc_engine.services.permissions import get_member
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)


class CredentialHasher:
    """One-way hashing of signing credentials.

    Usage example:
        digest, salt = CredentialHasher.hash_credential("correct horse")
        member.credential_hash, member.credential_salt = digest, salt
    """

    @staticmethod
    def hash_credential(credential: str, salt: Optional[str] = None) -> tuple[str, str]:
        """Hash a credential with PBKDF2-SHA256.

        Args:
            credential: Plaintext signing credential
            salt: Hex salt; a new random salt is generated when omitted

        Returns:
            Tuple of (hex digest, hex salt)

        Example:
            >>> digest, salt = CredentialHasher.hash_credential("secret")
            >>> CredentialHasher.hash_credential("secret", salt)[0] == digest
            True
        """
        settings = get_settings()
        if salt is None:
            salt = secrets.token_hex(16)

        peppered = f"{credential}:{settings.secret_key}"
        digest = hashlib.pbkdf2_hmac(
            "sha256",
            peppered.encode("utf-8"),
            bytes.fromhex(salt),
            settings.signing_hash_iterations,
        )
        return digest.hex(), salt

    @staticmethod
    def set_credential(member: StudyMember, credential: str) -> None:
        """Store a new signing credential on a membership (caller commits)."""
        member.credential_hash, member.credential_salt = CredentialHasher.hash_credential(credential)


class ReauthenticationVerifier(Protocol):
    """Collaborator that confirms a signer's identity at signing time."""

    def verify(self, study_id: str, user_id: str, credential: Optional[str]) -> bool:
        ...


class CredentialVerifier:
    """Verify signing credentials against StudyMember hashes."""

    def __init__(self, db: Session):
        self.db = db

    def verify(self, study_id: str, user_id: str, credential: Optional[str]) -> bool:
        """Check a signer's credential.

        Args:
            study_id: Study the signature is applied in
            user_id: Signer
            credential: Plaintext credential entered at signing time

        Returns:
            True only if the member exists, has a credential set, and the
            credential matches
        """
        if not credential:
            return False

        member = get_member(self.db, study_id, user_id)
        if member is None or not member.credential_hash or not member.credential_salt:
            logger.warning(
                f"No signing credential on file for user {user_id}",
                extra={"study_id": study_id, "actor_id": user_id},
            )
            return False

        digest, _ = CredentialHasher.hash_credential(credential, member.credential_salt)
        matches = hmac.compare_digest(digest, member.credential_hash)
        if not matches:
            logger.warning(
                f"Signing credential mismatch for user {user_id}",
                extra={"study_id": study_id, "actor_id": user_id},
            )
        return matches
