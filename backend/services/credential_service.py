"""Credential service: encrypted secret storage with just-in-time decryption."""

from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import CredentialType
from core.exceptions import NotFoundError
from core.security import CredentialVault, get_credential_vault
from db.base import utcnow
from db.models.credential import Credential
from services.base import BaseService

logger = structlog.get_logger(__name__)


class CredentialService(BaseService[Credential]):
    """Stores secret maps as Fernet tokens; values never leave decrypted except per call."""

    def __init__(self, db: AsyncSession, vault: Optional[CredentialVault] = None):
        super().__init__(Credential, db)
        self.vault = vault or get_credential_vault()

    async def create_credential(
        self,
        name: str,
        data: dict[str, Any],
        credential_type: str = CredentialType.API_KEY.value,
        owner_id: Optional[str] = None,
    ) -> Credential:
        credential = await self.create({
            "name": name,
            "credential_type": CredentialType(credential_type).value,
            "encrypted_value": self.vault.encrypt_json(data),
            "owner_id": owner_id,
        })
        logger.info("Credential created", credential_id=credential.id, credential_type=credential.credential_type)
        return credential

    async def get_decrypted_data(self, credential_id: str, caller_id: Optional[str]) -> dict[str, Any]:
        """Decrypt a credential for one step invocation.

        A credential with an owner is only visible to that owner; any
        other caller gets the same error as for a missing credential.

        Raises:
            NotFoundError: "Credential not found"
        """
        credential = await self.get_by_id(credential_id)
        if not credential or (credential.owner_id and credential.owner_id != caller_id):
            raise NotFoundError("Credential not found")

        data = self.vault.decrypt_json(credential.encrypted_value)
        credential.last_accessed_at = utcnow()
        credential.access_count = (credential.access_count or 0) + 1
        await self.db.flush()
        return data


class DatabaseCredentialStore:
    """Credential store used by runners and connectors inside a worker.

    Each lookup uses its own short session so secret access is recorded
    even when the surrounding step later fails.
    """

    def __init__(self, session_factory: async_sessionmaker, vault: Optional[CredentialVault] = None):
        self._session_factory = session_factory
        self._vault = vault

    async def get_decrypted_data(self, credential_id: str, caller_id: Optional[str]) -> dict[str, Any]:
        async with self._session_factory() as session:
            service = CredentialService(session, self._vault)
            data = await service.get_decrypted_data(credential_id, caller_id)
            await session.commit()
            return data
