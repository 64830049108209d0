"""Credential model for encrypted connector secrets."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import CredentialType
from db.base import BaseModel, SoftDeleteMixin


class Credential(SoftDeleteMixin, BaseModel):
    """Credential model for managing encrypted credentials.

    Attributes:
        name: Credential name
        credential_type: api_key, bearer, basic, oauth2, smtp or custom
        encrypted_value: Fernet token of the JSON secret map
        owner_id: Caller allowed to decrypt the secret (None: any caller)
        last_accessed_at: Last just-in-time decryption
        access_count: Number of decryptions
    """

    __tablename__ = "credentials"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    credential_type: Mapped[str] = mapped_column(
        default=CredentialType.API_KEY.value, index=True
    )
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    access_count: Mapped[int] = mapped_column(default=0)
