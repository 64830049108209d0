"""Credential endpoints. Secrets go in encrypted and never come back out."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.trigger import CredentialCreate, CredentialResponse
from app.dependencies import get_db
from core.constants import CredentialType
from core.exceptions import ValidationError
from services.credential_service import CredentialService

router = APIRouter(tags=["credentials"])


@router.post("/", response_model=CredentialResponse, status_code=status.HTTP_201_CREATED)
async def create_credential(
    body: CredentialCreate,
    db: AsyncSession = Depends(get_db),
) -> CredentialResponse:
    try:
        credential_type = CredentialType(body.credential_type).value
    except ValueError:
        raise ValidationError(f"Unsupported credential type: {body.credential_type}")

    credential = await CredentialService(db).create_credential(
        name=body.name,
        data=body.data,
        credential_type=credential_type,
        owner_id=body.owner_id,
    )
    return CredentialResponse.model_validate(credential)


@router.get("/", response_model=List[CredentialResponse])
async def list_credentials(db: AsyncSession = Depends(get_db)) -> List[CredentialResponse]:
    items, _ = await CredentialService(db).list(limit=200)
    return [CredentialResponse.model_validate(c) for c in items]
