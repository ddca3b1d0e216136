import logging
from typing import Annotated, Any, AsyncGenerator

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from observer_identity.api.v1.endpoints.auth import get_current_operator
from observer_identity.config import settings
from observer_identity.core.security import CryptoPrimitives, get_crypto
from observer_identity.database import get_db
from observer_identity.schemas.verification import (
    ManualVerificationRequest,
    VerificationRequest,
    VerificationResponse,
    VerificationResult,
    WebhookAcknowledgement,
)
from observer_identity.services import kyc_service
from observer_identity.services.settings_service import DatabaseSettingsStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["kyc"])


async def get_settings_store(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DatabaseSettingsStore:
    return DatabaseSettingsStore(db)


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        yield client


@router.post("/verify", response_model=VerificationResponse)
async def submit_verification(
    request: VerificationRequest,
    store: Annotated[DatabaseSettingsStore, Depends(get_settings_store)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> VerificationResponse:
    """
    Verify an observer's identity with Didit.

    The provider result is returned as-is; `claimConsistent` reports whether
    the names read off the document match the claimed names.
    """
    claim = request.to_claim()
    result = await kyc_service.verify_identity(client, store, claim, request.to_media())
    consistent = kyc_service.validate_extracted_data(claim, result.details.extracted_data)

    return VerificationResponse(result=result, claim_consistent=consistent)


@router.get("/status/{verification_id}", response_model=VerificationResult)
async def get_verification_status(
    verification_id: str,
    store: Annotated[DatabaseSettingsStore, Depends(get_settings_store)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> VerificationResult:
    """Poll Didit for the current state of a submitted verification."""
    return await kyc_service.check_verification_status(client, store, verification_id)


@router.post("/manual", response_model=VerificationResult)
async def manual_override(
    request: ManualVerificationRequest,
    operator: Annotated[str, Depends(get_current_operator)],
    crypto: Annotated[CryptoPrimitives, Depends(get_crypto)],
) -> VerificationResult:
    """Record an operator's approve/reject decision without calling Didit."""
    return kyc_service.manual_verification(
        crypto,
        subject_id=request.subject_id,
        approver_id=operator,
        approved=request.approved,
        notes=request.notes,
    )


@router.post("/webhook", response_model=WebhookAcknowledgement)
async def receive_webhook(
    payload: Annotated[dict[str, Any], Body()],
) -> WebhookAcknowledgement:
    """Asynchronous status update delivered by Didit."""
    reference_id = payload.get("reference_id")
    if not reference_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing reference_id",
        )

    kyc_status = kyc_service.resolve_webhook_status(payload)
    verification_id = payload.get("id")

    logger.info(f"Didit webhook for reference {reference_id} (verification {verification_id}): {kyc_status.value}")

    return WebhookAcknowledgement(
        verification_id=str(verification_id) if verification_id is not None else None,
        reference_id=str(reference_id),
        kyc_status=kyc_status,
    )
