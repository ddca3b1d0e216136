import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from observer_identity.api.v1.endpoints.auth import get_current_operator
from observer_identity.schemas.credential import (
    CredentialMintRequest,
    CredentialMintResponse,
    CredentialScanRequest,
    CredentialScanResponse,
    CredentialState,
    CredentialType,
)
from observer_identity.services.credential_service import (
    CredentialSigner,
    format_for_display,
    get_signer,
    render_svg,
    to_data_url,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["credentials"])


@router.post("", response_model=CredentialMintResponse, status_code=status.HTTP_201_CREATED)
async def mint_credential(
    request: CredentialMintRequest,
    operator: Annotated[str, Depends(get_current_operator)],
    signer: Annotated[CredentialSigner, Depends(get_signer)],
) -> CredentialMintResponse:
    """
    Issue a signed credential valid for 24 hours.

    The response carries the payload plus ready-to-render forms of it:
    a display summary, a data URL and a QR code SVG.
    """
    payload = signer.mint(request.type, request.data)
    qr_svg = render_svg(payload)
    logger.info(f"Operator {operator} issued a {request.type} credential")

    return CredentialMintResponse(
        payload=payload,
        display=format_for_display(payload),
        data_url=to_data_url(payload),
        qr_svg=qr_svg,
    )


@router.post("/scan", response_model=CredentialScanResponse)
async def scan_credential(
    request: CredentialScanRequest,
    signer: Annotated[CredentialSigner, Depends(get_signer)],
) -> CredentialScanResponse:
    """Check scanned QR text. Invalid input is reported, never raised."""
    payload = signer.parse(request.raw)
    if payload is None:
        return CredentialScanResponse(state=CredentialState.malformed, valid=False)

    state = signer.inspect(payload)
    observer = None
    if payload.type == CredentialType.observer_id.value:
        observer = signer.validate_observer_credential(payload)

    if state is not CredentialState.valid:
        logger.info(f"Rejected {payload.type} credential scan: {state.value}")

    return CredentialScanResponse(
        state=state,
        valid=state is CredentialState.valid,
        payload=payload,
        display=format_for_display(payload),
        observer=observer,
    )
