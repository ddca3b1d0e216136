from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from observer_identity.schemas.verification import CamelModel


class CredentialType(str, Enum):
    observer_id = "observer_id"
    station_info = "station_info"
    custom = "custom"


class CredentialState(str, Enum):
    """Terminal outcome of scanning a credential"""

    valid = "valid"
    expired = "expired"
    tampered = "tampered"
    malformed = "malformed"


class CredentialPayload(BaseModel):
    """
    Signed QR payload. Field names and nesting are the wire contract shared
    with every scanner that already reads issued credentials.
    """

    type: str
    data: Any
    timestamp: str
    signature: str | None = None


class ObserverCredentialValidation(CamelModel):
    is_valid: bool
    observer_id: str | None = None
    name: str | None = None
    errors: list[str] = Field(default_factory=list)


class CredentialMintRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=50)
    data: Any


class CredentialMintResponse(CamelModel):
    payload: CredentialPayload
    display: str
    data_url: str
    qr_svg: str


class CredentialScanRequest(BaseModel):
    raw: str = Field(..., min_length=1, max_length=4096)


class CredentialScanResponse(CamelModel):
    state: CredentialState
    valid: bool
    payload: CredentialPayload | None = None
    display: str | None = None
    observer: ObserverCredentialValidation | None = None
