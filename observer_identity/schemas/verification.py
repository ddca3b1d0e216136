from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerificationStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class AmlSensitivity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class AmlStatus(str, Enum):
    clear = "clear"
    pending = "pending"
    hit = "hit"


class ProofOfAddressStatus(str, Enum):
    verified = "verified"
    pending = "pending"
    rejected = "rejected"


class IdentityClaim(CamelModel):
    """Identity fields asserted by the observer, unverified until checked"""

    first_name: str
    last_name: str
    date_of_birth: str
    national_id: str
    document_type: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class VerificationMedia(CamelModel):
    """Base64 images passed through untouched to the provider"""

    document_image: str
    selfie_image: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class VerificationConfig(BaseModel):
    """Provider settings resolved for a single call"""

    api_endpoint: str
    client_id: str | None = None
    client_secret: str | None = None
    api_key: str | None = None
    liveness_mode: str = "console_default"
    liveness_level: str | None = "standard"
    aml_check_enabled: bool = False
    aml_sensitivity: AmlSensitivity = AmlSensitivity.medium
    age_estimation_enabled: bool = False
    proof_of_address_enabled: bool = False
    webhook_url: str

    model_config = ConfigDict(frozen=True)


class AgeEstimation(CamelModel):
    age: float
    confidence: float


class VerificationDetails(CamelModel):
    document_verified: bool = False
    face_match: bool = False
    liveness_check: bool = False
    document_type: str = "unknown"
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    aml_status: AmlStatus | None = None
    aml_details: Any | None = None
    age_estimation: AgeEstimation | None = None
    proof_of_address_status: ProofOfAddressStatus | None = None


class VerificationResult(CamelModel):
    """Provider-independent verification outcome"""

    verification_id: str
    status: VerificationStatus = VerificationStatus.pending
    confidence: float = Field(default=0, ge=0, le=100)
    match_score: float = Field(default=0, ge=0, le=100)
    details: VerificationDetails = Field(default_factory=VerificationDetails)


# API request/response schemas


class VerificationRequest(CamelModel):
    """Claim and media submitted together, as the observer app sends them"""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: str = Field(..., max_length=20)
    national_id: str = Field(..., min_length=1, max_length=50)
    document_type: str = Field(..., min_length=1, max_length=50)
    document_image: str = Field(..., min_length=1)
    selfie_image: str = Field(..., min_length=1)

    def to_claim(self) -> IdentityClaim:
        return IdentityClaim(
            first_name=self.first_name,
            last_name=self.last_name,
            date_of_birth=self.date_of_birth,
            national_id=self.national_id,
            document_type=self.document_type,
        )

    def to_media(self) -> VerificationMedia:
        return VerificationMedia(
            document_image=self.document_image,
            selfie_image=self.selfie_image,
        )


class VerificationResponse(CamelModel):
    result: VerificationResult
    claim_consistent: bool


class ManualVerificationRequest(CamelModel):
    """Operator decision that bypasses the provider"""

    subject_id: str = Field(..., min_length=1, max_length=100)
    approved: bool
    notes: str = Field(default="", max_length=2000)


class WebhookAcknowledgement(CamelModel):
    received: bool = True
    verification_id: str | None = None
    reference_id: str
    kyc_status: VerificationStatus
