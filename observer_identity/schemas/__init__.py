from observer_identity.schemas.auth import Token, TokenPayload
from observer_identity.schemas.credential import (
    CredentialMintRequest,
    CredentialMintResponse,
    CredentialPayload,
    CredentialScanRequest,
    CredentialScanResponse,
    CredentialState,
    CredentialType,
    ObserverCredentialValidation,
)
from observer_identity.schemas.verification import (
    AgeEstimation,
    AmlSensitivity,
    AmlStatus,
    IdentityClaim,
    ManualVerificationRequest,
    ProofOfAddressStatus,
    VerificationConfig,
    VerificationDetails,
    VerificationMedia,
    VerificationRequest,
    VerificationResponse,
    VerificationResult,
    VerificationStatus,
    WebhookAcknowledgement,
)

__all__ = [
    "Token",
    "TokenPayload",
    "CredentialType",
    "CredentialState",
    "CredentialPayload",
    "CredentialMintRequest",
    "CredentialMintResponse",
    "CredentialScanRequest",
    "CredentialScanResponse",
    "ObserverCredentialValidation",
    "VerificationStatus",
    "AmlSensitivity",
    "AmlStatus",
    "ProofOfAddressStatus",
    "IdentityClaim",
    "VerificationMedia",
    "VerificationConfig",
    "AgeEstimation",
    "VerificationDetails",
    "VerificationResult",
    "VerificationRequest",
    "VerificationResponse",
    "ManualVerificationRequest",
    "WebhookAcknowledgement",
]
