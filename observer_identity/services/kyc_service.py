"""Identity verification against the Didit provider."""

import logging
import math
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import httpx

from observer_identity.core.clock import to_iso, utc_now
from observer_identity.core.exceptions import (
    ConfigurationMissingError,
    ProviderUnauthorizedError,
    VerificationFailedError,
)
from observer_identity.core.security import CryptoPrimitives
from observer_identity.schemas.verification import (
    AgeEstimation,
    AmlStatus,
    IdentityClaim,
    ProofOfAddressStatus,
    VerificationConfig,
    VerificationDetails,
    VerificationMedia,
    VerificationResult,
    VerificationStatus,
)
from observer_identity.services.settings_service import SettingsStore, resolve_verification_config

logger = logging.getLogger(__name__)

LIVENESS_DEFAULT_SENTINEL = "console_default"
LIVENESS_DISABLED = "none"
DOCUMENT_COUNTRY = "JM"
SUBMISSION_SOURCE = "electoral_observer_app"
API_VERSION = "2.0"
NAME_MATCH_THRESHOLD = 0.8

STATUS_MAP = {
    "completed": VerificationStatus.approved,
    "verified": VerificationStatus.approved,
    "failed": VerificationStatus.rejected,
}

UNAUTHORIZED_STATUSES = (401, 403)


# ============== Request construction ==============


def _liveness_mode_overridden(config: VerificationConfig) -> bool:
    return config.liveness_mode not in (LIVENESS_DEFAULT_SENTINEL, LIVENESS_DISABLED)


def _liveness_level_configured(config: VerificationConfig) -> bool:
    return bool(config.liveness_level)


# (field, predicate, value) appended to the biometric block
BIOMETRIC_OPTIONS: tuple[tuple[str, Callable[[VerificationConfig], bool], Callable[[VerificationConfig], Any]], ...] = (
    ("mode", _liveness_mode_overridden, lambda config: config.liveness_mode),
    ("level", _liveness_level_configured, lambda config: config.liveness_level),
)

# (block name, predicate, block) appended to the top-level payload
CHECK_BLOCKS: tuple[tuple[str, Callable[[VerificationConfig], bool], Callable[[VerificationConfig], dict]], ...] = (
    (
        "aml",
        lambda config: config.aml_check_enabled,
        lambda config: {"required": True, "sensitivity": config.aml_sensitivity.value},
    ),
    (
        "age_estimation",
        lambda config: config.age_estimation_enabled,
        lambda config: {"required": True},
    ),
    (
        "proof_of_address",
        lambda config: config.proof_of_address_enabled,
        lambda config: {"required": True},
    ),
)


def build_verification_payload(
    claim: IdentityClaim,
    media: VerificationMedia,
    config: VerificationConfig,
    submitted_at: datetime | None = None,
) -> dict[str, Any]:
    """
    Assemble the provider request.

    Starts from the fixed skeleton and appends each optional block whose
    predicate holds for the resolved config. Pure once submitted_at is fixed.
    """
    biometric: dict[str, Any] = {
        "selfie_image": media.selfie_image,
        "liveness_required": config.liveness_mode != LIVENESS_DISABLED,
    }
    for field, applies, value in BIOMETRIC_OPTIONS:
        if applies(config):
            biometric[field] = value(config)

    payload: dict[str, Any] = {
        "reference_id": claim.national_id,
        "user": {
            "first_name": claim.first_name,
            "last_name": claim.last_name,
            "date_of_birth": claim.date_of_birth,
        },
        "documents": [
            {
                "type": claim.document_type.lower(),
                "front_image": media.document_image,
                "country": DOCUMENT_COUNTRY,
            }
        ],
        "biometric": biometric,
    }

    for name, applies, block in CHECK_BLOCKS:
        if applies(config):
            payload[name] = block(config)

    payload["webhook_url"] = config.webhook_url
    payload["metadata"] = {
        "source": SUBMISSION_SOURCE,
        "timestamp": to_iso(submitted_at or utc_now()),
    }
    return payload


# ============== Provider calls ==============


def _raise_for_provider_status(response: httpx.Response) -> None:
    if response.status_code in UNAUTHORIZED_STATUSES:
        logger.error(f"Didit rejected credentials ({response.status_code}) for {response.request.url}")
        raise ProviderUnauthorizedError()
    if response.is_error:
        logger.error(f"Didit API error {response.status_code} for {response.request.url}: {response.text[:500]}")
        response.raise_for_status()


async def _fetch_access_token(client: httpx.AsyncClient, config: VerificationConfig) -> str:
    """OAuth client-credentials grant, used when no API key is configured."""
    response = await client.post(
        f"{config.api_endpoint}oauth/token",
        data={
            "grant_type": "client_credentials",
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        },
    )
    _raise_for_provider_status(response)

    token = _json_object(response).get("access_token")
    if not token:
        raise ValueError("OAuth token response did not include access_token")
    return token


async def _auth_headers(client: httpx.AsyncClient, config: VerificationConfig) -> dict[str, str]:
    headers = {"X-API-Version": API_VERSION}

    if config.api_key:
        headers["x-api-key"] = config.api_key
    elif config.client_id and config.client_secret:
        token = await _fetch_access_token(client, config)
        headers["Authorization"] = f"Bearer {token}"
    else:
        raise ConfigurationMissingError(
            "Didit API key or client credentials are not configured",
            setting="DIDIT_API_KEY",
        )
    return headers


async def _probe_provider(
    client: httpx.AsyncClient,
    config: VerificationConfig,
    headers: dict[str, str],
) -> None:
    """
    Cheap health check before the real submission.

    Only an authorization failure stops the flow; other statuses are logged
    and left for the submission to surface.
    """
    response = await client.get(f"{config.api_endpoint}status", headers=headers)

    if response.status_code in UNAUTHORIZED_STATUSES:
        logger.error(f"Didit health probe unauthorized ({response.status_code}); credentials not activated")
        raise ProviderUnauthorizedError()
    if response.is_error:
        logger.warning(f"Didit health probe returned {response.status_code}, continuing with submission")


def _json_object(response: httpx.Response) -> dict[str, Any]:
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object from Didit, got {type(data).__name__}")
    return data


async def verify_identity(
    client: httpx.AsyncClient,
    store: SettingsStore,
    claim: IdentityClaim,
    media: VerificationMedia,
    overrides: dict[str, Any] | None = None,
) -> VerificationResult:
    """
    Submit one verification to Didit and return the canonical result.

    Raises:
        ConfigurationMissingError: no API key or client credentials
        ProviderUnauthorizedError: provider answered 401/403
        VerificationFailedError: any other provider or transport failure
    """
    config = await resolve_verification_config(store, overrides)

    try:
        headers = await _auth_headers(client, config)
        await _probe_provider(client, config, headers)

        payload = build_verification_payload(claim, media, config)
        response = await client.post(
            f"{config.api_endpoint}identity/verify",
            json=payload,
            headers=headers,
        )
        _raise_for_provider_status(response)

        result = normalize_submit_response(_json_object(response), claim)
    except (ConfigurationMissingError, ProviderUnauthorizedError):
        raise
    except (httpx.HTTPError, ValueError, TypeError) as e:
        logger.error(f"Didit verification error for reference {claim.national_id}: {e}")
        raise VerificationFailedError() from e

    logger.info(
        f"Didit verification {result.verification_id} for reference {claim.national_id}: "
        f"{result.status.value} (confidence={result.confidence}, match={result.match_score})"
    )
    return result


async def check_verification_status(
    client: httpx.AsyncClient,
    store: SettingsStore,
    verification_id: str,
    overrides: dict[str, Any] | None = None,
) -> VerificationResult:
    """Re-fetch a previously submitted verification and normalize it."""
    config = await resolve_verification_config(store, overrides)

    try:
        headers = await _auth_headers(client, config)
        response = await client.get(
            f"{config.api_endpoint}identity/verify/{verification_id}",
            headers=headers,
        )
        _raise_for_provider_status(response)

        result = normalize_status_response(_json_object(response), verification_id)
    except (ConfigurationMissingError, ProviderUnauthorizedError):
        raise
    except (httpx.HTTPError, ValueError, TypeError) as e:
        logger.error(f"Didit status check error for {verification_id}: {e}")
        raise VerificationFailedError("Failed to check verification status") from e

    logger.info(f"Didit verification {verification_id} status: {result.status.value}")
    return result


# ============== Response normalization ==============


def _map_status(raw: Any) -> VerificationStatus:
    if not isinstance(raw, str):
        return VerificationStatus.pending
    return STATUS_MAP.get(raw.lower(), VerificationStatus.pending)


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _score(*candidates: Any) -> float:
    """First usable non-zero score, clamped to [0, 100]."""
    for candidate in candidates:
        if candidate is None or isinstance(candidate, bool):
            continue
        try:
            value = float(candidate)
        except (TypeError, ValueError):
            continue
        if value and math.isfinite(value):
            return min(max(value, 0.0), 100.0)
    return 0.0


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _enum_or_none(enum_cls: type, raw: Any) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        return None


def _optional_checks(data: Mapping[str, Any]) -> dict[str, Any]:
    """AML, age estimation and proof of address; each defaults to None."""
    aml = _section(data, "aml_check")
    aml_status = _enum_or_none(AmlStatus, aml.get("status"))

    age_block = _section(data, "age_estimation_result")
    age = _number(age_block.get("age"))
    age_estimation = None
    if age is not None:
        age_estimation = AgeEstimation(age=age, confidence=_number(age_block.get("confidence")) or 0.0)

    poa_status = _enum_or_none(ProofOfAddressStatus, _section(data, "proof_of_address").get("status"))

    return {
        "aml_status": aml_status,
        "aml_details": aml.get("details"),
        "age_estimation": age_estimation,
        "proof_of_address_status": poa_status,
    }


def normalize_submit_response(
    data: Mapping[str, Any],
    claim: IdentityClaim | None = None,
) -> VerificationResult:
    """Map the synchronous submit response into a VerificationResult."""
    verification_id = data.get("verification_id") or data.get("id") or ""

    return VerificationResult(
        verification_id=str(verification_id),
        status=_map_status(data.get("status")),
        confidence=_score(data.get("confidence_score")),
        match_score=_score(data.get("similarity_score")),
        details=VerificationDetails(
            document_verified=_section(data, "document_verification").get("status") == "passed",
            face_match=_section(data, "face_verification").get("status") == "passed",
            liveness_check=_section(data, "liveness_check").get("status") == "passed",
            document_type=data.get("document_type") or (claim.document_type if claim else "unknown"),
            extracted_data=_mapping(data.get("extracted_fields")),
            **_optional_checks(data),
        ),
    )


def normalize_status_response(
    data: Mapping[str, Any],
    verification_id: str = "",
) -> VerificationResult:
    """
    Map the status-poll response into a VerificationResult.

    The poll response nests biometric and document results differently from
    the submit response, but both end up in the same canonical shape.
    """
    biometric = _section(data, "biometric")
    documents = data.get("documents")
    first_document: Mapping[str, Any] = {}
    if isinstance(documents, list) and documents and isinstance(documents[0], Mapping):
        first_document = documents[0]

    extracted = _mapping(first_document.get("extracted_data")) or _mapping(data.get("extracted_fields"))

    return VerificationResult(
        verification_id=str(data.get("id") or data.get("verification_id") or verification_id),
        status=_map_status(data.get("status")),
        confidence=_score(data.get("overall_score"), data.get("confidence_score")),
        match_score=_score(biometric.get("face_match_score"), data.get("similarity_score")),
        details=VerificationDetails(
            document_verified=first_document.get("verification_status") == "verified",
            face_match=biometric.get("face_match_result") == "match",
            liveness_check=biometric.get("liveness_result") == "real",
            document_type=first_document.get("type") or "unknown",
            extracted_data=extracted,
            **_optional_checks(data),
        ),
    )


# ============== Manual override ==============


def manual_verification(
    crypto: CryptoPrimitives,
    subject_id: str,
    approver_id: str,
    approved: bool,
    notes: str,
) -> VerificationResult:
    """
    Operator decision that never reaches the provider.

    The approver, notes and decision time travel with the result as its
    audit trail.
    """
    decided_at = to_iso(utc_now())
    score = 100 if approved else 0

    result = VerificationResult(
        verification_id=crypto.generate_token(16),
        status=VerificationStatus.approved if approved else VerificationStatus.rejected,
        confidence=score,
        match_score=score,
        details=VerificationDetails(
            document_verified=approved,
            face_match=approved,
            liveness_check=approved,
            document_type="manual",
            extracted_data={
                "notes": notes,
                "verifiedBy": approver_id,
                "verificationDate": decided_at,
            },
        ),
    )

    audit_hash = crypto.generate_audit_hash(
        {"verificationId": result.verification_id, "subjectId": subject_id, "approved": approved}
    )
    logger.info(
        f"Manual verification {result.verification_id} for subject {subject_id}: "
        f"{result.status.value} by {approver_id} (audit={audit_hash})"
    )
    return result


# ============== Cross-validation ==============


def levenshtein_distance(source: str, target: str) -> int:
    """Classic O(n*m) edit distance table (insert, delete, substitute all cost 1)."""
    rows = len(target) + 1
    cols = len(source) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            if target[i - 1] == source[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = min(
                    matrix[i - 1][j - 1] + 1,
                    matrix[i][j - 1] + 1,
                    matrix[i - 1][j] + 1,
                )

    return matrix[rows - 1][cols - 1]


def calculate_string_similarity(first: str | None, second: str | None) -> float:
    """
    (longest length - edit distance) / longest length, case-sensitive.

    Two empty strings are identical (1.0); one empty string scores 0.0.
    """
    first = first or ""
    second = second or ""

    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0

    longer, shorter = (first, second) if len(first) > len(second) else (second, first)
    distance = levenshtein_distance(longer, shorter)
    return (len(longer) - distance) / len(longer)


def _claimed_name(claim: IdentityClaim | Mapping[str, Any], field: str, camel: str) -> str | None:
    if isinstance(claim, IdentityClaim):
        return getattr(claim, field)
    return claim.get(camel, claim.get(field))


def validate_extracted_data(
    claim: IdentityClaim | Mapping[str, Any],
    extracted: Mapping[str, Any],
) -> bool:
    """True when both first and last names match the document at >= 80%."""
    first_name_match = calculate_string_similarity(
        _claimed_name(claim, "first_name", "firstName"), extracted.get("first_name")
    )
    last_name_match = calculate_string_similarity(
        _claimed_name(claim, "last_name", "lastName"), extracted.get("last_name")
    )

    consistent = first_name_match >= NAME_MATCH_THRESHOLD and last_name_match >= NAME_MATCH_THRESHOLD
    if not consistent:
        logger.info(
            f"Claim/document name mismatch (first={first_name_match:.2f}, last={last_name_match:.2f})"
        )
    return consistent


def extract_jamaica_id_data(extracted: Mapping[str, Any]) -> dict[str, Any]:
    """Rename Jamaica National ID fields to the identity-claim keys."""
    return {
        "nationalId": extracted.get("id_number"),
        "firstName": extracted.get("first_name"),
        "lastName": extracted.get("last_name"),
        "dateOfBirth": extracted.get("date_of_birth"),
        "address": extracted.get("address"),
        "parish": extracted.get("parish"),
        "gender": extracted.get("gender"),
        "expiryDate": extracted.get("expiry_date"),
    }


# ============== Webhook ==============


def resolve_webhook_status(payload: Mapping[str, Any]) -> VerificationStatus:
    """
    Decide the KYC status carried by an asynchronous provider callback.

    Approval needs document, face and liveness all "passed" and an AML
    result that is "clear" or absent.
    """
    overall = payload.get("status")
    document = _section(payload, "document_verification").get("status")
    face = _section(payload, "face_verification").get("status")
    liveness = _section(payload, "liveness_check").get("status")
    aml = _section(payload, "aml_check").get("status")

    if overall in ("completed", "verified", "approved"):
        if document == "passed" and face == "passed" and liveness == "passed" and aml in ("clear", None):
            return VerificationStatus.approved
        if aml == "hit":
            return VerificationStatus.rejected
        if "failed" in (document, face, liveness):
            return VerificationStatus.rejected
        return VerificationStatus.pending

    if overall in ("failed", "rejected"):
        return VerificationStatus.rejected
    return VerificationStatus.pending
