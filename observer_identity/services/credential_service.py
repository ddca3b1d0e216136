"""Signed, time-boxed QR credentials for observers and polling stations."""

import base64
import hmac
import json
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

import qrcode
from pydantic import ValidationError
from qrcode.exceptions import DataOverflowError
from qrcode.image.svg import SvgImage

from observer_identity.config import settings
from observer_identity.core.clock import parse_iso, to_iso, utc_now
from observer_identity.core.exceptions import ConfigurationMissingError, CredentialTooLargeError
from observer_identity.core.security import CryptoPrimitives, get_crypto, js_json
from observer_identity.schemas.credential import (
    CredentialPayload,
    CredentialState,
    CredentialType,
    ObserverCredentialValidation,
)

logger = logging.getLogger(__name__)

VALIDITY_WINDOW = timedelta(hours=24)


def _signed_material(credential_type: str, data: Any, timestamp: str) -> str:
    """JSON.stringify of {type, data, timestamp} in that order; the signature is never part of it."""
    return js_json({"type": credential_type, "data": data, "timestamp": timestamp})


def serialize_credential(payload: CredentialPayload) -> str:
    """QR content: compact JSON of {type, data, timestamp, signature}."""
    return js_json(
        {
            "type": payload.type,
            "data": payload.data,
            "timestamp": payload.timestamp,
            "signature": payload.signature,
        }
    )


class CredentialSigner:
    """
    Mints and checks credential payloads.

    A credential ends in exactly one of valid, expired, tampered or malformed.
    There is no renewal: anything but valid must be re-minted by the issuer.
    """

    def __init__(
        self,
        crypto: CryptoPrimitives,
        secret: str,
        validity: timedelta = VALIDITY_WINDOW,
    ):
        if not secret:
            raise ConfigurationMissingError(
                "Credential signing secret is not configured",
                setting="CREDENTIAL_SIGNING_SECRET",
            )
        self.crypto = crypto
        self.secret = secret
        self.validity = validity

    def _sign(self, credential_type: str, data: Any, timestamp: str) -> str:
        return self.crypto.hash_keyed(self.secret, _signed_material(credential_type, data, timestamp))

    def mint(self, credential_type: str, data: Any) -> CredentialPayload:
        timestamp = to_iso(utc_now())
        payload = CredentialPayload(
            type=credential_type,
            data=data,
            timestamp=timestamp,
            signature=self._sign(credential_type, data, timestamp),
        )
        logger.info(f"Minted {credential_type} credential at {timestamp}")
        return payload

    def inspect(
        self,
        payload: CredentialPayload | Mapping[str, Any],
        now: datetime | None = None,
    ) -> CredentialState:
        """Classify a scanned payload. Never raises."""
        try:
            if isinstance(payload, Mapping):
                credential_type = payload["type"]
                data = payload["data"]
                timestamp = payload["timestamp"]
                signature = payload.get("signature")
            else:
                credential_type = payload.type
                data = payload.data
                timestamp = payload.timestamp
                signature = payload.signature

            if not isinstance(credential_type, str) or not isinstance(timestamp, str):
                return CredentialState.malformed

            expected = self._sign(credential_type, data, timestamp)
            if not isinstance(signature, str) or not hmac.compare_digest(signature, expected):
                return CredentialState.tampered

            issued_at = parse_iso(timestamp)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug(f"Malformed credential payload: {e}")
            return CredentialState.malformed

        if (now or utc_now()) - issued_at > self.validity:
            return CredentialState.expired
        return CredentialState.valid

    def verify(self, payload: CredentialPayload | Mapping[str, Any], now: datetime | None = None) -> bool:
        """True only when the signature matches and the credential is within its window."""
        return self.inspect(payload, now) is CredentialState.valid

    @staticmethod
    def parse(raw: str) -> CredentialPayload | None:
        """Deserialize scanned QR text; None when it isn't a credential."""
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            return None

        if not isinstance(parsed, dict):
            return None
        if not parsed.get("type") or not parsed.get("timestamp") or parsed.get("data") is None:
            return None

        try:
            return CredentialPayload.model_validate(parsed)
        except ValidationError:
            return None

    def validate_observer_credential(self, payload: CredentialPayload) -> ObserverCredentialValidation:
        """Check an observer ID credential, collecting every problem found."""
        errors: list[str] = []
        data = payload.data if isinstance(payload.data, Mapping) else {}
        observer_id = data.get("observerId")
        name = data.get("name")

        if payload.type != CredentialType.observer_id.value:
            errors.append("Invalid QR code type")
        if not observer_id:
            errors.append("Missing Observer ID")
        if not name:
            errors.append("Missing observer name")
        if not self.verify(payload):
            errors.append("Invalid signature or expired QR code")

        return ObserverCredentialValidation(
            is_valid=not errors,
            observer_id=str(observer_id) if observer_id else None,
            name=str(name) if name else None,
            errors=errors,
        )


def _display_time(timestamp: str) -> str:
    try:
        return parse_iso(timestamp).strftime("%Y-%m-%d %H:%M:%S UTC")
    except ValueError:
        return timestamp


def format_for_display(payload: CredentialPayload) -> str:
    data = payload.data if isinstance(payload.data, Mapping) else {}
    generated = f"Generated: {_display_time(payload.timestamp)}"

    if payload.type == CredentialType.observer_id.value:
        return f"Observer ID: {data.get('observerId')}\nName: {data.get('name')}\n{generated}"
    if payload.type == CredentialType.station_info.value:
        return f"Station: {data.get('stationId')}\n{generated}"
    if payload.type == CredentialType.custom.value:
        return f"Custom Data: {data.get('data')}\n{generated}"
    return json.dumps(payload.model_dump(), indent=2, ensure_ascii=False)


def to_data_url(payload: CredentialPayload) -> str:
    encoded = base64.b64encode(serialize_credential(payload).encode("utf-8")).decode("ascii")
    return f"data:text/plain;base64,{encoded}"


def render_svg(payload: CredentialPayload) -> str:
    """
    Render the credential as a standalone QR code SVG document.

    Raises CredentialTooLargeError when the content exceeds QR version 40.
    """
    content = serialize_credential(payload)
    qr = qrcode.QRCode(border=2, image_factory=SvgImage)
    qr.add_data(content)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as e:
        logger.warning(f"Credential of {len(content)} chars does not fit in a QR code: {e}")
        raise CredentialTooLargeError() from e
    return qr.make_image().to_string(encoding="unicode")


@lru_cache
def get_signer() -> CredentialSigner:
    return CredentialSigner(get_crypto(), settings.CREDENTIAL_SIGNING_SECRET)
