"""Persisted key/value settings and Didit configuration resolution."""

import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from observer_identity.config import settings
from observer_identity.models.setting import Setting
from observer_identity.schemas.verification import AmlSensitivity, VerificationConfig

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "https://apx.didit.me/v2/"
DEFAULT_LIVENESS_MODE = "console_default"
DEFAULT_LIVENESS_LEVEL = "standard"
DEFAULT_AML_SENSITIVITY = AmlSensitivity.medium
WEBHOOK_PATH = "/api/v1/kyc/webhook"

TRUE_VALUES = {"true", "1", "yes", "on"}


class SettingsStore(Protocol):
    async def get_setting_by_key(self, key: str) -> str | None: ...


class DatabaseSettingsStore:
    """Settings store backed by the `settings` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_setting_by_key(self, key: str) -> str | None:
        result = await self.db.execute(select(Setting.value).where(Setting.key == key))
        return result.scalar_one_or_none()

    async def set_setting(self, key: str, value: str | None) -> Setting:
        result = await self.db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()

        if setting is None:
            setting = Setting(key=key, value=value)
            self.db.add(setting)
        else:
            setting.value = value

        await self.db.commit()
        await self.db.refresh(setting)
        return setting


async def _persisted(store: SettingsStore, key: str) -> str | None:
    """Persisted value, with blank values treated as unset."""
    value = await store.get_setting_by_key(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _first(*candidates: Any) -> Any:
    """First candidate that is set; None and "" count as unset."""
    for candidate in candidates:
        if candidate is not None and candidate != "":
            return candidate
    return None


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def _as_sensitivity(value: Any) -> AmlSensitivity:
    if value is None:
        return DEFAULT_AML_SENSITIVITY
    try:
        return AmlSensitivity(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown AML sensitivity '{value}', using {DEFAULT_AML_SENSITIVITY.value}")
        return DEFAULT_AML_SENSITIVITY


async def resolve_verification_config(
    store: SettingsStore,
    overrides: dict[str, Any] | None = None,
) -> VerificationConfig:
    """
    Resolve every provider setting with an explicit per-field lookup order.

    Core connection fields (endpoint, client id/secret, api key):
        explicit override > environment > persisted > default
    Everything else:
        explicit override > persisted > default

    A persisted value can never shadow the environment for the core fields.
    Missing keys mean "use the default", never an error.
    """
    overrides = overrides or {}

    api_endpoint = _first(
        overrides.get("api_endpoint"),
        settings.DIDIT_API_ENDPOINT,
        await _persisted(store, "didit_api_endpoint"),
        DEFAULT_API_ENDPOINT,
    )
    client_id = _first(
        overrides.get("client_id"),
        settings.DIDIT_CLIENT_ID,
        await _persisted(store, "didit_client_id"),
    )
    client_secret = _first(
        overrides.get("client_secret"),
        settings.DIDIT_CLIENT_SECRET,
        await _persisted(store, "didit_client_secret"),
    )
    api_key = _first(
        overrides.get("api_key"),
        settings.DIDIT_API_KEY,
        await _persisted(store, "didit_api_key"),
    )

    liveness_mode = _first(
        overrides.get("liveness_mode"),
        await _persisted(store, "didit_liveness_mode"),
        DEFAULT_LIVENESS_MODE,
    )
    # An explicit empty override drops the level from the request entirely
    if "liveness_level" in overrides and not overrides["liveness_level"]:
        liveness_level = None
    else:
        liveness_level = _first(
            overrides.get("liveness_level"),
            await _persisted(store, "didit_liveness_level"),
            DEFAULT_LIVENESS_LEVEL,
        )
    aml_check_enabled = _as_bool(
        _first(overrides.get("aml_check_enabled"), await _persisted(store, "didit_aml_check_enabled")),
        default=False,
    )
    aml_sensitivity = _as_sensitivity(
        _first(overrides.get("aml_sensitivity"), await _persisted(store, "didit_aml_sensitivity"))
    )
    age_estimation_enabled = _as_bool(
        _first(overrides.get("age_estimation_enabled"), await _persisted(store, "didit_age_estimation_enabled")),
        default=False,
    )
    proof_of_address_enabled = _as_bool(
        _first(overrides.get("proof_of_address_enabled"), await _persisted(store, "didit_proof_of_address_enabled")),
        default=False,
    )
    webhook_url = _first(
        overrides.get("webhook_url"),
        await _persisted(store, "didit_webhook_url"),
        settings.BASE_URL.rstrip("/") + WEBHOOK_PATH,
    )

    if not api_endpoint.endswith("/"):
        api_endpoint += "/"

    return VerificationConfig(
        api_endpoint=api_endpoint,
        client_id=client_id,
        client_secret=client_secret,
        api_key=api_key,
        liveness_mode=liveness_mode,
        liveness_level=liveness_level,
        aml_check_enabled=aml_check_enabled,
        aml_sensitivity=aml_sensitivity,
        age_estimation_enabled=age_estimation_enabled,
        proof_of_address_enabled=proof_of_address_enabled,
        webhook_url=webhook_url,
    )
