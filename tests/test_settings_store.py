"""Tests for persisted settings and Didit configuration resolution."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from observer_identity.config import settings
from observer_identity.schemas.verification import AmlSensitivity
from observer_identity.services.settings_service import (
    DatabaseSettingsStore,
    resolve_verification_config,
)


@pytest.mark.asyncio
async def test_set_and_get_setting(db_session: AsyncSession):
    store = DatabaseSettingsStore(db_session)

    await store.set_setting("didit_liveness_mode", "passive")

    assert await store.get_setting_by_key("didit_liveness_mode") == "passive"


@pytest.mark.asyncio
async def test_set_setting_updates_existing_row(db_session: AsyncSession):
    store = DatabaseSettingsStore(db_session)

    first = await store.set_setting("didit_aml_check_enabled", "false")
    second = await store.set_setting("didit_aml_check_enabled", "true")

    assert first.id == second.id
    assert await store.get_setting_by_key("didit_aml_check_enabled") == "true"


@pytest.mark.asyncio
async def test_missing_setting_is_none(db_session: AsyncSession):
    store = DatabaseSettingsStore(db_session)

    assert await store.get_setting_by_key("didit_api_key") is None


@pytest.mark.asyncio
async def test_defaults_when_nothing_is_configured(store):
    config = await resolve_verification_config(store)

    assert config.api_endpoint == "https://apx.didit.me/v2/"
    assert config.api_key is None
    assert config.client_id is None
    assert config.liveness_mode == "console_default"
    assert config.liveness_level == "standard"
    assert config.aml_check_enabled is False
    assert config.aml_sensitivity is AmlSensitivity.medium
    assert config.age_estimation_enabled is False
    assert config.proof_of_address_enabled is False
    assert config.webhook_url == "https://observer.test/api/v1/kyc/webhook"


@pytest.mark.asyncio
async def test_persisted_feature_flags(store):
    store.values.update(
        {
            "didit_aml_check_enabled": "true",
            "didit_aml_sensitivity": "HIGH",
            "didit_age_estimation_enabled": "1",
            "didit_proof_of_address_enabled": "no",
            "didit_liveness_mode": "active",
            "didit_liveness_level": "strict",
            "didit_webhook_url": "https://hooks.example/didit",
        }
    )

    config = await resolve_verification_config(store)

    assert config.aml_check_enabled is True
    assert config.aml_sensitivity is AmlSensitivity.high
    assert config.age_estimation_enabled is True
    assert config.proof_of_address_enabled is False
    assert config.liveness_mode == "active"
    assert config.liveness_level == "strict"
    assert config.webhook_url == "https://hooks.example/didit"


@pytest.mark.asyncio
async def test_blank_persisted_values_use_defaults(store):
    store.values.update({"didit_api_endpoint": "   ", "didit_liveness_mode": ""})

    config = await resolve_verification_config(store)

    assert config.api_endpoint == "https://apx.didit.me/v2/"
    assert config.liveness_mode == "console_default"


@pytest.mark.asyncio
async def test_unknown_sensitivity_falls_back_to_medium(store):
    store.values["didit_aml_sensitivity"] = "extreme"

    config = await resolve_verification_config(store)

    assert config.aml_sensitivity is AmlSensitivity.medium


@pytest.mark.asyncio
async def test_endpoint_gets_trailing_slash(store):
    store.values["didit_api_endpoint"] = "https://sandbox.didit.me/v2"

    config = await resolve_verification_config(store)

    assert config.api_endpoint == "https://sandbox.didit.me/v2/"


@pytest.mark.asyncio
async def test_environment_wins_for_connection_fields(store, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "DIDIT_API_ENDPOINT", "https://env.didit.me/")
    monkeypatch.setattr(settings, "DIDIT_CLIENT_ID", "env-client")
    store.values.update(
        {
            "didit_api_endpoint": "https://persisted.didit.me/",
            "didit_client_id": "persisted-client",
            "didit_client_secret": "persisted-secret",
        }
    )

    config = await resolve_verification_config(store)

    assert config.api_endpoint == "https://env.didit.me/"
    assert config.client_id == "env-client"
    assert config.client_secret == "persisted-secret"


@pytest.mark.asyncio
async def test_overrides_win_over_everything(store, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "DIDIT_API_KEY", "env-key")
    store.values.update({"didit_api_key": "persisted-key", "didit_aml_check_enabled": "true"})

    config = await resolve_verification_config(
        store,
        {"api_key": "override-key", "aml_check_enabled": False},
    )

    assert config.api_key == "override-key"
    assert config.aml_check_enabled is False


@pytest.mark.asyncio
@pytest.mark.parametrize("level", [None, ""])
async def test_empty_liveness_level_override_drops_the_level(store, level):
    store.values["didit_liveness_level"] = "strict"

    config = await resolve_verification_config(store, {"liveness_level": level})

    assert config.liveness_level is None


@pytest.mark.asyncio
async def test_blank_persisted_liveness_level_uses_default(store):
    store.values["didit_liveness_level"] = "  "

    config = await resolve_verification_config(store)

    assert config.liveness_level == "standard"


@pytest.mark.asyncio
async def test_resolves_from_database(db_session: AsyncSession):
    store = DatabaseSettingsStore(db_session)
    await store.set_setting("didit_api_key", "db-key")
    await store.set_setting("didit_age_estimation_enabled", "true")

    config = await resolve_verification_config(store)

    assert config.api_key == "db-key"
    assert config.age_estimation_enabled is True
