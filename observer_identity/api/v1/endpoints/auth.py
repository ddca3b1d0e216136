import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm

from observer_identity.config import settings
from observer_identity.core.exceptions import (
    ConfigurationMissingError,
    InvalidCredentialsError,
    TokenInvalidError,
)
from observer_identity.core.security import (
    CryptoPrimitives,
    create_access_token,
    decode_access_token,
    get_crypto,
)
from observer_identity.schemas.auth import Token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["auth"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


async def get_current_operator(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> str:
    """Resolve the operator ID from a bearer token."""
    payload = decode_access_token(token)
    if payload is None:
        raise TokenInvalidError()
    return payload.sub


@router.post("/token", response_model=Token)
async def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    crypto: Annotated[CryptoPrimitives, Depends(get_crypto)],
) -> Token:
    """
    Exchange operator credentials for an access token.

    The operator password is configured as a "salt:hash" string
    (see CryptoPrimitives.hash_password).
    """
    if not settings.OPERATOR_PASSWORD_HASH:
        raise ConfigurationMissingError(
            "Operator password is not configured",
            setting="OPERATOR_PASSWORD_HASH",
        )

    username_ok = form_data.username == settings.OPERATOR_USERNAME
    password_ok = crypto.verify_password(form_data.password, settings.OPERATOR_PASSWORD_HASH)
    if not (username_ok and password_ok):
        logger.warning(f"Failed operator login for '{form_data.username}'")
        raise InvalidCredentialsError()

    logger.info(f"Operator '{form_data.username}' logged in")
    return Token(access_token=create_access_token(form_data.username))
