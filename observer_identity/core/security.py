import base64
import hashlib
import hmac
import json
import logging
import math
import re
import secrets
import time
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from jose import JWTError, jwt
from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq

from observer_identity.config import settings
from observer_identity.core.exceptions import ConfigurationMissingError
from observer_identity.schemas.auth import TokenPayload

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# OpenSSL passphrase format: "Salted__" + 8 byte salt + AES-256-CBC ciphertext
OPENSSL_MAGIC = b"Salted__"
KEY_SIZE = 32
IV_SIZE = 16

SIGNATURE_LENGTH = 16
PBKDF2_ITERATIONS = 10000
PBKDF2_KEY_LENGTH = 64
PASSWORD_SEPARATOR = ":"

SENSITIVE_ACTIONS = frozenset({"login", "password_change", "data_export", "admin_access"})
TRN_PATTERN = re.compile(r"^\d{9}$")


def _js_number(value: float) -> str:
    """Format a float the way JavaScript's Number.prototype.toString does."""
    if not math.isfinite(value):
        return "null"
    if value == 0:
        return "0"

    # repr() already gives the shortest round-tripping digits
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = list(digit_tuple)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1

    text = "".join(str(d) for d in digits)
    k = len(digits)
    n = exponent + k
    prefix = "-" if sign else ""

    if k <= n <= 21:
        return prefix + text + "0" * (n - k)
    if 0 < n <= 21:
        return prefix + text[:n] + "." + text[n:]
    if -6 < n <= 0:
        return prefix + "0." + "0" * -n + text

    power = n - 1
    mantissa = text if k == 1 else text[0] + "." + text[1:]
    return f"{prefix}{mantissa}e{'+' if power > 0 else '-'}{abs(power)}"


def _js_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if key is None or isinstance(key, (bool, int, float)):
        return js_json(key)
    return str(key)


def js_json(value: Any) -> str:
    """
    Compact JSON byte-identical to JavaScript's JSON.stringify.

    Floats are written in JavaScript's number format (18 not 18.0, 1e-7 not
    1e-07), so signatures over this text match those made by the web client.
    """
    if value is None or value is True or value is False:
        return json.dumps(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _js_number(value)
    if isinstance(value, Mapping):
        items = (f"{json.dumps(_js_key(key), ensure_ascii=False)}:{js_json(item)}" for key, item in value.items())
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(js_json(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    """Derive key and IV the way OpenSSL's EVP_BytesToKey does (MD5, one round)."""
    derived = b""
    block = b""
    while len(derived) < KEY_SIZE + IV_SIZE:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:KEY_SIZE], derived[KEY_SIZE:KEY_SIZE + IV_SIZE]


class CryptoPrimitives:
    """
    Every cryptographic operation the service performs.

    The encryption key is injected at construction, so several keys can
    coexist (key rotation, tests) without touching module state.
    """

    def __init__(self, encryption_key: str):
        if not encryption_key:
            raise ConfigurationMissingError("Encryption key is not configured", setting="ENCRYPTION_KEY")
        self._key = encryption_key.encode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt text with AES-256-CBC in the OpenSSL passphrase format.

        Returns an empty string for empty input or on any failure.
        """
        if not plaintext:
            return ""

        try:
            salt = secrets.token_bytes(8)
            key, iv = _evp_bytes_to_key(self._key, salt)

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()

            return base64.b64encode(OPENSSL_MAGIC + salt + ciphertext).decode("ascii")
        except Exception as e:
            logger.error(f"Encryption error: {e}")
            return ""

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Returns an empty string for empty input, a wrong key or a corrupt
        ciphertext. An empty result means "could not process".
        """
        if not ciphertext:
            return ""

        try:
            raw = base64.b64decode(ciphertext, validate=True)
            if not raw.startswith(OPENSSL_MAGIC):
                raise ValueError("missing OpenSSL salt header")

            salt = raw[len(OPENSSL_MAGIC):len(OPENSSL_MAGIC) + 8]
            body = raw[len(OPENSSL_MAGIC) + 8:]
            key, iv = _evp_bytes_to_key(self._key, salt)

            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(body) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            return plaintext.decode("utf-8")
        except Exception as e:
            logger.error(f"Decryption error: {e}")
            return ""

    @staticmethod
    def hash_keyed(secret: str, data: str) -> str:
        """HMAC-SHA256 of data, truncated to 16 hex chars to keep QR payloads short."""
        digest = hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()
        return digest[:SIGNATURE_LENGTH]

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password as "salt:hash" with PBKDF2-HMAC-SHA512."""
        salt = secrets.token_hex(16)
        derived = pbkdf2_hmac("sha512", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS, PBKDF2_KEY_LENGTH)
        return f"{salt}{PASSWORD_SEPARATOR}{derived.hex()}"

    @staticmethod
    def verify_password(password: str, stored: str) -> bool:
        salt, sep, expected = (stored or "").partition(PASSWORD_SEPARATOR)
        if not sep or not salt or not expected:
            return False

        derived = pbkdf2_hmac("sha512", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS, PBKDF2_KEY_LENGTH)
        return consteq(derived.hex(), expected)

    @staticmethod
    def fingerprint(
        user_agent: str,
        ip_address: str,
        extra: dict[str, Any] | None = None,
        legacy: bool = False,
    ) -> str:
        """
        SHA-256 device fingerprint.

        Stable for identical device context. legacy=True appends the call
        time, reproducing fingerprints stored by the earlier implementation
        (those never match twice).
        """
        device_data: dict[str, Any] = {
            "userAgent": user_agent,
            "ipAddress": ip_address,
            **(extra or {}),
        }
        if legacy:
            device_data["timestamp"] = int(time.time() * 1000)

        return hashlib.sha256(js_json(device_data).encode("utf-8")).hexdigest()

    @staticmethod
    def classify_risk(action: str, known_device: bool) -> str:
        if not known_device:
            return "high"
        if action in SENSITIVE_ACTIONS:
            return "medium"
        return "low"

    @staticmethod
    def generate_token(length: int = 32) -> str:
        """Hex token built from `length` random bytes."""
        return secrets.token_hex(length)

    @staticmethod
    def generate_audit_hash(data: Any) -> str:
        material = js_json(data) + str(int(time.time() * 1000))
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    @staticmethod
    def generate_observer_id() -> str:
        """Six digit observer ID that never starts with 0."""
        return str(100000 + secrets.randbelow(900000))

    @staticmethod
    def validate_trn(trn: str) -> bool:
        """Jamaica TRN: exactly nine digits."""
        return bool(trn) and TRN_PATTERN.fullmatch(trn) is not None


@lru_cache
def get_crypto() -> CryptoPrimitives:
    return CryptoPrimitives(settings.ENCRYPTION_KEY)


def create_access_token(subject: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode = {
        "sub": subject,
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenPayload | None:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        return TokenPayload(sub=payload["sub"], exp=payload["exp"])
    except (JWTError, KeyError):
        return None
