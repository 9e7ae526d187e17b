"""
Credential vault for SMTP passwords at rest.

Envelope format written by this module: ``hex(iv) + ":" + hex(ciphertext)``,
AES-256-CBC with PKCS7 padding, key stretched from the configured master key
with scrypt and the application-wide salt.

Secrets written before IV envelopes existed are bare hex ciphertext encrypted
with a key and IV derived straight from the master key (OpenSSL
``EVP_BytesToKey``, MD5, one round, no salt). That branch is kept only so those
rows stay readable; nothing here writes it.
"""

import binascii
import hashlib
import logging
import os
from functools import lru_cache
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, ConfigDict

from ..errors import CryptoError

logger = logging.getLogger(__name__)

APP_SALT = b"salt"
KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16
BLOCK_SIZE_BITS = algorithms.AES.block_size
ENVELOPE_SEPARATOR = ":"

# scrypt cost parameters (N, r, p)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class VersionedEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    iv: bytes
    ciphertext: bytes


class LegacyEnvelope(BaseModel):
    """Ciphertext from the deprecated single-key scheme (no stored IV)"""

    model_config = ConfigDict(frozen=True)

    ciphertext: bytes


Envelope = Union[VersionedEnvelope, LegacyEnvelope]


@lru_cache(maxsize=8)
def derive_key(master_key: str, salt: bytes = APP_SALT) -> bytes:
    """Stretch the master key into a 32-byte AES key. Deterministic, so cached for the process."""
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(master_key.encode("utf-8"))


def evp_bytes_to_key(password: bytes, key_len: int = KEY_LENGTH, iv_len: int = IV_LENGTH) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5, a single iteration and no salt."""
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + password).digest()  # noqa: S324 - legacy format compatibility
        derived += block
    return derived[:key_len], derived[key_len : key_len + iv_len]


def _unhex(value: str, what: str) -> bytes:
    try:
        return binascii.unhexlify(value)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"Malformed encrypted secret: {what} is not valid hex") from e


def parse_envelope(envelope: str) -> Envelope:
    """Split a stored envelope into its tagged variant without decrypting it."""
    if not isinstance(envelope, str) or not envelope:
        raise CryptoError("Malformed encrypted secret: empty envelope")

    if ENVELOPE_SEPARATOR not in envelope:
        return LegacyEnvelope(ciphertext=_unhex(envelope, "ciphertext"))

    iv_hex, ciphertext_hex = envelope.split(ENVELOPE_SEPARATOR, 1)
    if ENVELOPE_SEPARATOR in ciphertext_hex:
        raise CryptoError("Malformed encrypted secret: unexpected separator")

    iv = _unhex(iv_hex, "iv")
    if len(iv) != IV_LENGTH:
        raise CryptoError(f"Malformed encrypted secret: iv must be {IV_LENGTH} bytes")
    return VersionedEnvelope(iv=iv, ciphertext=_unhex(ciphertext_hex, "ciphertext"))


def is_legacy_envelope(envelope: str) -> bool:
    return isinstance(envelope, str) and bool(envelope) and ENVELOPE_SEPARATOR not in envelope


def _decrypt_cbc(key: bytes, iv: bytes, ciphertext: bytes) -> str:
    if not ciphertext or len(ciphertext) % (BLOCK_SIZE_BITS // 8):
        raise CryptoError("Malformed encrypted secret: ciphertext length is not a whole number of blocks")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    try:
        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except ValueError as e:
        # Bad padding or non-UTF-8 output: wrong key or corrupted row
        raise CryptoError("Decryption failed") from e


def encrypt_secret(secret: str, master_key: str) -> str:
    """Encrypt a relay password into a versioned envelope."""
    if not isinstance(secret, str):
        raise CryptoError("Only text secrets can be encrypted")

    key = derive_key(master_key)
    iv = os.urandom(IV_LENGTH)

    padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
    padded = padder.update(secret.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return iv.hex() + ENVELOPE_SEPARATOR + ciphertext.hex()


def decrypt_secret(envelope: str, master_key: str) -> str:
    """Decrypt a stored envelope, versioned or legacy."""
    parsed = parse_envelope(envelope)

    if isinstance(parsed, LegacyEnvelope):
        logger.warning("⚠️ Decrypting SMTP password stored in the legacy no-IV format")
        key, iv = evp_bytes_to_key(master_key.encode("utf-8"))
        return _decrypt_cbc(key, iv, parsed.ciphertext)

    return _decrypt_cbc(derive_key(master_key), parsed.iv, parsed.ciphertext)


class CredentialVault:
    """Encrypts and decrypts relay passwords with one configured master key."""

    def __init__(self, master_key: str):
        if not master_key:
            raise CryptoError("Encryption master key is not configured")
        self._master_key = master_key

    def __repr__(self) -> str:
        return "CredentialVault(master_key=***)"

    def encrypt(self, secret: str) -> str:
        return encrypt_secret(secret, self._master_key)

    def decrypt(self, envelope: str) -> str:
        return decrypt_secret(envelope, self._master_key)
