"""RSA PKCS#1 v1.5 encryption against dispatch session keys."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import EncryptionFailure, InvalidKey

LOGGER = logging.getLogger(__name__)

# PKCS#1 v1.5 encryption padding needs at least 11 bytes of overhead.
PKCS1V15_OVERHEAD = 11


class CryptoCodec:
    """Wraps a parsed RSA public key and encrypts short payloads with it.

    The dispatch API only understands PKCS#1 v1.5 padding, so OAEP is not an
    option here.
    """

    def __init__(self, public_key: rsa.RSAPublicKey) -> None:
        self._public_key = public_key

    @classmethod
    def from_pem(cls, public_key_pem: Union[str, bytes]) -> "CryptoCodec":
        data = (
            public_key_pem.encode("ascii")
            if isinstance(public_key_pem, str)
            else public_key_pem
        )
        try:
            key = serialization.load_pem_public_key(data)
        except (ValueError, TypeError, UnsupportedAlgorithm, UnicodeEncodeError) as exc:
            raise InvalidKey(f"Unable to parse public key: {exc}") from exc

        if not isinstance(key, rsa.RSAPublicKey):
            raise InvalidKey(
                f"Unsupported public key type {type(key).__name__}; RSA required"
            )
        return cls(key)

    @property
    def key_size_bytes(self) -> int:
        return (self._public_key.key_size + 7) // 8

    @property
    def max_plaintext_bytes(self) -> int:
        return self.key_size_bytes - PKCS1V15_OVERHEAD

    def encrypt(self, plaintext: Union[str, bytes]) -> str:
        """Encrypt ``plaintext`` and return the base64-encoded ciphertext."""

        payload = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        if len(payload) > self.max_plaintext_bytes:
            raise EncryptionFailure(
                f"Payload of {len(payload)} bytes exceeds the {self.max_plaintext_bytes}"
                f" byte limit for a {self._public_key.key_size}-bit key"
            )

        try:
            ciphertext = self._public_key.encrypt(payload, padding.PKCS1v15())
        except ValueError as exc:
            raise EncryptionFailure(f"Encryption failed: {exc}") from exc

        return base64.b64encode(ciphertext).decode("ascii")


def encrypt(public_key_pem: Union[str, bytes], plaintext: Union[str, bytes]) -> str:
    """Encrypt ``plaintext`` with a PEM-encoded RSA public key (base64 output)."""

    LOGGER.debug("Encrypting %d character payload", len(plaintext))
    return CryptoCodec.from_pem(public_key_pem).encrypt(plaintext)


def decode_message(blob: str) -> str:
    """Decode a base64 ``message`` blob returned by ``exec_cmd`` to text.

    Undecodable UTF-8 sequences are replaced rather than rejected; a blob that
    is not valid base64 at all is returned unchanged.
    """

    try:
        raw = base64.b64decode(blob, validate=False)
    except (binascii.Error, ValueError):
        LOGGER.warning("Command result message is not valid base64; leaving as-is")
        return blob
    return raw.decode("utf-8", errors="replace")
