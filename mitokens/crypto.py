"""Request signing and payload encryption for the device api.

Every encrypted call is self contained:

nonce: 8 random bytes followed by the current minute since the epoch as a
4 byte big endian integer, base64 encoded. A fresh nonce is used per call.

signed nonce: sha256(b64decode(ssecurity) + b64decode(nonce)), base64
encoded. It is the rc4 key for the payload and the secret of the request
signatures, and must not be confused with the nonce itself.

payload cipher: rc4 keyed with the decoded signed nonce. The first 1024
bytes of keystream are discarded before any payload byte is processed,
encryption and decryption are the same transform.

rc4 signature: sha1 over ``METHOD&path&k=v...&signed_nonce`` with the
params sorted by key. The plaintext params are signed once (giving the
``rc4_hash__`` param), then every param is encrypted and the encrypted set
is signed again (giving ``signature``).

hmac signature: hmac-sha256 keyed with the decoded signed nonce over
``path&signed_nonce&nonce&k=v...``, used by the plain legacy api.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import struct
import time
from collections.abc import Mapping
from typing import Any

from cryptography.hazmat.decrepit.ciphers.algorithms import ARC4
from cryptography.hazmat.primitives.ciphers import Cipher

from .exceptions import CryptoError

RC4_DISCARD = 1024

PACK_MINUTES = struct.Struct(">I").pack


def _md5_hash(payload: bytes) -> str:
    return hashlib.md5(payload).hexdigest().upper()  # noqa: S324


def _sha1(payload: bytes) -> bytes:
    return hashlib.sha1(payload).digest()  # noqa: S324


def _sha256(payload: bytes) -> bytes:
    return hashlib.sha256(payload).digest()


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as ex:
        raise CryptoError(f"Invalid base64 in {what}: {ex}") from ex


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode()


def hash_password(password: str) -> str:
    """Return the password hash sent to the login endpoint."""
    return _md5_hash(password.encode())


def generate_nonce(millis: int | None = None) -> str:
    """Return a fresh base64 nonce bound to the current minute."""
    if millis is None:
        millis = int(time.time() * 1000)
    return _b64encode(secrets.token_bytes(8) + PACK_MINUTES(millis // 60000))


def signed_nonce(ssecurity: str, nonce: str) -> str:
    """Derive the per call key from the session secret and a nonce."""
    return _b64encode(
        _sha256(_b64decode(ssecurity, "ssecurity") + _b64decode(nonce, "nonce"))
    )


class Rc4Cipher:
    """Rc4 keystream with the warm-up bytes already discarded."""

    def __init__(self, key: bytes) -> None:
        try:
            self._cipher = Cipher(ARC4(key), mode=None).encryptor()
        except ValueError as ex:
            raise CryptoError(f"Invalid rc4 key: {ex}") from ex
        self._cipher.update(bytes(RC4_DISCARD))

    def update(self, data: bytes) -> bytes:
        """Encrypt or decrypt the next bytes of the stream."""
        return self._cipher.update(data)


def encrypt_rc4(key: str, payload: str) -> str:
    """Encrypt a text payload, returns base64."""
    cipher = Rc4Cipher(_b64decode(key, "rc4 key"))
    return _b64encode(cipher.update(payload.encode()))


def decrypt_rc4(key: str, payload: str | bytes) -> bytes:
    """Decrypt a base64 payload."""
    if isinstance(payload, bytes):
        payload = payload.decode(errors="replace")
    encrypted = _b64decode(payload.strip(), "payload")
    cipher = Rc4Cipher(_b64decode(key, "rc4 key"))
    return cipher.update(encrypted)


def _sorted_params(params: Mapping[str, Any]) -> list[str]:
    return [f"{k}={params[k]}" for k in sorted(params)]


def api_path(url: str) -> str:
    """Return the path used in signatures for a device api url."""
    path = url.split("com", 1)[1]
    return path.replace("/app/", "/", 1)


def generate_enc_signature(
    method: str, path: str, signed_nonce: str, params: Mapping[str, Any]
) -> str:
    """Return the sha1 signature of an encrypted api request."""
    parts = [method.upper(), path, *_sorted_params(params), signed_nonce]
    return _b64encode(_sha1("&".join(parts).encode()))


def generate_signature(
    path: str, signed_nonce: str, nonce: str, params: Mapping[str, Any]
) -> str:
    """Return the hmac signature of a plain api request."""
    parts = [path, signed_nonce, nonce, *_sorted_params(params)]
    key = _b64decode(signed_nonce, "signed nonce")
    return _b64encode(
        hmac.new(key, "&".join(parts).encode(), hashlib.sha256).digest()
    )


def generate_enc_params(
    path: str,
    method: str,
    signed_nonce: str,
    nonce: str,
    params: Mapping[str, Any],
    ssecurity: str,
) -> dict[str, str]:
    """Return the signed and encrypted query params of an api request."""
    plain = dict(params)
    plain["rc4_hash__"] = generate_enc_signature(method, path, signed_nonce, plain)
    encrypted = {k: encrypt_rc4(signed_nonce, str(v)) for k, v in plain.items()}
    encrypted["signature"] = generate_enc_signature(
        method, path, signed_nonce, encrypted
    )
    encrypted["ssecurity"] = ssecurity
    encrypted["_nonce"] = nonce
    return encrypted
