"""Envelope decryption for encrypted change notifications.

The remote service encrypts each notification's resource data with a random
256-bit content key (AES-CBC, PKCS#7 padding) and wraps that key with the
subscriber's RSA public key using OAEP (SHA-1).  An HMAC-SHA256 computed with
the content key over the ciphertext accompanies the data.

The AES initialisation vector is the first 16 bytes of the content key.  This
is the remote service's published wire contract and must be reproduced as is
to interoperate; it is not a general purpose AES helper.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from notifyhub.services.errors import KeyUnwrapError, PayloadDecryptError

__all__ = [
    "b64decode",
    "decrypt_symmetric_key",
    "verify_integrity",
    "compute_integrity_tag",
    "decrypt_payload",
    "encrypt_payload",
    "wrap_symmetric_key",
]

_IV_SIZE = 16
_OAEP = asym_padding.OAEP(mgf=asym_padding.MGF1(algorithm=hashes.SHA1()), algorithm=hashes.SHA1(), label=None)


def b64decode(value: str | bytes, *, what: str = "value") -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PayloadDecryptError(f"{what} is not valid base64") from exc


def decrypt_symmetric_key(encrypted_key: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Unwrap an RSA-OAEP encrypted content key."""
    try:
        return private_key.decrypt(encrypted_key, _OAEP)
    except ValueError as exc:
        raise KeyUnwrapError("content key does not decrypt with the held private key") from exc


def wrap_symmetric_key(symmetric_key: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.encrypt(symmetric_key, _OAEP)


def compute_integrity_tag(content: bytes, mac_key: bytes) -> bytes:
    return hmac.new(mac_key, content, hashlib.sha256).digest()


def verify_integrity(content: bytes, mac: bytes, mac_key: bytes) -> bool:
    """Constant-time HMAC-SHA256 check over the raw ciphertext bytes. Never raises."""
    expected = compute_integrity_tag(content, mac_key)
    return hmac.compare_digest(expected, mac)


def _cipher(symmetric_key: bytes) -> Cipher:
    if len(symmetric_key) not in (16, 24, 32):
        raise PayloadDecryptError(f"unsupported content key length {len(symmetric_key)}")
    return Cipher(algorithms.AES(symmetric_key), modes.CBC(symmetric_key[:_IV_SIZE]))


def decrypt_payload(ciphertext: bytes, symmetric_key: bytes) -> bytes:
    cipher = _cipher(symmetric_key)
    if not ciphertext or len(ciphertext) % _IV_SIZE:
        raise PayloadDecryptError("ciphertext length is not a multiple of the AES block size")
    decryptor = cipher.decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise PayloadDecryptError("invalid padding in decrypted payload") from exc


def encrypt_payload(plaintext: bytes, symmetric_key: bytes) -> bytes:
    """Inverse of :func:`decrypt_payload`, same IV scheme."""
    cipher = _cipher(symmetric_key)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = cipher.encryptor()
    return encryptor.update(padded) + encryptor.finalize()
