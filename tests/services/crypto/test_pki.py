from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from notifyhub.services.crypto import pki
from notifyhub.services.crypto.pki import KeyMaterial, generate_key_material, public_key_fingerprint
from notifyhub.services.errors import CryptoGenerationError


def test_fingerprint_is_sha1_over_spki(key_material):
    der = key_material.private_key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    assert key_material.fingerprint == hashlib.sha1(der).hexdigest()
    assert len(key_material.fingerprint) == 40


def test_fingerprint_matches_certificate_key(key_material):
    cert = x509.load_pem_x509_certificate(key_material.public_certificate_pem.encode("ascii"))
    assert public_key_fingerprint(cert.public_key()) == key_material.fingerprint


def test_certificate_is_valid_for_one_year():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    keys = generate_key_material(now=now)
    cert = x509.load_pem_x509_certificate(keys.public_certificate_pem.encode("ascii"))
    assert cert.issuer == cert.subject
    assert keys.not_valid_after == now + timedelta(days=365)


def test_certificate_b64_wraps_the_pem(key_material):
    assert base64.b64decode(key_material.certificate_b64).decode("ascii") == key_material.public_certificate_pem


def test_repr_never_shows_private_key(key_material):
    text = repr(key_material)
    assert "PRIVATE" not in text
    assert "private_key" not in text
    assert key_material.fingerprint in text


def test_pem_roundtrip_with_passphrase(key_material):
    pem = key_material.private_key_pem("s3cret")
    assert "ENCRYPTED PRIVATE KEY" in pem
    restored = KeyMaterial.from_pem(
        certificate_pem=key_material.public_certificate_pem,
        private_key_pem=pem,
        passphrase="s3cret",
    )
    assert restored.fingerprint == key_material.fingerprint


def test_generation_failure_is_wrapped(monkeypatch):
    def boom(bits):
        raise ValueError("key_size must be at least 1024-bits")

    monkeypatch.setattr(pki, "generate_rsa_key", boom)
    with pytest.raises(CryptoGenerationError):
        generate_key_material(512)
