from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from notifyhub.config import const
from notifyhub.services.errors import CryptoGenerationError


@dataclass(slots=True)
class KeyMaterial:
    """Keypair and certificate handed to the remote service for one subscription."""

    public_certificate_pem: str
    fingerprint: str
    private_key: rsa.RSAPrivateKey = field(repr=False)
    not_valid_after: datetime | None = None

    @property
    def certificate_b64(self) -> str:
        return base64.b64encode(self.public_certificate_pem.encode("ascii")).decode("ascii")

    def private_key_pem(self, passphrase: str | None = None) -> str:
        encryption: serialization.KeySerializationEncryption
        if passphrase:
            encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
        else:
            encryption = serialization.NoEncryption()
        pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
        return pem.decode("ascii")

    @classmethod
    def from_pem(cls, *, certificate_pem: str, private_key_pem: str, passphrase: str | None = None) -> "KeyMaterial":
        key = serialization.load_pem_private_key(
            private_key_pem.encode("ascii"),
            password=passphrase.encode("utf-8") if passphrase else None,
        )
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("stored private key is not an RSA key")
        cert = x509.load_pem_x509_certificate(certificate_pem.encode("ascii"))
        return cls(
            public_certificate_pem=certificate_pem,
            fingerprint=public_key_fingerprint(cert.public_key()),
            private_key=key,
            not_valid_after=_not_valid_after(cert),
        )


def generate_rsa_key(bits: int = const.RSA_MODULUS_BITS) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def public_key_fingerprint(public_key) -> str:
    """Hex SHA-1 over the DER SubjectPublicKeyInfo, the id the remote service echoes back."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha1(der).hexdigest()


def make_self_signed_cert(
    key: rsa.RSAPrivateKey,
    *,
    common_name: str = "notifyhub",
    org: Optional[str] = None,
    validity: timedelta = const.CERTIFICATE_VALIDITY,
    now: datetime | None = None,
) -> x509.Certificate:
    now = now or datetime.now(tz=timezone.utc)
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if org:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
    subject = issuer = x509.Name(attributes)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + validity)
    )
    return builder.sign(private_key=key, algorithm=hashes.SHA256())


def generate_key_material(modulus_bits: int = const.RSA_MODULUS_BITS, *, now: datetime | None = None) -> KeyMaterial:
    """Generate a fresh RSA keypair with a one-year self-signed certificate."""
    try:
        key = generate_rsa_key(modulus_bits)
        cert = make_self_signed_cert(key, now=now)
    except (ValueError, TypeError) as exc:
        raise CryptoGenerationError(f"failed to generate key material: {exc}") from exc
    return KeyMaterial(
        public_certificate_pem=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        fingerprint=public_key_fingerprint(cert.public_key()),
        private_key=key,
        not_valid_after=_not_valid_after(cert),
    )


def _not_valid_after(cert: x509.Certificate) -> datetime:
    try:
        return cert.not_valid_after_utc
    except AttributeError:  # cryptography < 42
        return cert.not_valid_after.replace(tzinfo=timezone.utc)


__all__ = [
    "KeyMaterial",
    "generate_rsa_key",
    "generate_key_material",
    "make_self_signed_cert",
    "public_key_fingerprint",
]
