"""Error taxonomy for the subscription pipeline."""

from __future__ import annotations

from typing import Any


class NotifyHubError(RuntimeError):
    """Base error for subscription, delivery and polling flows."""


# ---- crypto -------------------------------------------------------------
class CryptoGenerationError(NotifyHubError):
    """Raised when key generation or certificate signing fails."""


class ItemRejected(NotifyHubError):
    """Base for per-item failures: the item is dropped, the batch continues."""

    reason = "rejected"


class KeyUnwrapError(ItemRejected):
    """Raised when the wrapped content key does not open with the held private key."""

    reason = "key_unwrap"


class IntegrityViolation(ItemRejected):
    """Raised when the HMAC over the ciphertext does not match the signature."""

    reason = "integrity"


class PayloadDecryptError(ItemRejected):
    """Raised when the ciphertext cannot be decrypted or decoded."""

    reason = "payload_decrypt"


class UnknownKeyFingerprint(ItemRejected):
    """Raised when an item references a certificate id we do not hold."""

    reason = "unknown_fingerprint"

    def __init__(self, fingerprint: str | None) -> None:
        self.fingerprint = fingerprint
        super().__init__(f"no key material for certificate id {fingerprint!r}")


class ClientStateMismatch(ItemRejected):
    """Raised when the echoed client state does not match the subscription."""

    reason = "client_state"


# ---- lifecycle ----------------------------------------------------------
class SubscriptionStateError(NotifyHubError):
    """Raised when an operation is not allowed in the current lifecycle state."""

    def __init__(self, operation: str, state: Any) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"cannot {operation} while subscription is {state}")


class SubscriptionCreateError(NotifyHubError):
    """Raised when the remote service rejects or fails a create-subscription call."""


class RenewalFailure(NotifyHubError):
    """Raised when renewal is impossible; the caller must re-activate from scratch."""


# ---- connectivity / polling ----------------------------------------------
class RemoteRequestError(NotifyHubError):
    """Raised when the remote API returns an error response or is unreachable."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        method: str | None = None,
        path: str | None = None,
        error_code: str | None = None,
        payload: Any | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.path = path
        self.error_code = error_code
        self.payload = payload

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class NoDataFoundError(NotifyHubError):
    """Raised by a manual poll that found nothing to show."""

    def __init__(self, message: str = "No data with the current filter could be found") -> None:
        super().__init__(message)


__all__ = [
    "NotifyHubError",
    "CryptoGenerationError",
    "ItemRejected",
    "KeyUnwrapError",
    "IntegrityViolation",
    "PayloadDecryptError",
    "UnknownKeyFingerprint",
    "ClientStateMismatch",
    "SubscriptionStateError",
    "SubscriptionCreateError",
    "RenewalFailure",
    "RemoteRequestError",
    "NoDataFoundError",
]
