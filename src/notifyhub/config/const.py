# src/notifyhub/config/const.py
from __future__ import annotations

from datetime import timedelta

# Remote service defaults (changed by developers in code/build)
API_BASE: str = "https://graph.microsoft.com"
API_VERSION: str = "v1.0"

# The remote service caps chat/channel message subscriptions at 60 minutes.
SUBSCRIPTION_LIFETIME: timedelta = timedelta(minutes=55)
RENEWAL_MARGIN: timedelta = timedelta(minutes=10)

# Notifications encrypted under a rotated-out key are still accepted for this long.
PRIOR_KEY_GRACE: timedelta = timedelta(minutes=10)

CERTIFICATE_VALIDITY: timedelta = timedelta(days=365)
RSA_MODULUS_BITS: int = 2048

POLL_PAGE_SIZE: int = 50
MANUAL_PAGE_SIZE: int = 1

REQUEST_TIMEOUT: float = 15.0
ACTIVATION_TIMEOUT: float = 60.0
POLL_TIMEOUT: float = 120.0

POLL_INTERVAL: float = 60.0
RENEW_INTERVAL: float = 300.0

ENV_PREFIX: str = "NOTIFYHUB_"
