"""Push subscription lifecycle, encrypted ingress and delta polling fallback."""
from .enums import DeliveryMode, PollMode, SubscriptionState
from .feed import ChangeFeed
from .ingress import IngressReport, IngressResult, NotificationIngressHandler
from .manager import SubscriptionLifecycleManager
from .models import ChangeBatch, NormalizedChangeRecord, PollCursor, SubscriptionRecord
from .poller import DeltaPoller
from .resources import ResourceSpec
from .storage import ActiveSubscription, SubscriptionStorage
from .supervisor import SubscriptionSupervisor

__all__ = [
    "DeliveryMode",
    "PollMode",
    "SubscriptionState",
    "ChangeFeed",
    "IngressReport",
    "IngressResult",
    "NotificationIngressHandler",
    "SubscriptionLifecycleManager",
    "ChangeBatch",
    "NormalizedChangeRecord",
    "PollCursor",
    "SubscriptionRecord",
    "DeltaPoller",
    "ResourceSpec",
    "ActiveSubscription",
    "SubscriptionStorage",
    "SubscriptionSupervisor",
]
