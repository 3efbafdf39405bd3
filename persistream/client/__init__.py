"""Client-side reconciliation of live and persisted stream text."""

from persistream.client.fetch import fetch_persisted_body, start_streaming
from persistream.client.reconcile import (
    CompletionFlag,
    reconcile,
    synthesize_status,
    uses_persisted,
)
from persistream.client.subscription import (
    BodySource,
    HttpBodySource,
    StreamSubscription,
)

__all__ = [
    "BodySource",
    "CompletionFlag",
    "HttpBodySource",
    "StreamSubscription",
    "fetch_persisted_body",
    "reconcile",
    "start_streaming",
    "synthesize_status",
    "uses_persisted",
]
