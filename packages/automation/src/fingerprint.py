"""Delivery fingerprints.

A fingerprint identifies one (automation, triggering occurrence) pair. The
ledger allows at most one successful delivery per fingerprint.
"""

from __future__ import annotations

import hashlib
import json

from packages.core.src.types import AutomationRule, Event, TriggerType


def compute_fingerprint(automation: AutomationRule, event: Event) -> str:
    """Hex sha256 over the occurrence identity.

    no_reply_24h leaves the event version out so a review that stays
    unreplied across many scan cycles fires the automation only once.
    """
    if automation.trigger_type is TriggerType.NO_REPLY_24H:
        parts = [str(automation.id), str(event.review_id), automation.trigger_type.value]
    else:
        parts = [str(automation.id), str(event.review_id), event.kind.value, event.version]

    return hashlib.sha256(json.dumps(parts).encode()).hexdigest()
