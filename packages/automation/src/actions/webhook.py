"""webhook executor with optional HMAC-SHA256 signing."""

from __future__ import annotations

import hashlib
import hmac

from packages.core.src.types import ActionType, AutomationRule, Event, WebhookConfig

from .base import ActionResult, HttpActionExecutor, build_envelope, encode_body

SIGNATURE_HEADER = "X-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Receiver-side check, constant time."""
    return hmac.compare_digest(sign_payload(secret, body), signature)


class WebhookExecutor(HttpActionExecutor):
    """POSTs the raw event to a tenant-configured URL."""

    action_type = ActionType.WEBHOOK
    config_type = WebhookConfig

    async def _execute(
        self,
        config: WebhookConfig,
        event: Event,
        automation: AutomationRule,
    ) -> ActionResult:
        body = encode_body(build_envelope(event, automation))
        headers = {
            "X-Automation-Id": str(automation.id),
            "X-Event-Id": str(event.event_id),
        }
        if config.secret:
            headers[SIGNATURE_HEADER] = sign_payload(config.secret, body)

        response = await self._post(config.url, body, headers)
        return ActionResult.success(status_code=response.status_code, signed=bool(config.secret))
