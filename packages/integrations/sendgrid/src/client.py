"""SendGrid Client for outbound alert email.

Implements the MailSender protocol used by the email_alert executor.
One message is sent per recipient so a rejected address does not hide the
outcome of the others.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from packages.core.src.config import AutomationConfig, get_config
from packages.core.src.errors import MissingAPIKeyError, SendGridError

logger = structlog.get_logger()


def build_mail_payload(
    to: str,
    subject: str,
    text: str,
    from_email: str,
    from_name: str | None = None,
    html: str | None = None,
    categories: list[str] | None = None,
) -> dict[str, Any]:
    """v3 /mail/send request body."""
    payload: dict[str, Any] = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": text}],
    }

    if from_name:
        payload["from"]["name"] = from_name

    if html:
        payload["content"].append({"type": "text/html", "value": html})

    if categories:
        payload["categories"] = categories

    return payload


class SendGridClient:
    """Client for the SendGrid v3 mail API.

    Example:
        client = SendGridClient(api_key="SG.xxx", from_email="alerts@example.com")
        message_id = await client.send_email(
            to="owner@example.com",
            subject="New 1★ review",
            text="...",
        )
    """

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: str | None,
        from_email: str,
        from_name: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._from_name = from_name
        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key or ''}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: AutomationConfig | None = None) -> SendGridClient:
        """Create a client from the application config."""
        config = config or get_config()
        return cls(
            api_key=config.sendgrid_api_key,
            from_email=config.mail_from_address,
            from_name=config.mail_from_name,
            timeout=config.action_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        """Check if API key is configured."""
        return bool(self._api_key)

    async def send_email(
        self,
        to: str,
        subject: str,
        text: str,
        html: str | None = None,
    ) -> str | None:
        """Send one message.

        Returns:
            SendGrid message id (X-Message-Id header) if returned

        Raises:
            MissingAPIKeyError: No API key configured
            SendGridError: Request rejected or SendGrid unreachable
        """
        if not self.is_configured:
            raise MissingAPIKeyError("SENDGRID_API_KEY")

        payload = build_mail_payload(
            to,
            subject,
            text,
            from_email=self._from_email,
            from_name=self._from_name,
            html=html,
            categories=["review-automation"],
        )

        try:
            response = await self._client.post("/mail/send", json=payload)
        except httpx.HTTPError as e:
            logger.warning("sendgrid_request_failed", to=to, error=str(e))
            raise SendGridError(f"request failed: {e}") from e

        if response.status_code != 202:
            logger.warning(
                "sendgrid_send_failed",
                to=to,
                status=response.status_code,
                response=response.text[:200],
            )
            raise SendGridError(
                f"mail/send returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        message_id = response.headers.get("X-Message-Id")
        logger.info("sendgrid_email_sent", to=to, message_id=message_id)
        return message_id

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

