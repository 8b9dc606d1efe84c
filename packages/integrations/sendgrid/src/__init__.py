"""SendGrid Integration for automation email alerts."""

from .client import SendGridClient, build_mail_payload

__all__ = ["SendGridClient", "build_mail_payload"]
