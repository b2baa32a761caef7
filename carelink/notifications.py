"""
Outbound notifications.

`EmailNotifier` posts to the Resend email API. Any transport error, timeout,
or non-2xx response raises `DeliveryFailed`; callers must not treat a
challenge as usable unless `send` returned normally.
"""
import logging
from typing import Optional

import httpx

from carelink import config
from carelink.errors import DeliveryFailed

logger = logging.getLogger(__name__)


class EmailNotifier:
    def __init__(self, *, api_key: str = None, api_url: str = None, sender: str = None,
                 timeout: float = None, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._api_key = api_key if api_key is not None else config.RESEND_API_KEY
        self._api_url = api_url or config.RESEND_API_URL
        self._sender = sender or config.EMAIL_FROM
        self._timeout = timeout if timeout is not None else config.NOTIFY_TIMEOUT_SECONDS
        self._transport = transport

    def send(self, address: str, subject: str, body: str) -> None:
        if not self._api_key:
            raise DeliveryFailed("email delivery is not configured")
        headers = {"Authorization": f"Bearer {self._api_key}"}
        payload = {"from": self._sender, "to": [address], "subject": subject, "text": body}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                r = client.post(self._api_url, headers=headers, json=payload)
                r.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("Email delivery timed out after %ss", self._timeout)
            raise DeliveryFailed() from e
        except httpx.HTTPStatusError as e:
            logger.warning("Email provider rejected message: status=%s", e.response.status_code)
            raise DeliveryFailed() from e
        except httpx.HTTPError as e:
            logger.warning("Email delivery failed: %s", e.__class__.__name__)
            raise DeliveryFailed() from e


def otp_message(partner_name: str, code: str, ttl_minutes: int):
    subject = "Your CareBag verification code"
    body = (
        f"Hello,\n\n{partner_name} has asked to link your CareBag record to their account.\n\n"
        f"Your verification code is: {code}\n\n"
        f"It expires in {ttl_minutes} minutes. If you did not expect this, do not share the code."
    )
    return subject, body
