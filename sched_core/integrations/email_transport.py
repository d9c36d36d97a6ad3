"""
Outbound mail transports
Console mode logs the envelope only; http mode posts to a mail relay API
"""
import uuid
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel

from sched_core.core.config import Settings
from sched_core.core.errors import PermanentError, TransientError, classify_status_code, PERMANENT
from sched_core.core.logger import info, warning
from sched_core.core.setup_logger import worker_logger


class OutboundEmail(BaseModel):
    to: str
    subject: str
    text: str
    html: Optional[str] = None


class EmailTransport(ABC):
    """
    Sends one message and returns the provider message id.

    Raises PermanentError or TransientError on failure.
    """

    @abstractmethod
    async def send(self, message: OutboundEmail) -> str:
        pass

    async def close(self) -> None:
        return None


class ConsoleTransport(EmailTransport):
    """Development transport: logs recipient and subject, never the body"""

    def __init__(self, logger=worker_logger):
        self.logger = logger
        self.sent = []

    async def send(self, message: OutboundEmail) -> str:
        message_id = f"dev-{uuid.uuid4().hex[:12]}"
        self.sent.append(message)
        info(self.logger, "Email (console mode)", context={
            "to": message.to,
            "subject": message.subject,
            "message_id": message_id,
        })
        return message_id


class HttpMailTransport(EmailTransport):
    """JSON mail relay (SendGrid/Postmark/Resend style) over httpx"""

    def __init__(
            self,
            api_url: str,
            api_key: str,
            sender: str,
            timeout: float = 10.0,
            client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, message: OutboundEmail) -> str:
        if not self.api_url or not self.api_key:
            raise PermanentError("Mail transport not configured - set MAIL_API_URL and MAIL_API_KEY")

        body = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "text": message.text,
            "html": message.html or message.text,
        }

        try:
            response = await self._client.post(
                self.api_url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Mail API timeout: {e}", code="timeout")
        except httpx.TransportError as e:
            raise TransientError(f"Mail API unreachable: {e}", code="transport")

        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = {}
            return str(data.get("id") or data.get("messageId") or response.headers.get("x-message-id") or "")

        status = response.status_code
        warning(worker_logger, "Mail API rejected message", context={
            "status_code": status,
            "to": message.to,
        })

        if classify_status_code(status) == PERMANENT:
            raise PermanentError(f"Mail API error: {status}", code=str(status))

        retry_after = None
        if "retry-after" in response.headers:
            try:
                retry_after = float(response.headers["retry-after"])
            except ValueError:
                retry_after = None
        raise TransientError(f"Mail API error: {status}", code=str(status), retry_after=retry_after)

    async def close(self) -> None:
        await self._client.aclose()


def build_email_transport(settings: Settings) -> EmailTransport:
    if settings.EMAIL_MODE == "http":
        return HttpMailTransport(
            api_url=settings.MAIL_API_URL,
            api_key=settings.MAIL_API_KEY,
            sender=settings.MAIL_FROM,
            timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
    return ConsoleTransport()
